"""Raw pressure readings -> blank-corrected pressure drop -> BOD (mg O2/L).

Manometric conversion (closed bottle, CO2 absorbed):

    BOD = M(O2) / (R * Tm) * ((Vtot - Vl) / Vl + alpha * Tm / T0) * dp

with dp the oxygen-consumption pressure drop after subtracting the drift of the
blank reactors at the same elapsed time.
"""
from __future__ import annotations
import logging
from typing import Iterable, List

import numpy as np
import pandas as pd
from scipy import stats

from bod_analysis.config import ExperimentConfig, PhysicalConstants
from bod_analysis.results import Observation

log = logging.getLogger(__name__)

OBSERVATION_COLUMNS = [
    "reactor_id",
    "habitat",
    "treatment",
    "time_days",
    "pressure_hPa",
    "adjusted_pressure_hPa",
    "bod_mg_L",
    "outlier",
]


def validate_categories(df: pd.DataFrame, habitats: Iterable[str] = (), treatments: Iterable[str] = (), blank_label: str = "blank") -> None:
    """Reject rows whose habitat/treatment is outside the configured sets (empty set = any)."""
    treatments = set(treatments)
    habitats = set(habitats)
    if treatments:
        bad = sorted(set(df["treatment"]) - treatments - {blank_label})
        if bad:
            raise ValueError(f"Unknown treatment label(s): {bad}; expected one of {sorted(treatments)}")
    if habitats:
        reactors = df[df["treatment"] != blank_label]
        bad = sorted(set(reactors["habitat"]) - habitats)
        if bad:
            raise ValueError(f"Unknown habitat label(s): {bad}; expected one of {sorted(habitats)}")


def pressure_drop(df: pd.DataFrame) -> pd.DataFrame:
    """Add pressure_drop_hPa = first reading of the reactor minus current reading."""
    out = df.copy()
    ordered = out.sort_values(["reactor_id", "time_days"])
    start = ordered.groupby("reactor_id")["pressure_hPa"].transform("first")
    out["pressure_drop_hPa"] = start.reindex(out.index) - out["pressure_hPa"]
    return out


def blank_drift(df: pd.DataFrame, blank_label: str = "blank") -> pd.DataFrame:
    """Mean pressure drop of the blank reactors per elapsed time.

    Args:
        df: Table with pressure_drop_hPa (see pressure_drop).
        blank_label: Treatment label of blank reactors.

    Returns:
        DataFrame with time_days, blank_drift_hPa (empty if there are no blanks).
    """
    blanks = df[df["treatment"] == blank_label]
    if blanks.empty:
        return pd.DataFrame({"time_days": pd.Series(dtype=float), "blank_drift_hPa": pd.Series(dtype=float)})
    return blanks.groupby("time_days").agg(blank_drift_hPa=("pressure_drop_hPa", "mean")).reset_index()


def adjust_pressure(df: pd.DataFrame, blank_label: str = "blank") -> pd.DataFrame:
    """Subtract blank drift from each reactor's pressure drop; blank rows are removed.

    Blank drift is linearly interpolated to reactor reading times (held constant
    outside the blank time range).
    """
    out = pressure_drop(df)
    drift = blank_drift(out, blank_label)
    samples = out[out["treatment"] != blank_label].copy()
    if drift.empty:
        log.warning("No blank reactors labelled '%s'; pressure drift is not corrected", blank_label)
        samples["blank_drift_hPa"] = 0.0
    else:
        t_min, t_max = drift["time_days"].min(), drift["time_days"].max()
        outside = ~samples["time_days"].between(t_min, t_max)
        if outside.any():
            log.warning("%d readings outside blank time range [%g, %g] days", int(outside.sum()), t_min, t_max)
        samples["blank_drift_hPa"] = np.interp(samples["time_days"], drift["time_days"], drift["blank_drift_hPa"])
    samples["adjusted_pressure_hPa"] = samples["pressure_drop_hPa"] - samples["blank_drift_hPa"]
    return samples


def bod_conversion_factor(constants: PhysicalConstants) -> float:
    """mg O2/L per hPa of pressure drop."""
    c = constants
    t_m = c.temperature_k
    v_l = c.sample_volume_ml
    headspace_ratio = (c.bottle_volume_ml - v_l) / v_l
    return c.molar_mass_o2 / (c.gas_constant * t_m) * (headspace_ratio + c.bunsen_alpha * t_m / c.reference_temperature_k)


def pressure_to_bod(delta_p, constants: PhysicalConstants | None = None):
    """Convert a pressure drop (hPa; scalar, array or Series) into BOD (mg O2/L)."""
    constants = constants or PhysicalConstants()
    constants.validate()
    return bod_conversion_factor(constants) * delta_p


def flag_outliers(df: pd.DataFrame, exclude_reactors: Iterable[str] = (), mad_threshold: float | None = None) -> pd.DataFrame:
    """Mark outlier reactors in an ``outlier`` column.

    Args:
        df: Table with reactor_id, habitat, treatment, time_days, bod_mg_L.
        exclude_reactors: Reactors excluded by hand.
        mad_threshold: If set, also flag reactors whose final BOD is more than this many
            (normal-scaled) MADs from the median of their habitat/treatment group.

    Returns:
        Copy of df with boolean column outlier.
    """
    exclude = {str(r) for r in exclude_reactors}
    out = df.copy()
    out["outlier"] = out["reactor_id"].isin(exclude)
    unknown = exclude - set(out["reactor_id"])
    if unknown:
        log.warning("Excluded reactor(s) not present in data: %s", sorted(unknown))
    if mad_threshold is None:
        return out
    final = out.sort_values("time_days").groupby("reactor_id").tail(1)
    for (habitat, treatment), grp in final.groupby(["habitat", "treatment"]):
        if len(grp) < 3:
            continue
        values = grp["bod_mg_L"].to_numpy(dtype=float)
        mad = stats.median_abs_deviation(values, scale="normal", nan_policy="omit")
        if not np.isfinite(mad) or mad == 0:
            continue
        score = np.abs(values - np.nanmedian(values)) / mad
        flagged = grp.loc[score > mad_threshold, "reactor_id"]
        if len(flagged):
            log.info("%s / %s: flagged reactor(s) %s (MAD score > %g)", habitat, treatment, list(flagged), mad_threshold)
            out.loc[out["reactor_id"].isin(flagged), "outlier"] = True
    return out


def drop_outliers(df: pd.DataFrame) -> pd.DataFrame:
    return df[~df["outlier"]].reset_index(drop=True)


def preprocess(df: pd.DataFrame, config: ExperimentConfig | None = None) -> pd.DataFrame:
    """Run category checks, blank correction, BOD conversion and outlier flagging.

    Args:
        df: Validated raw pressure table (see io_utils.load_pressure_data).
        config: Experiment configuration (defaults if None).

    Returns:
        Observation table with OBSERVATION_COLUMNS.
    """
    config = config or ExperimentConfig()
    config.validate()
    validate_categories(df, config.habitats, config.treatments, config.blank_label)
    out = adjust_pressure(df, config.blank_label)
    out["bod_mg_L"] = pressure_to_bod(out["adjusted_pressure_hPa"], config.constants)
    out = flag_outliers(out, config.exclude_reactors, config.mad_threshold)
    n_flagged = out.loc[out["outlier"], "reactor_id"].nunique()
    log.info("Preprocessed %d readings from %d reactors (%d flagged as outliers)",
             len(out), out["reactor_id"].nunique(), n_flagged)
    return out[OBSERVATION_COLUMNS].sort_values(["habitat", "treatment", "reactor_id", "time_days"]).reset_index(drop=True)


def to_observations(df: pd.DataFrame) -> List[Observation]:
    """Convert a preprocessed table into immutable Observation records."""
    return [
        Observation(
            reactor_id=str(row.reactor_id),
            habitat=str(row.habitat),
            treatment=str(row.treatment),
            time_days=float(row.time_days),
            pressure_hPa=float(row.pressure_hPa),
            adjusted_pressure_hPa=float(row.adjusted_pressure_hPa),
            bod_mg_L=float(row.bod_mg_L),
        )
        for row in df.itertuples(index=False)
    ]
