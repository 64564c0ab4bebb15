"""Benthic reactor BOD analysis pipeline.

Provides:
1. Blank drift correction and pressure -> BOD conversion.
2. Logistic saturation fit per habitat/treatment with bootstrap percentile intervals.
3. Descriptive tables, treatment ANOVA and figures.
4. Export of CSV/JSON results.
"""

from __future__ import annotations

import argparse
import logging
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

from bod_analysis.config import ExperimentConfig, FitConfig, load_config, with_fit_overrides
from bod_analysis.errors import InsufficientSamples
from bod_analysis.export_utils import dataclasses_to_dataframe, ensure_dir, write_table
from bod_analysis.fitting import bootstrap, parameter_estimates, percentile_interval, prediction_band
from bod_analysis.io_utils import load_pressure_data
from bod_analysis.plot_utils import plot_bod_timeseries, plot_bootstrap_distributions, plot_fitted_curve
from bod_analysis.preprocess import drop_outliers, preprocess
from bod_analysis.results import PARAMETER_NAMES, GroupFit, ObservationSet
from bod_analysis.stat_utils import summarize_bod, treatment_anova, treatment_tests

log = logging.getLogger("bod_report")


def group_intervals(run, fit_config: FitConfig, label: str = "") -> Dict[str, Tuple[float, float]]:
    """Percentile intervals per parameter; NaN bounds where too few fits succeeded."""
    estimates = parameter_estimates(run)
    intervals: Dict[str, Tuple[float, float]] = {}
    for name in PARAMETER_NAMES:
        try:
            intervals[name] = percentile_interval(
                estimates[name].to_numpy(dtype=float), fit_config.confidence_level, fit_config.min_successful, name
            )
        except InsufficientSamples as exc:
            log.warning("%s: interval skipped (%s)", label, exc)
            intervals[name] = (np.nan, np.nan)
    return intervals


def fit_group(df: pd.DataFrame, fit_config: FitConfig) -> GroupFit:
    """Bootstrap-fit one habitat/treatment group of preprocessed observations."""
    data = ObservationSet.from_frame(df)
    run = bootstrap(
        data,
        initial_guess=fit_config.initial_guess,
        resample_count=fit_config.resample_count,
        include_apparent=fit_config.include_apparent,
        seed=fit_config.seed,
        n_jobs=fit_config.n_jobs,
        max_evaluations=fit_config.max_evaluations,
    )
    apparent = run.apparent
    return GroupFit(
        habitat=str(df["habitat"].iloc[0]),
        treatment=str(df["treatment"].iloc[0]),
        n_obs=len(data),
        n_reactors=int(df["reactor_id"].nunique()),
        apparent=apparent.model if apparent is not None else None,
        intervals=group_intervals(run, fit_config, data.label),
        confidence_level=fit_config.confidence_level,
        resample_count=fit_config.resample_count,
        n_failed=run.n_failed,
        run=run,
    )


def fit_groups(df: pd.DataFrame, fit_config: FitConfig) -> List[GroupFit]:
    """Fit every habitat/treatment combination present in df."""
    fits = []
    for (habitat, treatment), grp in df.groupby(["habitat", "treatment"], sort=True):
        log.info("Fitting %s / %s (%d observations)", habitat, treatment, len(grp))
        fits.append(fit_group(grp, fit_config))
    return fits


def trials_table(fits: List[GroupFit]) -> pd.DataFrame:
    frames = []
    for fit in fits:
        frame = fit.run.to_frame()
        frame.insert(0, "treatment", fit.treatment)
        frame.insert(0, "habitat", fit.habitat)
        frames.append(frame)
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()


def analyze_bod(raw: pd.DataFrame, config: ExperimentConfig | None = None, outdir: str = "results_bod", plots: bool = True) -> List[GroupFit]:
    """Run the full BOD pipeline and write tables + plots."""
    config = config or ExperimentConfig()
    ensure_dir(outdir)
    observations = preprocess(raw, config)
    clean = drop_outliers(observations)
    fit_config = config.fit

    summary = summarize_bod(clean, confidence_level=fit_config.confidence_level, random_state=fit_config.seed)
    fits = fit_groups(clean, fit_config)

    files: List[str] = []
    files += write_table(outdir, "bod_observations", observations)
    files += write_table(outdir, "bod_summary", summary)
    files += write_table(outdir, "bod_fit_results", dataclasses_to_dataframe(fits))
    files += write_table(outdir, "bod_bootstrap_trials", trials_table(fits))
    files += write_table(outdir, "bod_anova", treatment_anova(clean))
    files += write_table(outdir, "bod_treatment_tests", treatment_tests(clean))

    if plots:
        for habitat in clean["habitat"].unique():
            files.append(plot_bod_timeseries(clean, habitat, outdir, summary=summary))
        for fit in fits:
            grp = clean[(clean["habitat"] == fit.habitat) & (clean["treatment"] == fit.treatment)]
            times = np.linspace(0, float(grp["time_days"].max()) * 1.05, 200)
            band = prediction_band(fit.run, times, fit.confidence_level)
            files.append(plot_fitted_curve(grp, fit, outdir, band=band))
            files.append(plot_bootstrap_distributions(fit.run, fit.intervals, f"{fit.habitat} {fit.treatment}", outdir))

    n_failed = sum(f.n_failed for f in fits)
    print(f"BOD analysis complete. {len(fits)} group fits, {n_failed} failed bootstrap fits. "
          f"{len(files)} files written to {outdir}")
    return fits


def main(argv=None):
    parser = argparse.ArgumentParser(description="Benthic reactor BOD analysis (logistic fit + bootstrap intervals)")
    parser.add_argument("--csv", required=True, help="Input CSV with raw reactor pressure readings")
    parser.add_argument("--out", default="results_bod", help="Output directory")
    parser.add_argument("--config", default=None, help="JSON configuration file")
    parser.add_argument("--resamples", type=int, default=None, help="Bootstrap resample count")
    parser.add_argument("--confidence", type=float, default=None, help="Confidence level in (0, 1)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--jobs", type=int, default=None, help="Worker threads for bootstrap trials")
    parser.add_argument("--no-apparent", action="store_true", help="Do not report the apparent (unresampled) fit")
    parser.add_argument("--no-plots", action="store_true", help="Skip figure generation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = with_fit_overrides(
        load_config(args.config),
        resample_count=args.resamples,
        confidence_level=args.confidence,
        seed=args.seed,
        n_jobs=args.jobs,
        include_apparent=False if args.no_apparent else None,
    )
    raw = load_pressure_data(args.csv)
    analyze_bod(raw, config, outdir=args.out, plots=not args.no_plots)


if __name__ == "__main__":  # pragma: no cover
    main()
