import numpy as np
import pandas as pd
from numpy.typing import ArrayLike

from scipy import stats
import statsmodels.api as sm
from statsmodels.formula.api import ols

from bod_analysis.config import validate_confidence_level


def bootstrap_ci(
    values: ArrayLike, func=np.mean, n_boot: int = 5000, confidence_level: float = 0.95, random_state: int | None = 42
):
    """Bootstrap percentile interval of a statistic of one sample of replicates.

    Args:
        values: Replicate values; NaN entries are dropped.
        func: Statistic applied along axis 1 of the resample matrix (default mean).
        n_boot: Number of bootstrap replicates.
        confidence_level: Two-sided interval level in (0, 1), as used by the curve fits.
        random_state: Random generator seed.

    Returns:
        Dict with keys point, ci_low, ci_high.
    """
    validate_confidence_level(confidence_level)
    arr = np.asarray(values, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return {"point": np.nan, "ci_low": np.nan, "ci_high": np.nan}
    rng = np.random.default_rng(random_state)
    boots = rng.choice(arr, size=(n_boot, arr.size), replace=True)
    tail = (1.0 - confidence_level) / 2.0
    low, high = np.quantile(func(boots, axis=1), [tail, 1.0 - tail])
    return {"point": float(func(arr)), "ci_low": float(low), "ci_high": float(high)}


def summarize_bod(
    df: pd.DataFrame, n_boot: int = 1000, confidence_level: float = 0.95, random_state: int | None = 42
) -> pd.DataFrame:
    """Descriptive BOD statistics per habitat, treatment and time point.

    Args:
        df: Preprocessed observations (habitat, treatment, time_days, bod_mg_L).
        n_boot: Bootstrap replicates for the CI of the mean.
        confidence_level: Two-sided interval level in (0, 1).
        random_state: Seed.

    Returns:
        DataFrame with n, mean, sd, sem, ci_low, ci_high per group and time.
    """
    rows = []
    for (habitat, treatment, time), grp in df.groupby(["habitat", "treatment", "time_days"], sort=True):
        values = grp["bod_mg_L"].to_numpy(dtype=float)
        n = int(np.sum(~np.isnan(values)))
        sd = float(np.nanstd(values, ddof=1)) if n > 1 else np.nan
        boot = bootstrap_ci(values, n_boot=n_boot, confidence_level=confidence_level, random_state=random_state)
        rows.append({
            "habitat": habitat,
            "treatment": treatment,
            "time_days": float(time),
            "n": n,
            "mean_bod_mg_L": boot["point"],
            "sd_bod_mg_L": sd,
            "sem_bod_mg_L": sd / np.sqrt(n) if n > 1 else np.nan,
            "ci_low": boot["ci_low"],
            "ci_high": boot["ci_high"],
        })
    return pd.DataFrame(rows)


def final_bod_per_reactor(df: pd.DataFrame) -> pd.DataFrame:
    """Last BOD reading of each reactor (habitat, treatment, time_days, bod_mg_L)."""
    last = df.sort_values("time_days").groupby("reactor_id").tail(1)
    return last[["reactor_id", "habitat", "treatment", "time_days", "bod_mg_L"]].sort_values("reactor_id").reset_index(drop=True)


def one_way_anova(groups, responses):
    """One-way ANOVA of responses grouped by treatment label.

    Args:
        groups: array-like group labels.
        responses: array-like response (e.g., final BOD per reactor).

    Returns dict with F, p, df_between, df_within.
    """
    x = np.asarray(groups).astype(str)
    y = np.asarray(responses, dtype=float)
    mask = ~np.isnan(y)
    x = x[mask]
    y = y[mask]
    levels = np.unique(x)
    if y.size < 3 or levels.size < 2:
        return {"anova_F": np.nan, "anova_p": np.nan, "df_between": 0, "df_within": 0}
    samples = [y[x == lv] for lv in levels]
    df_between = levels.size - 1
    df_within = y.size - levels.size
    if df_within <= 0 or all(np.ptp(s) == 0 for s in samples):
        return {"anova_F": np.nan, "anova_p": np.nan, "df_between": int(df_between), "df_within": int(df_within)}
    F, p = stats.f_oneway(*samples)
    return {"anova_F": float(F), "anova_p": float(p), "df_between": int(df_between), "df_within": int(df_within)}


def treatment_anova(df: pd.DataFrame) -> pd.DataFrame:
    """Two-way ANOVA (habitat x treatment) on final BOD per reactor.

    Falls back to a treatment-only model when a single habitat is present.

    Args:
        df: Preprocessed observations.

    Returns:
        ANOVA table (type II sums of squares) with a term column; empty if not estimable.
    """
    final = final_bod_per_reactor(df).dropna(subset=["bod_mg_L"])
    columns = ["term", "sum_sq", "df", "F", "PR(>F)"]
    if final["treatment"].nunique() < 2:
        return pd.DataFrame(columns=columns)
    if final["habitat"].nunique() > 1:
        formula = "bod_mg_L ~ C(habitat) * C(treatment)"
    else:
        formula = "bod_mg_L ~ C(treatment)"
    try:
        model = ols(formula, data=final).fit()
        if model.df_resid <= 0:
            return pd.DataFrame(columns=columns)
        table = sm.stats.anova_lm(model, typ=2)
    except (ValueError, np.linalg.LinAlgError):
        return pd.DataFrame(columns=columns)
    table = table.reset_index().rename(columns={"index": "term"})
    return table[columns]


def treatment_tests(df: pd.DataFrame) -> pd.DataFrame:
    """Per-habitat one-way ANOVA of final BOD across treatments."""
    final = final_bod_per_reactor(df)
    rows = []
    for habitat, grp in final.groupby("habitat"):
        res = one_way_anova(grp["treatment"], grp["bod_mg_L"])
        rows.append({"habitat": habitat, "n_reactors": int(len(grp)), **res})
    return pd.DataFrame(rows)
