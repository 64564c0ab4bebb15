import os
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Dict, Tuple

from bod_analysis.results import PARAMETER_NAMES, BootstrapRun, GroupFit

PLOT_STYLE = {
    "figsize": (8, 6),
    "colors": ["#2E86AB", "#A23B72", "#F18F01", "#C73E1D", "#4E937A"],
}

PARAMETER_LABELS = {
    "half_time": "Half-saturation time (days)",
    "k": "Rate k (1/day)",
    "limit": "Limit BOD (mg O₂/L)",
}


def style_axes(ax):
    """Apply consistent styling to axes.

    Args:
        ax: Matplotlib axes object.

    Returns:
        None. Modifies axes in-place.
    """
    for spine in ["top", "right"]:
        ax.spines[spine].set_visible(False)
    ax.spines["left"].set_linewidth(1.5)
    ax.spines["bottom"].set_linewidth(1.5)
    ax.grid(True, alpha=0.3, linestyle="--")
    ax.set_axisbelow(True)


def save_fig(fig, outdir, filename):
    """Save figure to directory, creating it if necessary.

    Returns:
        Path of the written PNG.
    """
    os.makedirs(outdir, exist_ok=True)
    fig.tight_layout()
    path = os.path.join(outdir, filename)
    fig.savefig(path, dpi=300, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return path


def _slug(*parts):
    return "_".join(str(p).replace(" ", "_").replace("/", "-") for p in parts)


def plot_bod_timeseries(df, habitat, outdir, summary=None):
    """Plot BOD vs time for every treatment of one habitat.

    Args:
        df: Preprocessed observations (outliers already removed or flagged).
        habitat: Habitat to draw.
        outdir: Output directory.
        summary: Optional summarize_bod table; draws mean ± CI per time point.

    Returns:
        Path of the PNG.
    """
    fig, ax = plt.subplots(figsize=PLOT_STYLE["figsize"])
    sub = df[df["habitat"] == habitat]
    for i, (treatment, grp) in enumerate(sub.groupby("treatment")):
        color = PLOT_STYLE["colors"][i % len(PLOT_STYLE["colors"])]
        for _, reactor in grp.groupby("reactor_id"):
            ax.plot(reactor["time_days"], reactor["bod_mg_L"], color=color, alpha=0.35, lw=1)
        if summary is not None:
            s = summary[(summary["habitat"] == habitat) & (summary["treatment"] == treatment)]
            ax.errorbar(s["time_days"], s["mean_bod_mg_L"],
                        yerr=[s["mean_bod_mg_L"] - s["ci_low"], s["ci_high"] - s["mean_bod_mg_L"]],
                        color=color, marker="o", ms=5, capsize=3, lw=2, label=treatment)
        else:
            ax.plot([], [], color=color, lw=2, label=treatment)
    ax.set_xlabel("Time (days)", fontsize=12, weight="bold")
    ax.set_ylabel("BOD (mg O₂/L)", fontsize=12, weight="bold")
    ax.set_title(f"{habitat} — BOD time series", fontsize=14, weight="bold", pad=20)
    style_axes(ax)
    ax.legend(frameon=False)
    return save_fig(fig, outdir, f"{_slug(habitat)}_bod_timeseries.png")


def plot_fitted_curve(df, group_fit: GroupFit, outdir, band: Dict[str, np.ndarray] | None = None):
    """Scatter the group's observations with the apparent logistic fit and bootstrap band.

    Args:
        df: Observations of one habitat/treatment group.
        group_fit: Fit summary for the group.
        outdir: Output directory.
        band: Optional dict time/low/high (see fitting.prediction_band).

    Returns:
        Path of the PNG.
    """
    fig, ax = plt.subplots(figsize=PLOT_STYLE["figsize"])
    ax.scatter(df["time_days"], df["bod_mg_L"], s=40, alpha=0.7, color=PLOT_STYLE["colors"][0],
               edgecolor="black", label="Observations", zorder=3)
    if band is not None and np.any(np.isfinite(band["low"])):
        pct = int(round(group_fit.confidence_level * 100))
        ax.fill_between(band["time"], band["low"], band["high"], color=PLOT_STYLE["colors"][0], alpha=0.15,
                        label=f"{pct}% bootstrap band")
    model = group_fit.apparent
    if model is not None:
        t_max = float(df["time_days"].max()) if len(df) else 1.0
        x_line = np.linspace(0, t_max * 1.05, 300)
        ax.plot(x_line, model.predict(x_line), color="black", lw=2,
                label=f"Logistic fit (limit={model.limit:.1f}, k={model.k:.3f}, t½={model.half_time:.1f})")
    ax.set_xlabel("Time (days)", fontsize=12, weight="bold")
    ax.set_ylabel("BOD (mg O₂/L)", fontsize=12, weight="bold")
    ax.set_title(f"{group_fit.habitat} / {group_fit.treatment} — logistic fit", fontsize=14, weight="bold", pad=20)
    style_axes(ax)
    ax.legend(frameon=False, fontsize=9)
    return save_fig(fig, outdir, f"{_slug(group_fit.habitat, group_fit.treatment)}_bod_fit.png")


def plot_bootstrap_distributions(run: BootstrapRun, intervals: Dict[str, Tuple[float, float]], label, outdir):
    """Histogram of bootstrap estimates per parameter with interval and apparent estimate.

    Args:
        run: Bootstrap run.
        intervals: Parameter -> (lower, upper).
        label: Group label used in title and file name.
        outdir: Output directory.

    Returns:
        Path of the PNG.
    """
    fig, axes = plt.subplots(1, len(PARAMETER_NAMES), figsize=(14, 4))
    successful = [r.model for r in run.successful]
    apparent = run.apparent
    for ax, name in zip(axes, PARAMETER_NAMES):
        values = np.array([getattr(m, name) for m in successful], dtype=float)
        values = values[np.isfinite(values)]
        if values.size:
            sns.histplot(values, bins=30, ax=ax, color=PLOT_STYLE["colors"][1], alpha=0.6)
        low, high = intervals.get(name, (np.nan, np.nan))
        if np.isfinite(low) and np.isfinite(high):
            ax.axvspan(low, high, color=PLOT_STYLE["colors"][2], alpha=0.15)
            ax.axvline(low, color=PLOT_STYLE["colors"][2], ls="--")
            ax.axvline(high, color=PLOT_STYLE["colors"][2], ls="--")
        if apparent is not None and apparent.converged:
            ax.axvline(getattr(apparent.model, name), color="black", lw=2)
        ax.set_xlabel(PARAMETER_LABELS[name])
        style_axes(ax)
    axes[0].set_ylabel("Bootstrap fits")
    fig.suptitle(f"{label} — bootstrap estimates ({run.n_failed} failed of {len(run.resamples)})")
    return save_fig(fig, outdir, f"{_slug(label)}_bootstrap_params.png")
