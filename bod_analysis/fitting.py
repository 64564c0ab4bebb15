"""Bootstrap fitting of the logistic BOD saturation curve.

Provides:
1. Single nonlinear least-squares fit from a user supplied initial guess.
2. Case-resampling bootstrap with one independent random stream per trial.
3. Percentile confidence intervals over the successful bootstrap fits.
"""
from __future__ import annotations
import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import optimize

from bod_analysis.config import (
    validate_confidence_level,
    validate_initial_guess,
    validate_resample_count,
    validate_seed,
)
from bod_analysis.errors import FitFailure, InsufficientSamples, InvalidConfiguration
from bod_analysis.results import (
    PARAMETER_NAMES,
    BootstrapRun,
    CurveModel,
    FitResult,
    Observation,
    ObservationSet,
    logistic,
)

log = logging.getLogger(__name__)

ModelForm = Callable[..., np.ndarray]
# A fixed (half_time, k, limit) triple, or a function of the trial index (None = apparent fit).
GuessSource = Union[Sequence[float], Callable[[Union[int, None]], Sequence[float]]]

DEFAULT_INITIAL_GUESS: Tuple[float, float, float] = (0.0, 0.1, 70.0)
DEFAULT_MAX_EVALUATIONS = 20000


def as_observation_set(observations) -> ObservationSet:
    """Coerce a DataFrame, a sequence of Observation records or an ObservationSet."""
    if isinstance(observations, ObservationSet):
        return observations
    if isinstance(observations, pd.DataFrame):
        if observations.empty:
            raise InvalidConfiguration("Observation set is empty")
        return ObservationSet.from_frame(observations)
    records = list(observations)
    if records and not all(isinstance(o, Observation) for o in records):
        raise InvalidConfiguration("Expected Observation records, a DataFrame or an ObservationSet")
    return ObservationSet.from_observations(records)


def fit_point_estimate(
    observations,
    model_form: ModelForm = logistic,
    initial_guess: Sequence[float] = DEFAULT_INITIAL_GUESS,
    max_evaluations: int = DEFAULT_MAX_EVALUATIONS,
) -> CurveModel:
    """Nonlinear least-squares fit of ``model_form`` to observed BOD.

    Args:
        observations: ObservationSet, preprocessed DataFrame or Observation records.
        model_form: Callable ``f(t, half_time, k, limit)``.
        initial_guess: Starting values (half_time, k, limit).
        max_evaluations: Function evaluation budget of the solver.

    Returns:
        CurveModel with the fitted parameters and residual sum of squares.

    Raises:
        FitFailure: Non-convergence, singular gradient, exhausted evaluation budget,
            non-finite guess/estimates or fewer than three distinct time points.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", optimize.OptimizeWarning)
        return _fit_model(as_observation_set(observations), model_form, initial_guess, max_evaluations)


def _fit_model(data: ObservationSet, model_form, initial_guess, max_evaluations) -> CurveModel:
    # Leaves warning filters to the caller; safe to run on worker threads.
    p0 = np.asarray(initial_guess, dtype=float)
    n_params = len(PARAMETER_NAMES)
    if p0.shape != (n_params,) or not np.all(np.isfinite(p0)):
        raise FitFailure(f"Initial guess must be {n_params} finite values, got {initial_guess!r}", reason="invalid_guess")
    if data.n_distinct_times < n_params:
        raise FitFailure(
            f"{data.n_distinct_times} distinct time point(s) cannot identify {n_params} parameters",
            reason="rank_deficient",
        )
    try:
        popt, pcov = optimize.curve_fit(model_form, data.time, data.bod, p0=p0, maxfev=max_evaluations)
    except RuntimeError as exc:
        reason = "iteration_budget" if "maxfev" in str(exc) else "non_convergence"
        raise FitFailure(str(exc), reason=reason) from exc
    except (ValueError, np.linalg.LinAlgError) as exc:
        raise FitFailure(str(exc), reason="non_finite") from exc
    if not np.all(np.isfinite(popt)):
        raise FitFailure(f"Solver returned non-finite estimates {popt}", reason="non_finite")
    # Saturated fits (n == p) have no residual degrees of freedom to scale pcov.
    if len(data) > n_params and not np.all(np.isfinite(pcov)):
        raise FitFailure("Singular gradient: parameter covariance could not be estimated", reason="singular_gradient")
    with np.errstate(over="ignore", invalid="ignore"):
        resid = data.bod - model_form(data.time, *popt)
    rss = float(np.sum(resid ** 2))
    if not np.isfinite(rss):
        raise FitFailure("Residual sum of squares is not finite", reason="non_finite")
    return CurveModel(half_time=float(popt[0]), k=float(popt[1]), limit=float(popt[2]), rss=rss, n_obs=len(data))


def _resolve_guess(initial_guess: GuessSource, index: int | None) -> Sequence[float]:
    return initial_guess(index) if callable(initial_guess) else initial_guess


def _fit_trial(data: ObservationSet, index: int | None, model_form, initial_guess, max_evaluations) -> FitResult:
    try:
        model = _fit_model(data, model_form, _resolve_guess(initial_guess, index), max_evaluations)
    except FitFailure as exc:
        return FitResult(resample_index=index, model=None, converged=False, message=str(exc), reason=exc.reason)
    return FitResult(resample_index=index, model=model, converged=True)


def _resample_trial(data: ObservationSet, index: int, entropy, model_form, initial_guess, max_evaluations) -> FitResult:
    # Equivalent to SeedSequence(entropy).spawn(n)[index]: the stream depends only on (seed, index).
    rng = np.random.default_rng(np.random.SeedSequence(entropy, spawn_key=(index,)))
    indices = rng.integers(0, len(data), size=len(data))
    return _fit_trial(data.take(indices), index, model_form, initial_guess, max_evaluations)


def resample_indices(n_obs: int, index: int, seed: int) -> np.ndarray:
    """Row indices drawn for bootstrap trial ``index`` (for inspection and tests)."""
    rng = np.random.default_rng(np.random.SeedSequence(seed, spawn_key=(index,)))
    return rng.integers(0, n_obs, size=n_obs)


def bootstrap(
    observations,
    model_form: ModelForm = logistic,
    initial_guess: GuessSource = DEFAULT_INITIAL_GUESS,
    resample_count: int = 1000,
    include_apparent: bool = True,
    seed: int | None = 42,
    n_jobs: int = 1,
    max_evaluations: int = DEFAULT_MAX_EVALUATIONS,
) -> BootstrapRun:
    """Fit the model to ``resample_count`` case resamples of the observations.

    Each trial draws ``len(observations)`` rows uniformly with replacement and refits
    from the same initial guess. Failed fits are kept as non-converged FitResults.
    The apparent fit (original data), when requested, is appended last.

    Args:
        observations: ObservationSet, preprocessed DataFrame or Observation records.
        model_form: Callable ``f(t, half_time, k, limit)``.
        initial_guess: (half_time, k, limit) or a callable of the trial index.
        resample_count: Number of resamples (> 0).
        include_apparent: Add the unresampled fit.
        seed: Root seed; None draws fresh OS entropy (recorded on the run).
        n_jobs: Worker threads; results do not depend on it.
        max_evaluations: Function evaluation budget per fit.

    Returns:
        BootstrapRun of resample_count (+1) FitResults ordered by resample index.
    """
    validate_resample_count(resample_count)
    validate_seed(seed)
    if not callable(initial_guess):
        validate_initial_guess(initial_guess)
    if n_jobs < 1:
        raise InvalidConfiguration(f"n_jobs must be >= 1, got {n_jobs}")
    data = as_observation_set(observations)
    entropy = np.random.SeedSequence(seed).entropy

    def trial(index: int) -> FitResult:
        return _resample_trial(data, index, entropy, model_form, initial_guess, max_evaluations)

    # Filters are process-global, so they are set once here and not per worker.
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", optimize.OptimizeWarning)
        if n_jobs == 1:
            results = [trial(i) for i in range(resample_count)]
        else:
            with ThreadPoolExecutor(max_workers=n_jobs) as executor:
                results = list(executor.map(trial, range(resample_count)))
        if include_apparent:
            results.append(_fit_trial(data, None, model_form, initial_guess, max_evaluations))

    run = BootstrapRun(results=tuple(results), seed=entropy)
    if run.n_failed:
        level = logging.WARNING if run.failure_rate > 0.1 else logging.INFO
        log.log(level, "%s: %d of %d bootstrap fits failed", data.label, run.n_failed, resample_count)
    apparent = run.apparent
    if apparent is not None and not apparent.converged:
        log.warning("%s: apparent fit failed (%s)", data.label, apparent.message)
    return run


def parameter_estimates(fit_results: Iterable[FitResult], include_apparent: bool = False) -> pd.DataFrame:
    """Table of parameter estimates from the successful fits (one row per fit)."""
    rows = [
        r.to_dict()
        for r in fit_results
        if r.converged and r.model is not None and (include_apparent or not r.is_apparent)
    ]
    columns = ["id", "resample_index", *PARAMETER_NAMES, "rss"]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows)[columns]


def percentile_interval(values, confidence_level: float, min_successful: int = 2, parameter: str = "value") -> Tuple[float, float]:
    """Empirical percentile interval of ``values`` (linear interpolation between order statistics)."""
    validate_confidence_level(confidence_level)
    if min_successful < 1:
        raise InvalidConfiguration(f"min_successful must be >= 1, got {min_successful}")
    arr = np.sort(np.asarray(values, dtype=float))
    arr = arr[np.isfinite(arr)]
    if arr.size < min_successful:
        raise InsufficientSamples(parameter, int(arr.size), min_successful)
    tail = (1.0 - confidence_level) / 2.0
    low, high = np.quantile(arr, [tail, 1.0 - tail])
    return float(low), float(high)


def percentile_intervals(
    fit_results: Iterable[FitResult],
    confidence_level: float = 0.95,
    min_successful: int = 2,
) -> Dict[str, Tuple[float, float]]:
    """Percentile interval per parameter over the successful resampled fits.

    The apparent fit is not part of the bootstrap distribution and is ignored.

    Raises:
        InvalidConfiguration: confidence_level outside (0, 1).
        InsufficientSamples: fewer than ``min_successful`` estimates for a parameter.
    """
    validate_confidence_level(confidence_level)
    estimates = parameter_estimates(fit_results)
    return {
        name: percentile_interval(estimates[name].to_numpy(dtype=float), confidence_level, min_successful, name)
        for name in PARAMETER_NAMES
    }


def prediction_band(fit_results: Iterable[FitResult], times, confidence_level: float = 0.95) -> Dict[str, np.ndarray]:
    """Pointwise percentile band of the fitted curves over ``times``.

    Returns:
        Dict with arrays time, low, high (NaN when no fit succeeded).
    """
    validate_confidence_level(confidence_level)
    t = np.asarray(times, dtype=float)
    curves = [r.model.predict(t) for r in fit_results if r.converged and r.model is not None and not r.is_apparent]
    if not curves:
        empty = np.full_like(t, np.nan)
        return {"time": t, "low": empty, "high": empty.copy()}
    tail = (1.0 - confidence_level) / 2.0
    low, high = np.nanquantile(np.vstack(curves), [tail, 1.0 - tail], axis=0)
    return {"time": t, "low": low, "high": high}
