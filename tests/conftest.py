"""
Pytest configuration and shared fixtures.

Synthetic data follows the logistic saturation curve used by the fitter:
limit=70 mg/L, k=0.3 1/day, half_time=5 days, sampled daily over 30 days.
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from bod_analysis.config import PhysicalConstants
from bod_analysis.preprocess import bod_conversion_factor
from bod_analysis.results import ObservationSet, logistic

TRUE_PARAMS = {"half_time": 5.0, "k": 0.3, "limit": 70.0}


@pytest.fixture(scope="session")
def true_params():
    return dict(TRUE_PARAMS)


@pytest.fixture
def times():
    return np.arange(0, 31, dtype=float)


@pytest.fixture
def noiseless_set(times) -> ObservationSet:
    """Exact logistic values at t = 0..30."""
    bod = logistic(times, TRUE_PARAMS["half_time"], TRUE_PARAMS["k"], TRUE_PARAMS["limit"])
    return ObservationSet(times, bod, "sand", "plastic")


@pytest.fixture
def noisy_set(times) -> ObservationSet:
    """Logistic values with Gaussian noise (sd 0.5)."""
    rng = np.random.default_rng(7)
    bod = logistic(times, TRUE_PARAMS["half_time"], TRUE_PARAMS["k"], TRUE_PARAMS["limit"])
    return ObservationSet(times, bod + rng.normal(0.0, 0.5, times.size), "sand", "plastic")


@pytest.fixture
def mirrored_noise_set(times) -> ObservationSet:
    """Two replicates per day with Gaussian noise of opposite sign.

    The least-squares optimum of mirrored pairs equals the noiseless optimum, so the
    apparent fit sits at the generating parameters while resamples still scatter.
    """
    rng = np.random.default_rng(11)
    bod = logistic(times, TRUE_PARAMS["half_time"], TRUE_PARAMS["k"], TRUE_PARAMS["limit"])
    eps = rng.normal(0.0, 1.0, times.size)
    return ObservationSet(np.concatenate([times, times]), np.concatenate([bod + eps, bod - eps]), "sand", "paper")


def make_raw_pressure(
    habitats=("sand",),
    limits=None,
    reactors_per_group=3,
    n_blanks=2,
    days=20,
    drift_per_day=0.05,
    noise_hPa=0.05,
    seed=3,
) -> pd.DataFrame:
    """Raw reactor pressure table whose blank-corrected BOD follows a logistic curve."""
    limits = limits or {"control": 40.0, "paper": 70.0, "plastic": 55.0}
    factor = bod_conversion_factor(PhysicalConstants())
    rng = np.random.default_rng(seed)
    t = np.arange(0, days + 1, dtype=float)
    drift = drift_per_day * t
    rows = []
    for habitat in habitats:
        for treatment, limit in limits.items():
            for r in range(reactors_per_group):
                bod = logistic(t, 5.0, 0.3, limit) - logistic(0.0, 5.0, 0.3, limit)
                pressure = 1000.0 - bod / factor - drift + rng.normal(0.0, noise_hPa, t.size)
                pressure[0] = 1000.0
                rid = f"{habitat[:2].upper()}-{treatment[:2].upper()}{r + 1}"
                rows += [
                    {"reactor_id": rid, "habitat": habitat, "treatment": treatment, "time_days": ti, "pressure_hPa": p}
                    for ti, p in zip(t, pressure)
                ]
    for b in range(n_blanks):
        for ti, d in zip(t, drift):
            rows.append({"reactor_id": f"BL{b + 1}", "habitat": "none", "treatment": "blank",
                         "time_days": ti, "pressure_hPa": 1000.0 - d})
    return pd.DataFrame(rows)


@pytest.fixture
def raw_pressure() -> pd.DataFrame:
    return make_raw_pressure()


@pytest.fixture
def raw_pressure_csv(tmp_path, raw_pressure):
    path = tmp_path / "pressure.csv"
    raw_pressure.to_csv(path, index=False)
    return path


@pytest.fixture
def raw_pressure_factory():
    return make_raw_pressure
