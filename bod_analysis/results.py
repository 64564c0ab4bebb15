"""Result dataclasses for the BOD curve fits.

Centralizes observation, fit and bootstrap structures for reuse and serialization.
"""
from __future__ import annotations
from dataclasses import dataclass, asdict, field
from collections.abc import Sequence
from typing import Any, Dict, Iterator, List, Tuple

import numpy as np
import pandas as pd

from bod_analysis.errors import InvalidConfiguration

PARAMETER_NAMES: Tuple[str, str, str] = ("half_time", "k", "limit")


@dataclass(frozen=True)
class Observation:
    """One pressure reading after correction and conversion.

    Attributes:
        reactor_id: Reactor identifier.
        habitat: Habitat category.
        treatment: Treatment category (control, paper, plastic).
        time_days: Elapsed incubation time (days).
        pressure_hPa: Raw sensor pressure.
        adjusted_pressure_hPa: Pressure drop corrected for blank drift.
        bod_mg_L: Biological oxygen demand (mg O2/L).
    """
    reactor_id: str
    habitat: str
    treatment: str
    time_days: float
    pressure_hPa: float
    adjusted_pressure_hPa: float
    bod_mg_L: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, eq=False)
class ObservationSet:
    """Regression dataset for one habitat/treatment combination."""
    time: np.ndarray
    bod: np.ndarray
    habitat: str | None = None
    treatment: str | None = None

    def __post_init__(self):
        time = np.asarray(self.time, dtype=float)
        bod = np.asarray(self.bod, dtype=float)
        if time.ndim != 1 or time.shape != bod.shape:
            raise InvalidConfiguration("Observation time and BOD arrays must be 1-D and of equal length")
        if time.size == 0:
            raise InvalidConfiguration("Observation set is empty")
        object.__setattr__(self, "time", time)
        object.__setattr__(self, "bod", bod)

    def __len__(self) -> int:
        return int(self.time.size)

    @property
    def n_distinct_times(self) -> int:
        return int(np.unique(self.time).size)

    @property
    def label(self) -> str:
        return f"{self.habitat or 'all'} / {self.treatment or 'all'}"

    def take(self, indices: np.ndarray) -> "ObservationSet":
        """Return the observations at ``indices`` (repeats allowed)."""
        return ObservationSet(self.time[indices], self.bod[indices], self.habitat, self.treatment)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, time_col: str = "time_days", bod_col: str = "bod_mg_L") -> "ObservationSet":
        """Build from a preprocessed table; rows with missing time/BOD are dropped."""
        sub = df.dropna(subset=[time_col, bod_col])
        habitat = _single_label(sub, "habitat")
        treatment = _single_label(sub, "treatment")
        return cls(sub[time_col].to_numpy(dtype=float), sub[bod_col].to_numpy(dtype=float), habitat, treatment)

    @classmethod
    def from_observations(cls, observations: Sequence[Observation]) -> "ObservationSet":
        if not observations:
            raise InvalidConfiguration("Observation set is empty")
        habitats = {o.habitat for o in observations}
        treatments = {o.treatment for o in observations}
        return cls(
            np.array([o.time_days for o in observations], dtype=float),
            np.array([o.bod_mg_L for o in observations], dtype=float),
            habitats.pop() if len(habitats) == 1 else None,
            treatments.pop() if len(treatments) == 1 else None,
        )


def _single_label(df: pd.DataFrame, column: str) -> str | None:
    if column not in df.columns:
        return None
    values = df[column].dropna().unique()
    return str(values[0]) if len(values) == 1 else None


def logistic(t, half_time, k, limit):
    """Logistic saturation curve rising from 0 towards ``limit``."""
    with np.errstate(over="ignore"):
        return limit / (1.0 + np.exp(-k * (t - half_time)))


@dataclass(frozen=True)
class CurveModel:
    """Fitted logistic saturation curve ``limit / (1 + exp(-k (t - half_time)))``.

    Attributes:
        half_time: Time at which half of the limit is reached (days).
        k: Growth rate (1/day).
        limit: Limiting BOD (mg O2/L).
        rss: Residual sum of squares achieved by the solver.
        n_obs: Number of observations in the fitted set.
    """
    half_time: float
    k: float
    limit: float
    rss: float = float("nan")
    n_obs: int = 0

    @property
    def params(self) -> Tuple[float, float, float]:
        return (self.half_time, self.k, self.limit)

    def predict(self, t) -> np.ndarray:
        return logistic(np.asarray(t, dtype=float), *self.params)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FitResult:
    """Outcome of one bootstrap trial.

    ``resample_index`` is None for the apparent (unresampled) fit.
    """
    resample_index: int | None
    model: CurveModel | None
    converged: bool
    message: str = ""
    reason: str | None = None

    @property
    def is_apparent(self) -> bool:
        return self.resample_index is None

    @property
    def id(self) -> str:
        return "Apparent" if self.is_apparent else f"Bootstrap{self.resample_index + 1:04d}"

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "id": self.id,
            "resample_index": self.resample_index,
            "apparent": self.is_apparent,
            "converged": self.converged,
            "reason": self.reason,
            "message": self.message,
        }
        model = self.model
        for name in PARAMETER_NAMES:
            row[name] = getattr(model, name) if model is not None else np.nan
        row["rss"] = model.rss if model is not None else np.nan
        return row


@dataclass(frozen=True)
class BootstrapRun(Sequence):
    """Ordered, immutable collection of bootstrap trial results."""
    results: Tuple[FitResult, ...]
    seed: int | None = None

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, item):
        return self.results[item]

    def __iter__(self) -> Iterator[FitResult]:
        return iter(self.results)

    @property
    def apparent(self) -> FitResult | None:
        for r in self.results:
            if r.is_apparent:
                return r
        return None

    @property
    def resamples(self) -> List[FitResult]:
        return [r for r in self.results if not r.is_apparent]

    @property
    def successful(self) -> List[FitResult]:
        return [r for r in self.resamples if r.converged]

    @property
    def failed_indices(self) -> List[int]:
        return [r.resample_index for r in self.resamples if not r.converged]

    @property
    def n_failed(self) -> int:
        return len(self.failed_indices)

    @property
    def failure_rate(self) -> float:
        n = len(self.resamples)
        return self.n_failed / n if n else float("nan")

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_dict() for r in self.results])


@dataclass
class GroupFit:
    """Per habitat/treatment fit summary for the report tables.

    Attributes:
        habitat: Habitat category.
        treatment: Treatment category.
        n_obs: Observations used in the fit.
        n_reactors: Distinct reactors contributing.
        apparent: Apparent fit (None if it failed or was not requested).
        intervals: Parameter -> (lower, upper); NaN bounds when not estimable.
        confidence_level: Interval level.
        resample_count: Bootstrap resamples requested.
        n_failed: Failed resample fits.
        run: Full bootstrap run (not serialized).
    """
    habitat: str
    treatment: str
    n_obs: int
    n_reactors: int
    apparent: CurveModel | None
    intervals: Dict[str, Tuple[float, float]]
    confidence_level: float
    resample_count: int
    n_failed: int
    run: BootstrapRun | None = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "habitat": self.habitat,
            "treatment": self.treatment,
            "n_obs": self.n_obs,
            "n_reactors": self.n_reactors,
            "confidence_level": self.confidence_level,
            "resample_count": self.resample_count,
            "n_failed": self.n_failed,
        }
        for name in PARAMETER_NAMES:
            row[name] = getattr(self.apparent, name) if self.apparent is not None else np.nan
            low, high = self.intervals.get(name, (np.nan, np.nan))
            row[f"{name}_ci_low"] = float(low)
            row[f"{name}_ci_high"] = float(high)
        row["rss"] = self.apparent.rss if self.apparent is not None else np.nan
        return row
