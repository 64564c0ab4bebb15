"""Experiment configuration: physical constants, fitter settings, reactor lists.

Values can be supplied as a JSON document::

    {
        "constants": {"temperature_c": 20.0, "sample_volume_ml": 164.0},
        "fit": {"resample_count": 1000, "confidence_level": 0.95, "seed": 42},
        "exclude_reactors": ["R07"]
    }

Missing keys fall back to the dataclass defaults.
"""
from __future__ import annotations
import json
import math
import numbers
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Tuple

from bod_analysis.errors import InvalidConfiguration


@dataclass(frozen=True)
class PhysicalConstants:
    """Constants of the manometric BOD conversion.

    Attributes:
        molar_mass_o2: Molar mass of O2 (mg/mol).
        gas_constant: Gas constant (L hPa / (mol K)).
        reference_temperature_k: Standard temperature T0 (K).
        bunsen_alpha: Bunsen absorption coefficient of O2 in water.
        temperature_c: Measurement (incubation) temperature (°C).
        bottle_volume_ml: Total reactor volume (mL).
        sample_volume_ml: Liquid sample volume (mL).
    """
    molar_mass_o2: float = 32000.0
    gas_constant: float = 83.144
    reference_temperature_k: float = 273.15
    bunsen_alpha: float = 0.03103
    temperature_c: float = 20.0
    bottle_volume_ml: float = 510.0
    sample_volume_ml: float = 164.0

    @property
    def temperature_k(self) -> float:
        return self.temperature_c + self.reference_temperature_k

    def validate(self) -> None:
        if self.sample_volume_ml <= 0 or self.bottle_volume_ml <= 0:
            raise InvalidConfiguration("Reactor volumes must be positive")
        if self.sample_volume_ml >= self.bottle_volume_ml:
            raise InvalidConfiguration("Sample volume must be smaller than the bottle volume")
        if self.temperature_k <= 0:
            raise InvalidConfiguration(f"Measurement temperature below absolute zero: {self.temperature_c} °C")


@dataclass(frozen=True)
class FitConfig:
    """Bootstrap fitter settings.

    Attributes:
        initial_guess: Starting values (half_time, k, limit).
        resample_count: Number of bootstrap resamples.
        include_apparent: Also fit the unresampled data.
        confidence_level: Two-sided percentile interval level in (0, 1).
        seed: Root seed for the per-trial random streams.
        min_successful: Fewest successful fits accepted for an interval.
        max_evaluations: Function evaluation budget of one fit.
        n_jobs: Worker threads for the resampling trials.
    """
    initial_guess: Tuple[float, float, float] = (0.0, 0.1, 70.0)
    resample_count: int = 1000
    include_apparent: bool = True
    confidence_level: float = 0.95
    seed: int | None = 42
    min_successful: int = 2
    max_evaluations: int = 20000
    n_jobs: int = 1

    def validate(self) -> None:
        validate_resample_count(self.resample_count)
        validate_confidence_level(self.confidence_level)
        validate_initial_guess(self.initial_guess)
        validate_seed(self.seed)
        if self.min_successful < 1:
            raise InvalidConfiguration(f"min_successful must be >= 1, got {self.min_successful}")
        if self.max_evaluations < 1:
            raise InvalidConfiguration(f"max_evaluations must be >= 1, got {self.max_evaluations}")
        if self.n_jobs < 1:
            raise InvalidConfiguration(f"n_jobs must be >= 1, got {self.n_jobs}")


@dataclass(frozen=True)
class ExperimentConfig:
    """Everything needed to go from raw pressure CSV to fitted curves.

    Empty ``habitats`` accepts any habitat label found in the data.
    """
    constants: PhysicalConstants = field(default_factory=PhysicalConstants)
    fit: FitConfig = field(default_factory=FitConfig)
    blank_label: str = "blank"
    habitats: Tuple[str, ...] = ()
    treatments: Tuple[str, ...] = ("control", "paper", "plastic")
    exclude_reactors: Tuple[str, ...] = ()
    mad_threshold: float | None = None

    def validate(self) -> None:
        self.constants.validate()
        self.fit.validate()
        if self.mad_threshold is not None and self.mad_threshold <= 0:
            raise InvalidConfiguration(f"mad_threshold must be positive, got {self.mad_threshold}")


def validate_resample_count(resample_count) -> None:
    if isinstance(resample_count, bool) or not isinstance(resample_count, numbers.Integral) or resample_count <= 0:
        raise InvalidConfiguration(f"resample_count must be a positive integer, got {resample_count!r}")


def validate_seed(seed) -> None:
    if seed is None:
        return
    if isinstance(seed, bool) or not isinstance(seed, numbers.Integral) or seed < 0:
        raise InvalidConfiguration(f"seed must be a non-negative integer or None, got {seed!r}")


def validate_confidence_level(confidence_level) -> None:
    if not (isinstance(confidence_level, numbers.Real) and 0.0 < confidence_level < 1.0):
        raise InvalidConfiguration(f"confidence_level must lie in (0, 1), got {confidence_level!r}")


def validate_initial_guess(initial_guess) -> None:
    try:
        values = [float(v) for v in initial_guess]
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"initial_guess must be three numbers, got {initial_guess!r}") from exc
    if len(values) != 3:
        raise InvalidConfiguration(f"initial_guess must have 3 values (half_time, k, limit), got {len(values)}")
    if not all(math.isfinite(v) for v in values):
        raise InvalidConfiguration(f"initial_guess must be finite, got {initial_guess!r}")


def _build(cls, data: Dict[str, Any], section: str):
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise InvalidConfiguration(f"Unknown keys in '{section}' configuration: {sorted(unknown)}")
    return cls(**data)


def config_from_dict(data: Dict[str, Any]) -> ExperimentConfig:
    """Build an ExperimentConfig from a plain (JSON-like) mapping."""
    data = dict(data)
    constants = _build(PhysicalConstants, data.pop("constants", {}), "constants")
    fit_data = dict(data.pop("fit", {}))
    if "initial_guess" in fit_data:
        fit_data["initial_guess"] = tuple(fit_data["initial_guess"])
    fit = _build(FitConfig, fit_data, "fit")
    for key in ("habitats", "treatments", "exclude_reactors"):
        if key in data:
            data[key] = tuple(str(v) for v in data[key])
    config = _build(ExperimentConfig, {**data, "constants": constants, "fit": fit}, "experiment")
    config.validate()
    return config


def load_config(path: str | None) -> ExperimentConfig:
    """Load configuration from a JSON file (defaults when path is None)."""
    if path is None:
        config = ExperimentConfig()
        config.validate()
        return config
    with open(path, "r", encoding="utf-8") as f:
        return config_from_dict(json.load(f))


def with_fit_overrides(config: ExperimentConfig, **overrides) -> ExperimentConfig:
    """Return a copy of ``config`` with non-None fit settings replaced."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    if not changes:
        return config
    updated = replace(config, fit=replace(config.fit, **changes))
    updated.validate()
    return updated
