"""Exception types raised by the fitting and configuration layers."""
from __future__ import annotations


class FitFailure(Exception):
    """A single nonlinear fit did not produce usable parameters.

    Attributes:
        reason: Short machine-friendly tag (non_convergence, singular_gradient,
            iteration_budget, rank_deficient, invalid_guess, non_finite).
    """

    def __init__(self, message: str, reason: str = "non_convergence"):
        super().__init__(message)
        self.reason = reason


class InsufficientSamples(Exception):
    """Too few successful fits to compute a percentile interval."""

    def __init__(self, parameter: str, available: int, required: int):
        super().__init__(
            f"Parameter '{parameter}': {available} successful estimates, at least {required} required"
        )
        self.parameter = parameter
        self.available = available
        self.required = required


class InvalidConfiguration(ValueError):
    """Fitter or experiment configuration rejected before any computation."""
