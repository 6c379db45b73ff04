"""
Error conditions raised by the handover engine.
"""

from typing import Optional


class HandoverError(Exception):
    """Base class for all handover engine errors."""


class ConfigurationError(HandoverError, ValueError):
    """Invalid engine configuration, detected once at start-up."""


class InvalidInput(HandoverError, ValueError):
    """Malformed per-cycle measurement input (wrong candidates, NaN/Inf, out-of-range)."""


class EstimatorFault(HandoverError, ArithmeticError):
    """
    Numerical degeneracy inside a predictor.

    Args:
        message: Human-readable description
        candidate_index: Position of the affected candidate, if known
    """

    def __init__(self, message: str, candidate_index: Optional[int] = None):
        super().__init__(message)
        self.candidate_index = candidate_index
