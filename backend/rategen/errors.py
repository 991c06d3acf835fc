"""Exception types and line-level error kinds for the rate generator."""
from enum import Enum


class ErrorKind(str, Enum):
    """Recoverable, per-line formula failures."""

    INVALID_CHARACTERS = "invalid_characters"
    EVAL_FAILED = "eval_failed"
    NAN_RESULT = "nan_result"


class RateGenError(Exception):
    """Base class for all rate generator errors."""


class ExpressionSyntaxError(RateGenError, ValueError):
    """Raised by the arithmetic parser for malformed input."""


class BreakdownValidationError(RateGenError, ValueError):
    """A resolved breakdown failed the persistence gate."""

    def __init__(self, reasons):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))


class ComputeItemNotFound(RateGenError, LookupError):
    """A compute item is missing or disabled."""
