from __future__ import annotations


class SysIdError(Exception):
    """Base error for all identification pipeline failures."""


class ConfigurationError(SysIdError, ValueError):
    """Raised when an IdentificationConfig is constructed with invalid options."""


# ---- Fatal pipeline errors ----
class DataFormatError(SysIdError):
    """Raised when the input file cannot be parsed as a rectangular numeric table."""


class InsufficientDataError(SysIdError):
    """Raised when too few samples remain for trimming, centering or the model order."""


class EstimationDivergedError(SysIdError):
    """Raised when the iterative estimator does not converge to a usable model."""
