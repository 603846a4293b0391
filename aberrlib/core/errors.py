"""Exception types for aberration modelling and estimation."""


class AberrlibError(Exception):
    """Base exception for all aberrlib errors."""

    pass


class ConfigurationError(AberrlibError, ValueError):
    """Invalid configuration or calibration input. Fatal for a run."""

    pass


class NotInitializedError(ConfigurationError):
    """An estimator was used before ``init`` was called."""

    pass


class OpticsGroupError(ConfigurationError):
    """Reference to an undefined, out-of-range or unsorted optics group."""

    pass


class SizeMismatchError(ConfigurationError):
    """Image dimensions do not match a cached correction image."""

    pass


class MicrographError(AberrlibError):
    """Malformed input for a single micrograph.

    Aborts processing of that micrograph only.
    """

    pass


class DegenerateFitError(AberrlibError):
    """An optics group has no usable data to fit."""

    pass


__all__ = [
    "AberrlibError",
    "ConfigurationError",
    "NotInitializedError",
    "OpticsGroupError",
    "SizeMismatchError",
    "MicrographError",
    "DegenerateFitError",
]
