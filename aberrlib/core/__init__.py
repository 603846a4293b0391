"""Core data structures, errors, logging and configuration."""

from .config import TiltEstimatorConfig, load_config
from .errors import (
    AberrlibError,
    ConfigurationError,
    DegenerateFitError,
    MicrographError,
    NotInitializedError,
    OpticsGroupError,
    SizeMismatchError,
)
from .logging import get_logger, setup_logging
from .optics import OpticsGroup, electron_wavelength, parse_coefficients

__all__ = [
    "TiltEstimatorConfig",
    "load_config",
    "AberrlibError",
    "ConfigurationError",
    "DegenerateFitError",
    "MicrographError",
    "NotInitializedError",
    "OpticsGroupError",
    "SizeMismatchError",
    "get_logger",
    "setup_logging",
    "OpticsGroup",
    "electron_wavelength",
    "parse_coefficients",
]
