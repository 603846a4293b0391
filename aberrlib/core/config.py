"""Estimator configuration and YAML loading."""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from .errors import ConfigurationError

__all__ = ["TiltEstimatorConfig", "load_config"]


@dataclass(frozen=True)
class TiltEstimatorConfig:
    """Options controlling beam-tilt and odd-aberration estimation.

    Attributes:
        kmin_tilt: Inner frequency threshold (Å). Frequencies coarser than
            this are given zero weight during fitting.
        aberr_n_max: Maximum degree of odd Zernike polynomials. Values
            below 3 select the tilt-only model.
        xring0: Exclusion ring start (Å).
        xring1: Exclusion ring end (Å). The ring is only applied when
            ``xring1 > 0``.
        n_threads: Number of worker threads used during accumulation.
        diag: Write diagnostic phase and fit images.
        debug: Additionally write weight and residual images.

    Example:
        ```python
        config = TiltEstimatorConfig(kmin_tilt=15.0, aberr_n_max=5)
        ```
    """

    kmin_tilt: float = 20.0
    aberr_n_max: int = 0
    xring0: float = -1.0
    xring1: float = -1.0
    n_threads: int = 1
    diag: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        if self.kmin_tilt < 0:
            raise ConfigurationError(
                f"kmin_tilt must be non-negative, got {self.kmin_tilt}"
            )
        if self.aberr_n_max < 0:
            raise ConfigurationError(
                f"aberr_n_max must be non-negative, got {self.aberr_n_max}"
            )
        if self.n_threads < 1:
            raise ConfigurationError(
                f"n_threads must be at least 1, got {self.n_threads}"
            )
        if self.xring1 > 0 and self.xring0 >= self.xring1:
            raise ConfigurationError(
                f"Exclusion ring start ({self.xring0}) must be below its end ({self.xring1})"
            )

    @property
    def uses_zernike(self) -> bool:
        """True when odd aberrations are fitted as a Zernike expansion."""
        return self.aberr_n_max >= 3

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "TiltEstimatorConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(values))


def load_config(path: Union[str, Path]) -> TiltEstimatorConfig:
    """Load a TiltEstimatorConfig from a YAML file.

    An empty file yields the defaults.
    """
    path = Path(path)
    with open(path) as f:
        values = yaml.safe_load(f)

    if values is None:
        return TiltEstimatorConfig()
    if not isinstance(values, dict):
        raise ConfigurationError(f"{path}: expected a mapping, got {type(values).__name__}")

    return TiltEstimatorConfig.from_dict(values)
