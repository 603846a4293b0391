"""Optics group calibration data structures."""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import numpy as np

from . import labels
from .errors import ConfigurationError

__all__ = ["OpticsGroup", "electron_wavelength", "parse_coefficients"]


def electron_wavelength(voltage: float) -> float:
    """Relativistic electron wavelength in Å for an acceleration voltage in kV.

    Example:
        ```python
        electron_wavelength(300.0)  # ~0.0197
        ```
    """
    v = voltage * 1e3
    return 12.2643247 / np.sqrt(v * (1.0 + v * 0.978466e-6))


def parse_coefficients(value: Any) -> np.ndarray:
    """Convert a table cell holding Zernike coefficients to a float array.

    Accepts sequences, arrays, STAR-style strings such as ``"[0.1,0.2]"``,
    and missing values (None/NaN), which give an empty array.
    """
    if value is None:
        return np.zeros(0)
    if isinstance(value, str):
        text = value.strip().strip("[]").strip()
        if not text:
            return np.zeros(0)
        return np.array([float(v) for v in text.split(",")])
    if np.isscalar(value):
        if np.isnan(value):
            return np.zeros(0)
        return np.array([float(value)])
    return np.asarray(value, dtype=np.float64).ravel().copy()


def _cell(row: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if key not in row:
        return default
    value = row[key]
    if value is None or (np.isscalar(value) and not isinstance(value, str) and np.isnan(value)):
        return default
    return value


@dataclass
class OpticsGroup:
    """Imaging calibration shared by all particles of one optics group.

    All lengths are in Å except Cs (mm); beam tilt is in mrad.

    Attributes:
        group: 1-based optics group id.
        pixel_size: Image pixel size (Å).
        voltage: Acceleration voltage (kV).
        cs: Spherical aberration constant (mm).
        amplitude_contrast: Fraction of amplitude contrast.
        wavelength: Electron wavelength (Å). Derived from voltage if None.
        odd_zernike: Antisymmetric aberration coefficients.
        even_zernike: Symmetric aberration coefficients.
        mag_matrix: 2x2 anisotropic magnification matrix.
        beam_tilt_x: Beam tilt along x (mrad).
        beam_tilt_y: Beam tilt along y (mrad).
        image_size: Box size of the particle images, if known.
    """

    group: int
    pixel_size: float
    voltage: float = 300.0
    cs: float = 2.7
    amplitude_contrast: float = 0.1
    wavelength: Optional[float] = None
    odd_zernike: np.ndarray = field(default_factory=lambda: np.zeros(0))
    even_zernike: np.ndarray = field(default_factory=lambda: np.zeros(0))
    mag_matrix: np.ndarray = field(default_factory=lambda: np.eye(2))
    beam_tilt_x: float = 0.0
    beam_tilt_y: float = 0.0
    image_size: Optional[int] = None

    def __post_init__(self) -> None:
        if self.pixel_size <= 0:
            raise ConfigurationError(
                f"Optics group {self.group}: pixel size must be positive, got {self.pixel_size}"
            )
        if self.voltage <= 0:
            raise ConfigurationError(
                f"Optics group {self.group}: voltage must be positive, got {self.voltage}"
            )
        if self.wavelength is None:
            self.wavelength = float(electron_wavelength(self.voltage))

        self.odd_zernike = parse_coefficients(self.odd_zernike)
        self.even_zernike = parse_coefficients(self.even_zernike)
        self.mag_matrix = np.asarray(self.mag_matrix, dtype=np.float64).reshape(2, 2)

    @property
    def has_odd_zernike(self) -> bool:
        return bool(np.any(self.odd_zernike != 0))

    @property
    def has_even_zernike(self) -> bool:
        return bool(np.any(self.even_zernike != 0))

    @property
    def has_mag_matrix(self) -> bool:
        return not np.allclose(self.mag_matrix, np.eye(2))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OpticsGroup":
        """Build an OpticsGroup from one optics-table row (dict or Series)."""
        try:
            group = int(row[labels.OPTICS_GROUP])
            pixel_size = float(row[labels.PIXEL_SIZE])
        except KeyError as exc:
            raise ConfigurationError(f"Optics table is missing column {exc}") from None

        identity = (1.0, 0.0, 0.0, 1.0)
        mag = [float(_cell(row, key, d)) for key, d in zip(labels.MAG_MATRIX, identity)]
        image_size = _cell(row, labels.IMAGE_SIZE)

        return cls(
            group=group,
            pixel_size=pixel_size,
            voltage=float(_cell(row, labels.VOLTAGE, 300.0)),
            cs=float(_cell(row, labels.SPHERICAL_ABERRATION, 2.7)),
            amplitude_contrast=float(_cell(row, labels.AMPLITUDE_CONTRAST, 0.1)),
            odd_zernike=parse_coefficients(_cell(row, labels.ODD_ZERNIKE)),
            even_zernike=parse_coefficients(_cell(row, labels.EVEN_ZERNIKE)),
            mag_matrix=np.array(mag).reshape(2, 2),
            beam_tilt_x=float(_cell(row, labels.BEAM_TILT_X, 0.0)),
            beam_tilt_y=float(_cell(row, labels.BEAM_TILT_Y, 0.0)),
            image_size=None if image_size is None else int(image_size),
        )

    def to_row(self) -> dict[str, Any]:
        """Optics-table row for this group; inverse of ``from_row``.

        Zernike coefficients are written as lists and only when present.
        """
        row: dict[str, Any] = {
            labels.OPTICS_GROUP: self.group,
            labels.PIXEL_SIZE: self.pixel_size,
            labels.VOLTAGE: self.voltage,
            labels.SPHERICAL_ABERRATION: self.cs,
            labels.AMPLITUDE_CONTRAST: self.amplitude_contrast,
            labels.BEAM_TILT_X: self.beam_tilt_x,
            labels.BEAM_TILT_Y: self.beam_tilt_y,
        }
        if self.image_size is not None:
            row[labels.IMAGE_SIZE] = self.image_size
        if len(self.odd_zernike):
            row[labels.ODD_ZERNIKE] = [float(c) for c in self.odd_zernike]
        if len(self.even_zernike):
            row[labels.EVEN_ZERNIKE] = [float(c) for c in self.even_zernike]
        if self.has_mag_matrix:
            row.update(zip(labels.MAG_MATRIX, (float(v) for v in self.mag_matrix.ravel())))
        return row
