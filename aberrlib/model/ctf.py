"""Contrast transfer function evaluated on half-plane Fourier grids."""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import numpy as np

from ..core import labels
from ..core.errors import ConfigurationError
from ..core.optics import OpticsGroup
from ..math.fourier import half_plane_frequencies

__all__ = ["CTF"]


@dataclass(frozen=True)
class CTF:
    """Per-particle CTF parameters.

    Defocus values are in Å (positive is underfocus), angles in degrees.

    Attributes:
        defocus_u: Defocus along the major axis (Å).
        defocus_v: Defocus along the minor axis (Å).
        defocus_angle: Azimuth of the major axis (degrees).
        wavelength: Electron wavelength (Å).
        cs: Spherical aberration (mm).
        amplitude_contrast: Fraction of amplitude contrast.
        phase_shift: Additional phase shift, e.g. from a phase plate (degrees).
        bfactor: Envelope B-factor (Å^2).
        scale: Overall scale factor.
    """

    defocus_u: float
    defocus_v: float
    defocus_angle: float
    wavelength: float
    cs: float
    amplitude_contrast: float = 0.1
    phase_shift: float = 0.0
    bfactor: float = 0.0
    scale: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.amplitude_contrast < 1.0:
            raise ConfigurationError(
                f"Amplitude contrast must lie in [0, 1), got {self.amplitude_contrast}"
            )

    @classmethod
    def from_particle(cls, row: Mapping[str, Any], group: OpticsGroup) -> "CTF":
        """Combine a particle-table row with its optics group calibration."""
        try:
            defocus_u = float(row[labels.DEFOCUS_U])
            defocus_v = float(row[labels.DEFOCUS_V])
            defocus_angle = float(row[labels.DEFOCUS_ANGLE])
        except KeyError as exc:
            raise ConfigurationError(f"Particle table is missing column {exc}") from None

        def optional(key: str, default: float) -> float:
            return float(row[key]) if key in row else default

        return cls(
            defocus_u=defocus_u,
            defocus_v=defocus_v,
            defocus_angle=defocus_angle,
            wavelength=group.wavelength,
            cs=group.cs,
            amplitude_contrast=group.amplitude_contrast,
            phase_shift=optional(labels.PHASE_SHIFT, 0.0),
            bfactor=optional(labels.CTF_BFACTOR, 0.0),
            scale=optional(labels.CTF_SCALEFACTOR, 1.0),
        )

    def gamma(self, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
        """Phase aberration gamma(k), without symmetric Zernike offsets."""
        u2 = kx**2 + ky**2
        azimuth = np.arctan2(ky, kx)

        mean = 0.5 * (self.defocus_u + self.defocus_v)
        deviation = 0.5 * (self.defocus_u - self.defocus_v)
        defocus = mean + deviation * np.cos(2.0 * (azimuth - np.deg2rad(self.defocus_angle)))

        cs_angstrom = self.cs * 1e7
        k1 = np.pi * self.wavelength
        k2 = 0.5 * np.pi * cs_angstrom * self.wavelength**3
        k3 = np.arctan(self.amplitude_contrast / np.sqrt(1.0 - self.amplitude_contrast**2))
        k5 = np.deg2rad(self.phase_shift)

        return -k1 * defocus * u2 + k2 * u2**2 - k5 - k3

    def value(
        self,
        kx: np.ndarray,
        ky: np.ndarray,
        gamma_offset: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Evaluate the CTF at spatial frequencies (1/Å)."""
        gamma = self.gamma(kx, ky)
        if gamma_offset is not None:
            gamma = gamma + gamma_offset

        ctf = -np.sin(gamma)
        if self.bfactor != 0.0:
            ctf = ctf * np.exp(-0.25 * self.bfactor * (kx**2 + ky**2))
        return self.scale * ctf

    def image(
        self,
        s: int,
        pixel_size: float,
        mag_matrix: Optional[np.ndarray] = None,
        gamma_offset: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Evaluate the CTF on the (s, s // 2 + 1) half-plane grid.

        Example:
            ```python
            ctf = CTF.from_particle(particles.iloc[0], obs_model.group(1))
            c = ctf.image(256, 1.1)
            ```
        """
        ky, kx = half_plane_frequencies(s, pixel_size, mag_matrix)
        return self.value(kx, ky, gamma_offset)
