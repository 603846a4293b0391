"""Fourier-slice projection of a reference volume."""

from typing import Optional

import numpy as np
from scipy.ndimage import map_coordinates

from ..core.errors import ConfigurationError
from ..math.fourier import half_plane_indices

__all__ = ["Projector", "euler_to_matrix"]


def euler_to_matrix(rot: float, tilt: float, psi: float) -> np.ndarray:
    """Rotation matrix for ZYZ Euler angles in degrees.

    Follows the RELION/Xmipp convention: the matrix maps volume
    coordinates into the frame of the particle image.
    """
    a, b, g = np.deg2rad([rot, tilt, psi])
    ca, sa = np.cos(a), np.sin(a)
    cb, sb = np.cos(b), np.sin(b)
    cg, sg = np.cos(g), np.sin(g)
    cc = cb * ca
    cs = cb * sa
    sc = sb * ca
    ss = sb * sa

    return np.array(
        [
            [cg * cc - sg * sa, cg * cs + sg * ca, -cg * sb],
            [-sg * cc - cg * sa, -sg * cs + cg * ca, sg * sb],
            [sc, ss, cb],
        ]
    )


class Projector:
    """Central-slice projector over a cubic real-space volume.

    The volume is Fourier transformed once with its centre (index s // 2)
    as origin. Projections are returned in half-plane layout, with the
    image centre as real-space origin.

    Args:
        volume: Real array of shape (s, s, s), indexed (z, y, x).

    Example:
        ```python
        proj = Projector(volume)
        slice_ft = proj.project(euler_to_matrix(30.0, 60.0, 10.0))
        ```
    """

    def __init__(self, volume: np.ndarray):
        volume = np.asarray(volume, dtype=np.float64)
        if volume.ndim != 3 or len(set(volume.shape)) != 1:
            raise ConfigurationError(f"Projector needs a cubic volume, got shape {volume.shape}")

        self.size = volume.shape[0]
        data = np.fft.fftshift(np.fft.fftn(np.fft.ifftshift(volume)))
        self._real = np.ascontiguousarray(data.real)
        self._imag = np.ascontiguousarray(data.imag)

    def project(
        self,
        rotation: np.ndarray,
        mag_matrix: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Sample the central slice q = A^T (x, y, 0) of the volume transform.

        Bins at or beyond the Nyquist radius are set to zero.

        Args:
            rotation: 3x3 rotation matrix A.
            mag_matrix: Optional 2x2 anisotropic magnification matrix.

        Returns:
            Complex half-plane image of shape (s, s // 2 + 1).
        """
        s = self.size
        yy, xx = half_plane_indices(s)
        x = xx.astype(np.float64)
        y = yy.astype(np.float64)

        if mag_matrix is not None:
            M = np.asarray(mag_matrix, dtype=np.float64)
            x, y = M[0, 0] * x + M[1, 0] * y, M[0, 1] * x + M[1, 1] * y

        A = np.asarray(rotation, dtype=np.float64)
        qx = A[0, 0] * x + A[1, 0] * y
        qy = A[0, 1] * x + A[1, 1] * y
        qz = A[0, 2] * x + A[1, 2] * y

        c = s // 2
        coords = np.stack([qz.ravel() + c, qy.ravel() + c, qx.ravel() + c])

        real = map_coordinates(self._real, coords, order=1, mode="constant", cval=0.0)
        imag = map_coordinates(self._imag, coords, order=1, mode="constant", cval=0.0)
        out = (real + 1j * imag).reshape(x.shape)

        out[xx**2 + yy**2 >= (s / 2.0) ** 2] = 0.0
        return out
