"""Half-plane Fourier grid utilities.

Images in Fourier space are stored in the real-FFT half-plane layout used
by ``numpy.fft.rfft2``: shape (s, s // 2 + 1), DC at index (0, 0). Row y
maps to the signed frequency y for y <= s / 2 and y - s otherwise; column
x is always non-negative.
"""

from typing import Optional

import numpy as np

__all__ = [
    "half_width",
    "signed_frequency_indices",
    "half_plane_indices",
    "half_plane_frequencies",
    "radius_map",
    "angstrom_radius",
    "decenter_unflip_2d",
    "decenter_double_2d",
    "half_plane_to_real",
]


def half_width(s: int) -> int:
    """Width of the half-plane for box size s."""
    return s // 2 + 1


def signed_frequency_indices(s: int) -> np.ndarray:
    """Signed frequency index of each row of a half-plane image.

    Example:
        ```python
        signed_frequency_indices(6)
        # array([ 0,  1,  2,  3, -2, -1])
        ```
    """
    y = np.arange(s)
    return np.where(y <= s // 2, y, y - s)


def half_plane_indices(s: int) -> tuple[np.ndarray, np.ndarray]:
    """Integer frequency grids (yy, xx) of shape (s, s // 2 + 1)."""
    yy, xx = np.meshgrid(
        signed_frequency_indices(s), np.arange(half_width(s)), indexing="ij"
    )
    return yy, xx


def half_plane_frequencies(
    s: int,
    pixel_size: float,
    mag_matrix: Optional[np.ndarray] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Spatial frequency grids (ky, kx) in 1/Å.

    Args:
        s: Box size in pixels.
        pixel_size: Pixel size (Å).
        mag_matrix: Optional 2x2 anisotropic magnification matrix M.
            Frequencies are mapped through M^T.

    Returns:
        Tuple (ky, kx) of arrays with shape (s, s // 2 + 1).
    """
    yy, xx = half_plane_indices(s)
    box = s * pixel_size
    x0 = xx / box
    y0 = yy / box

    if mag_matrix is None:
        return y0, x0

    M = np.asarray(mag_matrix, dtype=np.float64)
    kx = M[0, 0] * x0 + M[1, 0] * y0
    ky = M[0, 1] * x0 + M[1, 1] * y0
    return ky, kx


def radius_map(s: int) -> np.ndarray:
    """Frequency radius in pixels of each half-plane bin."""
    yy, xx = half_plane_indices(s)
    return np.hypot(xx, yy)


def angstrom_radius(s: int, pixel_size: float) -> np.ndarray:
    """Resolution in Å of each half-plane bin (inf at DC)."""
    r = radius_map(s)
    ra = np.full(r.shape, np.inf)
    nonzero = r > 0
    ra[nonzero] = s * pixel_size / r[nonzero]
    return ra


def _full_coords(s: int) -> tuple[np.ndarray, np.ndarray]:
    """Signed frequency coordinates of a centred (s, s) image."""
    c = np.arange(s) - s // 2
    return np.meshgrid(c, c, indexing="ij")


def _lookup_half_plane(half: np.ndarray, fy: np.ndarray, fx: np.ndarray, sign: float) -> np.ndarray:
    s = half.shape[0]
    mirror = fx < 0
    # Hermitian partner for the negative-x half
    fy_src = np.where(mirror, -fy, fy)
    fx_src = np.where(mirror, -fx, fx)
    values = half[np.mod(fy_src, s), fx_src]
    return np.where(mirror, sign * values, values)


def decenter_unflip_2d(half: np.ndarray) -> np.ndarray:
    """Expand a real half-plane image to a centred full image, antisymmetrically.

    Used for phase images, where value(-k) = -value(k).
    """
    fy, fx = _full_coords(half.shape[0])
    return _lookup_half_plane(np.real(half), fy, fx, -1.0)


def decenter_double_2d(half: np.ndarray) -> np.ndarray:
    """Expand a real half-plane image to a centred full image, symmetrically.

    Used for weights and CTF-like images, where value(-k) = value(k).
    """
    fy, fx = _full_coords(half.shape[0])
    return _lookup_half_plane(np.real(half), fy, fx, 1.0)


def half_plane_to_real(half: np.ndarray) -> np.ndarray:
    """Inverse real FFT of a half-plane image, centred in real space."""
    s = half.shape[0]
    return np.fft.fftshift(np.fft.irfft2(half, s=(s, s)))
