"""Zernike polynomials on spatial-frequency coordinates.

Polynomials are evaluated un-normalised, directly on spatial frequency
in 1/Å (no unit-disk scaling):

    Z_n^m(k) = R_n^|m|(|k|) * cos(m * theta)      for m >= 0
    Z_n^m(k) = R_n^|m|(|k|) * sin(|m| * theta)    for m < 0

Antisymmetric (odd) and symmetric (even) aberrations use separate
single-index orderings. Odd index i walks n = 1, 3, 5, ... and, within
each n, m = -n, -n+2, ..., n. Even index i does the same for n = 0, 2, 4:

    odd:  0 -> (1,-1)  1 -> (1,1)  2 -> (3,-3)  3 -> (3,-1)  4 -> (3,1) ...
    even: 0 -> (0,0)   1 -> (2,-2) 2 -> (2,0)   3 -> (2,2)   4 -> (4,-4) ...
"""

from functools import lru_cache
from math import factorial

import numpy as np

__all__ = [
    "odd_index_to_nm",
    "even_index_to_nm",
    "number_of_odd_coeffs",
    "number_of_even_coeffs",
    "zernike_cart",
    "odd_zernike_basis",
    "even_zernike_basis",
    "evaluate_odd",
    "evaluate_even",
    "tilt_phase_factor",
    "insert_tilt",
    "extract_tilt",
]


def odd_index_to_nm(i: int) -> tuple[int, int]:
    """Convert an odd-aberration index to (n, m).

    Example:
        >>> odd_index_to_nm(4)  # Coma along x
        (3, 1)
    """
    if i < 0:
        raise ValueError(f"Zernike index must be non-negative, got {i}")

    # Degrees 1, 3, ..., 2q-1 hold q*(q+1) terms in total
    q = 1
    while q * (q + 1) <= i:
        q += 1
    n = 2 * q - 1
    offset = i - (q - 1) * q
    return n, -n + 2 * offset


def even_index_to_nm(i: int) -> tuple[int, int]:
    """Convert a symmetric-aberration index to (n, m).

    Example:
        >>> even_index_to_nm(2)  # Defocus
        (2, 0)
    """
    if i < 0:
        raise ValueError(f"Zernike index must be non-negative, got {i}")

    # Degrees 0, 2, ..., 2q hold (q+1)^2 terms in total
    q = 0
    while (q + 1) ** 2 <= i:
        q += 1
    n = 2 * q
    offset = i - q * q
    return n, -n + 2 * offset


def number_of_odd_coeffs(n_max: int) -> int:
    """Number of odd coefficients with degree up to n_max."""
    q = (n_max + 1) // 2
    return q * (q + 1)


def number_of_even_coeffs(n_max: int) -> int:
    """Number of even coefficients with degree up to n_max."""
    q = n_max // 2
    return (q + 1) ** 2


@lru_cache(maxsize=256)
def _radial_coefficients(m: int, n: int) -> tuple:
    coeffs = []
    for k in range((n - m) // 2 + 1):
        sign = (-1) ** k
        numerator = factorial(n - k)
        denominator = (
            factorial(k)
            * factorial((n + m) // 2 - k)
            * factorial((n - m) // 2 - k)
        )
        coeffs.append((sign * numerator / denominator, n - 2 * k))
    return tuple(coeffs)


def _radial_polynomial(m: int, n: int, rho: np.ndarray) -> np.ndarray:
    """Radial polynomial R_n^|m|(rho)."""
    result = np.zeros_like(rho)
    for coeff, power in _radial_coefficients(m, n):
        result += coeff * np.power(rho, power)
    return result


def zernike_cart(n: int, m: int, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Evaluate Z_n^m at Cartesian coordinates.

    Args:
        n: Radial degree.
        m: Azimuthal frequency, |m| <= n and n - m even.
        kx: x coordinates (1/Å).
        ky: y coordinates (1/Å).

    Returns:
        Array with the broadcast shape of kx and ky.
    """
    if abs(m) > n or (n - m) % 2:
        raise ValueError(f"Invalid Zernike indices n={n}, m={m}")

    kx = np.asarray(kx, dtype=np.float64)
    ky = np.asarray(ky, dtype=np.float64)
    rho = np.hypot(kx, ky)
    phi = np.arctan2(ky, kx)

    R = _radial_polynomial(abs(m), n, rho)
    if m >= 0:
        return R * np.cos(m * phi)
    return R * np.sin(-m * phi)


def odd_zernike_basis(n_max: int, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Stack all odd Zernike polynomials up to degree n_max.

    Returns:
        Array of shape (number_of_odd_coeffs(n_max),) + kx.shape.
    """
    count = number_of_odd_coeffs(n_max)
    return np.stack([zernike_cart(*odd_index_to_nm(i), kx, ky) for i in range(count)])


def even_zernike_basis(n_max: int, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Stack all even Zernike polynomials up to degree n_max."""
    count = number_of_even_coeffs(n_max)
    return np.stack([zernike_cart(*even_index_to_nm(i), kx, ky) for i in range(count)])


def evaluate_odd(coeffs: np.ndarray, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Antisymmetric phase sum_i c_i Z_odd(i) at (kx, ky)."""
    result = np.zeros(np.broadcast(kx, ky).shape)
    for i, c in enumerate(coeffs):
        if c != 0:
            result += c * zernike_cart(*odd_index_to_nm(i), kx, ky)
    return result


def evaluate_even(coeffs: np.ndarray, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Symmetric phase sum_i c_i Z_even(i) at (kx, ky)."""
    result = np.zeros(np.broadcast(kx, ky).shape)
    for i, c in enumerate(coeffs):
        if c != 0:
            result += c * zernike_cart(*even_index_to_nm(i), kx, ky)
    return result


def tilt_phase_factor(cs: float, wavelength: float) -> float:
    """Scale F of the beam-tilt phase F * |k|^2 * (k . t).

    Args:
        cs: Spherical aberration (mm).
        wavelength: Electron wavelength (Å).

    Returns:
        Factor in rad * Å^3 / mrad.
    """
    return 2.0 * np.pi * 1e-3 * (cs * 1e7) * wavelength**2


# Beam tilt lives in the coma terms (3,-1) and (3,1) together with a
# linear share: |k|^2 * kx = (Z_3^1 + 2 Z_1^1) / 3, likewise for y.
_COMA_Y, _COMA_X = 3, 4
_LINEAR_Y, _LINEAR_X = 0, 1


def insert_tilt(
    coeffs: np.ndarray,
    tilt_x: float,
    tilt_y: float,
    cs: float,
    wavelength: float,
) -> np.ndarray:
    """Return odd coefficients with a beam tilt folded in.

    The result has at least the six coefficients of degree 3.
    """
    out = np.zeros(max(len(coeffs), number_of_odd_coeffs(3)))
    out[: len(coeffs)] = coeffs

    scale = tilt_phase_factor(cs, wavelength) / 3.0
    out[_COMA_X] += scale * tilt_x
    out[_COMA_Y] += scale * tilt_y
    out[_LINEAR_X] += 2.0 * scale * tilt_x
    out[_LINEAR_Y] += 2.0 * scale * tilt_y
    return out


def extract_tilt(
    coeffs: np.ndarray,
    cs: float,
    wavelength: float,
) -> tuple[np.ndarray, float, float]:
    """Split beam tilt off a set of odd coefficients.

    Inverse of insert_tilt: the coma terms are converted into
    (tilt_x, tilt_y) and removed, together with their linear share.

    Returns:
        Tuple (remaining_coeffs, tilt_x, tilt_y).
    """
    if len(coeffs) < number_of_odd_coeffs(3):
        raise ValueError(
            f"Beam tilt needs odd coefficients up to degree 3, got {len(coeffs)} terms"
        )

    out = np.array(coeffs, dtype=np.float64)
    scale = tilt_phase_factor(cs, wavelength) / 3.0

    tilt_x = out[_COMA_X] / scale
    tilt_y = out[_COMA_Y] / scale

    out[_LINEAR_X] -= 2.0 * out[_COMA_X]
    out[_LINEAR_Y] -= 2.0 * out[_COMA_Y]
    out[_COMA_X] = 0.0
    out[_COMA_Y] = 0.0
    return out, float(tilt_x), float(tilt_y)
