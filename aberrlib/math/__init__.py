"""Zernike polynomials and half-plane Fourier grids."""

from .fourier import (
    angstrom_radius,
    decenter_double_2d,
    decenter_unflip_2d,
    half_plane_frequencies,
    half_plane_indices,
    half_plane_to_real,
    half_width,
    radius_map,
    signed_frequency_indices,
)
from .zernike import (
    even_index_to_nm,
    even_zernike_basis,
    evaluate_even,
    evaluate_odd,
    extract_tilt,
    insert_tilt,
    number_of_even_coeffs,
    number_of_odd_coeffs,
    odd_index_to_nm,
    odd_zernike_basis,
    tilt_phase_factor,
    zernike_cart,
)

__all__ = [
    # Fourier grids
    "angstrom_radius",
    "decenter_double_2d",
    "decenter_unflip_2d",
    "half_plane_frequencies",
    "half_plane_indices",
    "half_plane_to_real",
    "half_width",
    "radius_map",
    "signed_frequency_indices",
    # Zernike polynomials
    "even_index_to_nm",
    "even_zernike_basis",
    "evaluate_even",
    "evaluate_odd",
    "extract_tilt",
    "insert_tilt",
    "number_of_even_coeffs",
    "number_of_odd_coeffs",
    "odd_index_to_nm",
    "odd_zernike_basis",
    "tilt_phase_factor",
    "zernike_cart",
]
