"""Size-keyed cache of aberration correction images."""

import threading

import numpy as np

from ..core.optics import OpticsGroup
from ..math.fourier import half_plane_frequencies
from ..math.zernike import evaluate_even, evaluate_odd

__all__ = ["AberrationCache", "compute_phase_correction", "compute_gamma_offset"]


def _frequencies(group: OpticsGroup, size: int) -> tuple[np.ndarray, np.ndarray]:
    mag = group.mag_matrix if group.has_mag_matrix else None
    return half_plane_frequencies(size, group.pixel_size, mag)


def compute_phase_correction(group: OpticsGroup, size: int) -> np.ndarray:
    """exp(i * sum_j c_j Z_odd(j)) over the half-plane grid of box size `size`."""
    ky, kx = _frequencies(group, size)
    return np.exp(1j * evaluate_odd(group.odd_zernike, kx, ky))


def compute_gamma_offset(group: OpticsGroup, size: int) -> np.ndarray:
    """sum_j c_j Z_even(j) over the half-plane grid of box size `size`."""
    ky, kx = _frequencies(group, size)
    return evaluate_even(group.even_zernike, kx, ky)


class AberrationCache:
    """Lazily computed correction images keyed by (optics group, box size).

    Entries are created on first request and kept for the lifetime of the
    cache; calibration is assumed fixed while a cache is alive. Returned
    arrays are read-only.

    Each ObservationModel owns its own cache, so separate models never
    share entries.
    """

    def __init__(self):
        self._phase: dict[tuple[int, int], np.ndarray] = {}
        self._gamma: dict[tuple[int, int], np.ndarray] = {}
        self._lock = threading.Lock()

    def phase_correction(self, group: OpticsGroup, size: int) -> np.ndarray:
        """Complex antisymmetric phase correction for (group, size)."""
        return self._get(self._phase, compute_phase_correction, group, size)

    def gamma_offset(self, group: OpticsGroup, size: int) -> np.ndarray:
        """Real symmetric phase offset for (group, size)."""
        return self._get(self._gamma, compute_gamma_offset, group, size)

    def _get(self, store, compute, group: OpticsGroup, size: int) -> np.ndarray:
        key = (group.group, int(size))
        with self._lock:
            image = store.get(key)
            if image is None:
                image = compute(group, int(size))
                image.flags.writeable = False
                store[key] = image
        return image

    def sizes(self, group: int) -> list[int]:
        """Box sizes cached for an optics group (either kind)."""
        with self._lock:
            keys = set(self._phase) | set(self._gamma)
        return sorted(size for g, size in keys if g == group)

    def clear(self) -> None:
        with self._lock:
            self._phase.clear()
            self._gamma.clear()

    def __contains__(self, key: tuple[int, int]) -> bool:
        with self._lock:
            return key in self._phase or key in self._gamma

    def __len__(self) -> int:
        with self._lock:
            return len(self._phase) + len(self._gamma)
