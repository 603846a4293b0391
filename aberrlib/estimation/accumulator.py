"""Per-micrograph accumulation of weighted Fourier cross-correlations.

For every optics group present in a micrograph the accumulator forms

    xy(k) = sum_p CTF_p(k) * obs_p(k) * conj(pred_p(k))
    w(k)  = sum_p CTF_p(k)^2 * |pred_p(k)|^2

so that xy / w approximates exp(i * delta_phase(k)), the antisymmetric
phase error of the predictions.

Particles are split into one contiguous chunk per worker thread. Each
worker writes only to its own row of a (thread, group) slot grid, so the
parallel phase needs no locking. After all workers have joined, slots
are summed serially in ascending thread order.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

from ..core import labels
from ..core.errors import ConfigurationError, MicrographError
from ..core.logging import get_logger
from ..math.fourier import half_width
from ..model.ctf import CTF
from ..model.obs_model import ObservationModel

__all__ = ["AccumulatorPair", "TiltAccumulator", "update_tilt_shift"]

logger = get_logger(__name__)


@dataclass
class AccumulatorPair:
    """Weighted cross-correlation sum and weight sum for one optics group.

    Attributes:
        xy: Complex half-plane image of shape (s, s // 2 + 1).
        w: Real half-plane image of the same shape.
    """

    xy: np.ndarray
    w: np.ndarray

    def __post_init__(self) -> None:
        if self.xy.shape != self.w.shape:
            raise ValueError(
                f"Accumulator shapes differ: xy {self.xy.shape}, w {self.w.shape}"
            )

    @classmethod
    def zeros(cls, s: int) -> "AccumulatorPair":
        shape = (s, half_width(s))
        return cls(np.zeros(shape, dtype=np.complex128), np.zeros(shape, dtype=np.float64))

    @property
    def size(self) -> int:
        return self.xy.shape[0]

    def copy(self) -> "AccumulatorPair":
        return AccumulatorPair(self.xy.copy(), self.w.copy())

    def __add__(self, other: "AccumulatorPair") -> "AccumulatorPair":
        return AccumulatorPair(self.xy + other.xy, self.w + other.w)

    def __iadd__(self, other: "AccumulatorPair") -> "AccumulatorPair":
        self.xy += other.xy
        self.w += other.w
        return self


def update_tilt_shift(
    pred: np.ndarray,
    obs: np.ndarray,
    ctf: np.ndarray,
    xy: np.ndarray,
    w: np.ndarray,
) -> None:
    """Add one particle's contribution to (xy, w) in place."""
    modulated = ctf * pred
    xy += obs * np.conj(modulated)
    w += modulated.real**2 + modulated.imag**2


class TiltAccumulator:
    """Multithreaded accumulation of AccumulatorPairs for one micrograph.

    Args:
        obs_model: Observation model providing optics calibration.
        size: Box size s of the Fourier-space particle images.
        n_threads: Number of worker threads.

    Example:
        ```python
        acc = TiltAccumulator(obs_model, size=256, n_threads=8)
        pairs = acc.accumulate(particles, observed, predicted)
        pairs[1].xy  # optics group 1
        ```
    """

    def __init__(self, obs_model: ObservationModel, size: int, n_threads: int = 1):
        if size < 2:
            raise ConfigurationError(f"Image size must be at least 2, got {size}")
        if n_threads < 1:
            raise ConfigurationError(f"n_threads must be at least 1, got {n_threads}")

        self.obs_model = obs_model
        self.size = size
        self.n_threads = n_threads

    def _validate(
        self,
        particles: pd.DataFrame,
        obs: Sequence[np.ndarray],
        pred: Sequence[np.ndarray],
    ) -> None:
        pc = len(particles)
        if pc == 0:
            raise MicrographError("Micrograph has no particles")
        if len(obs) != pc or len(pred) != pc:
            raise MicrographError(
                f"Expected {pc} observed and predicted images, got {len(obs)} and {len(pred)}"
            )

        shape = (self.size, half_width(self.size))
        for p in range(pc):
            for kind, image in (("observed", obs[p]), ("predicted", pred[p])):
                if np.shape(image) != shape:
                    raise MicrographError(
                        f"{kind} image {p} has shape {np.shape(image)}, expected {shape}"
                    )
                if not np.all(np.isfinite(image)):
                    raise MicrographError(f"{kind} image {p} contains non-finite values")

    def accumulate(
        self,
        particles: pd.DataFrame,
        obs: Sequence[np.ndarray],
        pred: Sequence[np.ndarray],
    ) -> dict[int, AccumulatorPair]:
        """Accumulate all particles of one micrograph.

        Args:
            particles: Particle rows of a single micrograph.
            obs: Observed half-plane images, one per particle.
            pred: Predicted half-plane images (without CTF), one per particle.

        Returns:
            Dict mapping each optics group present to its AccumulatorPair.
        """
        self._validate(particles, obs, pred)

        s = self.size
        sh = half_width(s)
        model = self.obs_model

        groups = model.get_opt_groups_present(particles)
        group_to_index = {og: i for i, og in enumerate(groups)}

        # Lookups and cache fills stay outside the parallel region
        calibration = {og: model.group(og) for og in groups}
        offsets = {
            og: model.get_gamma_offset(og, s) if g.has_even_zernike else None
            for og, g in calibration.items()
        }
        rows = particles.to_dict("records")

        xy_slots = np.zeros((self.n_threads, len(groups), s, sh), dtype=np.complex128)
        w_slots = np.zeros((self.n_threads, len(groups), s, sh), dtype=np.float64)

        def work(thread: int, indices: np.ndarray) -> None:
            for p in indices:
                row = rows[p]
                og = int(row[labels.OPTICS_GROUP])
                ci = group_to_index[og]
                group = calibration[og]
                mag = group.mag_matrix if group.has_mag_matrix else None

                ctf = CTF.from_particle(row, group).image(s, group.pixel_size, mag, offsets[og])
                update_tilt_shift(
                    np.asarray(pred[p]),
                    np.asarray(obs[p]),
                    ctf,
                    xy_slots[thread, ci],
                    w_slots[thread, ci],
                )

        chunks = np.array_split(np.arange(len(rows)), self.n_threads)
        with ThreadPoolExecutor(max_workers=self.n_threads) as pool:
            futures = [pool.submit(work, t, chunk) for t, chunk in enumerate(chunks)]
            for future in futures:
                future.result()

        result = {}
        for ci, og in enumerate(groups):
            pair = AccumulatorPair.zeros(s)
            for t in range(self.n_threads):
                pair.xy += xy_slots[t, ci]
                pair.w += w_slots[t, ci]
            result[og] = pair

        logger.debug(
            "Accumulated micrograph",
            {"particles": len(rows), "groups": groups, "threads": self.n_threads},
        )
        return result
