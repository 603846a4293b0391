"""Observation model: optics group calibration plus cached aberrations.

The model owns one OpticsGroup per row of the optics table and an
AberrationCache of correction images. Groups are addressed by their
1-based id; lookups require the optics table to be sorted (ids 1..n in
row order), see ``optics_groups_sorted`` and ``sort_optics_groups``.
"""

from typing import Optional

import numpy as np
import pandas as pd

from ..core import labels
from ..core.errors import ConfigurationError, OpticsGroupError, SizeMismatchError
from ..core.logging import get_logger
from ..core.optics import OpticsGroup
from ..math.fourier import half_plane_indices
from ..math.zernike import insert_tilt
from .cache import AberrationCache
from .ctf import CTF
from .projector import Projector, euler_to_matrix

__all__ = ["ObservationModel"]

logger = get_logger(__name__)


class ObservationModel:
    """Per-optics-group calibration with forward prediction and demodulation.

    Beam tilt given in the optics table is folded into each group's odd
    Zernike coefficients on construction, so the antisymmetric phase
    correction always includes it.

    Args:
        optics_table: Optics table with at least ``rlnOpticsGroup`` and
            ``rlnImagePixelSize`` columns. The frame is kept by reference;
            ``sort_optics_groups`` reorders it in place.

    Example:
        ```python
        model = ObservationModel.load_safely(particles, optics)
        corr = model.get_phase_correction(1, 256)
        model.demodulate_phase(1, observed_ft)
        ```
    """

    def __init__(self, optics_table: pd.DataFrame):
        for column in (labels.OPTICS_GROUP, labels.PIXEL_SIZE):
            if column not in optics_table.columns:
                raise ConfigurationError(f"Optics table is missing column {column}")

        self.optics_table = optics_table
        self.cache = AberrationCache()
        self._load_groups()

    def _load_groups(self) -> None:
        groups = []
        for _, row in self.optics_table.iterrows():
            group = OpticsGroup.from_row(row)
            if group.beam_tilt_x != 0.0 or group.beam_tilt_y != 0.0:
                group.odd_zernike = insert_tilt(
                    group.odd_zernike,
                    group.beam_tilt_x,
                    group.beam_tilt_y,
                    group.cs,
                    group.wavelength,
                )
            groups.append(group)

        self.groups = groups
        self._sorted = self.optics_groups_sorted()

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @staticmethod
    def contains_all_needed_columns(particles: pd.DataFrame) -> bool:
        """True if the particle table holds every column prediction needs."""
        return all(c in particles.columns for c in labels.NEEDED_PARTICLE_COLUMNS)

    @classmethod
    def load_safely(cls, particles: pd.DataFrame, optics_table: pd.DataFrame) -> "ObservationModel":
        """Validate a particle/optics table pair and build a model.

        Checks the particle columns, rejects particles referring to
        undefined optics groups, and sorts the optics groups when needed
        (rewriting the particle table to match).
        """
        missing = [c for c in labels.NEEDED_PARTICLE_COLUMNS if c not in particles.columns]
        if missing:
            raise ConfigurationError(f"Particle table is missing columns: {', '.join(missing)}")

        model = cls(optics_table)

        undefined = model.find_undefined_opt_groups(particles)
        if undefined:
            raise OpticsGroupError(
                f"Particles refer to undefined optics groups: {undefined}"
            )

        if not model.optics_groups_sorted():
            logger.warning("Optics groups are not sorted, renumbering")
            model.sort_optics_groups(particles)

        return model

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def optics_groups_sorted(self) -> bool:
        """True if row i of the optics table holds group i + 1."""
        return all(g.group == i + 1 for i, g in enumerate(self.groups))

    def find_undefined_opt_groups(self, particles: pd.DataFrame) -> list[int]:
        """Optics groups used by particles but absent from the optics table."""
        defined = {g.group for g in self.groups}
        used = {int(v) for v in particles[labels.OPTICS_GROUP].unique()}
        return sorted(used - defined)

    def sort_optics_groups(self, particles: pd.DataFrame) -> None:
        """Renumber optics groups 1..n and translate the particle table.

        The optics table is sorted by its current ids and renumbered; the
        same mapping is applied to ``rlnOpticsGroup`` of ``particles``.
        Both frames are modified in place.
        """
        undefined = self.find_undefined_opt_groups(particles)
        if undefined:
            raise OpticsGroupError(
                f"Cannot sort optics groups, particles refer to undefined groups: {undefined}"
            )

        table = self.optics_table
        table.sort_values(labels.OPTICS_GROUP, inplace=True, kind="stable")
        table.reset_index(drop=True, inplace=True)

        old_to_new = {int(old): i + 1 for i, old in enumerate(table[labels.OPTICS_GROUP])}
        table[labels.OPTICS_GROUP] = np.arange(1, len(table) + 1)
        particles[labels.OPTICS_GROUP] = particles[labels.OPTICS_GROUP].map(
            lambda og: old_to_new[int(og)]
        )

        self.cache.clear()
        self._load_groups()

    def get_opt_groups_present(self, particles: pd.DataFrame) -> list[int]:
        """Sorted optics group ids referenced by a particle table."""
        return sorted(int(v) for v in particles[labels.OPTICS_GROUP].unique())

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @property
    def number_of_optics_groups(self) -> int:
        return len(self.groups)

    def group(self, og: int) -> OpticsGroup:
        """Return the calibration of optics group `og` (1-based)."""
        if not self._sorted:
            raise OpticsGroupError(
                "Optics groups are not sorted; call sort_optics_groups() first"
            )
        if not 1 <= og <= len(self.groups):
            raise OpticsGroupError(
                f"Optics group {og} out of range (1..{len(self.groups)})"
            )
        return self.groups[og - 1]

    def get_pixel_size(self, og: int = 1) -> float:
        return self.group(og).pixel_size

    def all_pixel_sizes_identical(self) -> bool:
        return len({g.pixel_size for g in self.groups}) <= 1

    def ang_to_pix(self, a: float, s: int, og: int = 1) -> float:
        """Convert a resolution in Å to a frequency radius in pixels."""
        return s * self.get_pixel_size(og) / a

    def pix_to_ang(self, p: float, s: int, og: int = 1) -> float:
        """Convert a frequency radius in pixels to a resolution in Å."""
        return s * self.get_pixel_size(og) / p

    # ------------------------------------------------------------------
    # Cached corrections
    # ------------------------------------------------------------------

    def get_phase_correction(self, og: int, s: int) -> np.ndarray:
        """Antisymmetric aberration phase factor for box size s (cached)."""
        return self.cache.phase_correction(self.group(og), s)

    def get_gamma_offset(self, og: int, s: int) -> np.ndarray:
        """Symmetric aberration phase offset for box size s (cached)."""
        return self.cache.gamma_offset(self.group(og), s)

    def demodulate_phase(self, og: int, image: np.ndarray) -> np.ndarray:
        """Remove the antisymmetric aberration from a half-plane image in place.

        Args:
            og: Optics group id.
            image: Complex array of shape (s, s // 2 + 1).

        Returns:
            The same array, for chaining.
        """
        group = self.group(og)
        if not group.has_odd_zernike:
            return image

        if not np.iscomplexobj(image):
            raise ConfigurationError("demodulate_phase needs a complex Fourier-space image")

        s = image.shape[0]
        corr = self.get_phase_correction(og, s)

        if image.shape != corr.shape:
            raise SizeMismatchError(
                f"Image of shape {image.shape} does not match the cached correction "
                f"{corr.shape} for optics group {og} (cached sizes: {self.cache.sizes(og)})"
            )

        image *= np.conj(corr)
        return image

    def demodulate_particle(self, particles: pd.DataFrame, index: int, image: np.ndarray) -> np.ndarray:
        og = int(particles[labels.OPTICS_GROUP].iloc[index])
        return self.demodulate_phase(og, image)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict_observation(
        self,
        projector: Projector,
        particles: pd.DataFrame,
        index: int,
        apply_ctf: bool = True,
        shift_phases: bool = True,
        apply_shift: bool = True,
    ) -> np.ndarray:
        """Predict the Fourier transform of one particle image.

        Projects the reference, then applies the CTF, the antisymmetric
        aberration and the particle's translation, in that order.

        Args:
            projector: Projector holding the reference volume.
            particles: Particle table.
            index: Positional row index of the particle.
            apply_ctf: Multiply by the particle's CTF.
            shift_phases: Apply the antisymmetric aberration phase.
            apply_shift: Apply the particle's translation.

        Returns:
            Complex half-plane image of shape (s, s // 2 + 1).
        """
        row = particles.iloc[index]
        og = int(row[labels.OPTICS_GROUP])
        group = self.group(og)
        s = projector.size
        mag: Optional[np.ndarray] = group.mag_matrix if group.has_mag_matrix else None

        rotation = euler_to_matrix(
            float(row[labels.ANGLE_ROT]),
            float(row[labels.ANGLE_TILT]),
            float(row[labels.ANGLE_PSI]),
        )
        pred = projector.project(rotation, mag)

        if apply_ctf:
            ctf = CTF.from_particle(row, group)
            offset = self.get_gamma_offset(og, s) if group.has_even_zernike else None
            pred *= ctf.image(s, group.pixel_size, mag, offset)

        if shift_phases and group.has_odd_zernike:
            pred *= self.get_phase_correction(og, s)

        if apply_shift:
            shift_x = float(row[labels.ORIGIN_X]) / group.pixel_size
            shift_y = float(row[labels.ORIGIN_Y]) / group.pixel_size
            yy, xx = half_plane_indices(s)
            pred *= np.exp(-2j * np.pi * (xx * shift_x + yy * shift_y) / s)

        return pred
