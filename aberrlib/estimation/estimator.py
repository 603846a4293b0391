"""Resumable beam-tilt and odd-aberration estimation.

Usage follows two phases. First, every micrograph is accumulated and
checkpointed; finished micrographs are skipped on restart. Then, once all
micrographs are done, ``parametric_fit`` reduces the checkpoints and fits
the aberrations of every optics group.

Predicted images passed in should not carry the CTF, and should be made
without the current antisymmetric aberration
(``predict_observation(..., apply_ctf=False, shift_phases=False)``) so the
fit yields absolute rather than incremental aberrations.

Example:
    >>> estimator = TiltEstimator(TiltEstimatorConfig(aberr_n_max=5))
    >>> estimator.init(obs_model, image_size=256, n_threads=8, output="Refine/job012")
    >>> for mic in micrographs:
    ...     if not estimator.is_finished(mic):
    ...         estimator.process_micrograph(mic, observed[mic], predicted[mic])
    >>> results = estimator.parametric_fit(micrographs, optics_table)
"""

from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..core import labels
from ..core.config import TiltEstimatorConfig
from ..core.errors import MicrographError, NotInitializedError
from ..core.logging import get_logger
from ..io.diagnostics import DiagnosticWriter
from ..model.obs_model import ObservationModel
from .accumulator import AccumulatorPair, TiltAccumulator
from .checkpoint import CheckpointStore, FileCheckpointStore, MemoryCheckpointStore, micrograph_name
from .fitting import FitResult, ParametricFitter

__all__ = ["TiltEstimator"]

logger = get_logger(__name__)

ImageLoader = Callable[[pd.DataFrame], tuple[Sequence[np.ndarray], Sequence[np.ndarray]]]


def _describe(particles: pd.DataFrame) -> str:
    if labels.MICROGRAPH_NAME in particles.columns and len(particles):
        return str(particles[labels.MICROGRAPH_NAME].iloc[0])
    return "<unnamed>"


class TiltEstimator:
    """Accumulate-then-fit estimator for antisymmetric aberrations.

    Args:
        config: Estimation options. Defaults to TiltEstimatorConfig().
    """

    def __init__(self, config: Optional[TiltEstimatorConfig] = None):
        self.config = config or TiltEstimatorConfig()
        self.ready = False

    def init(
        self,
        obs_model: ObservationModel,
        image_size: int,
        n_threads: Optional[int] = None,
        output: Union[str, Path, CheckpointStore, None] = None,
        diag_dir: Union[str, Path, None] = None,
    ) -> None:
        """Set up the estimator. Must precede every other call.

        Args:
            obs_model: Observation model of the run.
            image_size: Box size s of the Fourier-space particle images.
            n_threads: Worker threads; defaults to ``config.n_threads``.
            output: Directory for file checkpoints, a CheckpointStore, or
                None for an in-memory store.
            diag_dir: Directory for diagnostic images; defaults to the
                output directory. Only used if ``config.diag`` is set.
        """
        self.obs_model = obs_model
        self.image_size = int(image_size)

        if output is None:
            self.store = MemoryCheckpointStore()
        elif isinstance(output, CheckpointStore):
            self.store = output
        else:
            self.store = FileCheckpointStore(output)

        self.accumulator = TiltAccumulator(
            obs_model, self.image_size, n_threads or self.config.n_threads
        )
        self.fitter = ParametricFitter(self.config)

        if diag_dir is None and isinstance(output, (str, Path)):
            diag_dir = output
        self.diagnostics = None
        if self.config.diag and diag_dir is not None:
            self.diagnostics = DiagnosticWriter(
                diag_dir, debug=self.config.debug, n_max=self.config.aberr_n_max
            )

        self.ready = True

    def _require_ready(self, caller: str) -> None:
        if not self.ready:
            raise NotInitializedError(f"TiltEstimator.{caller}: estimator not initialized")

    def process_micrograph(
        self,
        particles: pd.DataFrame,
        obs: Sequence[np.ndarray],
        pred: Sequence[np.ndarray],
    ) -> dict[int, AccumulatorPair]:
        """Accumulate one micrograph and checkpoint every optics group in it.

        Recomputes even if the micrograph is already finished; gate calls
        with ``is_finished``.

        Args:
            particles: Particle rows of a single micrograph.
            obs: Observed half-plane images, one per particle.
            pred: Predicted half-plane images, one per particle.
        """
        self._require_ready("process_micrograph")

        name = micrograph_name(particles)
        pairs = self.accumulator.accumulate(particles, obs, pred)
        for og, pair in pairs.items():
            self.store.put(name, og, pair)

        logger.debug("Checkpointed micrograph", {"micrograph": name, "groups": sorted(pairs)})
        return pairs

    def process_micrographs(
        self,
        micrographs: Iterable[pd.DataFrame],
        load: ImageLoader,
    ) -> tuple[list[str], list[str]]:
        """Process a batch, skipping finished micrographs.

        A MicrographError aborts only the affected micrograph; it is logged
        and processing continues with the next one.

        Args:
            micrographs: Per-micrograph particle tables.
            load: Callable returning (observed, predicted) images for a
                particle table.

        Returns:
            Tuple (processed, failed) of micrograph names.
        """
        self._require_ready("process_micrographs")

        processed, failed = [], []
        for particles in micrographs:
            name = _describe(particles)
            try:
                if self.is_finished(particles):
                    logger.debug("Skipping finished micrograph", {"micrograph": name})
                    continue
                obs, pred = load(particles)
                self.process_micrograph(particles, obs, pred)
            except MicrographError as exc:
                logger.error("Micrograph failed", {"micrograph": name, "error": str(exc)})
                failed.append(name)
                continue
            processed.append(name)

        return processed, failed

    def is_finished(self, particles: pd.DataFrame) -> bool:
        """True if every optics group of the micrograph has a checkpoint."""
        self._require_ready("is_finished")

        name = micrograph_name(particles)
        return all(
            self.store.exists(name, og)
            for og in self.obs_model.get_opt_groups_present(particles)
        )

    def parametric_fit(
        self,
        all_particles: Sequence[pd.DataFrame],
        optics_table: pd.DataFrame,
    ) -> dict[int, FitResult]:
        """Fit every optics group from the checkpoints of all micrographs.

        Groups without data are logged and left untouched in the table.

        Args:
            all_particles: Per-micrograph particle tables of the whole run.
            optics_table: Optics table, updated in place with the results.

        Returns:
            Dict mapping optics group id to FitResult for fitted groups.
        """
        self._require_ready("parametric_fit")

        logger.info(
            "Fitting beam tilt",
            {
                "micrographs": len(all_particles),
                "groups": self.obs_model.number_of_optics_groups,
                "model": self.fitter.model.name,
            },
        )

        names = [micrograph_name(particles) for particles in all_particles]
        results = self.fitter.fit(
            self.store, names, self.obs_model, self.image_size, self.diagnostics
        )
        self.fitter.write_results(optics_table, results)
        return results
