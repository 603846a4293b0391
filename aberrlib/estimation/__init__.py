"""Accumulation, checkpointing and parametric fitting of odd aberrations."""

from .accumulator import AccumulatorPair, TiltAccumulator, update_tilt_shift
from .checkpoint import (
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
    micrograph_name,
)
from .estimator import TiltEstimator
from .fitting import (
    AberrationModel,
    FitResult,
    ParametricFitter,
    TiltModel,
    ZernikeModel,
    apply_masks,
    exclusion_ring_mask,
    hollow_mask,
    make_aberration_model,
    normalize,
    reduce_checkpoints,
)

__all__ = [
    "AccumulatorPair",
    "TiltAccumulator",
    "update_tilt_shift",
    "CheckpointStore",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    "micrograph_name",
    "TiltEstimator",
    "AberrationModel",
    "FitResult",
    "ParametricFitter",
    "TiltModel",
    "ZernikeModel",
    "apply_masks",
    "exclusion_ring_mask",
    "hollow_mask",
    "make_aberration_model",
    "normalize",
    "reduce_checkpoints",
]
