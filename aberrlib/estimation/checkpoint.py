"""Durable per-(micrograph, optics group) storage of accumulator results.

A checkpoint is the AccumulatorPair of one optics group in one
micrograph. Its presence in a store is the only signal that the pair has
been computed, which makes accumulation resumable at micrograph
granularity.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePath
from typing import Union

import numpy as np
import pandas as pd

from ..core import labels
from ..core.errors import ConfigurationError, MicrographError
from .accumulator import AccumulatorPair

__all__ = [
    "CheckpointStore",
    "MemoryCheckpointStore",
    "FileCheckpointStore",
    "micrograph_name",
]


def micrograph_name(particles: pd.DataFrame) -> str:
    """Name of the single micrograph a particle table belongs to."""
    if labels.MICROGRAPH_NAME not in particles.columns:
        raise ConfigurationError(f"Particle table is missing column {labels.MICROGRAPH_NAME}")

    names = particles[labels.MICROGRAPH_NAME].unique()
    if len(names) == 0:
        raise MicrographError("Particle table is empty")
    if len(names) > 1:
        raise MicrographError(
            f"Particle table spans {len(names)} micrographs, expected one"
        )
    return str(names[0])


class CheckpointStore(ABC):
    """Key-value store of AccumulatorPairs keyed by (micrograph, optics group)."""

    @abstractmethod
    def put(self, micrograph: str, group: int, pair: AccumulatorPair) -> None:
        pass

    @abstractmethod
    def get(self, micrograph: str, group: int) -> AccumulatorPair:
        pass

    @abstractmethod
    def exists(self, micrograph: str, group: int) -> bool:
        pass


class MemoryCheckpointStore(CheckpointStore):
    """In-process store, mainly for tests and single-shot runs."""

    def __init__(self):
        self._data: dict[tuple[str, int], AccumulatorPair] = {}

    def put(self, micrograph: str, group: int, pair: AccumulatorPair) -> None:
        self._data[(micrograph, int(group))] = pair.copy()

    def get(self, micrograph: str, group: int) -> AccumulatorPair:
        try:
            return self._data[(micrograph, int(group))].copy()
        except KeyError:
            raise KeyError(f"No checkpoint for micrograph {micrograph!r}, optics group {group}") from None

    def exists(self, micrograph: str, group: int) -> bool:
        return (micrograph, int(group)) in self._data

    def __len__(self) -> int:
        return len(self._data)


class FileCheckpointStore(CheckpointStore):
    """Checkpoints as .npy files below a root directory.

    Each checkpoint is one file holding the real part, imaginary part and
    weight stacked as a (3, s, s // 2 + 1) float64 array. Files are written
    to a temporary name and renamed into place, so a checkpoint is either
    complete or absent.

    Concurrent runs writing to the same root are not supported.

    Args:
        root: Output directory.

    Example:
        ```python
        store = FileCheckpointStore("Refine/job012")
        store.path("MotionCorr/mic_001.mrc", 1)
        # Refine/job012/MotionCorr/mic_001_tilt_optics-group_1.npy
        ```
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path(self, micrograph: str, group: int) -> Path:
        pure = PurePath(micrograph)
        if not pure.name:
            raise ConfigurationError(f"Invalid micrograph name {micrograph!r}")
        # Names map one-to-one onto paths below the root
        if pure.anchor or ".." in pure.parts:
            raise ConfigurationError(
                f"Micrograph name {micrograph!r} must be a relative path without '..'"
            )
        stem = pure.with_suffix("")
        return self.root / stem.parent / f"{stem.name}_tilt_optics-group_{int(group)}.npy"

    def put(self, micrograph: str, group: int, pair: AccumulatorPair) -> None:
        path = self.path(micrograph, group)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = np.stack([pair.xy.real, pair.xy.imag, pair.w]).astype(np.float64)
        tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        try:
            with open(tmp, "wb") as f:
                np.save(f, np.ascontiguousarray(data))
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def get(self, micrograph: str, group: int) -> AccumulatorPair:
        path = self.path(micrograph, group)
        try:
            data = np.load(path)
        except (ValueError, EOFError) as exc:
            raise MicrographError(f"Corrupt checkpoint {path}: {exc}") from exc
        if data.ndim != 3 or data.shape[0] != 3:
            raise MicrographError(f"Corrupt checkpoint {path}: shape {data.shape}")
        return AccumulatorPair(data[0] + 1j * data[1], data[2].copy())

    def exists(self, micrograph: str, group: int) -> bool:
        return self.path(micrograph, group).is_file()
