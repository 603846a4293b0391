import random

import numpy as np
import pandas as pd
import pytest

from aberrlib.core import labels


@pytest.fixture(autouse=True)
def seed_rng() -> None:
    random.seed(0)
    np.random.seed(0)


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture()
def optics_table() -> pd.DataFrame:
    """Two sorted optics groups at 300 kV without aberrations."""
    return pd.DataFrame(
        {
            labels.OPTICS_GROUP: [1, 2],
            labels.PIXEL_SIZE: [1.0, 1.0],
            labels.VOLTAGE: [300.0, 300.0],
            labels.SPHERICAL_ABERRATION: [2.7, 2.7],
            labels.AMPLITUDE_CONTRAST: [0.1, 0.1],
        }
    )


@pytest.fixture()
def make_particles(rng):
    """Factory for a particle table of one micrograph."""

    def _make(n: int, micrograph: str = "mics/mic_001.mrc", groups=(1,)) -> pd.DataFrame:
        return pd.DataFrame(
            {
                labels.MICROGRAPH_NAME: [micrograph] * n,
                labels.OPTICS_GROUP: [groups[i % len(groups)] for i in range(n)],
                labels.DEFOCUS_U: rng.uniform(8000.0, 20000.0, n),
                labels.DEFOCUS_V: rng.uniform(8000.0, 20000.0, n),
                labels.DEFOCUS_ANGLE: rng.uniform(0.0, 180.0, n),
                labels.ORIGIN_X: rng.uniform(-3.0, 3.0, n),
                labels.ORIGIN_Y: rng.uniform(-3.0, 3.0, n),
                labels.ANGLE_ROT: rng.uniform(-180.0, 180.0, n),
                labels.ANGLE_TILT: rng.uniform(0.0, 180.0, n),
                labels.ANGLE_PSI: rng.uniform(-180.0, 180.0, n),
            }
        )

    return _make


@pytest.fixture()
def random_images(rng):
    """Factory for n random complex half-plane images of box size s."""

    def _make(n: int, s: int) -> np.ndarray:
        shape = (n, s, s // 2 + 1)
        return rng.standard_normal(shape) + 1j * rng.standard_normal(shape)

    return _make
