"""Tests for Fourier-slice projection."""

import numpy as np
import pytest

from aberrlib.core import ConfigurationError
from aberrlib.math import radius_map
from aberrlib.model import Projector, euler_to_matrix


class TestEulerToMatrix:
    """Tests for Euler angle conversion."""

    def test_zero_angles_give_identity(self):
        np.testing.assert_allclose(euler_to_matrix(0.0, 0.0, 0.0), np.eye(3), atol=1e-15)

    def test_orthonormal(self):
        A = euler_to_matrix(30.0, 60.0, -45.0)
        np.testing.assert_allclose(A @ A.T, np.eye(3), atol=1e-12)
        assert np.linalg.det(A) == pytest.approx(1.0)

    def test_rot_is_rotation_about_z(self):
        A = euler_to_matrix(90.0, 0.0, 0.0)
        np.testing.assert_allclose(A @ [1.0, 0.0, 0.0], [0.0, -1.0, 0.0], atol=1e-12)


class TestProjector:
    """Tests for the central-slice projector."""

    def test_identity_projection_matches_fft_of_sum(self, rng):
        s = 16
        volume = rng.standard_normal((s, s, s))
        projector = Projector(volume)

        slice_ft = projector.project(np.eye(3))
        expected = np.fft.rfft2(np.fft.ifftshift(volume.sum(axis=0)))

        inside = radius_map(s) < s / 2
        np.testing.assert_allclose(slice_ft[inside], expected[inside], atol=1e-9)
        assert np.all(slice_ft[~inside] == 0)

    def test_output_shape(self, rng):
        projector = Projector(rng.standard_normal((12, 12, 12)))
        assert projector.project(euler_to_matrix(10.0, 20.0, 30.0)).shape == (12, 7)

    def test_rejects_non_cubic_volume(self):
        with pytest.raises(ConfigurationError):
            Projector(np.zeros((8, 8, 4)))
