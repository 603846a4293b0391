"""Tests for the observation model and its aberration cache."""

import threading

import numpy as np
import pandas as pd
import pytest

from aberrlib.core import (
    ConfigurationError,
    OpticsGroupError,
    SizeMismatchError,
    labels,
)
from aberrlib.math import half_plane_frequencies, tilt_phase_factor
from aberrlib.model import CTF, ObservationModel, Projector, euler_to_matrix


@pytest.fixture()
def aberrated_table(optics_table):
    table = optics_table.copy()
    table[labels.ODD_ZERNIKE] = ["[0.1,-0.2,0.0,0.3,0.05,0.0]", None]
    table[labels.EVEN_ZERNIKE] = ["[0.0,0.2,-0.1,0.05]", None]
    return table


class TestAberrationCache:
    """Tests for cached correction images."""

    def test_second_call_is_cache_hit(self, aberrated_table):
        model = ObservationModel(aberrated_table)

        first = model.get_phase_correction(1, 64)
        copy = first.copy()
        second = model.get_phase_correction(1, 64)

        assert second is first
        np.testing.assert_array_equal(second, copy)
        assert len(model.cache) == 1

    def test_different_size_is_independent(self, aberrated_table):
        model = ObservationModel(aberrated_table)

        small = model.get_phase_correction(1, 64)
        snapshot = small.copy()
        large = model.get_phase_correction(1, 128)

        assert small.shape == (64, 33)
        assert large.shape == (128, 65)
        assert (1, 64) in model.cache and (1, 128) in model.cache
        np.testing.assert_array_equal(model.get_phase_correction(1, 64), snapshot)

    def test_entries_are_read_only(self, aberrated_table):
        corr = ObservationModel(aberrated_table).get_phase_correction(1, 32)
        with pytest.raises(ValueError):
            corr[0, 0] = 0.0

    def test_models_do_not_share_caches(self, aberrated_table):
        a = ObservationModel(aberrated_table)
        b = ObservationModel(aberrated_table)
        a.get_phase_correction(1, 32)
        assert len(b.cache) == 0

    def test_phase_correction_values(self, aberrated_table):
        model = ObservationModel(aberrated_table)
        corr = model.get_phase_correction(1, 32)
        ky, kx = half_plane_frequencies(32, 1.0)

        np.testing.assert_allclose(np.abs(corr), 1.0)
        # Z_1^-1 = ky, Z_1^1 = kx
        r2 = kx**2 + ky**2
        phase = 0.1 * ky - 0.2 * kx + 0.3 * (3 * r2 - 2) * ky + 0.05 * (3 * r2 - 2) * kx
        np.testing.assert_allclose(corr, np.exp(1j * phase), atol=1e-12)

    def test_gamma_offset(self, aberrated_table):
        model = ObservationModel(aberrated_table)
        offset = model.get_gamma_offset(1, 32)
        ky, kx = half_plane_frequencies(32, 1.0)
        # Z_2^-2 = 2 kx ky, Z_2^0 = 2 r^2 - 1, Z_2^2 = kx^2 - ky^2
        expected = 0.2 * 2 * kx * ky - 0.1 * (2 * (kx**2 + ky**2) - 1) + 0.05 * (kx**2 - ky**2)
        np.testing.assert_allclose(offset, expected, atol=1e-12)

    def test_sizes_waits_for_writers(self, aberrated_table):
        model = ObservationModel(aberrated_table)
        model.get_phase_correction(1, 32)
        found = []

        with model.cache._lock:
            reader = threading.Thread(target=lambda: found.append(model.cache.sizes(1)))
            reader.start()
            reader.join(timeout=0.2)
            assert reader.is_alive()

        reader.join(timeout=5.0)
        assert found == [[32]]

    def test_out_of_range_group(self, aberrated_table):
        model = ObservationModel(aberrated_table)
        with pytest.raises(OpticsGroupError):
            model.get_phase_correction(3, 32)
        with pytest.raises(OpticsGroupError):
            model.get_gamma_offset(0, 32)


class TestDemodulation:
    """Tests for in-place phase demodulation."""

    def test_identity_without_odd_terms(self, optics_table, random_images):
        model = ObservationModel(optics_table)
        image = random_images(1, 32)[0]
        original = image.copy()

        result = model.demodulate_phase(1, image)

        assert result is image
        np.testing.assert_array_equal(image, original)
        assert len(model.cache) == 0

    def test_removes_phase(self, aberrated_table, random_images):
        model = ObservationModel(aberrated_table)
        clean = random_images(1, 32)[0]
        image = clean * model.get_phase_correction(1, 32)

        model.demodulate_phase(1, image)

        np.testing.assert_allclose(image, clean, atol=1e-12)

    def test_size_mismatch(self, aberrated_table):
        model = ObservationModel(aberrated_table)
        model.get_phase_correction(1, 32)
        with pytest.raises(SizeMismatchError):
            model.demodulate_phase(1, np.zeros((32, 32), dtype=complex))

    def test_demodulate_particle_uses_group(self, aberrated_table, make_particles, random_images):
        model = ObservationModel(aberrated_table)
        particles = make_particles(2, groups=(1, 2))
        image = random_images(1, 16)[0]
        original = image.copy()

        # Particle 1 belongs to group 2, which has no odd aberrations
        model.demodulate_particle(particles, 1, image)
        np.testing.assert_array_equal(image, original)


class TestIntegrity:
    """Tests for optics group validation and renumbering."""

    def test_sorted_table(self, optics_table):
        assert ObservationModel(optics_table).optics_groups_sorted()

    def test_unsorted_table_blocks_lookups(self, optics_table):
        table = optics_table.iloc[::-1].reset_index(drop=True)
        model = ObservationModel(table)
        assert not model.optics_groups_sorted()
        with pytest.raises(OpticsGroupError, match="sort_optics_groups"):
            model.group(1)

    def test_find_undefined(self, optics_table, make_particles):
        particles = make_particles(4, groups=(1, 2, 5))
        assert ObservationModel(optics_table).find_undefined_opt_groups(particles) == [5]

    def test_sort_rewrites_particles(self, make_particles):
        optics = pd.DataFrame(
            {
                labels.OPTICS_GROUP: [7, 3],
                labels.PIXEL_SIZE: [1.5, 0.8],
            }
        )
        particles = make_particles(4, groups=(3, 7))
        model = ObservationModel(optics)

        model.sort_optics_groups(particles)

        assert model.optics_groups_sorted()
        assert list(optics[labels.OPTICS_GROUP]) == [1, 2]
        assert list(optics[labels.PIXEL_SIZE]) == [0.8, 1.5]
        assert list(particles[labels.OPTICS_GROUP]) == [1, 2, 1, 2]
        assert model.get_pixel_size(1) == 0.8
        assert model.get_pixel_size(2) == 1.5

    def test_sort_rejects_undefined(self, optics_table, make_particles):
        particles = make_particles(2, groups=(1, 4))
        with pytest.raises(OpticsGroupError):
            ObservationModel(optics_table).sort_optics_groups(particles)

    def test_load_safely_sorts(self, make_particles):
        optics = pd.DataFrame({labels.OPTICS_GROUP: [2, 1], labels.PIXEL_SIZE: [1.0, 2.0]})
        particles = make_particles(2, groups=(1, 2))

        model = ObservationModel.load_safely(particles, optics)

        assert model.optics_groups_sorted()
        assert model.get_pixel_size(1) == 2.0

    def test_load_safely_missing_columns(self, optics_table, make_particles):
        particles = make_particles(2).drop(columns=[labels.ANGLE_PSI])
        assert not ObservationModel.contains_all_needed_columns(particles)
        with pytest.raises(ConfigurationError, match=labels.ANGLE_PSI):
            ObservationModel.load_safely(particles, optics_table)

    def test_load_safely_undefined_groups(self, optics_table, make_particles):
        with pytest.raises(OpticsGroupError):
            ObservationModel.load_safely(make_particles(3, groups=(1, 9)), optics_table)

    def test_groups_present(self, optics_table, make_particles):
        particles = make_particles(5, groups=(2,))
        assert ObservationModel(optics_table).get_opt_groups_present(particles) == [2]


class TestBookkeeping:
    """Tests for unit conversions and calibration access."""

    def test_ang_pix_conversion(self, optics_table):
        model = ObservationModel(optics_table)
        assert model.ang_to_pix(20.0, 64) == pytest.approx(3.2)
        assert model.pix_to_ang(3.2, 64) == pytest.approx(20.0)
        assert model.all_pixel_sizes_identical()
        assert model.number_of_optics_groups == 2

    def test_beam_tilt_is_folded_into_odd_zernike(self, optics_table):
        table = optics_table.copy()
        table[labels.BEAM_TILT_X] = [0.4, 0.0]
        table[labels.BEAM_TILT_Y] = [-0.2, 0.0]
        model = ObservationModel(table)

        group = model.group(1)
        assert group.has_odd_zernike
        assert not model.group(2).has_odd_zernike

        ky, kx = half_plane_frequencies(32, 1.0)
        F = tilt_phase_factor(group.cs, group.wavelength)
        expected = F * (kx**2 + ky**2) * (0.4 * kx - 0.2 * ky)
        np.testing.assert_allclose(model.get_phase_correction(1, 32), np.exp(1j * expected), atol=1e-10)

    def test_missing_optics_column(self):
        with pytest.raises(ConfigurationError):
            ObservationModel(pd.DataFrame({labels.OPTICS_GROUP: [1]}))


class TestPrediction:
    """Tests for the forward model."""

    @pytest.fixture()
    def projector(self, rng):
        return Projector(rng.standard_normal((16, 16, 16)))

    def test_plain_projection(self, optics_table, make_particles, projector):
        model = ObservationModel(optics_table)
        particles = make_particles(1)
        pred = model.predict_observation(
            projector, particles, 0, apply_ctf=False, shift_phases=False, apply_shift=False
        )
        row = particles.iloc[0]
        A = euler_to_matrix(row[labels.ANGLE_ROT], row[labels.ANGLE_TILT], row[labels.ANGLE_PSI])
        np.testing.assert_allclose(pred, projector.project(A))

    def test_ctf_and_shift(self, optics_table, make_particles, projector):
        model = ObservationModel(optics_table)
        particles = make_particles(1)
        row = particles.iloc[0]

        plain = model.predict_observation(
            projector, particles, 0, apply_ctf=False, shift_phases=False, apply_shift=False
        )
        full = model.predict_observation(projector, particles, 0)

        ctf = CTF.from_particle(row, model.group(1)).image(16, 1.0)
        ky, kx = half_plane_frequencies(16, 1.0)
        shift = np.exp(-2j * np.pi * (kx * row[labels.ORIGIN_X] + ky * row[labels.ORIGIN_Y]))
        np.testing.assert_allclose(full, plain * ctf * shift, atol=1e-10)

    def test_phase_correction_applied(self, aberrated_table, make_particles, projector):
        model = ObservationModel(aberrated_table)
        particles = make_particles(1)

        plain = model.predict_observation(projector, particles, 0, apply_ctf=False, apply_shift=False, shift_phases=False)
        shifted = model.predict_observation(projector, particles, 0, apply_ctf=False, apply_shift=False)

        np.testing.assert_allclose(shifted, plain * model.get_phase_correction(1, 16))
