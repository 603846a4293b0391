"""Parametric fitting of antisymmetric aberrations.

Per optics group, the checkpoints of all micrographs are summed, the sum
is normalised into a phase field exp(i * phase(k)) with a confidence
weight, unreliable frequencies are masked, and an aberration model is
fitted. Two models share this pipeline:

- TiltModel: beam tilt plus image shift,
  phase(k) = -2 pi (s . k) + F |k|^2 (t . k)
- ZernikeModel: a linear combination of odd Zernike polynomials up to a
  given degree, from which the beam tilt is split off afterwards.

Both are linear in their parameters. An initial estimate comes from a
weighted linear least-squares solve; it is then refined by nonlinear
least squares against the complex field, which avoids phase wrapping.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy.optimize import least_squares

from ..core import labels
from ..core.config import TiltEstimatorConfig
from ..core.errors import DegenerateFitError, MicrographError, SizeMismatchError
from ..core.logging import get_logger
from ..core.optics import OpticsGroup
from ..math.fourier import angstrom_radius, half_plane_frequencies, radius_map
from ..math.zernike import extract_tilt, odd_zernike_basis, tilt_phase_factor
from ..model.obs_model import ObservationModel
from .accumulator import AccumulatorPair
from .checkpoint import CheckpointStore

__all__ = [
    "FitResult",
    "reduce_checkpoints",
    "normalize",
    "hollow_mask",
    "exclusion_ring_mask",
    "apply_masks",
    "weighted_linear_fit",
    "refine_phase_model",
    "AberrationModel",
    "TiltModel",
    "ZernikeModel",
    "make_aberration_model",
    "ParametricFitter",
]

logger = get_logger(__name__)


@dataclass
class FitResult:
    """Fitted antisymmetric aberrations of one optics group.

    Attributes:
        group: Optics group id.
        shift_x: Image shift along x (Å).
        shift_y: Image shift along y (Å).
        tilt_x: Beam tilt along x (mrad).
        tilt_y: Beam tilt along y (mrad).
        odd_zernike: Odd Zernike coefficients with the beam tilt removed
            (Zernike model only).
        model: Name of the model that produced the fit.
        linear_fit: Phase image of the linear estimate (diagnostics).
        fit: Phase image of the refined estimate (diagnostics).
    """

    group: int
    shift_x: float
    shift_y: float
    tilt_x: float
    tilt_y: float
    odd_zernike: Optional[np.ndarray] = None
    model: str = "tilt"
    linear_fit: Optional[np.ndarray] = field(default=None, repr=False)
    fit: Optional[np.ndarray] = field(default=None, repr=False)


# ----------------------------------------------------------------------
# Reduce, normalise, mask
# ----------------------------------------------------------------------


def reduce_checkpoints(
    store: CheckpointStore,
    micrographs: Sequence[str],
    group: int,
    size: int,
) -> Optional[AccumulatorPair]:
    """Sum the checkpoints of one optics group over all micrographs.

    Unreadable checkpoints are logged and left out of the sum.

    Returns:
        The summed pair, or None if no micrograph has a checkpoint for
        this group.
    """
    total = None
    for micrograph in micrographs:
        if not store.exists(micrograph, group):
            continue

        try:
            pair = store.get(micrograph, group)
        except MicrographError as exc:
            logger.warning(
                "Skipping unreadable checkpoint",
                {"micrograph": micrograph, "group": group, "error": str(exc)},
            )
            continue

        if pair.size != size:
            raise SizeMismatchError(
                f"Checkpoint of {micrograph!r}, optics group {group} has size "
                f"{pair.size}, expected {size}"
            )

        if total is None:
            total = pair.copy()
        else:
            total += pair
    return total


def normalize(pair: AccumulatorPair) -> tuple[np.ndarray, np.ndarray]:
    """Divide the correlation sum by the weight sum.

    Returns:
        Tuple (phase_field, weight). Where the weight sum is not positive
        both are exactly zero.
    """
    positive = pair.w > 0
    phase_field = np.zeros_like(pair.xy)
    phase_field[positive] = pair.xy[positive] / pair.w[positive]
    weight = np.where(positive, pair.w, 0.0)
    return phase_field, weight


def hollow_mask(s: int, kmin_px: float) -> np.ndarray:
    """1 for bins with frequency radius >= kmin_px, else 0."""
    return (radius_map(s) >= kmin_px).astype(np.float64)


def exclusion_ring_mask(s: int, pixel_size: float, xring0: float, xring1: float) -> np.ndarray:
    """0 for bins whose resolution lies in (xring0, xring1] Å, else 1.

    The ring is only applied when xring1 > 0.
    """
    mask = np.ones((s, s // 2 + 1))
    if xring1 > 0.0:
        ra = angstrom_radius(s, pixel_size)
        mask[(ra > xring0) & (ra <= xring1)] = 0.0
    return mask


def apply_masks(
    weight: np.ndarray,
    pixel_size: float,
    kmin: float,
    xring0: float = -1.0,
    xring1: float = -1.0,
) -> np.ndarray:
    """Zero the weight of low frequencies and of the exclusion ring.

    Args:
        weight: Half-plane weight image.
        pixel_size: Pixel size (Å).
        kmin: Inner threshold (Å); frequencies coarser than this are
            dropped. Non-positive values disable the threshold.
        xring0: Exclusion ring start (Å).
        xring1: Exclusion ring end (Å).
    """
    s = weight.shape[0]
    masked = weight.copy()

    if kmin > 0.0:
        kmin_px = s * pixel_size / kmin
        masked[hollow_mask(s, kmin_px) == 0.0] = 0.0

    masked[exclusion_ring_mask(s, pixel_size, xring0, xring1) == 0.0] = 0.0
    return masked


# ----------------------------------------------------------------------
# Solvers shared by all models
# ----------------------------------------------------------------------


def weighted_linear_fit(target: np.ndarray, weight: np.ndarray, basis: np.ndarray) -> np.ndarray:
    """Minimise sum_k w(k) (target(k) - sum_i c_i B_i(k))^2 over c."""
    sel = weight > 0
    sw = np.sqrt(weight[sel])
    A = (basis[:, sel] * sw).T
    b = target[sel] * sw
    coeffs, *_ = np.linalg.lstsq(A, b, rcond=None)
    return coeffs


def refine_phase_model(
    phase_field: np.ndarray,
    weight: np.ndarray,
    basis: np.ndarray,
    x0: np.ndarray,
) -> np.ndarray:
    """Minimise sum_k w(k) |z(k) - exp(i sum_i c_i B_i(k))|^2 over c.

    Args:
        phase_field: Normalised complex field z.
        weight: Confidence weight (zero bins are ignored).
        basis: Basis images B_i, shape (n,) + z.shape.
        x0: Initial coefficients.
    """
    sel = weight > 0
    B = basis[:, sel]
    z = phase_field[sel]
    sw = np.sqrt(weight[sel])

    def residual(c: np.ndarray) -> np.ndarray:
        d = sw * (z - np.exp(1j * (c @ B)))
        return np.concatenate([d.real, d.imag])

    def jacobian(c: np.ndarray) -> np.ndarray:
        dm = -(1j * sw * np.exp(1j * (c @ B)))[:, None] * B.T
        return np.vstack([dm.real, dm.imag])

    result = least_squares(residual, np.asarray(x0, dtype=np.float64), jac=jacobian, x_scale="jac")
    logger.debug(
        "Refined phase model",
        {"cost": float(result.cost), "nfev": int(result.nfev), "status": int(result.status)},
    )
    return result.x


# ----------------------------------------------------------------------
# Models
# ----------------------------------------------------------------------


class AberrationModel(ABC):
    """Antisymmetric aberration model fitted to a normalised phase field."""

    name: str = ""

    @abstractmethod
    def basis(self, s: int, group: OpticsGroup) -> np.ndarray:
        """Basis images, shape (n_params, s, s // 2 + 1)."""
        pass

    @abstractmethod
    def linear_estimate(
        self,
        xy_sum: np.ndarray,
        phase_field: np.ndarray,
        weight: np.ndarray,
        basis: np.ndarray,
    ) -> np.ndarray:
        """Closed-form initial parameters."""
        pass

    @abstractmethod
    def to_result(self, params: np.ndarray, group: OpticsGroup) -> FitResult:
        pass

    def fit(
        self,
        xy_sum: np.ndarray,
        phase_field: np.ndarray,
        weight: np.ndarray,
        group: OpticsGroup,
    ) -> FitResult:
        """Fit the model to one optics group.

        Args:
            xy_sum: Summed cross-correlation image.
            phase_field: Normalised field xy_sum / w.
            weight: Masked weight.
            group: Optics group calibration.
        """
        basis = self.basis(weight.shape[0], group)
        initial = self.linear_estimate(xy_sum, phase_field, weight, basis)
        params = refine_phase_model(phase_field, weight, basis, initial)

        result = self.to_result(params, group)
        result.linear_fit = np.tensordot(initial, basis, axes=1)
        result.fit = np.tensordot(params, basis, axes=1)
        return result


class TiltModel(AberrationModel):
    """Beam tilt and image shift.

    Parameters are (shift_x, shift_y, tilt_x, tilt_y); the basis is
    scaled so that they come out in Å and mrad.
    """

    name = "tilt"

    def basis(self, s: int, group: OpticsGroup) -> np.ndarray:
        ky, kx = half_plane_frequencies(s, group.pixel_size)
        k2 = kx**2 + ky**2
        F = tilt_phase_factor(group.cs, group.wavelength)
        return np.stack([-2.0 * np.pi * kx, -2.0 * np.pi * ky, F * k2 * kx, F * k2 * ky])

    def linear_estimate(self, xy_sum, phase_field, weight, basis):
        # Small aberrations: the wrapped phase is the phase
        return weighted_linear_fit(np.angle(xy_sum), weight, basis)

    def to_result(self, params: np.ndarray, group: OpticsGroup) -> FitResult:
        shift_x, shift_y, tilt_x, tilt_y = (float(v) for v in params)
        return FitResult(group.group, shift_x, shift_y, tilt_x, tilt_y, model=self.name)


class ZernikeModel(AberrationModel):
    """Odd Zernike expansion up to degree n_max (n_max >= 3).

    The initial estimate linearises exp(i phase) ~ 1 + i phase and fits
    the imaginary part of the complex field. The beam tilt is split off
    the coma terms of the refined coefficients; the remaining degree-1
    terms give the image shift.
    """

    name = "zernike"

    def __init__(self, n_max: int):
        if n_max < 3:
            raise ValueError(f"Zernike model needs n_max >= 3, got {n_max}")
        self.n_max = n_max

    def basis(self, s: int, group: OpticsGroup) -> np.ndarray:
        ky, kx = half_plane_frequencies(s, group.pixel_size)
        return odd_zernike_basis(self.n_max, kx, ky)

    def linear_estimate(self, xy_sum, phase_field, weight, basis):
        return weighted_linear_fit(phase_field.imag, weight, basis)

    def to_result(self, params: np.ndarray, group: OpticsGroup) -> FitResult:
        remaining, tilt_x, tilt_y = extract_tilt(params, group.cs, group.wavelength)
        return FitResult(
            group.group,
            shift_x=float(-remaining[1] / (2.0 * np.pi)),
            shift_y=float(-remaining[0] / (2.0 * np.pi)),
            tilt_x=tilt_x,
            tilt_y=tilt_y,
            odd_zernike=remaining,
            model=self.name,
        )


def make_aberration_model(aberr_n_max: int) -> AberrationModel:
    """TiltModel below degree 3, ZernikeModel from degree 3 on."""
    if aberr_n_max < 3:
        return TiltModel()
    return ZernikeModel(aberr_n_max)


# ----------------------------------------------------------------------
# Fitter
# ----------------------------------------------------------------------


class ParametricFitter:
    """Reduce, normalise, mask and fit every optics group of a run.

    Args:
        config: Estimator configuration (thresholds and model degree).
    """

    def __init__(self, config: TiltEstimatorConfig):
        self.config = config
        self.model = make_aberration_model(config.aberr_n_max)

    def prepare(self, pair: AccumulatorPair, group: OpticsGroup) -> tuple[np.ndarray, np.ndarray]:
        """Normalise a summed pair and mask its weight."""
        phase_field, weight = normalize(pair)
        weight = apply_masks(
            weight,
            group.pixel_size,
            self.config.kmin_tilt,
            self.config.xring0,
            self.config.xring1,
        )
        return phase_field, weight

    def fit_group(
        self,
        store: CheckpointStore,
        micrographs: Sequence[str],
        group: OpticsGroup,
        size: int,
    ) -> tuple[FitResult, AccumulatorPair, np.ndarray]:
        """Fit one optics group.

        Returns:
            Tuple (result, summed pair, masked weight).

        Raises:
            DegenerateFitError: If no micrograph contributed to the group
                or masking left no usable weight.
        """
        pair = reduce_checkpoints(store, micrographs, group.group, size)
        if pair is None:
            raise DegenerateFitError(f"Optics group {group.group}: no contributing micrographs")

        phase_field, weight = self.prepare(pair, group)
        if not np.any(weight > 0):
            raise DegenerateFitError(
                f"Optics group {group.group}: no usable weight left after masking"
            )

        return self.model.fit(pair.xy, phase_field, weight, group), pair, weight

    def fit(
        self,
        store: CheckpointStore,
        micrographs: Sequence[str],
        obs_model: ObservationModel,
        size: int,
        diagnostics=None,
    ) -> dict[int, FitResult]:
        """Fit all optics groups; degenerate groups are logged and skipped.

        Args:
            store: Checkpoint store holding the accumulated pairs.
            micrographs: Names of all micrographs of the run.
            obs_model: Observation model with the optics calibration.
            size: Box size of the accumulated images.
            diagnostics: Optional DiagnosticWriter.
        """
        results = {}
        for og in range(1, obs_model.number_of_optics_groups + 1):
            group = obs_model.group(og)
            try:
                result, pair, weight = self.fit_group(store, micrographs, group, size)
            except DegenerateFitError as exc:
                logger.warning("Skipping optics group", {"group": og, "reason": str(exc)})
                continue

            logger.info(
                "Fitted optics group",
                {
                    "group": og,
                    "model": result.model,
                    "tilt_x": result.tilt_x,
                    "tilt_y": result.tilt_y,
                    "shift_x": result.shift_x,
                    "shift_y": result.shift_y,
                },
            )
            if diagnostics is not None:
                diagnostics.write_group(og, pair, weight, result)

            results[og] = result
        return results

    @staticmethod
    def write_results(optics_table: pd.DataFrame, results: dict[int, FitResult]) -> None:
        """Write fitted parameters into the optics table in place.

        Rows of groups without a result are left as they were; newly created
        columns hold NaN there.
        """
        for column in (
            labels.BEAM_TILT_X,
            labels.BEAM_TILT_Y,
            labels.BEAM_TILT_SHIFT_X,
            labels.BEAM_TILT_SHIFT_Y,
        ):
            if column not in optics_table.columns:
                optics_table[column] = np.nan

        if any(r.odd_zernike is not None for r in results.values()):
            if labels.ODD_ZERNIKE not in optics_table.columns:
                optics_table[labels.ODD_ZERNIKE] = None
            optics_table[labels.ODD_ZERNIKE] = optics_table[labels.ODD_ZERNIKE].astype(object)

        for og, result in results.items():
            rows = optics_table.index[optics_table[labels.OPTICS_GROUP] == og]
            for index in rows:
                optics_table.at[index, labels.BEAM_TILT_X] = result.tilt_x
                optics_table.at[index, labels.BEAM_TILT_Y] = result.tilt_y
                optics_table.at[index, labels.BEAM_TILT_SHIFT_X] = result.shift_x
                optics_table.at[index, labels.BEAM_TILT_SHIFT_Y] = result.shift_y
                if result.odd_zernike is not None:
                    optics_table.at[index, labels.ODD_ZERNIKE] = [float(c) for c in result.odd_zernike]
