"""Diagnostic image output for aberration fits."""

from pathlib import Path
from typing import Union

import numpy as np
import tifffile

from ..core.logging import get_logger
from ..math.fourier import decenter_double_2d, decenter_unflip_2d

__all__ = ["write_image", "DiagnosticWriter"]

logger = get_logger(__name__)


def write_image(path: Union[str, Path], image: np.ndarray) -> None:
    """Write a real 2D image as a 32-bit TIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tifffile.imwrite(path, np.asarray(image, dtype=np.float32))


class DiagnosticWriter:
    """Writes centred phase, fit and weight images per optics group.

    Args:
        directory: Output directory.
        debug: Also write the weight image and the linear-fit residual.
        n_max: Zernike degree, appended to Zernike fit names as ``_N-<n>``.
    """

    def __init__(self, directory: Union[str, Path], debug: bool = False, n_max: int = 0):
        self.directory = Path(directory)
        self.debug = debug
        self.n_max = n_max

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.tif"

    def write_group(self, og: int, pair, weight: np.ndarray, result) -> None:
        tag = f"optics-group_{og}"
        suffix = f"_N-{self.n_max}" if result.model == "zernike" else ""

        phase_full = decenter_unflip_2d(np.angle(pair.xy))
        write_image(self._path(f"beamtilt_delta-phase_per-pixel_{tag}"), phase_full)

        if result.linear_fit is not None:
            linear_full = decenter_unflip_2d(result.linear_fit)
            write_image(self._path(f"beamtilt_delta-phase_lin-fit_{tag}{suffix}"), linear_full)
            if self.debug:
                write_image(
                    self._path(f"beamtilt_delta-phase_lin-fit_{tag}{suffix}_residual"),
                    phase_full - linear_full,
                )

        if result.fit is not None:
            write_image(
                self._path(f"beamtilt_delta-phase_iter-fit_{tag}{suffix}"),
                decenter_unflip_2d(result.fit),
            )

        if self.debug:
            write_image(self._path(f"beamtilt_weight-full_{tag}"), decenter_double_2d(weight))

        logger.debug("Wrote diagnostics", {"group": og, "directory": str(self.directory)})
