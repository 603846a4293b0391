"""aberrlib - Optics aberration modelling and estimation for cryo-EM.

Characterises and corrects antisymmetric lens aberrations (beam tilt and
higher-order odd Zernike terms) from large sets of particle images grouped
into optics groups.

The library is organized into four main modules:

- **core**: Optics group calibration, configuration, errors and logging
- **math**: Zernike polynomials and half-plane Fourier grids
- **model**: Observation model with cached aberration corrections, CTF
  and reference projection
- **estimation**: Resumable per-micrograph accumulation and parametric
  fitting of beam tilt / odd Zernike coefficients

Example:
    >>> from aberrlib import ObservationModel, TiltEstimator, TiltEstimatorConfig
    >>>
    >>> # particles / optics are pandas DataFrames with RELION column labels
    >>> obs_model = ObservationModel.load_safely(particles, optics)
    >>>
    >>> estimator = TiltEstimator(TiltEstimatorConfig(kmin_tilt=20.0))
    >>> estimator.init(obs_model, image_size=256, n_threads=8, output="tilt/")
    >>>
    >>> for mic in micrographs:  # one particle table per micrograph
    ...     if not estimator.is_finished(mic):
    ...         obs, pred = load_images(mic)
    ...         estimator.process_micrograph(mic, obs, pred)
    >>>
    >>> results = estimator.parametric_fit(micrographs, optics)
    >>> results[1].tilt_x, results[1].tilt_y  # mrad
"""

__version__ = "0.1.0"

from .core import (
    AberrlibError,
    ConfigurationError,
    DegenerateFitError,
    MicrographError,
    NotInitializedError,
    OpticsGroup,
    OpticsGroupError,
    SizeMismatchError,
    TiltEstimatorConfig,
    get_logger,
    load_config,
    setup_logging,
)
from .estimation import (
    AccumulatorPair,
    CheckpointStore,
    FileCheckpointStore,
    FitResult,
    MemoryCheckpointStore,
    ParametricFitter,
    TiltAccumulator,
    TiltEstimator,
    TiltModel,
    ZernikeModel,
)
from .model import CTF, AberrationCache, ObservationModel, Projector, euler_to_matrix

__all__ = [
    "__version__",
    # Core
    "AberrlibError",
    "ConfigurationError",
    "DegenerateFitError",
    "MicrographError",
    "NotInitializedError",
    "OpticsGroup",
    "OpticsGroupError",
    "SizeMismatchError",
    "TiltEstimatorConfig",
    "get_logger",
    "load_config",
    "setup_logging",
    # Model
    "CTF",
    "AberrationCache",
    "ObservationModel",
    "Projector",
    "euler_to_matrix",
    # Estimation
    "AccumulatorPair",
    "CheckpointStore",
    "FileCheckpointStore",
    "FitResult",
    "MemoryCheckpointStore",
    "ParametricFitter",
    "TiltAccumulator",
    "TiltEstimator",
    "TiltModel",
    "ZernikeModel",
]
