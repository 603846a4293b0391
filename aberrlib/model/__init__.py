"""Observation model, CTF and projection."""

from .cache import AberrationCache, compute_gamma_offset, compute_phase_correction
from .ctf import CTF
from .obs_model import ObservationModel
from .projector import Projector, euler_to_matrix

__all__ = [
    "AberrationCache",
    "compute_gamma_offset",
    "compute_phase_correction",
    "CTF",
    "ObservationModel",
    "Projector",
    "euler_to_matrix",
]
