"""
Offline identification of discrete linear state-space models.

Pipeline:
- loader:     delimited numeric table -> (samples x channels)
- preprocess: startup trim, intensity normalization, deviation variables
- split:      training / validation segments
- estimators: iterative (canonical-form output error) or subspace fit
- evaluate:   simulation, error bounds, fit metrics
- persist:    MAT-file artifact with an overwrite guard
"""

from .config import IdentificationConfig
from .estimators import Estimator, IterativeEstimator, SubspaceEstimator, get_estimator
from .evaluate import ErrorBounds, Evaluation, combine_bounds, error_bounds, evaluate, simulate
from .exceptions import (
    ConfigurationError,
    DataFormatError,
    EstimationDivergedError,
    InsufficientDataError,
    SysIdError,
)
from .model import StateSpaceModel
from .persist import ModelArtifact, load_artifact, persist, save_artifact
from .pipeline import IdentificationResult, identify


__all__ = [
    # configuration
    "IdentificationConfig",

    # pipeline
    "identify",
    "IdentificationResult",

    # estimation
    "Estimator",
    "IterativeEstimator",
    "SubspaceEstimator",
    "get_estimator",
    "StateSpaceModel",

    # evaluation
    "simulate",
    "evaluate",
    "error_bounds",
    "combine_bounds",
    "ErrorBounds",
    "Evaluation",

    # persistence
    "ModelArtifact",
    "persist",
    "save_artifact",
    "load_artifact",

    # exceptions
    "SysIdError",
    "ConfigurationError",
    "DataFormatError",
    "InsufficientDataError",
    "EstimationDivergedError",
]

__version__ = "0.1.0"
