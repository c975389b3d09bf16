"""Multi-view depth estimation with learned coarse-to-fine PatchMatch."""

from .checkpoint import (
    LoadReport,
    load_alias_table,
    load_checkpoint,
    save_checkpoint,
)
from .config import (
    CheckpointConfig,
    EstimatorConfig,
    PatchMatchConfig,
    RuntimeConfig,
    StageConfig,
)
from .errors import CheckpointError, ConfigurationError
from .geometry import projection_matrix, stage_projections
from .io import load_depth_map, save_depth_map
from .net import PatchMatchNet
from .pipeline import DepthEstimator, DepthResult

__version__ = "0.1.0"

__all__ = [
    "EstimatorConfig",
    "PatchMatchConfig",
    "StageConfig",
    "CheckpointConfig",
    "RuntimeConfig",
    "ConfigurationError",
    "CheckpointError",
    "PatchMatchNet",
    "DepthEstimator",
    "DepthResult",
    "LoadReport",
    "load_checkpoint",
    "save_checkpoint",
    "load_alias_table",
    "projection_matrix",
    "stage_projections",
    "save_depth_map",
    "load_depth_map",
]
