"""Learned PatchMatch multi-view stereo network."""

from .blocks import ConvBnReLU1D, ConvBnReLU2D, ConvBnReLU3D
from .evaluation import (
    Evaluation,
    FeatureWeightNet,
    PixelwiseNet,
    SimilarityNet,
    depth_weight,
    inverse_depth_regression,
)
from .features import FeatureNet
from .hypothesis import DepthHypothesis
from .model import PatchMatchNet, compute_confidence
from .neighbors import compute_grid, evaluation_offsets, propagation_offsets
from .patchmatch import PatchMatchStage, PatchMatchState
from .propagation import propagate_depth
from .refinement import Refinement
from .warping import differentiable_warp

__all__ = [
    "ConvBnReLU1D",
    "ConvBnReLU2D",
    "ConvBnReLU3D",
    "FeatureNet",
    "propagation_offsets",
    "evaluation_offsets",
    "compute_grid",
    "DepthHypothesis",
    "propagate_depth",
    "differentiable_warp",
    "PixelwiseNet",
    "SimilarityNet",
    "FeatureWeightNet",
    "depth_weight",
    "inverse_depth_regression",
    "Evaluation",
    "PatchMatchStage",
    "PatchMatchState",
    "Refinement",
    "PatchMatchNet",
    "compute_confidence",
]
