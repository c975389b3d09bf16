"""Coarse-to-fine PatchMatch multi-view stereo network."""

import logging

import torch
import torch.nn as nn
import torch.nn.functional as F
from torch.profiler import record_function

from ..config import PatchMatchConfig
from ..geometry import NUM_STAGES, augment_projection
from .common import upsample2x
from .features import FeatureNet
from .patchmatch import PatchMatchStage, PatchMatchState
from .refinement import Refinement

logger = logging.getLogger(__name__)

# Confidence is the probability mass in a window of this many hypotheses.
CONFIDENCE_WINDOW = 4


def compute_confidence(score: torch.Tensor) -> torch.Tensor:
    """Photometric confidence from the final probability volume.

    Sums the probability over a window of four neighboring hypotheses (one
    before, two after), reads it at the expected hypothesis index, and
    upsamples x2 to the refined depth resolution.

    Args:
        score: Probability volume, shape (B, D, H, W).

    Returns:
        Confidence in [0, 1], shape (B, 2H, 2W).
    """
    num_depth = score.shape[1]
    score_sum = CONFIDENCE_WINDOW * F.avg_pool3d(
        F.pad(score.unsqueeze(1), pad=(0, 0, 0, 0, 1, 2)),
        kernel_size=(CONFIDENCE_WINDOW, 1, 1),
        stride=1,
        padding=0,
    ).squeeze(1)
    depth_index = torch.arange(
        num_depth, dtype=score.dtype, device=score.device
    ).view(1, num_depth, 1, 1)
    depth_index = (
        torch.sum(score * depth_index, dim=1, keepdim=True)
        .long()
        .clamp(0, num_depth - 1)
    )
    confidence = upsample2x(torch.gather(score_sum, 1, depth_index)).squeeze(1)
    return confidence.clamp(0.0, 1.0)


def _validate_inputs(
    images: torch.Tensor,
    proj_matrices: torch.Tensor,
    depth_init: torch.Tensor | None = None,
    view_weights_init: torch.Tensor | None = None,
) -> torch.Tensor:
    """Check input shapes and return projections as (B, 4, V, 4, 4).

    The optional priors must match the coarsest stage: depth (B, 1, H/8, W/8)
    and one weight per source view, (B, V-1, H/8, W/8).

    Raises:
        ValueError: If the image, projection or prior tensors are malformed.
    """
    if images.dim() != 5 or images.shape[2] != 3:
        raise ValueError(
            f"images must have shape (B, V, 3, H, W), got {tuple(images.shape)}"
        )
    batch_size, num_views, _, height, width = images.shape
    if num_views < 2:
        raise ValueError(f"At least two views are required, got {num_views}")
    if height % 8 != 0 or width % 8 != 0 or height < 16 or width < 16:
        raise ValueError(
            f"Image height and width must be multiples of 8 and at least 16, "
            f"got {height}x{width}"
        )

    expected = (batch_size, NUM_STAGES, num_views)
    if proj_matrices.dim() != 5 or tuple(proj_matrices.shape[:3]) != expected:
        raise ValueError(
            f"proj_matrices must have shape (B, {NUM_STAGES}, V, 4, 4) with "
            f"B={batch_size}, V={num_views}; got {tuple(proj_matrices.shape)}"
        )

    coarse = (height // 8, width // 8)
    if depth_init is not None and tuple(depth_init.shape) != (batch_size, 1, *coarse):
        raise ValueError(
            f"depth_init must have shape (B, 1, H/8, W/8) = "
            f"{(batch_size, 1, *coarse)}, got {tuple(depth_init.shape)}"
        )
    if view_weights_init is not None and tuple(view_weights_init.shape) != (
        batch_size,
        num_views - 1,
        *coarse,
    ):
        raise ValueError(
            f"view_weights_init must have one channel per source view, shape "
            f"{(batch_size, num_views - 1, *coarse)}; "
            f"got {tuple(view_weights_init.shape)}"
        )
    return augment_projection(proj_matrices)


class PatchMatchNet(nn.Module):
    """Learned PatchMatch depth estimation over a three-stage feature pyramid.

    Stage 3 (1/8 resolution) starts from random hypotheses and estimates the
    per-view weights; each finer stage is seeded with the x2 upsampled depth
    and view weights of the previous one. The stage-1 depth (1/2 resolution)
    is refined to full resolution and a confidence map is derived from the
    final probability volume.

    Args:
        config: Per-stage hyperparameters. Defaults to PatchMatchConfig().
    """

    def __init__(self, config: PatchMatchConfig | None = None) -> None:
        super().__init__()
        if config is None:
            config = PatchMatchConfig()
        self.config = config

        self.feature = FeatureNet()
        self.stages = nn.ModuleList(
            PatchMatchStage(**stage_config.model_dump())
            for stage_config in config.stage_configs()
        )
        self.refinement = Refinement()
        logger.info(
            "Built PatchMatchNet: iterations=%s, samples=%s, propagation=%s, "
            "evaluation=%s",
            config.iterations,
            config.num_samples,
            config.propagation_neighbors,
            config.evaluation_neighbors,
        )

    def forward(
        self,
        images: torch.Tensor,
        proj_matrices: torch.Tensor,
        depth_min: float | torch.Tensor,
        depth_max: float | torch.Tensor,
        depth_init: torch.Tensor | None = None,
        view_weights_init: torch.Tensor | None = None,
        return_intermediates: bool = False,
    ):
        """Estimate the reference-view depth map.

        Args:
            images: Views of the scene, shape (B, V, 3, H, W); view 0 is the
                reference.
            proj_matrices: Projection matrices per stage and view, shape
                (B, 4, V, 4, 4) or (B, 4, V, 3, 4). Stage k is at 1/2**k of the
                input resolution; stage 0 is unused.
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).
            depth_init: Optional prior depth at stage-3 resolution, (B, 1, H/8, W/8).
            view_weights_init: Optional view weights at stage-3 resolution,
                (B, V-1, H/8, W/8).
            return_intermediates: Also return per-stage outputs.

        Returns:
            depth: Refined depth, shape (B, H, W).
            confidence: Confidence in [0, 1], shape (B, H, W).
            intermediates: Only when return_intermediates is set. Dict with
                "stage_depths" (stage -> (B, 1, h, w)), "stage_scores"
                (stage -> last probability volume of that stage), "score" (final
                probability volume) and "view_weights" (stage-1 resolution).
        """
        proj_matrices = _validate_inputs(
            images, proj_matrices, depth_init, view_weights_init
        )
        num_views = images.shape[1]

        with record_function("feature_extraction"):
            ref_features = self.feature(images[:, 0])
            src_features: list[list[torch.Tensor]] = [[] for _ in range(NUM_STAGES)]
            for view in range(1, num_views):
                view_features = self.feature(images[:, view])
                for stage in range(1, NUM_STAGES):
                    src_features[stage].append(view_features[stage])

        state = PatchMatchState(depth=depth_init, view_weights=view_weights_init)
        stage_depths = {}
        stage_scores = {}
        for stage in range(NUM_STAGES - 1, 0, -1):
            stage_proj = proj_matrices[:, stage]
            state = self.stages[stage - 1](
                ref_features[stage],
                src_features[stage],
                stage_proj[:, 0],
                list(stage_proj[:, 1:].unbind(1)),
                depth_min,
                depth_max,
                state,
            )
            stage_depths[stage] = state.depth
            stage_scores[stage] = state.score

            if stage > 1:
                state = PatchMatchState(
                    depth=upsample2x(state.depth),
                    score=state.score,
                    view_weights=upsample2x(state.view_weights).clamp(0.0, 1.0),
                )

        with record_function("refinement"):
            depth = self.refinement(
                images[:, 0], state.depth, depth_min, depth_max
            ).contiguous()
        with record_function("confidence"):
            confidence = compute_confidence(state.score).contiguous()

        if return_intermediates:
            intermediates = {
                "stage_depths": stage_depths,
                "stage_scores": stage_scores,
                "score": state.score,
                "view_weights": state.view_weights,
            }
            return depth, confidence, intermediates
        return depth, confidence
