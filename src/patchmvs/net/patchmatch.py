"""One resolution stage of learned PatchMatch."""

import logging
from dataclasses import dataclass

import torch
import torch.nn as nn
from torch.profiler import record_function

from ..errors import ConfigurationError
from .evaluation import Evaluation, FeatureWeightNet, depth_weight
from .hypothesis import DepthHypothesis
from .neighbors import compute_grid, evaluation_offsets, propagation_offsets
from .propagation import propagate_depth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatchMatchState:
    """Loop-carried state threaded through iterations and stages.

    Attributes:
        depth: Current depth, shape (B, 1, H, W), or None before the first
            iteration of the coarsest stage.
        score: Probability volume of the last evaluation, shape (B, D, H, W),
            or None before any evaluation.
        view_weights: Per source-view weights in [0, 1], shape (B, V, H, W),
            or None until the coarsest stage has computed them.
    """

    depth: torch.Tensor | None = None
    score: torch.Tensor | None = None
    view_weights: torch.Tensor | None = None


class PatchMatchStage(nn.Module):
    """Iterative propagate / evaluate loop at one feature resolution.

    Args:
        propagation_range: Dilation of the neighbor tables and offset convolutions.
        iterations: Number of PatchMatch iterations.
        num_samples: Hypotheses per pixel drawn around the prior depth.
        interval_scale: Inverse-depth perturbation interval.
        num_features: Channels of the stage feature map.
        group_correlations: Number of correlation groups.
        propagation_neighbors: 0, 4, 8 or 16.
        evaluation_neighbors: 9 or 17.
        stage: Stage index, 3 (coarsest) to 1 (finest).

    Raises:
        ConfigurationError: On unsupported neighbor counts or a channel count
            not divisible by group_correlations.
    """

    def __init__(
        self,
        propagation_range: int = 2,
        iterations: int = 2,
        num_samples: int = 16,
        interval_scale: float = 0.025,
        num_features: int = 64,
        group_correlations: int = 8,
        propagation_neighbors: int = 16,
        evaluation_neighbors: int = 9,
        stage: int = 3,
    ) -> None:
        super().__init__()
        if num_features % group_correlations != 0:
            raise ConfigurationError(
                f"num_features ({num_features}) must be divisible by "
                f"group_correlations ({group_correlations})"
            )
        self.iterations = iterations
        self.stage = stage
        self.interval_scale = interval_scale
        self.propagation_neighbors = propagation_neighbors
        self.evaluation_neighbors = evaluation_neighbors

        self.propagation_offsets = propagation_offsets(
            propagation_neighbors, propagation_range
        )
        self.evaluation_offsets = evaluation_offsets(
            evaluation_neighbors, propagation_range
        )

        self.propagation_conv = None
        if propagation_neighbors > 0 and not (stage == 1 and iterations == 1):
            self.propagation_conv = nn.Conv2d(
                num_features,
                2 * propagation_neighbors,
                kernel_size=3,
                stride=1,
                padding=propagation_range,
                dilation=propagation_range,
                bias=True,
            )
            nn.init.zeros_(self.propagation_conv.weight)
            nn.init.zeros_(self.propagation_conv.bias)

        self.evaluation_conv = nn.Conv2d(
            num_features,
            2 * evaluation_neighbors,
            kernel_size=3,
            stride=1,
            padding=propagation_range,
            dilation=propagation_range,
            bias=True,
        )
        nn.init.zeros_(self.evaluation_conv.weight)
        nn.init.zeros_(self.evaluation_conv.bias)

        self.depth_hypothesis = DepthHypothesis(num_samples, interval_scale)
        self.evaluation = Evaluation(group_correlations, stage)
        self.feature_weight_net = FeatureWeightNet(
            evaluation_neighbors, group_correlations
        )

    def _propagates(self, iteration: int) -> bool:
        """Whether propagation runs at this iteration.

        The last iteration of the finest stage refines without propagation.
        """
        if self.propagation_conv is None:
            return False
        return not (self.stage == 1 and iteration == self.iterations - 1)

    def forward(
        self,
        ref_feature: torch.Tensor,
        src_features: list[torch.Tensor],
        ref_proj: torch.Tensor,
        src_projs: list[torch.Tensor],
        depth_min: float | torch.Tensor,
        depth_max: float | torch.Tensor,
        state: PatchMatchState | None = None,
    ) -> PatchMatchState:
        """Run all iterations of this stage.

        Args:
            ref_feature: Reference feature, shape (B, C, H, W).
            src_features: Source features, each shape (B, C, H, W).
            ref_proj: Reference projection at this stage, shape (B, 4, 4).
            src_projs: Source projections at this stage, each shape (B, 4, 4).
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).
            state: Incoming state at this stage's resolution (depth and view
                weights), or None for a cold start.

        Returns:
            New state with detached depth (B, 1, H, W), the last probability
            volume, and the view weights.
        """
        if state is None:
            state = PatchMatchState()
        batch_size, _, height, width = ref_feature.shape
        device = ref_feature.device

        with record_function(f"patchmatch_stage_{self.stage}"):
            propagation_grid = None
            if self.propagation_conv is not None:
                offset = self.propagation_conv(ref_feature).view(
                    batch_size, 2 * self.propagation_neighbors, height * width
                )
                propagation_grid = compute_grid(
                    offset, self.propagation_offsets, height, width
                )

            offset = self.evaluation_conv(ref_feature).view(
                batch_size, 2 * self.evaluation_neighbors, height * width
            )
            evaluation_grid = compute_grid(
                offset, self.evaluation_offsets, height, width
            )
            feature_weight = self.feature_weight_net(ref_feature, evaluation_grid)

            depth = state.depth
            score = state.score
            view_weights = state.view_weights
            for iteration in range(self.iterations):
                depth = self.depth_hypothesis(
                    depth, depth_min, depth_max, batch_size, height, width, device
                )
                if self._propagates(iteration):
                    depth = propagate_depth(depth, propagation_grid)

                weight = depth_weight(
                    depth.detach(),
                    evaluation_grid,
                    depth_min,
                    depth_max,
                    self.interval_scale,
                )
                weight = weight * feature_weight.unsqueeze(1)
                weight = weight / torch.sum(weight, dim=2, keepdim=True)

                is_inverse = self.stage == 1 and iteration == self.iterations - 1
                depth, score, view_weights = self.evaluation(
                    ref_feature,
                    src_features,
                    ref_proj,
                    src_projs,
                    depth,
                    evaluation_grid,
                    weight,
                    view_weights,
                    is_inverse,
                )
                logger.debug(
                    "Stage %d iteration %d: %d hypotheses at %dx%d",
                    self.stage,
                    iteration,
                    score.shape[1],
                    height,
                    width,
                )

        return PatchMatchState(depth=depth.detach(), score=score, view_weights=view_weights)
