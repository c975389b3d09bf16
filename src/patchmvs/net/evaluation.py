"""Adaptive evaluation: multi-view matching cost, view weighting and depth regression."""

import torch
import torch.nn as nn

from .blocks import pointwise_head_3d
from .common import as_batch_tensor, sample_border
from .warping import differentiable_warp


class PixelwiseNet(nn.Module):
    """Pixel-wise view weight network.

    Maps the grouped similarity between the reference and one warped source
    view to a per-pixel reliability weight in (0, 1), taking the maximum over
    the hypothesis axis.
    """

    def __init__(self, num_groups: int) -> None:
        super().__init__()
        self.head = pointwise_head_3d(num_groups, sigmoid=True)

    def forward(self, similarity: torch.Tensor) -> torch.Tensor:
        """Compute view weights.

        Args:
            similarity: Grouped similarity, shape (B, G, D, H, W).

        Returns:
            View weight, shape (B, 1, H, W).
        """
        return torch.max(self.head(similarity).squeeze(1), dim=1, keepdim=True)[0]


class SimilarityNet(nn.Module):
    """Reduce the aggregated similarity volume to one cost per hypothesis.

    A pointwise 3D head collapses the groups, then the result is sampled at the
    evaluation neighbors and combined with the adaptive aggregation weights.
    """

    def __init__(self, num_groups: int) -> None:
        super().__init__()
        self.head = pointwise_head_3d(num_groups)

    def forward(
        self, similarity: torch.Tensor, grid: torch.Tensor, weight: torch.Tensor
    ) -> torch.Tensor:
        """Aggregate the similarity over the evaluation neighbors.

        Args:
            similarity: View-weighted grouped similarity, shape (B, G, D, H, W).
            grid: Evaluation sampling grid, shape (B, N*H, W, 2).
            weight: Aggregation weight, shape (B, D, N, H, W), summing to 1 over N.

        Returns:
            Cost, shape (B, D, H, W).
        """
        batch_size, _, num_depth, height, width = similarity.shape
        num_neighbors = grid.shape[1] // height

        score = sample_border(self.head(similarity).squeeze(1), grid).view(
            batch_size, num_depth, num_neighbors, height, width
        )
        return torch.sum(score * weight, dim=2)


class FeatureWeightNet(nn.Module):
    """Per-neighbor weight from the feature similarity of neighbor and center pixel."""

    def __init__(self, num_neighbors: int, num_groups: int) -> None:
        super().__init__()
        self.num_neighbors = num_neighbors
        self.num_groups = num_groups
        self.head = pointwise_head_3d(num_groups, sigmoid=True)

    def forward(self, feature: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
        """Weight each evaluation neighbor.

        Args:
            feature: Reference feature map, shape (B, C, H, W).
            grid: Evaluation sampling grid, shape (B, N*H, W, 2).

        Returns:
            Weight in (0, 1), shape (B, N, H, W).
        """
        batch_size, num_channels, height, width = feature.shape
        group_channels = num_channels // self.num_groups

        weight = sample_border(feature, grid).view(
            batch_size,
            self.num_groups,
            group_channels,
            self.num_neighbors,
            height,
            width,
        )
        center = feature.view(
            batch_size, self.num_groups, group_channels, height, width
        ).unsqueeze(3)
        weight = (weight * center).mean(2)
        return self.head(weight).squeeze(1)


def depth_weight(
    depth: torch.Tensor,
    grid: torch.Tensor,
    depth_min: float | torch.Tensor,
    depth_max: float | torch.Tensor,
    interval_scale: float,
) -> torch.Tensor:
    """Weight evaluation neighbors by their inverse-depth distance to the center.

    The inverse depth is normalized to [0, 1] over the depth range, sampled at
    every neighbor, and the absolute difference in units of interval_scale is
    mapped through sigmoid(2 * (2 - clamp(diff, 0, 4))): about 1 for equal
    depths, about 0 at four intervals or more.

    Args:
        depth: Hypotheses, shape (B, D, H, W).
        grid: Evaluation sampling grid, shape (B, N*H, W, 2).
        depth_min: Minimum depth, scalar or shape (B,).
        depth_max: Maximum depth, scalar or shape (B,).
        interval_scale: Inverse-depth interval of the stage.

    Returns:
        Weight, shape (B, D, N, H, W), detached from the graph.
    """
    batch_size, num_depth, height, width = depth.shape
    num_neighbors = grid.shape[1] // height
    inv_depth_min = 1.0 / as_batch_tensor(depth_min, batch_size, depth.device)
    inv_depth_max = 1.0 / as_batch_tensor(depth_max, batch_size, depth.device)

    weight = (1.0 / depth - inv_depth_max) / (inv_depth_min - inv_depth_max)
    grid_weight = sample_border(weight, grid).view(
        batch_size, num_depth, num_neighbors, height, width
    )
    grid_weight = torch.abs(grid_weight - weight.unsqueeze(2)) / interval_scale
    return torch.sigmoid(2.0 * (2.0 - grid_weight.clamp(0.0, 4.0))).detach()


def inverse_depth_regression(depth: torch.Tensor, score: torch.Tensor) -> torch.Tensor:
    """Regress depth through the expected hypothesis index.

    The expected index is mapped back to depth by linear interpolation in
    inverse depth between the first and last hypotheses.

    Args:
        depth: Hypotheses, shape (B, D, H, W).
        score: Probability volume, shape (B, D, H, W).

    Returns:
        Depth, shape (B, 1, H, W).
    """
    num_depth = depth.shape[1]
    if num_depth == 1:
        return depth
    depth_index = torch.arange(
        num_depth, dtype=score.dtype, device=score.device
    ).view(1, num_depth, 1, 1)
    depth_index = torch.sum(depth_index * score, dim=1, keepdim=True)

    inv_depth_min = 1.0 / depth[:, -1:]
    inv_depth_max = 1.0 / depth[:, :1]
    return 1.0 / (
        inv_depth_max + (inv_depth_min - inv_depth_max) * depth_index / (num_depth - 1)
    )


class Evaluation(nn.Module):
    """Score all hypotheses against every source view and regress a new depth.

    Only the coarsest stage owns a PixelwiseNet; finer stages always receive
    the view weights computed there.
    """

    def __init__(self, num_groups: int, stage: int) -> None:
        super().__init__()
        self.num_groups = num_groups
        self.pixelwise_net = PixelwiseNet(num_groups) if stage == 3 else None
        self.similarity_net = SimilarityNet(num_groups)

    def forward(
        self,
        ref_feature: torch.Tensor,
        src_features: list[torch.Tensor],
        ref_proj: torch.Tensor,
        src_projs: list[torch.Tensor],
        depth: torch.Tensor,
        grid: torch.Tensor,
        weight: torch.Tensor,
        view_weights: torch.Tensor | None = None,
        is_inverse: bool = False,
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """Evaluate hypotheses.

        Args:
            ref_feature: Reference feature, shape (B, C, H, W).
            src_features: Source features, each shape (B, C, H, W).
            ref_proj: Reference projection, shape (B, 4, 4).
            src_projs: Source projections, each shape (B, 4, 4).
            depth: Hypotheses, shape (B, D, H, W).
            grid: Evaluation sampling grid, shape (B, N*H, W, 2).
            weight: Aggregation weight, shape (B, D, N, H, W).
            view_weights: Precomputed view weights, shape (B, V, H, W), or None
                to estimate them with PixelwiseNet.
            is_inverse: Use inverse_depth_regression instead of the
                probability-weighted mean.

        Returns:
            depth: Regressed depth, shape (B, 1, H, W).
            score: Probability volume, shape (B, D, H, W).
            view_weights: View weights, shape (B, V, H, W).

        Raises:
            ValueError: If view_weights is None on a stage without PixelwiseNet.
        """
        batch_size, num_channels, height, width = ref_feature.shape
        num_depth = depth.shape[1]
        group_channels = num_channels // self.num_groups
        has_weights = view_weights is not None
        if not has_weights and self.pixelwise_net is None:
            raise ValueError("view_weights are required on stages without PixelwiseNet")

        ref_grouped = ref_feature.view(
            batch_size, self.num_groups, group_channels, 1, height, width
        )
        weight_sum = torch.zeros(
            batch_size,
            1,
            1,
            height,
            width,
            dtype=ref_feature.dtype,
            device=ref_feature.device,
        )
        similarity_sum = torch.zeros(
            batch_size,
            self.num_groups,
            num_depth,
            height,
            width,
            dtype=ref_feature.dtype,
            device=ref_feature.device,
        )

        weights = []
        for i, (src_feature, src_proj) in enumerate(zip(src_features, src_projs)):
            warped = differentiable_warp(src_feature, src_proj, ref_proj, depth).view(
                batch_size, self.num_groups, group_channels, num_depth, height, width
            )
            similarity = (warped * ref_grouped).mean(2)
            if has_weights:
                view_weight = view_weights[:, i].unsqueeze(1)
            else:
                view_weight = self.pixelwise_net(similarity)
            weights.append(view_weight)
            similarity_sum = similarity_sum + similarity * view_weight.unsqueeze(1)
            weight_sum = weight_sum + view_weight.unsqueeze(1)

        # weight_sum is a sum of sigmoid outputs and stays strictly positive
        cost = self.similarity_net(similarity_sum / weight_sum, grid, weight)
        score = torch.exp(torch.log_softmax(cost, dim=1))

        if is_inverse:
            depth = inverse_depth_regression(depth, score)
        else:
            depth = torch.sum(depth * score, dim=1, keepdim=True)

        if not has_weights:
            view_weights = torch.cat(weights, dim=1).detach()
        return depth, score, view_weights
