"""Adaptive spatial propagation of depth hypotheses."""

import torch

from .common import sample_border


def propagate_depth(depth: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
    """Add the middle hypothesis of each propagation neighbor as a candidate.

    Args:
        depth: Current hypotheses, shape (B, S, H, W).
        grid: Propagation sampling grid, shape (B, N*H, W, 2).

    Returns:
        Sorted hypotheses, shape (B, S + N, H, W), ascending along dim 1.
    """
    batch_size, num_samples, height, width = depth.shape
    num_neighbors = grid.shape[1] // height

    middle = depth[:, num_samples // 2].unsqueeze(1)
    prop_depth = sample_border(middle, grid).view(
        batch_size, num_neighbors, height, width
    )
    return torch.sort(torch.cat([depth, prop_depth], dim=1), dim=1)[0]
