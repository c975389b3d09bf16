"""Differentiable warping of source-view features into the reference frame."""

import torch

from .common import sample_zeros
from .neighbors import pixel_coordinates

# Projected depths at or below this value are treated as behind the camera.
MIN_PROJECTED_DEPTH = 1e-3


def project_grid(
    proj: torch.Tensor,
    ref_proj: torch.Tensor,
    depth: torch.Tensor,
    height: int,
    width: int,
) -> torch.Tensor:
    """Normalized source-view sampling coordinates for every reference hypothesis.

    Pure geometry, evaluated without gradient tracking.

    Args:
        proj: Source projection matrices, shape (B, 4, 4).
        ref_proj: Reference projection matrices, shape (B, 4, 4).
        depth: Reference depth hypotheses, shape (B, D, H, W).
        height: Source feature height.
        width: Source feature width.

    Returns:
        Grid of shape (B, D, H*W, 2) in [-1, 1] source image coordinates.
        Points behind the source camera land outside [-1, 1].
    """
    batch_size, num_depth = depth.shape[:2]
    ref_height, ref_width = depth.shape[2:]

    with torch.no_grad():
        pmtx = torch.matmul(proj, torch.inverse(ref_proj))
        rot = pmtx[:, :3, :3]
        trans = pmtx[:, :3, 3:4]

        xy = pixel_coordinates(ref_height, ref_width, depth.device, depth.dtype)
        xyz = torch.cat([xy, torch.ones_like(xy[:1])], dim=0)  # (3, H*W)
        xyz = xyz.unsqueeze(0).expand(batch_size, -1, -1)

        rot_xyz = torch.matmul(rot, xyz)  # (B, 3, H*W)
        proj_xyz = rot_xyz.unsqueeze(2) * depth.reshape(
            batch_size, 1, num_depth, -1
        ) + trans.reshape(batch_size, 3, 1, 1)  # (B, 3, D, H*W)

        behind = proj_xyz[:, 2] <= MIN_PROJECTED_DEPTH
        proj_xyz = torch.stack(
            [
                proj_xyz[:, 0].masked_fill(behind, float(width)),
                proj_xyz[:, 1].masked_fill(behind, float(height)),
                proj_xyz[:, 2].masked_fill(behind, 1.0),
            ],
            dim=1,
        )

        proj_xy = proj_xyz[:, :2] / proj_xyz[:, 2:3]
        x_norm = proj_xy[:, 0] / ((width - 1.0) / 2.0) - 1.0
        y_norm = proj_xy[:, 1] / ((height - 1.0) / 2.0) - 1.0
        return torch.stack([x_norm, y_norm], dim=3)


def differentiable_warp(
    feature: torch.Tensor,
    proj: torch.Tensor,
    ref_proj: torch.Tensor,
    depth: torch.Tensor,
) -> torch.Tensor:
    """Warp a source feature map to the reference view for every hypothesis.

    Args:
        feature: Source feature map, shape (B, C, H, W).
        proj: Source projection matrices, shape (B, 4, 4).
        ref_proj: Reference projection matrices, shape (B, 4, 4).
        depth: Reference depth hypotheses, shape (B, D, H, W).

    Returns:
        Warped features, shape (B, C, D, H, W). Samples that fall outside the
        source image or behind the source camera are zero.
    """
    batch_size, num_channels, height, width = feature.shape
    num_depth = depth.shape[1]
    grid = project_grid(proj, ref_proj, depth, height, width)
    return sample_zeros(feature, grid).view(
        batch_size, num_channels, num_depth, depth.shape[2], depth.shape[3]
    )
