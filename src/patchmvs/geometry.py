"""Projection matrix construction for the multi-stage network input."""

import torch

from .config import NUM_PATCHMATCH_STAGES

# Projection stack depth: full resolution plus one entry per PatchMatch stage.
NUM_STAGES = NUM_PATCHMATCH_STAGES + 1


def augment_projection(proj: torch.Tensor) -> torch.Tensor:
    """Promote (..., 3, 4) projections to (..., 4, 4) with a [0, 0, 0, 1] row.

    Args:
        proj: Projection matrices, shape (..., 3, 4) or (..., 4, 4).

    Returns:
        Projection matrices, shape (..., 4, 4). 4x4 input is returned as is.

    Raises:
        ValueError: If the trailing shape is neither 3x4 nor 4x4.
    """
    if proj.shape[-2:] == (4, 4):
        return proj
    if proj.shape[-2:] != (3, 4):
        raise ValueError(
            f"Expected 3x4 or 4x4 projection matrices, got {tuple(proj.shape[-2:])}"
        )
    bottom = torch.zeros(*proj.shape[:-2], 1, 4, dtype=proj.dtype, device=proj.device)
    bottom[..., 0, 3] = 1.0
    return torch.cat([proj, bottom], dim=-2)


def projection_matrix(K: torch.Tensor, extrinsic: torch.Tensor) -> torch.Tensor:
    """Compose intrinsics and world-to-camera extrinsics into a 4x4 projection.

    The top 3x4 block is K @ [R | t]; the last row keeps the homogeneous
    coordinate so the matrix can be inverted.

    Args:
        K: Intrinsic matrices, shape (..., 3, 3).
        extrinsic: World-to-camera transforms, shape (..., 3, 4) or (..., 4, 4).

    Returns:
        Projection matrices, shape (..., 4, 4).

    Raises:
        ValueError: If K is not 3x3 or the extrinsic is not 3x4/4x4.
    """
    if K.shape[-2:] != (3, 3):
        raise ValueError(f"Expected 3x3 intrinsics, got {tuple(K.shape[-2:])}")
    proj = augment_projection(extrinsic).clone()
    proj[..., :3, :4] = torch.matmul(K, proj[..., :3, :4])
    return proj


def scale_intrinsics(K: torch.Tensor, scale: float) -> torch.Tensor:
    """Scale focal lengths and principal point for a resized image.

    Args:
        K: Intrinsic matrices, shape (..., 3, 3).
        scale: Resize factor (0.5 halves the resolution).

    Returns:
        Scaled intrinsic matrices, same shape as K.
    """
    K = K.clone()
    K[..., :2, :] = K[..., :2, :] * scale
    return K


def stage_projections(K: torch.Tensor, extrinsics: torch.Tensor) -> torch.Tensor:
    """Build the per-stage projection stack consumed by PatchMatchNet.

    Args:
        K: Full-resolution intrinsics, shape (B, V, 3, 3).
        extrinsics: World-to-camera transforms, shape (B, V, 3, 4) or (B, V, 4, 4).

    Returns:
        Projection matrices, shape (B, 4, V, 4, 4). Stage k uses intrinsics
        scaled by 1 / 2**k; stage 0 is full resolution.
    """
    return torch.stack(
        [
            projection_matrix(scale_intrinsics(K, 1.0 / 2**stage), extrinsics)
            for stage in range(NUM_STAGES)
        ],
        dim=1,
    )
