"""Interpolation options and small tensor helpers shared by the network modules."""

import torch
import torch.nn.functional as F

# Sampling options used across the network. Kept as named module-level constants
# so every call site agrees on corner alignment and padding.
UPSAMPLE_SCALE = 2.0
UPSAMPLE_MODE = "bilinear"
GRID_SAMPLE_MODE = "bilinear"
ALIGN_CORNERS = False
PADDING_BORDER = "border"
PADDING_ZEROS = "zeros"


def upsample2x(x: torch.Tensor) -> torch.Tensor:
    """Bilinearly upsample a (B, C, H, W) tensor by a factor of two."""
    return F.interpolate(
        x, scale_factor=UPSAMPLE_SCALE, mode=UPSAMPLE_MODE, align_corners=ALIGN_CORNERS
    )


def sample_border(x: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
    """Sample x at grid with border padding (neighbor lookups)."""
    return F.grid_sample(
        x,
        grid,
        mode=GRID_SAMPLE_MODE,
        padding_mode=PADDING_BORDER,
        align_corners=ALIGN_CORNERS,
    )


def sample_zeros(x: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
    """Sample x at grid with zero padding (view warping)."""
    return F.grid_sample(
        x,
        grid,
        mode=GRID_SAMPLE_MODE,
        padding_mode=PADDING_ZEROS,
        align_corners=ALIGN_CORNERS,
    )


def as_batch_tensor(
    value: float | torch.Tensor,
    batch_size: int,
    device: torch.device,
    dtype: torch.dtype = torch.float32,
) -> torch.Tensor:
    """Broadcast a scalar or per-batch value to shape (B, 1, 1, 1).

    Args:
        value: Python number, 0-d tensor, or tensor of shape (B,).
        batch_size: Batch size B.
        device: Target device.
        dtype: Target dtype.

    Returns:
        Tensor of shape (B, 1, 1, 1).

    Raises:
        ValueError: If a tensor value has neither 1 nor B elements.
    """
    t = torch.as_tensor(value, device=device, dtype=dtype).reshape(-1)
    if t.numel() == 1:
        t = t.expand(batch_size)
    elif t.numel() != batch_size:
        raise ValueError(
            f"Expected a scalar or {batch_size} per-batch values, got {t.numel()}"
        )
    return t.reshape(batch_size, 1, 1, 1)
