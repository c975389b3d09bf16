"""Neighbor offset tables and learned sampling grids for propagation and evaluation."""

import logging

import torch

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

PROPAGATION_NEIGHBOR_COUNTS = (0, 4, 8, 16)
EVALUATION_NEIGHBOR_COUNTS = (9, 17)

Offset = tuple[int, int]


def _ring(dilation: int) -> list[Offset]:
    """3x3 ring around the center (center excluded), as (row, col) offsets."""
    return [
        (-dilation, -dilation),
        (-dilation, 0),
        (-dilation, dilation),
        (0, -dilation),
        (0, dilation),
        (dilation, -dilation),
        (dilation, 0),
        (dilation, dilation),
    ]


def propagation_offsets(num_neighbors: int, dilation: int) -> list[Offset]:
    """Base (row, col) offsets of the propagation neighbors.

    Args:
        num_neighbors: 0 (disabled), 4 (axis-aligned), 8 (3x3 ring) or
            16 (3x3 ring plus the same ring scaled by 2).
        dilation: Propagation range of the stage.

    Returns:
        List of num_neighbors integer offsets.

    Raises:
        ConfigurationError: If num_neighbors is not supported.
    """
    if num_neighbors == 0:
        return []
    if num_neighbors == 4:
        return [(-dilation, 0), (0, -dilation), (0, dilation), (dilation, 0)]
    if num_neighbors == 8:
        return _ring(dilation)
    if num_neighbors == 16:
        ring = _ring(dilation)
        return ring + [(2 * r, 2 * c) for r, c in ring]

    logger.error("Not implemented for %d propagation neighbors", num_neighbors)
    raise ConfigurationError(
        f"Unsupported propagation neighbor count {num_neighbors}; "
        f"expected one of {PROPAGATION_NEIGHBOR_COUNTS}"
    )


def evaluation_offsets(num_neighbors: int, dilation: int) -> list[Offset]:
    """Base (row, col) offsets of the evaluation neighbors.

    The evaluation window is one pixel tighter than the propagation range.

    Args:
        num_neighbors: 9 (full 3x3) or 17 (3x3 plus its ring scaled by 2).
        dilation: Propagation range of the stage.

    Returns:
        List of num_neighbors integer offsets, the center (0, 0) at index 4.

    Raises:
        ConfigurationError: If num_neighbors is not supported.
    """
    dilation = dilation - 1
    ring = _ring(dilation)
    window = ring[:4] + [(0, 0)] + ring[4:]
    if num_neighbors == 9:
        return window
    if num_neighbors == 17:
        return window + [(2 * r, 2 * c) for r, c in window if (r, c) != (0, 0)]

    logger.error("Not implemented for %d evaluation neighbors", num_neighbors)
    raise ConfigurationError(
        f"Unsupported evaluation neighbor count {num_neighbors}; "
        f"expected one of {EVALUATION_NEIGHBOR_COUNTS}"
    )


def pixel_coordinates(
    height: int,
    width: int,
    device: torch.device | str = "cpu",
    dtype: torch.dtype = torch.float32,
) -> torch.Tensor:
    """Pixel coordinates (x, y) of every pixel, shape (2, H*W).

    x is the column index, y the row index, in row-major order.
    """
    y, x = torch.meshgrid(
        torch.arange(height, dtype=dtype, device=device),
        torch.arange(width, dtype=dtype, device=device),
        indexing="ij",
    )
    return torch.stack([x.reshape(-1), y.reshape(-1)])


def compute_grid(
    offset: torch.Tensor,
    base_offsets: list[Offset],
    height: int,
    width: int,
) -> torch.Tensor:
    """Build the normalized neighbor sampling grid.

    Each neighbor location is the pixel position plus its base offset plus the
    learned per-pixel correction.

    Args:
        offset: Learned offsets, shape (B, 2*N, H*W). Channel 2i corrects the
            column of neighbor i, channel 2i+1 its row.
        base_offsets: N integer (row, col) offsets.
        height: Feature map height H.
        width: Feature map width W.

    Returns:
        Sampling grid in [-1, 1] image coordinates, shape (B, N*H, W, 2),
        laid out so that grid_sample output reshapes to (B, C, N, H, W).
    """
    batch_size = offset.shape[0]
    num_neighbors = len(base_offsets)
    device = offset.device

    with torch.no_grad():
        xy = pixel_coordinates(height, width, device, offset.dtype).view(
            1, 1, 2, height * width
        )
        # (row, col) -> (x, y)
        base = torch.tensor(
            [[c, r] for r, c in base_offsets], dtype=offset.dtype, device=device
        ).view(1, num_neighbors, 2, 1)
        anchor = xy + base

    xy_grid = anchor + offset.view(batch_size, num_neighbors, 2, height * width)

    x_norm = xy_grid[:, :, 0] / ((width - 1.0) / 2.0) - 1.0
    y_norm = xy_grid[:, :, 1] / ((height - 1.0) / 2.0) - 1.0
    return torch.stack([x_norm, y_norm], dim=3).view(
        batch_size, num_neighbors * height, width, 2
    )
