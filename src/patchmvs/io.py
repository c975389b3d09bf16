"""Reading and writing estimated depth and confidence maps."""

import logging
from pathlib import Path

import numpy as np
import torch

logger = logging.getLogger(__name__)

DEPTH_KEY = "depth"
CONFIDENCE_KEY = "confidence"


def save_depth_map(
    depth_map: torch.Tensor,
    confidence: torch.Tensor,
    path: str | Path,
) -> None:
    """Write one reference view's depth and confidence to a compressed .npz.

    Args:
        depth_map: Refined depth, shape (H, W).
        confidence: Confidence in [0, 1], shape (H, W).
        path: Output file; missing parent directories are created.

    Raises:
        ValueError: If the maps are not 2-D or differ in shape.
    """
    if depth_map.dim() != 2 or depth_map.shape != confidence.shape:
        raise ValueError(
            f"Expected two (H, W) maps of equal shape, got "
            f"{tuple(depth_map.shape)} and {tuple(confidence.shape)}"
        )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    np.savez_compressed(
        path,
        **{
            DEPTH_KEY: depth_map.detach().float().cpu().numpy(),
            CONFIDENCE_KEY: confidence.detach().float().cpu().numpy(),
        },
    )
    logger.debug("Wrote %dx%d depth map to %s", *depth_map.shape, path)


def load_depth_map(
    path: str | Path,
    device: str | torch.device = "cpu",
) -> tuple[torch.Tensor, torch.Tensor]:
    """Read a depth map written by save_depth_map.

    Returns:
        depth_map: shape (H, W), float32.
        confidence: shape (H, W), float32.

    Raises:
        KeyError: If the file lacks the depth or confidence array.
    """
    with np.load(path) as data:
        missing = {DEPTH_KEY, CONFIDENCE_KEY} - set(data.files)
        if missing:
            raise KeyError(f"{path} is missing arrays: {sorted(missing)}")
        depth_map = torch.from_numpy(data[DEPTH_KEY]).to(device)
        confidence = torch.from_numpy(data[CONFIDENCE_KEY]).to(device)
    return depth_map, confidence
