"""Shared pytest fixtures for patchmvs tests."""

import pytest
import torch

from patchmvs.geometry import stage_projections


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


def make_cameras(
    batch_size: int, num_views: int, height: int, width: int, baseline: float = 0.1
) -> tuple[torch.Tensor, torch.Tensor]:
    """Pinhole rig of parallel cameras shifted along x.

    Returns:
        K: Intrinsics, shape (B, V, 3, 3).
        extrinsics: World-to-camera transforms, shape (B, V, 4, 4).
    """
    K = torch.tensor(
        [
            [float(width), 0.0, (width - 1) / 2.0],
            [0.0, float(width), (height - 1) / 2.0],
            [0.0, 0.0, 1.0],
        ]
    )
    K = K.expand(batch_size, num_views, 3, 3).clone()
    extrinsics = torch.eye(4).repeat(batch_size, num_views, 1, 1)
    extrinsics[:, :, 0, 3] = -baseline * torch.arange(num_views, dtype=torch.float32)
    return K, extrinsics


@pytest.fixture
def make_scene():
    """Factory for random multi-view network inputs.

    Returns:
        Callable(batch_size=1, num_views=3, height=32, width=32) -> dict with
        "images" (B, V, 3, H, W), "proj_matrices" (B, 4, V, 4, 4),
        "depth_min" and "depth_max".
    """

    def _make(batch_size=1, num_views=3, height=32, width=32):
        K, extrinsics = make_cameras(batch_size, num_views, height, width)
        return {
            "images": torch.rand(batch_size, num_views, 3, height, width),
            "proj_matrices": stage_projections(K, extrinsics),
            "depth_min": 1.0,
            "depth_max": 4.0,
        }

    return _make
