"""Per-pixel depth hypothesis generation."""

import torch
import torch.nn as nn

from .common import as_batch_tensor

# Number of random hypotheses drawn when no prior depth is available.
COLD_START_SAMPLES = 48


class DepthHypothesis(nn.Module):
    """Generate the candidate depth set for one PatchMatch iteration.

    Three modes, selected by the inputs:

    * cold start (no prior depth): COLD_START_SAMPLES hypotheses spread over
      uniform inverse-depth bins between 1/depth_max and 1/depth_min, each
      jittered by uniform noise within its bin;
    * single sample (num_samples == 1): the prior depth is returned unchanged;
    * perturbation: num_samples hypotheses at integer offsets around the prior
      in inverse-depth space, scaled by interval_scale and clamped to the range.
    """

    def __init__(self, num_samples: int, interval_scale: float) -> None:
        super().__init__()
        self.num_samples = num_samples
        self.interval_scale = interval_scale

    def forward(
        self,
        depth: torch.Tensor | None,
        depth_min: float | torch.Tensor,
        depth_max: float | torch.Tensor,
        batch_size: int,
        height: int,
        width: int,
        device: torch.device,
    ) -> torch.Tensor:
        """Produce hypotheses.

        Args:
            depth: Prior depth, shape (B, 1, H, W), or None for cold start.
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).
            batch_size: Batch size B.
            height: Map height H.
            width: Map width W.
            device: Device for generated tensors.

        Returns:
            Depth hypotheses, shape (B, S, H, W) with S = 48 (cold start),
            1 (single sample) or num_samples.
        """
        inv_depth_min = 1.0 / as_batch_tensor(depth_min, batch_size, device)
        inv_depth_max = 1.0 / as_batch_tensor(depth_max, batch_size, device)

        if depth is None:
            bins = torch.rand(
                batch_size, COLD_START_SAMPLES, height, width, device=device
            ) + torch.arange(COLD_START_SAMPLES, device=device).view(
                1, COLD_START_SAMPLES, 1, 1
            )
            step = (inv_depth_min - inv_depth_max) / COLD_START_SAMPLES
            return 1.0 / (step * bins + inv_depth_max)

        if self.num_samples == 1:
            return depth.detach()

        half = self.num_samples // 2
        offsets = torch.arange(
            -half, self.num_samples - half, device=device, dtype=torch.float32
        ).view(1, self.num_samples, 1, 1)
        inv_depth = 1.0 / depth.detach() + (
            inv_depth_min - inv_depth_max
        ) * self.interval_scale * offsets
        inv_depth = torch.minimum(torch.maximum(inv_depth, inv_depth_max), inv_depth_min)
        return 1.0 / inv_depth
