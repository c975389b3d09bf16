"""Full-resolution residual depth refinement."""

import torch
import torch.nn as nn
import torch.nn.functional as F

from .blocks import ConvBnReLU2D
from .common import as_batch_tensor, upsample2x


class Refinement(nn.Module):
    """Upsample the finest-stage depth x2 and add a learned residual.

    The depth is normalized to [0, 1] over the depth range, refined with
    guidance from the reference image, and mapped back to depth units.
    """

    def __init__(self) -> None:
        super().__init__()
        self.conv = ConvBnReLU2D(3, 8)
        self.deconv = nn.Sequential(
            ConvBnReLU2D(1, 8),
            ConvBnReLU2D(8, 8),
            nn.ConvTranspose2d(
                8, 8, kernel_size=3, stride=2, padding=1, output_padding=1, bias=False
            ),
            nn.BatchNorm2d(8),
        )
        self.residual = nn.Sequential(
            ConvBnReLU2D(16, 8),
            nn.Conv2d(8, 1, kernel_size=3, padding=1, bias=False),
        )

    def forward(
        self,
        image: torch.Tensor,
        depth_init: torch.Tensor,
        depth_min: float | torch.Tensor,
        depth_max: float | torch.Tensor,
    ) -> torch.Tensor:
        """Refine depth.

        Args:
            image: Reference image, shape (B, 3, H, W).
            depth_init: Finest-stage depth, shape (B, 1, H/2, W/2).
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).

        Returns:
            Refined depth, shape (B, H, W).
        """
        batch_size = image.shape[0]
        depth_min = as_batch_tensor(depth_min, batch_size, image.device)
        depth_max = as_batch_tensor(depth_max, batch_size, image.device)
        depth = (depth_init - depth_min) / (depth_max - depth_min)

        image_conv = self.conv(image)
        depth_deconv = F.relu(self.deconv(depth), inplace=True)
        concat = torch.cat([depth_deconv, image_conv], dim=1)

        depth = upsample2x(depth) + self.residual(concat)
        return (depth * (depth_max - depth_min) + depth_min).squeeze(1)
