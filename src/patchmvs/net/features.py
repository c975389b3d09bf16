"""Multi-scale feature pyramid for the reference and source views."""

import torch
import torch.nn as nn

from ..config import STAGE_FEATURE_CHANNELS
from ..geometry import NUM_STAGES
from .blocks import ConvBnReLU2D
from .common import upsample2x

# Output channel count per stage (index = stage number, 0 unused).
STAGE_CHANNELS = (None, *STAGE_FEATURE_CHANNELS)


class FeatureNet(nn.Module):
    """Feature pyramid network with top-down lateral fusion.

    Three cascaded strided stages produce 16, 32 and 64 channel maps at 1/2,
    1/4 and 1/8 of the input resolution. The coarsest map is projected to the
    stage-3 feature; finer stages add a bilinearly upsampled copy of the coarser
    fused map to a 1x1 lateral projection before their own 1x1 output
    projection.
    """

    def __init__(self) -> None:
        super().__init__()
        self.stage1 = nn.Sequential(
            ConvBnReLU2D(3, 8, 3, 1, 1),
            ConvBnReLU2D(8, 8, 3, 1, 1),
            ConvBnReLU2D(8, 16, 5, 2, 2),
            ConvBnReLU2D(16, 16, 3, 1, 1),
            ConvBnReLU2D(16, 16, 3, 1, 1),
        )
        self.stage2 = nn.Sequential(
            ConvBnReLU2D(16, 32, 5, 2, 2),
            ConvBnReLU2D(32, 32, 3, 1, 1),
            ConvBnReLU2D(32, 32, 3, 1, 1),
        )
        self.stage3 = nn.Sequential(
            ConvBnReLU2D(32, 64, 5, 2, 2),
            ConvBnReLU2D(64, 64, 3, 1, 1),
            ConvBnReLU2D(64, 64, 3, 1, 1),
        )
        self.output1 = nn.Conv2d(64, STAGE_CHANNELS[1], 1, bias=False)
        self.output2 = nn.Conv2d(64, STAGE_CHANNELS[2], 1, bias=False)
        self.output3 = nn.Conv2d(64, STAGE_CHANNELS[3], 1, bias=False)
        self.inner1 = nn.Conv2d(16, 64, 1, bias=True)
        self.inner2 = nn.Conv2d(32, 64, 1, bias=True)

    def forward(self, image: torch.Tensor) -> list[torch.Tensor | None]:
        """Extract per-stage features.

        Args:
            image: Input image, shape (B, 3, H, W). H and W divisible by 8.

        Returns:
            List of length 4. Index 0 is None; index k is the stage-k feature of
            shape (B, STAGE_CHANNELS[k], H / 2**k, W / 2**k).
        """
        res1 = self.stage1(image)
        res2 = self.stage2(res1)
        res3 = self.stage3(res2)

        output: list[torch.Tensor | None] = [None] * NUM_STAGES
        output[3] = self.output3(res3)

        intra_feat2 = upsample2x(res3) + self.inner2(res2)
        output[2] = self.output2(intra_feat2)

        intra_feat1 = upsample2x(intra_feat2) + self.inner1(res1)
        output[1] = self.output1(intra_feat1)
        return output
