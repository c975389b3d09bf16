"""Convolution + batch norm + ReLU building blocks."""

import torch
import torch.nn as nn
import torch.nn.functional as F


class ConvBnReLU1D(nn.Module):
    """1D convolution followed by batch normalization and in-place ReLU."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: int = 3,
        stride: int = 1,
        padding: int = 1,
        dilation: int = 1,
    ) -> None:
        super().__init__()
        self.conv = nn.Conv1d(
            in_channels,
            out_channels,
            kernel_size,
            stride=stride,
            padding=padding,
            dilation=dilation,
            bias=False,
        )
        self.bn = nn.BatchNorm1d(out_channels)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.relu(self.bn(self.conv(x)), inplace=True)


class ConvBnReLU2D(nn.Module):
    """2D convolution followed by batch normalization and in-place ReLU."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: int = 3,
        stride: int = 1,
        padding: int = 1,
        dilation: int = 1,
    ) -> None:
        super().__init__()
        self.conv = nn.Conv2d(
            in_channels,
            out_channels,
            kernel_size,
            stride=stride,
            padding=padding,
            dilation=dilation,
            bias=False,
        )
        self.bn = nn.BatchNorm2d(out_channels)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.relu(self.bn(self.conv(x)), inplace=True)


class ConvBnReLU3D(nn.Module):
    """3D convolution followed by batch normalization and in-place ReLU."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: int = 3,
        stride: int = 1,
        padding: int = 1,
        dilation: int = 1,
    ) -> None:
        super().__init__()
        self.conv = nn.Conv3d(
            in_channels,
            out_channels,
            kernel_size,
            stride=stride,
            padding=padding,
            dilation=dilation,
            bias=False,
        )
        self.bn = nn.BatchNorm3d(out_channels)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.relu(self.bn(self.conv(x)), inplace=True)


def pointwise_head_3d(in_channels: int, sigmoid: bool = False) -> nn.Sequential:
    """Build the 1x1x1 Conv3d head used by the cost aggregation networks.

    The head maps a grouped similarity volume (B, G, D, H, W) to a single
    channel (B, 1, D, H, W) through G -> 16 -> 8 -> 1 channels.

    Args:
        in_channels: Number of correlation groups G.
        sigmoid: Append a sigmoid so the output lies in (0, 1).

    Returns:
        Sequential module with children 0..2 (and 3 when sigmoid is set).
    """
    layers: list[nn.Module] = [
        ConvBnReLU3D(in_channels, 16, kernel_size=1, stride=1, padding=0),
        ConvBnReLU3D(16, 8, kernel_size=1, stride=1, padding=0),
        nn.Conv3d(8, 1, kernel_size=1, stride=1, padding=0),
    ]
    if sigmoid:
        layers.append(nn.Sigmoid())
    return nn.Sequential(*layers)
