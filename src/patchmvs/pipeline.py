"""Inference facade: build, load and run the depth network."""

import logging
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import torch
from tqdm import tqdm

from .checkpoint import LoadReport, load_alias_table, load_checkpoint, save_checkpoint
from .config import EstimatorConfig
from .io import save_depth_map
from .net import PatchMatchNet

logger = logging.getLogger(__name__)


@dataclass
class DepthResult:
    """Output of one depth estimation call.

    Attributes:
        depth: Refined depth, shape (B, H, W), float32.
        confidence: Confidence in [0, 1], shape (B, H, W), float32.
    """

    depth: torch.Tensor
    confidence: torch.Tensor


class DepthEstimator:
    """PatchMatchNet wrapped for inference.

    Builds the network from the configuration, moves it to the configured
    device in eval mode and loads the configured weight archive, if any.

    Args:
        config: Estimator configuration. Defaults to EstimatorConfig().
    """

    def __init__(self, config: EstimatorConfig | None = None):
        if config is None:
            config = EstimatorConfig()
        self.config = config
        self.device = torch.device(config.runtime.device)

        self.model = PatchMatchNet(config.model).to(self.device)
        self.model.eval()

        self.load_report: LoadReport | None = None
        if config.checkpoint.path is not None:
            self.load_report = self.load_weights(config.checkpoint.path)

    def _aliases(self) -> dict[str, str] | None:
        """Alias table selected by the checkpoint configuration."""
        ckpt = self.config.checkpoint
        if ckpt.alias_table is not None:
            return load_alias_table(ckpt.alias_table)
        if ckpt.reference_aliases:
            return load_alias_table()
        return None

    def load_weights(self, path: str | Path) -> LoadReport:
        """Load a weight archive into the network.

        Args:
            path: Archive written by save_checkpoint or a compatible tool.

        Returns:
            LoadReport of resolved and missing names.
        """
        logger.info("Loading weights from %s", path)
        return load_checkpoint(
            self.model,
            path,
            aliases=self._aliases(),
            strict=self.config.checkpoint.strict,
        )

    def save_weights(self, path: str | Path) -> None:
        """Write all network parameters and buffers to path."""
        save_checkpoint(self.model, path)

    def estimate(
        self,
        images: torch.Tensor,
        proj_matrices: torch.Tensor,
        depth_min: float | torch.Tensor,
        depth_max: float | torch.Tensor,
        depth_init: torch.Tensor | None = None,
        view_weights_init: torch.Tensor | None = None,
    ) -> DepthResult:
        """Estimate depth and confidence for a batch of scenes.

        Args:
            images: Views, shape (B, V, 3, H, W); view 0 is the reference.
            proj_matrices: Per-stage projections, shape (B, 4, V, 4, 4).
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).
            depth_init: Optional prior depth, shape (B, 1, H/8, W/8).
            view_weights_init: Optional prior view weights, shape
                (B, V-1, H/8, W/8).

        Returns:
            DepthResult with full-resolution depth and confidence.
        """
        if isinstance(depth_min, torch.Tensor):
            depth_min = depth_min.to(self.device)
        if isinstance(depth_max, torch.Tensor):
            depth_max = depth_max.to(self.device)
        if depth_init is not None:
            depth_init = depth_init.to(self.device)
        if view_weights_init is not None:
            view_weights_init = view_weights_init.to(self.device)

        with torch.no_grad():
            depth, confidence = self.model(
                images.to(self.device),
                proj_matrices.to(self.device),
                depth_min,
                depth_max,
                depth_init=depth_init,
                view_weights_init=view_weights_init,
            )
        return DepthResult(depth=depth, confidence=confidence)

    def estimate_batch(
        self,
        scenes: Sequence[Mapping],
        output_dir: str | Path,
    ) -> list[Path]:
        """Estimate and save depth maps for a sequence of scenes.

        Each scene is a mapping with keys "name", "images" (V, 3, H, W),
        "proj_matrices" (4, V, 4, 4), "depth_min" and "depth_max". Results are
        written to output_dir/<name>.npz.

        Args:
            scenes: Scenes to process.
            output_dir: Directory for the depth map files.

        Returns:
            Paths of the written files, in scene order.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        paths = []
        for scene in tqdm(
            scenes,
            desc="PatchMatch depth",
            disable=self.config.runtime.quiet or not sys.stderr.isatty(),
            unit="scene",
            leave=False,
        ):
            result = self.estimate(
                scene["images"].unsqueeze(0),
                scene["proj_matrices"].unsqueeze(0),
                scene["depth_min"],
                scene["depth_max"],
            )
            path = output_dir / f"{scene['name']}.npz"
            save_depth_map(result.depth[0], result.confidence[0], path)
            logger.debug("Saved depth map for %s to %s", scene["name"], path)
            paths.append(path)

        logger.info("Wrote %d depth maps to %s", len(paths), output_dir)
        return paths
