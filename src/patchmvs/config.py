"""Configuration management for patchmvs."""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

NUM_PATCHMATCH_STAGES = 3

# Fixed per-stage architecture (index 0 = stage 1).
STAGE_FEATURE_CHANNELS = (16, 32, 64)
STAGE_GROUP_CORRELATIONS = (4, 8, 8)

VALID_PROPAGATION_NEIGHBORS = (0, 4, 8, 16)
VALID_EVALUATION_NEIGHBORS = (9, 17)

# Per-stage list fields of PatchMatchConfig.
STAGE_LIST_FIELDS = (
    "interval_scale",
    "propagation_range",
    "iterations",
    "num_samples",
    "propagation_neighbors",
    "evaluation_neighbors",
)


class StageConfig(BaseModel):
    """Hyperparameters of a single PatchMatch stage.

    Field names match the PatchMatchStage constructor arguments.

    Attributes:
        propagation_range: Dilation of neighbor offsets and offset convolutions.
        iterations: Number of propagate/evaluate iterations.
        num_samples: Hypotheses per pixel drawn around the prior depth.
        interval_scale: Inverse-depth perturbation interval (fraction of range).
        num_features: Channels of the stage feature map.
        group_correlations: Number of correlation groups.
        propagation_neighbors: Propagation neighbors (0 disables propagation).
        evaluation_neighbors: Evaluation neighbors for cost aggregation.
        stage: Stage index, 1 (finest) to 3 (coarsest).
    """

    model_config = ConfigDict(frozen=True)

    propagation_range: int = Field(ge=2)
    iterations: int = Field(ge=1)
    num_samples: int = Field(ge=1)
    interval_scale: float = Field(gt=0.0)
    num_features: int = Field(ge=1)
    group_correlations: int = Field(ge=1)
    propagation_neighbors: int
    evaluation_neighbors: int
    stage: int = Field(ge=1, le=NUM_PATCHMATCH_STAGES)

    @field_validator("propagation_neighbors")
    @classmethod
    def validate_propagation_neighbors(cls, v: int) -> int:
        """Validate that the propagation neighbor count has an offset table."""
        if v not in VALID_PROPAGATION_NEIGHBORS:
            raise ValueError(
                f"propagation_neighbors must be one of "
                f"{list(VALID_PROPAGATION_NEIGHBORS)}, got {v}"
            )
        return v

    @field_validator("evaluation_neighbors")
    @classmethod
    def validate_evaluation_neighbors(cls, v: int) -> int:
        """Validate that the evaluation neighbor count has an offset table."""
        if v not in VALID_EVALUATION_NEIGHBORS:
            raise ValueError(
                f"evaluation_neighbors must be one of "
                f"{list(VALID_EVALUATION_NEIGHBORS)}, got {v}"
            )
        return v

    @model_validator(mode="after")
    def check_group_divisibility(self) -> "StageConfig":
        """Feature channels must split evenly into correlation groups."""
        if self.num_features % self.group_correlations != 0:
            raise ValueError(
                f"num_features ({self.num_features}) must be divisible by "
                f"group_correlations ({self.group_correlations})"
            )
        return self


class PatchMatchConfig(BaseModel):
    """Network hyperparameters, one list entry per stage (stage 1 first).

    Attributes:
        interval_scale: Inverse-depth perturbation interval per stage.
        propagation_range: Neighbor dilation per stage.
        iterations: PatchMatch iterations per stage.
        num_samples: Hypotheses around the prior per stage.
        propagation_neighbors: Propagation neighbors per stage (0, 4, 8, 16).
        evaluation_neighbors: Evaluation neighbors per stage (9, 17).
    """

    model_config = ConfigDict(extra="allow")

    interval_scale: list[float] = Field(default_factory=lambda: [0.005, 0.0125, 0.025])
    propagation_range: list[int] = Field(default_factory=lambda: [6, 4, 2])
    iterations: list[int] = Field(default_factory=lambda: [1, 2, 2])
    num_samples: list[int] = Field(default_factory=lambda: [8, 8, 16])
    propagation_neighbors: list[int] = Field(default_factory=lambda: [0, 8, 16])
    evaluation_neighbors: list[int] = Field(default_factory=lambda: [9, 9, 9])

    @field_validator(*STAGE_LIST_FIELDS)
    @classmethod
    def validate_stage_count(cls, v: list) -> list:
        """Validate that every per-stage list has one entry per stage."""
        if len(v) != NUM_PATCHMATCH_STAGES:
            raise ValueError(
                f"expected {NUM_PATCHMATCH_STAGES} per-stage values, got {len(v)}"
            )
        return v

    @model_validator(mode="after")
    def validate_stages(self) -> "PatchMatchConfig":
        """Validate each stage and warn about unknown keys."""
        try:
            self.stage_configs()
        except ValidationError as e:
            raise ValueError(format_validation_errors(e)) from None
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PatchMatchConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    def stage_configs(self) -> list[StageConfig]:
        """Per-stage configurations, stage 1 first.

        Returns:
            List of three StageConfig.
        """
        return [
            StageConfig(
                propagation_range=self.propagation_range[i],
                iterations=self.iterations[i],
                num_samples=self.num_samples[i],
                interval_scale=self.interval_scale[i],
                num_features=STAGE_FEATURE_CHANNELS[i],
                group_correlations=STAGE_GROUP_CORRELATIONS[i],
                propagation_neighbors=self.propagation_neighbors[i],
                evaluation_neighbors=self.evaluation_neighbors[i],
                stage=i + 1,
            )
            for i in range(NUM_PATCHMATCH_STAGES)
        ]


class CheckpointConfig(BaseModel):
    """Weight archive settings.

    Attributes:
        path: Path to a weight archive, or None to keep initialized weights.
        alias_table: Path to a YAML alias table (alternate -> canonical name).
        reference_aliases: Use the bundled table for archives written with
            PatchmatchNet training names. Ignored when alias_table is set.
        strict: Raise instead of warning when a parameter or buffer is missing.
    """

    model_config = ConfigDict(extra="allow")

    path: str | None = None
    alias_table: str | None = None
    reference_aliases: bool = False
    strict: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "CheckpointConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in CheckpointConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class RuntimeConfig(BaseModel):
    """Runtime settings.

    Attributes:
        device: PyTorch device string.
        quiet: Suppress progress output.
    """

    model_config = ConfigDict(extra="allow")

    device: Literal["cpu", "cuda"] = "cpu"
    quiet: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class EstimatorConfig(BaseModel):
    """Top-level configuration for depth estimation.

    Attributes:
        model: Network hyperparameters.
        checkpoint: Weight archive settings.
        runtime: Runtime settings.
    """

    model_config = ConfigDict(extra="allow")

    model: PatchMatchConfig = Field(default_factory=PatchMatchConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "EstimatorConfig":
        """Warn about unknown top-level keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in EstimatorConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "EstimatorConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        """Log INFO messages about sections using defaults."""
        for section in ("model", "checkpoint", "runtime"):
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
