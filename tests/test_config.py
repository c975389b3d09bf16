"""Tests for configuration system."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from patchmvs.config import (
    CheckpointConfig,
    EstimatorConfig,
    PatchMatchConfig,
    RuntimeConfig,
    StageConfig,
)


class TestPatchMatchConfig:
    """Tests for PatchMatchConfig."""

    def test_defaults(self):
        """Test default values."""
        config = PatchMatchConfig()
        assert config.interval_scale == [0.005, 0.0125, 0.025]
        assert config.propagation_range == [6, 4, 2]
        assert config.iterations == [1, 2, 2]
        assert config.num_samples == [8, 8, 16]
        assert config.propagation_neighbors == [0, 8, 16]
        assert config.evaluation_neighbors == [9, 9, 9]

    def test_stage_configs(self):
        """Stage configs carry the fixed architecture per stage."""
        stages = PatchMatchConfig().stage_configs()
        assert [s.stage for s in stages] == [1, 2, 3]
        assert [s.num_features for s in stages] == [16, 32, 64]
        assert [s.group_correlations for s in stages] == [4, 8, 8]
        assert stages[2].propagation_neighbors == 16
        assert stages[0].interval_scale == 0.005

    def test_wrong_stage_count(self):
        with pytest.raises(ValidationError, match="per-stage values"):
            PatchMatchConfig(iterations=[1, 2])

    def test_invalid_propagation_neighbors(self):
        with pytest.raises(ValidationError, match="propagation_neighbors"):
            PatchMatchConfig(propagation_neighbors=[0, 8, 12])

    def test_invalid_evaluation_neighbors(self):
        with pytest.raises(ValidationError, match="evaluation_neighbors"):
            PatchMatchConfig(evaluation_neighbors=[9, 9, 16])

    def test_invalid_num_samples(self):
        with pytest.raises(ValidationError, match="num_samples"):
            PatchMatchConfig(num_samples=[8, 0, 16])

    def test_unknown_keys_warn(self, caplog):
        with caplog.at_level(logging.WARNING):
            PatchMatchConfig(num_depths=64)
        assert "num_depths" in caplog.text


class TestStageConfig:
    """Tests for StageConfig."""

    def _kwargs(self, **overrides):
        kwargs = dict(
            propagation_range=2,
            iterations=2,
            num_samples=16,
            interval_scale=0.025,
            num_features=64,
            group_correlations=8,
            propagation_neighbors=16,
            evaluation_neighbors=9,
            stage=3,
        )
        kwargs.update(overrides)
        return kwargs

    def test_valid(self):
        config = StageConfig(**self._kwargs())
        assert config.model_dump()["propagation_range"] == 2

    def test_frozen(self):
        config = StageConfig(**self._kwargs())
        with pytest.raises(ValidationError):
            config.iterations = 3

    def test_group_divisibility(self):
        with pytest.raises(ValidationError, match="divisible"):
            StageConfig(**self._kwargs(group_correlations=6))

    def test_stage_bounds(self):
        with pytest.raises(ValidationError):
            StageConfig(**self._kwargs(stage=4))


class TestRuntimeConfig:
    """Tests for RuntimeConfig and CheckpointConfig."""

    def test_defaults(self):
        """Test default values."""
        runtime = RuntimeConfig()
        assert runtime.device == "cpu"
        assert runtime.quiet is False

        checkpoint = CheckpointConfig()
        assert checkpoint.path is None
        assert checkpoint.alias_table is None
        assert checkpoint.reference_aliases is False
        assert checkpoint.strict is False

    def test_invalid_device(self):
        with pytest.raises(ValidationError):
            RuntimeConfig(device="tpu")


class TestYAMLRoundTrip:
    """Tests for YAML serialization and deserialization."""

    def test_round_trip(self, tmp_path):
        config = EstimatorConfig(
            model=PatchMatchConfig(num_samples=[4, 8, 16], iterations=[2, 2, 2]),
            checkpoint=CheckpointConfig(path="weights.pt", strict=True),
            runtime=RuntimeConfig(quiet=True),
        )
        path = tmp_path / "nested" / "config.yaml"
        config.to_yaml(path)
        loaded = EstimatorConfig.from_yaml(path)

        assert loaded.model.num_samples == [4, 8, 16]
        assert loaded.model.iterations == [2, 2, 2]
        assert loaded.checkpoint.path == "weights.pt"
        assert loaded.checkpoint.strict is True
        assert loaded.runtime.quiet is True

    def test_partial_yaml_merges_over_defaults(self, caplog):
        """Test that loading partial YAML merges over defaults."""
        yaml_content = """
model:
  num_samples: [4, 4, 8]

runtime:
  quiet: true
"""

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(yaml_content)
            temp_path = Path(f.name)

        try:
            with caplog.at_level(logging.INFO):
                loaded = EstimatorConfig.from_yaml(temp_path)

            assert loaded.model.num_samples == [4, 4, 8]
            assert loaded.model.iterations == [1, 2, 2]  # default
            assert loaded.runtime.quiet is True
            assert loaded.checkpoint == CheckpointConfig()
            assert "checkpoint" in caplog.text
        finally:
            temp_path.unlink()

    def test_empty_yaml_loads_as_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert EstimatorConfig.from_yaml(path) == EstimatorConfig()

    def test_validation_errors_have_paths(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"model": {"iterations": [1, 2]}}))
        with pytest.raises(ValueError, match="model.iterations"):
            EstimatorConfig.from_yaml(path)

    def test_yaml_output_is_human_readable(self, tmp_path):
        path = tmp_path / "config.yaml"
        EstimatorConfig().to_yaml(path)
        text = path.read_text()
        assert "model:" in text
        assert "interval_scale:" in text
        assert "{" not in text
