"""Tests for weight archive save/load and alternate-name resolution."""

import logging

import pytest
import torch
import torch.nn as nn

from patchmvs.checkpoint import (
    invert_alias_table,
    load_alias_table,
    load_checkpoint,
    read_archive,
    save_checkpoint,
)
from patchmvs.errors import CheckpointError, ConfigurationError
from patchmvs.net import PatchMatchNet


class TinyNet(nn.Module):
    def __init__(self):
        super().__init__()
        self.conv = nn.Conv2d(3, 4, 3)
        self.bn = nn.BatchNorm2d(4)


def _randomized(seed):
    torch.manual_seed(seed)
    net = TinyNet()
    with torch.no_grad():
        for p in net.parameters():
            p.normal_()
        net.bn.running_mean.normal_()
    return net


class TestAliasTable:
    """Tests for alias table loading."""

    def test_bundled_table(self):
        table = load_alias_table()
        assert table["feature.conv0.conv.weight"] == "feature.stage1.0.conv.weight"
        assert table["upsample_net.res.weight"] == "refinement.residual.1.weight"
        assert len(set(table.values())) == len(table)

    def test_bundled_table_covers_model(self):
        """Every canonical name in the bundled table exists in the network."""
        names = {n for n, _ in PatchMatchNet().named_parameters()}
        names |= {n for n, _ in PatchMatchNet().named_buffers()}
        assert set(load_alias_table().values()) <= names

    def test_custom_table(self, tmp_path):
        path = tmp_path / "aliases.yaml"
        path.write_text("old.weight: conv.weight\n")
        assert load_alias_table(path) == {"old.weight": "conv.weight"}

    def test_empty_table(self, tmp_path):
        path = tmp_path / "aliases.yaml"
        path.write_text("")
        assert load_alias_table(path) == {}

    def test_malformed_table(self, tmp_path):
        path = tmp_path / "aliases.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_alias_table(path)

    def test_duplicate_canonical_name(self):
        with pytest.raises(ConfigurationError, match="two alternates"):
            invert_alias_table({"a": "conv.weight", "b": "conv.weight"})


class TestLoadCheckpoint:
    """Tests for save_checkpoint() and load_checkpoint()."""

    def test_save_and_load(self, tmp_path):
        source = _randomized(0)
        target = _randomized(1)
        path = tmp_path / "weights.pt"

        save_checkpoint(source, path)
        report = load_checkpoint(target, path)

        assert report.missing == []
        assert report.aliased == []
        assert "bn.num_batches_tracked" in report.loaded
        for name, tensor in source.state_dict().items():
            assert torch.equal(target.state_dict()[name], tensor)

    def test_alternate_name_preferred(self):
        target = _randomized(1)
        archive = {name: t.clone() for name, t in target.state_dict().items()}
        archive["old_conv.weight"] = torch.full_like(archive["conv.weight"], 7.0)

        report = load_checkpoint(
            target, archive, aliases={"old_conv.weight": "conv.weight"}
        )

        assert report.aliased == ["conv.weight"]
        assert "conv.weight" in report.unexpected
        assert torch.all(target.conv.weight == 7.0)

    def test_missing_keeps_value_and_warns(self, caplog):
        target = _randomized(1)
        before = target.conv.bias.clone()
        archive = {k: v for k, v in _randomized(0).state_dict().items() if k != "conv.bias"}

        with caplog.at_level(logging.WARNING):
            report = load_checkpoint(target, archive)

        assert report.missing == ["conv.bias"]
        assert torch.equal(target.conv.bias, before)
        assert "conv.bias" in caplog.text

    def test_missing_strict(self):
        archive = {k: v for k, v in _randomized(0).state_dict().items() if k != "conv.bias"}
        with pytest.raises(CheckpointError, match="conv.bias"):
            load_checkpoint(_randomized(1), archive, strict=True)

    def test_shape_mismatch(self):
        archive = dict(_randomized(0).state_dict())
        archive["conv.weight"] = torch.zeros(4, 3, 5, 5)
        with pytest.raises(CheckpointError, match="Shape mismatch"):
            load_checkpoint(_randomized(1), archive)

    def test_nested_state_dict(self, tmp_path):
        source = _randomized(0)
        path = tmp_path / "nested.ckpt"
        torch.save({"epoch": 3, "model": source.state_dict()}, path)

        archive = read_archive(path)
        assert set(archive) == set(source.state_dict())

        target = _randomized(1)
        load_checkpoint(target, path)
        assert torch.equal(target.conv.weight, source.conv.weight)

    def test_reference_names_equivalent(self, make_scene):
        """A network loaded from alternate names reproduces the source network outputs."""
        torch.manual_seed(0)
        source = PatchMatchNet().eval()
        with torch.no_grad():
            for p in source.parameters():
                p.add_(0.01 * torch.randn_like(p))

        alternates = invert_alias_table(load_alias_table())
        archive = {
            alternates.get(name, name): tensor.clone()
            for name, tensor in source.state_dict().items()
        }

        torch.manual_seed(1)
        target = PatchMatchNet().eval()
        report = load_checkpoint(target, archive, aliases=load_alias_table())
        assert report.missing == []
        assert report.unexpected == []
        model_names = set(target.state_dict())
        assert set(report.aliased) == set(alternates) & model_names

        scene = make_scene()
        with torch.no_grad():
            torch.manual_seed(2)
            depth_a, confidence_a = source(**scene)
            torch.manual_seed(2)
            depth_b, confidence_b = target(**scene)

        assert torch.equal(depth_a, depth_b)
        assert torch.equal(confidence_a, confidence_b)
