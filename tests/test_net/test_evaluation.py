"""Tests for adaptive evaluation and depth regression."""

import pytest
import torch

from patchmvs.net.evaluation import (
    Evaluation,
    FeatureWeightNet,
    PixelwiseNet,
    SimilarityNet,
    depth_weight,
    inverse_depth_regression,
)
from patchmvs.net.neighbors import compute_grid, evaluation_offsets


def _evaluation_grid(batch_size, height, width, num_neighbors=9, dilation=2):
    offsets = evaluation_offsets(num_neighbors, dilation)
    offset = torch.zeros(batch_size, 2 * num_neighbors, height * width)
    return compute_grid(offset, offsets, height, width)


def _projections(batch_size, num_src):
    ref = torch.eye(4).expand(batch_size, 4, 4)
    srcs = []
    for i in range(num_src):
        proj = torch.eye(4).repeat(batch_size, 1, 1)
        proj[:, 0, 3] = -0.1 * (i + 1)
        srcs.append(proj)
    return ref, srcs


class TestSubnetworks:
    """Tests for PixelwiseNet, SimilarityNet and FeatureWeightNet."""

    def test_pixelwise_net(self):
        net = PixelwiseNet(4)
        out = net(torch.randn(2, 4, 6, 5, 7))
        assert out.shape == (2, 1, 5, 7)
        assert (out > 0).all() and (out < 1).all()

    def test_similarity_net(self):
        grid = _evaluation_grid(2, 5, 7)
        weight = torch.full((2, 6, 9, 5, 7), 1.0 / 9)
        out = SimilarityNet(4)(torch.randn(2, 4, 6, 5, 7), grid, weight)
        assert out.shape == (2, 6, 5, 7)

    def test_feature_weight_net(self):
        grid = _evaluation_grid(2, 6, 6, num_neighbors=17)
        out = FeatureWeightNet(17, 8)(torch.randn(2, 32, 6, 6), grid)
        assert out.shape == (2, 17, 6, 6)
        assert (out > 0).all() and (out < 1).all()


class TestDepthWeight:
    """Tests for depth_weight()."""

    def test_equal_depth_weight(self):
        """Neighbors at the center depth get sigmoid(4)."""
        depth = torch.full((1, 3, 6, 6), 2.0, requires_grad=True)
        grid = _evaluation_grid(1, 6, 6)
        weight = depth_weight(depth, grid, 1.0, 4.0, 0.025)

        assert weight.shape == (1, 3, 9, 6, 6)
        assert not weight.requires_grad
        assert torch.allclose(weight, torch.sigmoid(torch.tensor(4.0)).expand_as(weight))

    def test_far_neighbors_saturate(self):
        """Differences beyond four intervals are clamped to sigmoid(-4)."""
        depth = torch.full((1, 1, 6, 6), 1.0)
        depth[..., 3:] = 4.0
        grid = _evaluation_grid(1, 6, 6, dilation=2)
        weight = depth_weight(depth, grid, 1.0, 4.0, 0.025)

        # column 2 looks one pixel to the right into the far half
        low = torch.sigmoid(torch.tensor(-4.0))
        assert torch.isclose(weight[0, 0, 5, 2, 2], low)
        assert weight.min() >= low - 1e-6


class TestInverseDepthRegression:
    """Tests for inverse_depth_regression()."""

    def test_one_hot_recovers_hypothesis(self):
        inv = torch.linspace(1.0, 0.25, 4)
        depth = (1.0 / inv).view(1, 4, 1, 1).expand(1, 4, 3, 3)
        score = torch.zeros(1, 4, 3, 3)
        score[:, 2] = 1.0

        out = inverse_depth_regression(depth, score)
        assert out.shape == (1, 1, 3, 3)
        assert torch.allclose(out, depth[:, 2:3])

    def test_single_hypothesis(self):
        depth = torch.full((1, 1, 3, 3), 2.0)
        out = inverse_depth_regression(depth, torch.ones(1, 1, 3, 3))
        assert torch.equal(out, depth)


class TestEvaluation:
    """Tests for Evaluation."""

    def _inputs(self, batch_size=1, channels=16, num_src=2, num_depth=5, size=8):
        ref_feature = torch.randn(batch_size, channels, size, size)
        src_features = [
            torch.randn(batch_size, channels, size, size) for _ in range(num_src)
        ]
        ref_proj, src_projs = _projections(batch_size, num_src)
        depth = (
            torch.linspace(1.5, 3.5, num_depth)
            .view(1, num_depth, 1, 1)
            .expand(batch_size, num_depth, size, size)
        )
        grid = _evaluation_grid(batch_size, size, size)
        weight = torch.full((batch_size, num_depth, 9, size, size), 1.0 / 9)
        return ref_feature, src_features, ref_proj, src_projs, depth, grid, weight

    def test_coarsest_stage_estimates_view_weights(self):
        evaluation = Evaluation(num_groups=4, stage=3)
        depth_out, score, view_weights = evaluation(*self._inputs(batch_size=2))

        assert depth_out.shape == (2, 1, 8, 8)
        assert score.shape == (2, 5, 8, 8)
        assert view_weights.shape == (2, 2, 8, 8)
        assert not view_weights.requires_grad
        assert (view_weights > 0).all() and (view_weights < 1).all()

    def test_probability_sums_to_one(self):
        evaluation = Evaluation(num_groups=4, stage=3)
        _, score, _ = evaluation(*self._inputs())
        assert torch.allclose(score.sum(dim=1), torch.ones(1, 8, 8), atol=1e-5)
        assert (score >= 0).all()

    def test_depth_within_hypotheses(self):
        evaluation = Evaluation(num_groups=4, stage=3)
        depth_out, _, _ = evaluation(*self._inputs(), is_inverse=True)
        assert (depth_out >= 1.5 - 1e-4).all()
        assert (depth_out <= 3.5 + 1e-4).all()

    def test_given_view_weights_are_returned(self):
        evaluation = Evaluation(num_groups=4, stage=2)
        view_weights = torch.rand(1, 2, 8, 8) * 0.5 + 0.25
        _, _, out = evaluation(*self._inputs(), view_weights=view_weights)
        assert out is view_weights

    def test_finer_stage_has_no_pixelwise_net(self):
        assert Evaluation(num_groups=8, stage=2).pixelwise_net is None
        assert Evaluation(num_groups=4, stage=1).pixelwise_net is None
        assert Evaluation(num_groups=8, stage=3).pixelwise_net is not None

    def test_finer_stage_requires_view_weights(self):
        evaluation = Evaluation(num_groups=4, stage=1)
        with pytest.raises(ValueError, match="view_weights"):
            evaluation(*self._inputs())

    def test_keeps_input_dtype(self):
        """Accumulators follow the feature dtype instead of the default."""
        evaluation = Evaluation(num_groups=4, stage=3).double().eval()
        inputs = [
            [t.double() for t in x] if isinstance(x, list) else x.double()
            for x in self._inputs()
        ]
        depth_out, score, view_weights = evaluation(*inputs)

        assert depth_out.dtype == torch.float64
        assert score.dtype == torch.float64
        assert view_weights.dtype == torch.float64
