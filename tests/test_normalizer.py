"""
Tests for State Normalization

Checks output bounds, the default-to-adaptive switch and non-finite
handling for every feature family.
"""

import logging
import math
import random

import pytest

from greensched.config import NormalizerConfig
from greensched.normalizer import FeatureStat, StateNormalizer, sanitize_vector


@pytest.fixture
def normalizer():
    return StateNormalizer()


def _warm(normalizer, method, values):
    for value in values:
        method(value)


class TestFeatureStat:
    """Test Welford statistics."""

    def test_mean_and_std(self):
        stat = FeatureStat()
        for value in [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]:
            stat.update(value)
        assert stat.count == 8
        assert stat.mean == pytest.approx(5.0)
        assert stat.variance == pytest.approx(32.0 / 7.0)
        assert stat.min == 2.0
        assert stat.max == 9.0

    def test_single_sample_has_zero_variance(self):
        stat = FeatureStat()
        stat.update(3.0)
        assert stat.std == 0.0


class TestBounds:
    """Every family stays within its documented range."""

    def test_random_inputs_stay_bounded(self, normalizer):
        rng = random.Random(7)
        for _ in range(500):
            big = rng.uniform(-1e9, 1e9)
            pos = abs(big)
            assert -1.0 <= normalizer.normalize_green_surplus(big) <= 1.0
            assert -1.0 <= normalizer.normalize_green_stock(pos) <= 1.0
            assert 0.0 <= normalizer.normalize_cpu_utilization(rng.uniform(-2, 2)) <= 1.0
            assert -1.0 <= normalizer.normalize_time(pos) <= 1.0
            assert 0.0 <= normalizer.normalize_mips(pos) <= 1.0
            assert 0.0 <= normalizer.normalize_cpu_requirement(pos) <= 1.0
            assert 0.0 <= normalizer.normalize_mem_requirement(pos) <= 1.0
            assert 0.0 <= normalizer.normalize_queue_length(rng.randint(0, 1000)) <= 1.0

    def test_stock_zero_maps_to_zero_before_adaptive(self, normalizer):
        """Sigmoid default: stock 0 sits in the middle of [-1, 1]."""
        assert normalizer.normalize_green_stock(0.0) == pytest.approx(0.0)

    def test_ratio_is_clipped(self, normalizer):
        assert normalizer.normalize_cpu_utilization(1.7) == 1.0
        assert normalizer.normalize_cpu_utilization(-0.2) == 0.0
        assert normalizer.normalize_ratio(0.25) == 0.25


class TestNonFinite:
    """NaN and infinity never leak into a state vector."""

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf"), "abc", None])
    def test_non_finite_inputs(self, normalizer, bad, caplog):
        with caplog.at_level(logging.ERROR):
            assert normalizer.normalize_green_surplus(bad) == 0.0
            assert normalizer.normalize_green_stock(bad) == 0.0
            assert normalizer.normalize_cpu_utilization(bad) == 0.0
            assert normalizer.normalize_time(bad) == 0.0
            assert normalizer.normalize_mips(bad) == 0.0
            assert normalizer.normalize_queue_length(bad) == 0.0
        assert "using 0.0" in caplog.text

    def test_non_finite_not_observed(self, normalizer):
        normalizer.normalize_green_surplus(float("nan"))
        assert normalizer.feature_stat("green_surplus") is None

    def test_sanitize_vector(self, caplog):
        with caplog.at_level(logging.ERROR):
            clean = sanitize_vector([1.0, float("nan"), 2.0, float("inf")])
        assert clean == [1.0, 0.0, 2.0, 0.0]
        assert "index 1" in caplog.text
        assert "index 3" in caplog.text


class TestAdaptiveSwitch:
    """Defaults apply below min_observations, adaptive transforms after."""

    def test_surplus_default_then_adaptive(self):
        normalizer = StateNormalizer(NormalizerConfig(min_observations=10, surplus_scale_j=1000.0))

        first = normalizer.normalize_green_surplus(500.0)
        assert first == pytest.approx(math.tanh(0.5))

        _warm(normalizer, normalizer.normalize_green_surplus, [0.0, 1000.0] * 5)
        stat = normalizer.feature_stat("green_surplus")
        assert stat.count == 11

        value = normalizer.normalize_green_surplus(stat.mean)
        # Value at the running mean maps close to zero once adaptive
        assert abs(value) < 0.1

    def test_constant_surplus_stays_on_default(self):
        """Zero spread keeps the default transform."""
        normalizer = StateNormalizer(NormalizerConfig(min_observations=5, surplus_scale_j=100.0))
        _warm(normalizer, normalizer.normalize_green_surplus, [50.0] * 10)
        assert normalizer.normalize_green_surplus(50.0) == pytest.approx(math.tanh(0.5))

    def test_stock_min_max_after_warmup(self):
        normalizer = StateNormalizer(NormalizerConfig(min_observations=3))
        _warm(normalizer, normalizer.normalize_green_stock, [0.0, 50.0, 100.0])

        assert normalizer.normalize_green_stock(100.0) == pytest.approx(1.0, abs=1e-6)
        assert normalizer.normalize_green_stock(0.0) == pytest.approx(-1.0)
        assert normalizer.normalize_green_stock(50.0) == pytest.approx(0.0, abs=1e-6)

    def test_mips_relative_to_max(self):
        normalizer = StateNormalizer(NormalizerConfig(min_observations=2, mips_scale=10.0))
        assert normalizer.normalize_mips(5.0) == pytest.approx(0.5)
        normalizer.normalize_mips(2000.0)
        assert normalizer.normalize_mips(1000.0) == pytest.approx(0.5)

    def test_queue_length_adaptive(self):
        normalizer = StateNormalizer(NormalizerConfig(min_observations=2, queue_length_scale=10.0))
        assert normalizer.normalize_queue_length(5) == pytest.approx(0.5)
        normalizer.normalize_queue_length(5)
        # mean of (5, 5, 4) observations is 14/3
        value = normalizer.normalize_queue_length(4)
        assert value == pytest.approx(1.0 - math.exp(-4.0 / (14.0 / 3.0 + 1.0)))

    def test_features_tracked_independently(self, normalizer):
        normalizer.normalize_green_surplus(10.0, feature="dc0.surplus")
        normalizer.normalize_green_surplus(20.0, feature="dc1.surplus")
        stats = normalizer.statistics()
        assert stats["dc0.surplus"]["mean"] == 10.0
        assert stats["dc1.surplus"]["mean"] == 20.0


class TestTimeEncoding:
    """Cyclical time feature."""

    def test_quarter_period(self, normalizer):
        assert normalizer.normalize_time(900.0) == pytest.approx(1.0)

    def test_wraps_every_period(self, normalizer):
        assert normalizer.normalize_time(3600.0 * 5 + 900.0) == pytest.approx(1.0)
        assert normalizer.normalize_time(3600.0) == pytest.approx(0.0, abs=1e-9)


class TestValidation:
    def test_rejects_bad_config(self):
        with pytest.raises(ValueError):
            StateNormalizer(NormalizerConfig(min_observations=0))
        with pytest.raises(ValueError):
            StateNormalizer(NormalizerConfig(time_period_s=0.0))
