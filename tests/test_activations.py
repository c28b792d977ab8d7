"""Tests for the elementary squash catalog, ranges and the strategy registry."""

import math
import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from activation_base import (
    MAX_ACTIVATION,
    ActivationRange,
    limit_activation,
    limit_value,
)
from activations import (
    ACTIVATION_NAMES,
    AGGREGATE_NAMES,
    ELEMENTARY_NAMES,
    find_activation,
    resolve_strategy,
)
from neuroprop_errors import NonFinite, RangeViolation
from topology import Neuron, NeuronKind

SAMPLE_XS = [-50.0, -5.0, -1.0, -0.3, 0.0, 0.3, 1.0, 5.0, 50.0]
# Seeded sweep plus a fine grid around the origin.
DENSE_XS = (
    np.random.default_rng(5).uniform(-20.0, 20.0, size=200).tolist()
    + np.linspace(-3.0, 3.0, 61).tolist()
)
ALL_XS = SAMPLE_XS + DENSE_XS
# Squashes whose image is a finite set of levels.
DISCRETE = {"STEP", "BIPOLAR"}


class TestRegistry:
    def test_catalog_sizes(self):
        assert len(ELEMENTARY_NAMES) == 28
        assert len(AGGREGATE_NAMES) == 7
        assert set(ACTIVATION_NAMES) == set(ELEMENTARY_NAMES) | set(AGGREGATE_NAMES)

    def test_names_unique(self):
        assert len(set(ACTIVATION_NAMES)) == len(ACTIVATION_NAMES)

    def test_find(self):
        assert find_activation("TANH").name() == "TANH"
        assert find_activation("MAXIMUM").aggregate

    def test_unknown_name(self):
        with pytest.raises(KeyError, match="Unknown activation strategy"):
            find_activation("NOPE")

    def test_resolve_caches_and_follows_squash(self):
        n = Neuron(index=3, kind=NeuronKind.HIDDEN, squash="TANH")
        first = resolve_strategy(n)
        assert n.strategy_cache is first
        assert resolve_strategy(n) is first
        n.squash = "RELU"
        assert resolve_strategy(n).NAME == "RELU"


class TestSquashes:
    @pytest.mark.parametrize("name", ELEMENTARY_NAMES)
    def test_inverse_reproduces_squash(self, name):
        strategy = find_activation(name)
        for x in ALL_XS:
            a = strategy.squash(x)
            restored = strategy.squash(strategy.inverse(a))
            assert restored == pytest.approx(a, abs=1e-9, rel=1e-6), (name, x)

    @pytest.mark.parametrize("name", ELEMENTARY_NAMES)
    def test_inverse_with_hint(self, name):
        strategy = find_activation(name)
        for x in ALL_XS:
            a = strategy.squash(x)
            restored = strategy.squash(strategy.inverse(a, x))
            assert restored == pytest.approx(a, abs=1e-9, rel=1e-6), (name, x)

    @pytest.mark.parametrize("name", ELEMENTARY_NAMES)
    def test_squash_stays_in_range(self, name):
        strategy = find_activation(name)
        for x in ALL_XS:
            strategy.range.validate(limit_activation(strategy.squash(x)))

    @pytest.mark.parametrize(
        "name", ["IDENTITY", "LOGISTIC", "TANH", "SOFTSIGN", "Softplus",
                 "BIPOLAR_SIGMOID", "Exponential", "GAUSSIAN", "Cosine",
                 "LogSigmoid", "COMPLEMENT", "SELU", "Swish", "Mish", "GELU",
                 "BENT_IDENTITY", "SINUSOID", "StdInverse", "INVERSE", "ABSOLUTE"]
    )
    def test_derivative_matches_slope(self, name):
        strategy = find_activation(name)
        h = 1e-6
        for x in [-1.3, -0.2, 0.4, 2.1]:
            slope = (strategy.squash(x + h) - strategy.squash(x - h)) / (2 * h)
            assert strategy.derivative(x) == pytest.approx(slope, abs=1e-5)

    @pytest.mark.parametrize("name", ELEMENTARY_NAMES)
    def test_inverse_at_range_bounds(self, name):
        strategy = find_activation(name)
        bounds = ((strategy.range.low, 1.0), (strategy.range.high, -1.0))
        for bound, inward in bounds:
            if not math.isfinite(bound):
                continue
            activations = [bound]
            if name not in DISCRETE:
                activations.append(bound + inward * 1e-6)
            for a in activations:
                restored = strategy.squash(strategy.inverse(a))
                assert restored == pytest.approx(a, abs=1e-9), (name, a)

    @pytest.mark.parametrize("name", ["Swish", "Mish", "GELU"])
    def test_dipped_hint_picks_branch(self, name):
        strategy = find_activation(name)
        a = strategy.squash(-3.0)
        assert a < 0
        assert strategy.inverse(a, hint=-3.0) == pytest.approx(-3.0, abs=1e-9)
        near = strategy.inverse(a)
        assert strategy.X_MIN < near < 0
        assert strategy.squash(near) == pytest.approx(a, abs=1e-12)

    @pytest.mark.parametrize("name", ["Swish", "Mish", "GELU"])
    def test_dipped_minimum(self, name):
        strategy = find_activation(name)
        low = strategy.squash(strategy.X_MIN)
        for x in ALL_XS:
            assert strategy.squash(x) >= low - 1e-15
        assert strategy.inverse(low - 1.0) == strategy.X_MIN

    def test_bent_identity_inverse(self):
        bent = find_activation("BENT_IDENTITY")
        for x in [-1e6, -50.0, 0.0, 0.7, 1e6]:
            assert bent.inverse(bent.squash(x)) == pytest.approx(x, rel=1e-9, abs=1e-12)

    def test_absolute_hint_picks_sign(self):
        absolute = find_activation("ABSOLUTE")
        assert absolute.inverse(2.0, hint=-2.0) == -2.0
        assert absolute.inverse(2.0) == 2.0

    def test_std_inverse_zero(self):
        std = find_activation("StdInverse")
        assert std.squash(0.0) == 0.0
        assert std.inverse(0.0) == 0.0
        assert std.inverse(4.0) == 0.25

    def test_gaussian_hint_picks_sign(self):
        g = find_activation("GAUSSIAN")
        a = g.squash(-0.8)
        assert g.inverse(a, hint=-0.8) == pytest.approx(-0.8)
        assert g.inverse(a) == pytest.approx(0.8)

    def test_relu_keeps_negative_hint(self):
        relu = find_activation("RELU")
        assert relu.inverse(0.0, hint=-2.5) == -2.5
        assert relu.inverse(0.0) == 0.0

    def test_exponential_saturates(self):
        assert find_activation("Exponential").squash(1e6) == MAX_ACTIVATION

    def test_cosine_non_finite_is_nan(self):
        assert math.isnan(find_activation("Cosine").squash(math.inf))

    def test_softsign_infinite(self):
        assert find_activation("SOFTSIGN").squash(-math.inf) == -1.0


class TestRange:
    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_rejected(self, bad):
        with pytest.raises(RangeViolation):
            ActivationRange().validate(bad)
        with pytest.raises(RangeViolation):
            ActivationRange().validate(bad, hint=0.5)

    def test_outside_bounds(self):
        r = ActivationRange(0.0, 1.0)
        r.validate(0.0)
        r.validate(1.0)
        with pytest.raises(RangeViolation):
            r.validate(1.5)
        with pytest.raises(RangeViolation):
            r.validate(-0.1, hint=-3.0)

    def test_limit(self):
        r = ActivationRange(-1.0, 1.0)
        assert r.limit(5.0) == 1.0
        assert r.limit(-5.0) == -1.0
        assert r.limit(0.25) == 0.25
        assert ActivationRange().limit(math.inf) == MAX_ACTIVATION

    def test_limit_nan(self):
        with pytest.raises(NonFinite):
            ActivationRange().limit(math.nan)


class TestLimits:
    def test_limit_activation(self):
        assert limit_activation(math.nan) == 0.0
        assert limit_activation(math.inf) == MAX_ACTIVATION
        assert limit_activation(-math.inf) == -MAX_ACTIVATION
        assert limit_activation(3.5) == 3.5

    def test_limit_value(self):
        assert limit_value(1e20) == 1e12
        assert limit_value(-1e20) == -1e12
        assert limit_value(-7.0) == -7.0
