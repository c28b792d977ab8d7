"""Tests for target propagation through traced networks."""

import math
import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from activation_base import MAX_ACTIVATION
from network import Network
from neuroprop_errors import InvalidInput
from propagation_config import BackPropagationConfig, create_backprop_config
from topology import SynapseTag

FAST = {"generations": 0, "learning_rate": 1.0}


def _skip_net():
    """Hidden neuron fed by a zero-weight synapse, shared by two outputs."""
    return Network.from_records({
        "input": 3,
        "output": 2,
        "neurons": [
            {"index": 3, "type": "hidden", "squash": "IDENTITY", "bias": 0.0},
            {"index": 4, "type": "output", "squash": "IDENTITY", "bias": 1.0},
            {"index": 5, "type": "output", "squash": "IDENTITY", "bias": 0.0},
        ],
        "synapses": [
            {"from": 0, "to": 3, "weight": -1.0},
            {"from": 1, "to": 3, "weight": 0.0},
            {"from": 3, "to": 4, "weight": 1.0},
            {"from": 2, "to": 5, "weight": 1.0},
            {"from": 3, "to": 5, "weight": 1.0},
        ],
    }, seed=0)


def _mixed_net(seed=7):
    """3 inputs, five hidden neurons of mixed strategies, 2 outputs, dense forward edges."""
    rng = np.random.default_rng(seed)
    net = Network(3, 2, seed=seed)
    for squash in ("TANH", "LOGISTIC", "MAXIMUM", "SOFTSIGN", "MEAN"):
        net.add_neuron(squash, bias=float(rng.uniform(-0.5, 0.5)))
    g = net.graph
    for to_index in range(g.input_count, g.neuron_count):
        for from_index in range(min(to_index, g.first_output)):
            g.connect(from_index, to_index, float(rng.uniform(-1.0, 1.0)))
    return net


class TestNoChange:
    def test_skip_count(self):
        net = _skip_net()
        cfg = create_backprop_config(FAST)
        expected = net.activate_and_trace([1.0, 2.0, 3.0])
        achieved = net.propagate(expected, cfg)
        assert achieved == pytest.approx(expected, abs=1e-7)
        assert net.state.synapse(0, 3).count == 0
        assert net.state.synapse(1, 3).count == 0

    def test_fixed_point_over_random_samples(self):
        net = _skip_net()
        cfg = create_backprop_config(FAST)
        rng = np.random.default_rng(12)
        for _ in range(1000):
            inputs = rng.uniform(-10.0, 10.0, size=3).tolist()
            captured = net.activate(inputs)
            net.activate_and_trace(inputs)
            net.propagate(captured, cfg)
            assert net.activate(inputs) == pytest.approx(captured, abs=1e-6)
        net.apply_learnings(cfg)
        inputs = [0.25, -4.0, 7.5]
        assert net.activate(inputs) == pytest.approx([-0.25 + 1.0, -0.25 + 7.5], abs=1e-6)

    def test_fixed_point_mixed_strategies(self):
        net = _mixed_net()
        cfg = create_backprop_config(FAST)
        rng = np.random.default_rng(3)
        samples = []
        for _ in range(1000):
            inputs = rng.uniform(-1.0, 1.0, size=3).tolist()
            expected = net.activate_and_trace(inputs)
            achieved = net.propagate(expected, cfg)
            assert achieved == pytest.approx(expected, abs=1e-12)
            samples.append((inputs, expected))

        assert all(s.count == 0 for _, s in net.state.synapse_states())
        assert net.state.neuron(3).count == 1000

        biases = [n.bias for n in net.graph.neurons]
        weights = [s.weight for s in net.graph.synapses]
        assert not net.apply_learnings(cfg)
        assert [n.bias for n in net.graph.neurons] == biases
        assert [s.weight for s in net.graph.synapses] == weights
        for inputs, expected in samples[:50]:
            assert net.activate(inputs) == pytest.approx(expected, abs=1e-6)

    def test_zero_weight_synapse_not_counted(self):
        net = _skip_net()
        cfg = create_backprop_config(FAST)
        assert net.activate_and_trace([1.0, 2.0, 3.0]) == [0.0, 2.0]
        net.propagate([1.0, 2.0], cfg)
        assert net.state.synapse(0, 3).count >= 1
        assert net.state.synapse(1, 3).count == 0

    def test_sub_plank_signal_contributes_nothing(self):
        net = Network(1, 1)
        net.graph.connect(0, 1, 1e6)
        cfg = create_backprop_config(FAST)
        assert net.activate_and_trace([1e-9]) == [pytest.approx(1e-3)]
        net.propagate([1.0], cfg)
        assert net.state.synapse(0, 1).count == 0
        # The whole target lands on the bias, not target minus 1e-3.
        assert net.state.neuron(1).total_bias == pytest.approx(1.0)

    def test_excluded_squash_untouched(self):
        net = Network(1, 1, "TANH")
        net.graph.connect(0, 1, 0.5)
        cfg = create_backprop_config(dict(FAST, exclude_squash=["TANH"]))
        net.activate_and_trace([1.0])
        net.propagate([0.9], cfg)
        assert net.state.synapse(0, 1).count == 0
        assert net.state.neuron(1).count == 1
        net.apply_learnings(cfg)
        assert net.graph.get_synapse(0, 1).weight == 0.5


class TestReachTarget:
    def test_single_neuron(self):
        net = Network(2, 1)
        net.graph.connect(0, 2, 0.3)
        net.graph.connect(1, 2, -0.7)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0, 0.5])
        achieved = net.propagate([2.0], cfg)
        assert achieved == [pytest.approx(2.0)]
        assert net.apply_learnings(cfg)
        assert net.activate([1.0, 0.5]) == [pytest.approx(2.0)]

    def test_chain(self):
        net = Network(1, 1)
        net.add_neuron("IDENTITY", bias=0.1)
        net.graph.connect(0, 1, 0.8)
        net.graph.connect(1, 2, 1.5)
        net.graph.set_bias(2, -0.2)
        cfg = create_backprop_config(FAST)

        assert net.activate_and_trace([0.5]) == [pytest.approx(0.55)]
        assert net.propagate([1.0], cfg) == [pytest.approx(1.0)]
        net.apply_learnings(cfg)
        assert net.activate([0.5]) == [pytest.approx(1.0)]
        assert net.graph.get_synapse(1, 2).weight == 1.5

    def test_squashed_output(self):
        net = Network(1, 1, "TANH")
        net.graph.connect(0, 1, 0.2)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0])
        net.propagate([0.6], cfg)
        net.apply_learnings(cfg)
        assert net.activate([1.0]) == [pytest.approx(0.6)]

    def test_weights_only(self):
        net = Network(1, 1)
        net.graph.connect(0, 1, 0.5)
        cfg = create_backprop_config(dict(FAST, disable_weight_adjustment=True))
        net.activate_and_trace([1.0])
        net.propagate([2.0], cfg)
        net.apply_learnings(cfg)
        assert net.graph.get_synapse(0, 1).weight == 0.5
        assert net.graph.neurons[1].bias == pytest.approx(1.5)
        assert net.activate([1.0]) == [pytest.approx(2.0)]

    def test_target_outside_range_is_limited(self):
        net = Network(1, 1, "LOGISTIC")
        net.graph.connect(0, 1, 0.1)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0])
        achieved = net.propagate([5.0], cfg)
        assert 0.0 <= achieved[0] <= 1.0


class TestAggregateCredit:
    def test_maximum_routes_through_selected_input(self):
        net = Network(2, 1, "MAXIMUM")
        net.graph.connect(0, 2, 1.0)
        net.graph.connect(1, 2, 1.0)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([2.0, 1.0])
        assert net.propagate([3.0], cfg) == [pytest.approx(3.0)]
        assert net.state.synapse(0, 2).count == 1
        assert net.state.synapse(1, 2).count == 0

    def test_if_routes_through_active_branch(self):
        net = Network(3, 1, "IF")
        net.graph.connect(0, 3, 1.0, tag=SynapseTag.CONDITION)
        net.graph.connect(1, 3, 1.0, tag=SynapseTag.POSITIVE)
        net.graph.connect(2, 3, 1.0, tag=SynapseTag.NEGATIVE)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0, 2.0, 5.0])
        assert net.propagate([4.0], cfg) == [pytest.approx(4.0)]
        assert net.state.synapse(1, 3).count == 1
        assert net.state.synapse(0, 3).count == 0
        assert net.state.synapse(2, 3).count == 0

    def test_mean_keeps_activation(self):
        net = Network(2, 1, "MEAN")
        net.graph.connect(0, 2, 1.0)
        net.graph.connect(1, 2, 1.0)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0, 3.0])
        assert net.propagate([5.0], cfg) == [2.0]
        assert net.state.neuron(2).count == 1
        assert net.state.synapse(0, 2).count == 0


class TestRecurrentCredit:
    def test_back_edge_learns_without_recursion(self):
        net = Network(1, 1)
        net.add_neuron("IDENTITY")
        net.graph.connect(0, 1, 1.0)
        net.graph.connect(1, 2, 1.0)
        net.graph.connect(2, 1, 0.5)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0], feedback_loop=True)
        assert net.activate_and_trace([1.0], feedback_loop=True) == [1.5]
        achieved = net.propagate([3.0], cfg)
        assert math.isfinite(achieved[0])
        assert net.state.synapse(2, 1).count == 1
        assert net.state.synapse(0, 1).count == 1

    def test_self_loop_not_split(self):
        net = Network(1, 1)
        net.graph.connect(0, 1, 1.0)
        net.graph.connect(1, 1, 0.5)
        cfg = create_backprop_config(FAST)
        net.activate_and_trace([1.0], feedback_loop=True)
        net.activate_and_trace([1.0], feedback_loop=True)
        net.propagate([4.0], cfg)
        assert net.state.synapse(0, 1).count == 1
        assert net.state.synapse(1, 1).count == 0


class TestNumericLimits:
    def test_saturated_hidden_neuron(self):
        net = Network(1, 1)
        hidden = net.add_neuron("Exponential")
        net.graph.connect(0, hidden.index, 1.0)
        net.graph.connect(hidden.index, 2, 2.0)
        cfg = BackPropagationConfig()
        assert net.activate_and_trace([710.0]) == [MAX_ACTIVATION]
        achieved = net.propagate([0.0], cfg)
        assert math.isfinite(achieved[0])
        net.apply_learnings(cfg)
        assert all(math.isfinite(s.weight) for s in net.graph.synapses)
        assert all(math.isfinite(n.bias) for n in net.graph.neurons)

    def test_huge_input_on_large_weight(self):
        net = Network(1, 1)
        net.graph.connect(0, 1, 10.0)
        cfg = BackPropagationConfig()
        assert net.activate_and_trace([1e308]) == [MAX_ACTIVATION]
        achieved = net.propagate([1.0], cfg)
        assert math.isfinite(achieved[0])
        state = net.state.synapse(0, 1)
        assert math.isfinite(state.positive_value)
        assert math.isfinite(net.state.neuron(1).total_bias)

    def test_deep_chain(self):
        depth = 300
        net = Network(1, 1)
        for _ in range(depth):
            net.add_neuron("IDENTITY")
        for i in range(depth + 1):
            net.graph.connect(i, i + 1, 1.0)
        cfg = create_backprop_config(FAST)
        limit = sys.getrecursionlimit()

        assert net.activate_and_trace([0.5]) == [pytest.approx(0.5)]
        assert net.propagate([0.7], cfg) == [pytest.approx(0.7)]
        assert sys.getrecursionlimit() == limit
        net.apply_learnings(cfg)
        assert net.activate([0.5]) == [pytest.approx(0.7)]


class TestValidation:
    def test_wrong_target_count(self):
        net = Network(1, 2)
        net.activate_and_trace([1.0])
        with pytest.raises(InvalidInput):
            net.propagate([1.0])

    def test_non_finite_target(self):
        net = Network(1, 1)
        net.activate_and_trace([1.0])
        with pytest.raises(InvalidInput):
            net.propagate([math.inf])
