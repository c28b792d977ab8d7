"""Tests for the Network facade: structure helpers, learning, telemetry, persistence."""

import json
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from network import CHECKPOINT_FORMAT, Network
from propagation_config import create_backprop_config
from topology import NeuronKind, SynapseTag


def _small_net():
    net = Network(2, 1, seed=4)
    net.add_neuron("TANH", bias=0.2)
    net.graph.connect(0, 2, 0.5)
    net.graph.connect(1, 2, -0.25)
    net.graph.connect(2, 3, 1.5)
    net.graph.connect(0, 3, 0.1)
    return net


class TestConstruction:
    def test_defaults(self):
        net = Network()
        assert net.input_count == 1
        assert net.output_count == 1
        assert net.graph.neurons[1].squash == "IDENTITY"

    def test_unknown_output_squash(self):
        with pytest.raises(KeyError):
            Network(1, 1, "NOT_A_SQUASH")

    def test_add_neuron(self):
        net = Network(1, 1)
        n = net.add_neuron("RELU", bias=0.3)
        assert n.kind == NeuronKind.HIDDEN
        assert n.index == 1
        assert net.graph.first_output == 2

    def test_add_unknown_squash(self):
        with pytest.raises(KeyError):
            Network(1, 1).add_neuron("NOPE")

    def test_set_squash(self):
        net = _small_net()
        net.set_squash(2, "LOGISTIC")
        assert net.graph.neurons[2].squash == "LOGISTIC"
        with pytest.raises(KeyError):
            net.set_squash(2, "NOPE")


class TestFix:
    def test_connects_orphan_hidden(self):
        net = Network(2, 1, seed=1)
        h = net.add_neuron("TANH")
        net.fix()
        assert net.graph.inward_connections(h.index)
        assert net.graph.outward_connections(h.index)
        assert net.graph.inward_connections(3)

    def test_keeps_existing_connections(self):
        net = _small_net()
        keys = [s.key for s in net.graph.synapses]
        net.fix()
        assert [s.key for s in net.graph.synapses] == keys


class TestLearning:
    def test_apply_writes_and_resets(self):
        net = _small_net()
        cfg = create_backprop_config({"generations": 0, "learning_rate": 1.0})
        before = net.activate([1.0, 1.0])[0]
        net.activate_and_trace([1.0, 1.0])
        net.propagate([before + 1.0], cfg)
        assert net.get_telemetry().trained_synapses > 0

        assert net.apply_learnings(cfg)
        assert list(net.state.synapse_states()) == []
        assert net.get_telemetry().trained_neurons == 0
        assert net.activate([1.0, 1.0])[0] == pytest.approx(before + 1.0)

    def test_apply_without_evidence(self):
        net = _small_net()
        assert not net.apply_learnings()

    def test_generations_slow_learning(self):
        fast = _small_net()
        slow = _small_net()
        start = fast.activate([1.0, 0.0])[0]
        for net, gens in ((fast, 0), (slow, 20)):
            cfg = create_backprop_config({"generations": gens, "learning_rate": 1.0})
            net.activate_and_trace([1.0, 0.0])
            net.propagate([start + 2.0], cfg)
            net.apply_learnings(cfg)
        moved_fast = abs(fast.activate([1.0, 0.0])[0] - start)
        moved_slow = abs(slow.activate([1.0, 0.0])[0] - start)
        assert moved_slow < moved_fast

    def test_unused_synapses_of_extremum(self):
        net = Network(2, 1, "MINIMUM")
        net.graph.connect(0, 2, 1.0)
        net.graph.connect(1, 2, 1.0)
        assert net.unused_synapses() == [(0, 2), (1, 2)]
        net.activate_and_trace([3.0, -1.0])
        assert net.unused_synapses() == [(0, 2)]

    def test_clear_state(self):
        net = _small_net()
        net.activate_and_trace([1.0, 1.0])
        net.propagate([5.0])
        net.clear_state()
        assert list(net.state.synapse_states()) == []
        assert not net.state.activations.any()


class TestTelemetry:
    def test_counts_and_stats(self):
        net = _small_net()
        t = net.get_telemetry()
        assert t.total_neurons == 4
        assert t.hidden_neurons == 1
        assert t.total_synapses == 4
        assert t.mean_weight == pytest.approx((0.5 - 0.25 + 1.5 + 0.1) / 4)
        assert t.mean_abs_bias == pytest.approx(0.1)
        assert t.version == net.graph.version
        assert t.trained_synapses == 0

    def test_empty_network(self):
        t = Network(1, 1).get_telemetry()
        assert t.total_synapses == 0
        assert t.mean_weight == 0.0
        assert t.std_weight == 0.0


class TestPersistence:
    def test_records_round_trip(self):
        net = _small_net()
        net.graph.connect(1, 3, 0.4, tag=SynapseTag.POSITIVE)
        copy = Network.from_records(net.to_records())
        assert copy.to_records() == net.to_records()
        assert copy.activate([0.3, -0.6]) == net.activate([0.3, -0.6])

    def test_from_records_unknown_squash(self):
        data = _small_net().to_records()
        data["neurons"][0]["squash"] = "MYSTERY"
        with pytest.raises(KeyError):
            Network.from_records(data)

    def test_load_records_replaces_graph(self):
        net = _small_net()
        other = Network(2, 1)
        other.load_records(net.to_records())
        assert other.graph.neuron_count == 4
        assert other.activate([1.0, 2.0]) == net.activate([1.0, 2.0])

    def test_checkpoint_json(self, tmp_path):
        net = _small_net()
        path = str(tmp_path / "net.json")
        net.checkpoint(path)
        with open(path) as f:
            assert json.load(f)["format"] == CHECKPOINT_FORMAT

        restored = Network(2, 1)
        restored.restore(path)
        assert restored.to_records() == net.to_records()

    def test_checkpoint_msgpack(self, tmp_path):
        pytest.importorskip("msgpack")
        net = _small_net()
        path = str(tmp_path / "net.msgpack")
        net.checkpoint(path)
        restored = Network(2, 1)
        restored.restore(path)
        assert restored.activate([0.5, 0.5]) == net.activate([0.5, 0.5])

    def test_restore_rejects_unknown_format(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"format": 99, "network": {}}))
        with pytest.raises(ValueError):
            Network(1, 1).restore(str(path))
