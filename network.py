"""
Network — the public face of the engine.

Bundles a ``TopologyGraph``, its ``NetworkState`` and the two passes that
operate on them.  The evolutionary loop drives a network through::

    net.activate_and_trace(inputs)
    net.propagate(expected, config)
    ...
    net.apply_learnings(config)

Mutation operators work on ``net.graph`` directly and call ``net.fix()``
afterwards to repair strategy requirements.  Networks persist through the
record form (``to_records`` / ``from_records``) or as JSON / msgpack
checkpoints.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

try:
    import msgpack
except ImportError:
    msgpack = None

from activations import find_activation, resolve_strategy
from credit_assignment import CreditAssignmentPass
from forward_pass import ForwardPass
from network_state import NetworkState
from propagation_config import BackPropagationConfig
from topology import Neuron, NeuronKind, TopologyGraph
from weight_bias import adjusted_bias, adjusted_weight

logger = logging.getLogger("neuroprop.network")

CHECKPOINT_FORMAT = 1


@dataclass
class NetworkTelemetry:
    """Network statistics snapshot.

    Attributes:
        version: Graph version.
        total_neurons: Number of neurons, inputs included.
        hidden_neurons: Number of hidden and constant neurons.
        total_synapses: Number of synapses.
        mean_weight: Mean synapse weight.
        std_weight: Standard deviation of synapse weights.
        mean_abs_bias: Mean absolute bias of the computed neurons.
        trained_synapses: Synapses holding weight evidence in this batch.
        trained_neurons: Neurons holding bias evidence in this batch.
    """

    version: int = 0
    total_neurons: int = 0
    hidden_neurons: int = 0
    total_synapses: int = 0
    mean_weight: float = 0.0
    std_weight: float = 0.0
    mean_abs_bias: float = 0.0
    trained_synapses: int = 0
    trained_neurons: int = 0


class Network:
    """A trainable network.

    Args:
        input_count: Number of inputs.
        output_count: Number of outputs.
        output_squash: Strategy of the initial output neurons.
        seed: Seed of the random generator used for shuffling and repairs.
        graph: Existing graph to wrap instead of building a new one.
    """

    def __init__(
        self,
        input_count: int = 1,
        output_count: int = 1,
        output_squash: str = "IDENTITY",
        seed: Optional[int] = None,
        graph: Optional[TopologyGraph] = None,
    ):
        if graph is None:
            find_activation(output_squash)
            graph = TopologyGraph(input_count, output_count, output_squash)
        self.rng = np.random.default_rng(seed)
        self._attach(graph)

    def _attach(self, graph: TopologyGraph) -> None:
        self.graph = graph
        self.state = NetworkState(graph.neuron_count)
        self.forward = ForwardPass(graph, self.state)
        self.credit = CreditAssignmentPass(graph, self.state, self.rng)

    @property
    def input_count(self) -> int:
        return self.graph.input_count

    @property
    def output_count(self) -> int:
        return self.graph.output_count

    # -----------------------------------------------------------------------
    # Structure helpers
    # -----------------------------------------------------------------------

    def add_neuron(
        self,
        squash: str = "IDENTITY",
        bias: float = 0.0,
        position: Optional[int] = None,
        constant: bool = False,
    ) -> Neuron:
        """Insert a hidden (or constant) neuron before the outputs."""
        if constant:
            return self.graph.insert_neuron(
                NeuronKind.CONSTANT, bias=bias, squash=None, position=position
            )
        find_activation(squash)
        return self.graph.insert_neuron(
            NeuronKind.HIDDEN, bias=bias, squash=squash, position=position
        )

    def set_squash(self, index: int, squash: str) -> None:
        find_activation(squash)
        self.graph.set_squash(index, squash)

    def fix(self) -> None:
        """Repair every neuron so the graph satisfies its strategies.

        Tags are cleared on synapses that do not feed an IF neuron, hidden
        neurons get at least one inward and one outward synapse, outputs at
        least one inward synapse, and each strategy repairs its own needs.
        """
        graph = self.graph
        for index in range(graph.input_count, graph.neuron_count):
            neuron = graph.neurons[index]
            if neuron.kind == NeuronKind.CONSTANT:
                continue
            strategy = resolve_strategy(neuron)
            if strategy.NAME != "IF":
                for syn in graph.inward_connections(index):
                    syn.tag = None
            strategy.fix(graph, neuron, self.rng)

            if not graph.inward_connections(index):
                graph.make_random_connection(index, self.rng)
            if neuron.kind == NeuronKind.HIDDEN and not graph.outward_connections(index):
                self._connect_random_target(index)
        graph.validate()

    def _connect_random_target(self, index: int) -> None:
        graph = self.graph
        candidates = [
            t for t in range(index + 1, graph.neuron_count)
            if not graph.neurons[t].fixed_activation
            and graph.get_synapse(index, t) is None
        ]
        if not candidates:
            return
        target = candidates[int(self.rng.integers(0, len(candidates)))]
        graph.connect(index, target, float(self.rng.uniform(-0.1, 0.1)))

    def unused_synapses(self) -> List[Tuple[int, int]]:
        """Inputs of aggregate neurons that no traced evaluation selected."""
        unused = []
        for syn in self.graph.synapses:
            target = self.graph.neurons[syn.to_index]
            if syn.is_self_loop or not resolve_strategy(target).aggregate:
                continue
            cs = self.state.peek_synapse(syn.from_index, syn.to_index)
            if cs is None or not cs.used:
                unused.append(syn.key)
        return unused

    # -----------------------------------------------------------------------
    # Evaluation and learning
    # -----------------------------------------------------------------------

    def activate(self, inputs: Sequence[float], feedback_loop: bool = False) -> List[float]:
        return self.forward.activate(inputs, feedback_loop)

    def activate_and_trace(
        self, inputs: Sequence[float], feedback_loop: bool = False
    ) -> List[float]:
        return self.forward.activate_and_trace(inputs, feedback_loop)

    def propagate(
        self,
        expected: Sequence[float],
        config: Optional[BackPropagationConfig] = None,
    ) -> List[float]:
        """Accumulate evidence toward ``expected``; see ``CreditAssignmentPass``."""
        return self.credit.propagate(expected, config or BackPropagationConfig())

    def apply_learnings(self, config: Optional[BackPropagationConfig] = None) -> bool:
        """Write adjusted weights and biases into the graph.

        Neurons are visited from the last to the first computed one.
        Persistent accumulators are reset afterwards.

        Returns:
            True if any weight or bias changed.
        """
        config = config or BackPropagationConfig()
        graph = self.graph
        self.state.sync(graph)
        changed_weights = 0
        changed_biases = 0

        for index in range(graph.neuron_count - 1, graph.input_count - 1, -1):
            neuron = graph.neurons[index]
            for syn in graph.inward_connections(index):
                cs = self.state.peek_synapse(syn.from_index, syn.to_index)
                if cs is None:
                    continue
                weight = adjusted_weight(syn, cs, config)
                if weight != syn.weight:
                    syn.weight = weight
                    changed_weights += 1
            if neuron.kind == NeuronKind.CONSTANT:
                continue
            ns = self.state.peek_neuron(index)
            if ns is None:
                continue
            bias = adjusted_bias(neuron, ns, config)
            if bias != neuron.bias:
                neuron.bias = bias
                changed_biases += 1

        self.state.reset_persistent()
        logger.info(
            "Applied learnings: %d weights, %d biases changed",
            changed_weights, changed_biases,
        )
        return bool(changed_weights or changed_biases)

    def clear_state(self) -> None:
        self.state.clear()

    # -----------------------------------------------------------------------
    # Telemetry
    # -----------------------------------------------------------------------

    def get_telemetry(self) -> NetworkTelemetry:
        graph = self.graph
        weights = [s.weight for s in graph.synapses]
        biases = [abs(n.bias) for n in graph.neurons[graph.input_count:]]
        trained_synapses = sum(1 for _, cs in self.state.synapse_states() if cs.count)
        trained_neurons = 0
        for index in range(graph.input_count, graph.neuron_count):
            ns = self.state.peek_neuron(index)
            if ns is not None and ns.count:
                trained_neurons += 1
        return NetworkTelemetry(
            version=graph.version,
            total_neurons=graph.neuron_count,
            hidden_neurons=graph.neuron_count - graph.input_count - graph.output_count,
            total_synapses=len(graph.synapses),
            mean_weight=float(np.mean(weights)) if weights else 0.0,
            std_weight=float(np.std(weights)) if weights else 0.0,
            mean_abs_bias=float(np.mean(biases)) if biases else 0.0,
            trained_synapses=trained_synapses,
            trained_neurons=trained_neurons,
        )

    # -----------------------------------------------------------------------
    # Records and checkpoints
    # -----------------------------------------------------------------------

    def to_records(self) -> Dict[str, Any]:
        return self.graph.to_records()

    @classmethod
    def from_records(cls, data: Dict[str, Any], seed: Optional[int] = None) -> "Network":
        graph = TopologyGraph.from_records(data)
        for neuron in graph.neurons:
            if neuron.squash is not None:
                find_activation(neuron.squash)
        return cls(seed=seed, graph=graph)

    def load_records(self, data: Dict[str, Any]) -> None:
        """Replace the graph in place; runtime state starts empty."""
        self._attach(Network.from_records(data).graph)

    def checkpoint(self, path: str) -> None:
        """Save the network.

        Args:
            path: File path (extension determines format: .json or .msgpack).
        """
        data = {"format": CHECKPOINT_FORMAT, "network": self.to_records()}
        if path.endswith(".msgpack"):
            if msgpack is None:
                raise ImportError("msgpack required for .msgpack serialization")
            with open(path, "wb") as f:
                msgpack.pack(data, f, use_bin_type=True)
        else:
            with open(path, "w") as f:
                json.dump(data, f, indent=2)
        logger.info("Checkpoint written to %s", path)

    def restore(self, path: str) -> None:
        """Load a network saved by ``checkpoint``."""
        if path.endswith(".msgpack"):
            if msgpack is None:
                raise ImportError("msgpack required for .msgpack deserialization")
            with open(path, "rb") as f:
                data = msgpack.unpack(f, raw=False)
        else:
            with open(path, "r") as f:
                data = json.load(f)

        if data.get("format") != CHECKPOINT_FORMAT:
            raise ValueError(f"Unsupported checkpoint format: {data.get('format')}")
        self.load_records(data["network"])
        logger.info("Checkpoint restored from %s", path)
