"""
Runtime values of one network, kept in two scopes.

Ephemeral (one evaluation): activations, previous-tick activations,
pre-squash values, derivatives, traces and no-change flags.  Cleared at the
start of every independent evaluation unless the caller asks for a feedback
loop.

Persistent (one batch): the weight and bias accumulators and the activation
bounds seen while propagating.  Cleared only when learnings are applied.

Entries are created on first access.  The state follows its graph through
``sync``: index events recorded by the graph are replayed so that entries of
removed neurons or synapses disappear and renumbered ones move.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

from topology import IndexEvent, TopologyGraph

SynapseKey = Tuple[int, int]


# ---------------------------------------------------------------------------
# Ephemeral records
# ---------------------------------------------------------------------------

@dataclass
class NeuronActivity:
    """Per-neuron values of the current evaluation.

    Attributes:
        old: Activation before the current tick.
        state: Pre-squash value recorded while tracing.
        derivative: Squash derivative at ``state``.
        error_responsibility: Reserved for chain-rule backpropagation.
        error_projected: Reserved for chain-rule backpropagation.
        error_gated: Reserved for chain-rule backpropagation.
        no_change: Credit assignment found this neuron's error negligible.
        selected_from: Source of the arg-extremal input (MINIMUM/MAXIMUM).
    """

    old: float = 0.0
    state: float = 0.0
    derivative: float = 0.0
    error_responsibility: float = 0.0
    error_projected: float = 0.0
    error_gated: float = 0.0
    no_change: bool = False
    selected_from: Optional[int] = None


@dataclass
class SynapseActivity:
    """Per-synapse traces of the current evaluation.

    Attributes:
        eligibility: Decaying trace of presynaptic activity.
        gain: Gater activation, 1.0 for ungated synapses.
        extended: Gated downstream neuron index -> influence trace.
    """

    eligibility: float = 0.0
    gain: float = 1.0
    extended: Dict[int, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Persistent records
# ---------------------------------------------------------------------------

@dataclass
class NeuronState:
    """Bias accumulators and activation bounds for one batch."""

    count: int = 0
    total_bias: float = 0.0
    total_adjusted_bias: float = 0.0
    batch_bias: Optional[float] = None
    maximum_activation: float = -math.inf
    minimum_activation: float = math.inf

    def trace_activation(self, activation: float) -> None:
        if activation > self.maximum_activation:
            self.maximum_activation = activation
        if activation < self.minimum_activation:
            self.minimum_activation = activation


@dataclass
class SynapseState:
    """Weight evidence for one batch, bucketed by the sign of the activation."""

    count: int = 0
    positive_value: float = 0.0
    positive_activation: float = 0.0
    positive_count: int = 0
    negative_value: float = 0.0
    negative_activation: float = 0.0
    negative_count: int = 0
    batch_weight: Optional[float] = None
    used: bool = False


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------

class NetworkState:
    """Ephemeral and persistent runtime state of one network."""

    def __init__(self, neuron_count: int = 0):
        self.activations = np.zeros(neuron_count, dtype=np.float64)
        self.version = 0
        self.adjusted_cache: Dict[int, float] = {}
        self._activity: Dict[int, NeuronActivity] = {}
        self._synapse_activity: Dict[SynapseKey, SynapseActivity] = {}
        self._neurons: Dict[int, NeuronState] = {}
        self._synapses: Dict[SynapseKey, SynapseState] = {}

    # -----------------------------------------------------------------------
    # Get-or-create access
    # -----------------------------------------------------------------------

    def activity(self, index: int) -> NeuronActivity:
        entry = self._activity.get(index)
        if entry is None:
            entry = self._activity[index] = NeuronActivity()
        return entry

    def synapse_activity(self, from_index: int, to_index: int) -> SynapseActivity:
        key = (from_index, to_index)
        entry = self._synapse_activity.get(key)
        if entry is None:
            entry = self._synapse_activity[key] = SynapseActivity()
        return entry

    def neuron(self, index: int) -> NeuronState:
        entry = self._neurons.get(index)
        if entry is None:
            entry = self._neurons[index] = NeuronState()
        return entry

    def synapse(self, from_index: int, to_index: int) -> SynapseState:
        key = (from_index, to_index)
        entry = self._synapses.get(key)
        if entry is None:
            entry = self._synapses[key] = SynapseState()
        return entry

    def peek_neuron(self, index: int) -> Optional[NeuronState]:
        return self._neurons.get(index)

    def peek_synapse(self, from_index: int, to_index: int) -> Optional[SynapseState]:
        return self._synapses.get((from_index, to_index))

    def synapse_states(self) -> Iterator[Tuple[SynapseKey, SynapseState]]:
        return iter(self._synapses.items())

    # -----------------------------------------------------------------------
    # Scope management
    # -----------------------------------------------------------------------

    def begin_evaluation(self, neuron_count: int, feedback_loop: bool = False) -> None:
        """Prepare for a new evaluation of ``neuron_count`` neurons."""
        if len(self.activations) != neuron_count:
            self.activations = np.zeros(neuron_count, dtype=np.float64)
            self.clear_ephemeral()
        elif not feedback_loop:
            self.clear_ephemeral()
        self.adjusted_cache.clear()

    def clear_ephemeral(self) -> None:
        self.activations[:] = 0.0
        self._activity.clear()
        self._synapse_activity.clear()
        self.adjusted_cache.clear()

    def reset_persistent(self) -> None:
        self._neurons.clear()
        self._synapses.clear()
        self.adjusted_cache.clear()

    def clear(self) -> None:
        self.clear_ephemeral()
        self.reset_persistent()

    # -----------------------------------------------------------------------
    # Graph tracking
    # -----------------------------------------------------------------------

    def sync(self, graph: TopologyGraph) -> None:
        """Follow structural changes made to ``graph`` since the last sync."""
        if self.version == graph.version and len(self.activations) == graph.neuron_count:
            return
        for event in graph.events_since(self.version):
            self._apply_event(event)
        graph.discard_events(graph.version)
        self.activations = np.zeros(graph.neuron_count, dtype=np.float64)
        self.clear_ephemeral()
        self.version = graph.version

    def _apply_event(self, event: IndexEvent) -> None:
        if event.kind == "disconnect":
            self._synapses.pop(tuple(event.args), None)
            return

        if event.kind == "remove":
            (removed,) = event.args

            def remap(i: int) -> Optional[int]:
                if i == removed:
                    return None
                return i - 1 if i > removed else i
        elif event.kind == "insert":
            (position,) = event.args

            def remap(i: int) -> Optional[int]:
                return i + 1 if i >= position else i
        else:
            raise ValueError(f"Unknown index event: {event.kind}")

        neurons: Dict[int, NeuronState] = {}
        for index, entry in self._neurons.items():
            new_index = remap(index)
            if new_index is not None:
                neurons[new_index] = entry
        self._neurons = neurons

        synapses: Dict[SynapseKey, SynapseState] = {}
        for (from_index, to_index), entry in self._synapses.items():
            new_from, new_to = remap(from_index), remap(to_index)
            if new_from is not None and new_to is not None:
                synapses[(new_from, new_to)] = entry
        self._synapses = synapses
