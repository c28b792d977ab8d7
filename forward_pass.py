"""
Forward pass: computes activations in index order.

Inputs take the supplied values, constants their bias, and every other
neuron asks its activation strategy.  Neurons are evaluated strictly by
index, so a synapse from a lower index sees the current tick while a
self-loop or back-edge sees the previous one.

``activate_and_trace`` additionally records what credit assignment and
gated learning need: pre-squash values, derivatives, eligibility traces and
extended traces for gated downstream neurons.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence

from activation_base import EvaluationContext, limit_activation
from activations import resolve_strategy
from neuroprop_errors import InvalidInput
from topology import Neuron, NeuronKind, Synapse

logger = logging.getLogger("neuroprop.forward")


class ForwardPass(EvaluationContext):
    """Evaluates a graph using its stored weights and biases."""

    # -----------------------------------------------------------------------
    # Accessors
    # -----------------------------------------------------------------------

    def activation_of(self, synapse: Synapse) -> float:
        return float(self.state.activations[synapse.from_index])

    def weight_of(self, synapse: Synapse) -> float:
        return synapse.weight

    def gain_of(self, synapse: Synapse) -> float:
        if synapse.gater is None:
            return 1.0
        gain = float(self.state.activations[synapse.gater])
        self.state.synapse_activity(synapse.from_index, synapse.to_index).gain = gain
        return gain

    def bias_of(self, neuron: Neuron) -> float:
        return neuron.bias

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def activate(self, inputs: Sequence[float], feedback_loop: bool = False) -> List[float]:
        """Compute the output vector without recording traces."""
        return self._run(inputs, feedback_loop, trace=False)

    def activate_and_trace(
        self, inputs: Sequence[float], feedback_loop: bool = False
    ) -> List[float]:
        """Compute the output vector and record learning traces."""
        return self._run(inputs, feedback_loop, trace=True)

    def _check_inputs(self, inputs: Sequence[float]) -> List[float]:
        if len(inputs) != self.graph.input_count:
            raise InvalidInput(
                f"expected {self.graph.input_count} inputs, got {len(inputs)}"
            )
        values = [float(v) for v in inputs]
        for i, v in enumerate(values):
            if not math.isfinite(v):
                raise InvalidInput(f"input {i} is not finite: {v}")
        return values

    def _run(self, inputs: Sequence[float], feedback_loop: bool, trace: bool) -> List[float]:
        graph = self.graph
        values = self._check_inputs(inputs)
        self.state.sync(graph)
        self.state.begin_evaluation(graph.neuron_count, feedback_loop)

        activations = self.state.activations
        activations[: graph.input_count] = values
        for index in range(graph.input_count, graph.neuron_count):
            activations[index] = self.activate_neuron(index, trace)
        return [float(v) for v in activations[graph.first_output:]]

    # -----------------------------------------------------------------------
    # Per-neuron evaluation
    # -----------------------------------------------------------------------

    def activate_neuron(self, index: int, trace: bool = False) -> float:
        """Activation of one non-input neuron for the current tick."""
        neuron = self.graph.neurons[index]
        activity = self.state.activity(index)
        activity.old = float(self.state.activations[index])
        if neuron.kind == NeuronKind.CONSTANT:
            return neuron.bias

        strategy = resolve_strategy(neuron)
        if trace:
            raw = strategy.activate_and_trace(self, neuron)
        else:
            raw = strategy.activate(self, neuron)

        activation = limit_activation(raw)
        if activation != raw:
            logger.debug("Clamped activation of neuron %d from %r", index, raw)
        strategy.range.validate(activation)

        if trace:
            self._record_traces(neuron)
        return activation

    def _record_traces(self, neuron: Neuron) -> None:
        index = neuron.index
        graph = self.graph
        state = self.state

        self_conn = graph.self_connection(index)
        if self_conn is not None:
            decay = self.gain_of(self_conn) * self_conn.weight
        else:
            decay = 0.0

        inward = [s for s in graph.inward_connections(index) if not s.is_self_loop]
        for syn in inward:
            trace = state.synapse_activity(syn.from_index, syn.to_index)
            trace.eligibility = limit_activation(
                decay * trace.eligibility + self.activation_of(syn) * self.gain_of(syn)
            )

        gated = graph.gated_connections(index)
        if not gated:
            return

        influences: Dict[int, float] = {}
        for g in gated:
            if g.is_self_loop:
                contribution = state.activity(g.to_index).old
            else:
                contribution = g.weight * self.activation_of(g)
            influences[g.to_index] = influences.get(g.to_index, 0.0) + contribution

        derivative = state.activity(index).derivative
        for syn in inward:
            trace = state.synapse_activity(syn.from_index, syn.to_index)
            for target, influence in influences.items():
                target_self = graph.self_connection(target)
                target_decay = (
                    self.gain_of(target_self) * target_self.weight
                    if target_self is not None else 0.0
                )
                trace.extended[target] = limit_activation(
                    target_decay * trace.extended.get(target, 0.0)
                    + derivative * trace.eligibility * influence
                )
