"""
Credit Assignment Pass — recursive target propagation.

Given the traces of the last ``activate_and_trace`` and a desired output
vector, every output neuron is asked to move toward its target.  A neuron
converts the target into value space with its strategy's inverse, splits
the error evenly over its inward synapses, asks each non-fixed source to
move toward the activation that would absorb its share, and records weight
and bias evidence for whatever it could actually achieve.

Nothing in the graph changes here.  The pass only fills the persistent
accumulators of the ``NetworkState``; ``Network.apply_learnings`` writes the
adjusted values back.

Values read through this context are *adjusted*: they already include the
evidence gathered so far in the batch.  Adjusted activations are memoized
per ``propagate`` call and dropped whenever a neuron's achieved activation
moves away from the cached one.  They are filled in ascending index order,
so a deep network does not deepen the call stack on that side.

Every contribution, target and running sum is clamped to a finite value
before it reaches the accumulators.

Back-edges (source index at or after the target) carry the source's
previous-tick activation.  Their weights learn like any other synapse but
they are never recursed into; self-loops are skipped entirely.
"""

from __future__ import annotations

import contextlib
import logging
import math
import sys
from typing import Iterator, List, Optional, Sequence

import numpy as np

from activation_base import (
    ActivationStrategy,
    EvaluationContext,
    limit_activation,
    limit_value,
)
from activations import resolve_strategy
from neuroprop_errors import InvalidInput, NonFinite
from network_state import NetworkState
from propagation_config import BackPropagationConfig
from topology import Neuron, NeuronKind, Synapse, TopologyGraph
from weight_bias import (
    accumulate_bias,
    accumulate_weight,
    adjusted_bias,
    adjusted_weight,
    hold_bias,
)

logger = logging.getLogger("neuroprop.credit")

# Stack frames one level of target propagation can take, and the frames
# reserved for the caller.
FRAMES_PER_NEURON = 6
BASE_FRAMES = 1000


@contextlib.contextmanager
def recursion_headroom(frames: int) -> Iterator[None]:
    """Raise the interpreter recursion limit to at least ``frames`` for a block."""
    limit = sys.getrecursionlimit()
    if frames <= limit:
        yield
        return
    sys.setrecursionlimit(frames)
    try:
        yield
    finally:
        sys.setrecursionlimit(limit)


class CreditAssignmentPass(EvaluationContext):
    """Propagates target activations back through a traced network.

    Args:
        graph: Topology to adjust.
        state: State holding the traces of the last forward pass.
        rng: numpy ``Generator`` used to shuffle visit order.
    """

    def __init__(
        self,
        graph: TopologyGraph,
        state: NetworkState,
        rng: Optional[np.random.Generator] = None,
    ):
        super().__init__(graph, state)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.config = BackPropagationConfig()

    # -----------------------------------------------------------------------
    # Accessors (adjusted values)
    # -----------------------------------------------------------------------

    def activation_of(self, synapse: Synapse) -> float:
        if synapse.is_back_edge:
            return self.state.activity(synapse.from_index).old
        return self.adjusted_activation(synapse.from_index)

    def weight_of(self, synapse: Synapse) -> float:
        return adjusted_weight(
            synapse,
            self.state.synapse(synapse.from_index, synapse.to_index),
            self.config,
        )

    def gain_of(self, synapse: Synapse) -> float:
        if synapse.gater is None:
            return 1.0
        return self.state.synapse_activity(synapse.from_index, synapse.to_index).gain

    def bias_of(self, neuron: Neuron) -> float:
        return adjusted_bias(neuron, self.state.neuron(neuron.index), self.config)

    def adjusted_activation(self, index: int) -> float:
        """Activation of ``index`` under the adjusted weights and biases."""
        cache = self.state.adjusted_cache
        if index in cache:
            return cache[index]
        for pending in self.uncached_predecessors(index):
            cache[pending] = self._compute_adjusted(pending)
        return cache[index]

    def uncached_predecessors(self, index: int) -> List[int]:
        """``index`` and its forward predecessors missing from the cache, ascending.

        Forward edges run from a lower to a higher index, so computing the
        result in order finds every source already cached.
        """
        cache = self.state.adjusted_cache
        pending = {index}
        stack = [index]
        while stack:
            current = stack.pop()
            for syn in self.graph.inward_connections(current):
                source = syn.from_index
                if syn.is_back_edge or source in cache or source in pending:
                    continue
                pending.add(source)
                stack.append(source)
        return sorted(pending)

    def _compute_adjusted(self, index: int) -> float:
        neuron = self.graph.neurons[index]
        if neuron.kind == NeuronKind.INPUT:
            return float(self.state.activations[index])
        if neuron.kind == NeuronKind.CONSTANT:
            return neuron.bias
        return limit_activation(resolve_strategy(neuron).activate(self, neuron))

    def visit_order(self, count: int) -> List[int]:
        """Indices ``0..count-1``, shuffled unless random samples are disabled."""
        if self.config.disable_random_samples:
            return list(range(count))
        return self.rng.permutation(count).tolist()

    def to_value(
        self,
        neuron: Neuron,
        strategy: ActivationStrategy,
        activation: float,
        hint: Optional[float] = None,
    ) -> float:
        """Pre-activation value that produces ``activation``.

        Raises:
            NonFinite: The inverse is undefined at ``activation``.
        """
        if neuron.fixed_activation:
            return activation
        value = strategy.inverse(activation, hint)
        if not math.isfinite(value):
            raise NonFinite(
                f"{strategy.NAME} has no inverse at {activation}", value
            )
        return limit_value(value)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def propagate(
        self, expected: Sequence[float], config: BackPropagationConfig
    ) -> List[float]:
        """Propagate ``expected`` outputs; return the achieved outputs."""
        graph = self.graph
        if len(expected) != graph.output_count:
            raise InvalidInput(
                f"expected {graph.output_count} target values, got {len(expected)}"
            )
        targets = [float(v) for v in expected]
        for i, v in enumerate(targets):
            if not math.isfinite(v):
                raise InvalidInput(f"target {i} is not finite: {v}")

        self.config = config
        self.state.sync(graph)
        self.state.adjusted_cache.clear()

        achieved = [0.0] * graph.output_count
        first_output = graph.first_output
        frames = BASE_FRAMES + FRAMES_PER_NEURON * graph.neuron_count
        with recursion_headroom(frames):
            for k in self.visit_order(graph.output_count):
                achieved[k] = self.propagate_neuron(first_output + k, targets[k], config)
        return achieved

    def propagate_neuron(
        self, index: int, requested: float, config: BackPropagationConfig
    ) -> float:
        """Move neuron ``index`` toward ``requested``; return what was achieved."""
        neuron = self.graph.neurons[index]
        if neuron.fixed_activation:
            return self.adjusted_activation(index)

        strategy = resolve_strategy(neuron)
        activation = self.adjusted_activation(index)
        target = strategy.range.limit(requested)
        plank = config.plank_constant
        if abs(activation - target) < plank:
            target = activation

        if strategy.NAME in config.exclude_squash or abs(target - activation) < plank:
            self.no_change_propagate(index, activation, config)
            return target

        result = limit_activation(strategy.propagate(self, neuron, target, config))
        strategy.range.validate(result)

        if abs(result - activation) > plank:
            self.state.neuron(index).trace_activation(result)
            self.state.adjusted_cache.pop(index, None)
            return result
        return activation

    def no_change_propagate(
        self, index: int, activation: float, config: BackPropagationConfig
    ) -> None:
        """Refresh the accumulators of ``index`` and its predecessors.

        Records a zero bias change so batch averages keep counting this
        sample, then recurses into non-fixed forward predecessors that have
        not been refreshed in this evaluation.
        """
        activity = self.state.activity(index)
        if activity.no_change:
            return
        activity.no_change = True

        for syn in self.graph.inward_connections(index):
            if syn.is_back_edge:
                continue
            source = self.graph.neurons[syn.from_index]
            if source.fixed_activation:
                continue
            if not self.state.activity(syn.from_index).no_change:
                self.no_change_propagate(
                    syn.from_index, self.adjusted_activation(syn.from_index), config
                )

        neuron_state = self.state.neuron(index)
        hold_bias(neuron_state, self.graph.neurons[index].bias)
        neuron_state.trace_activation(activation)

    # -----------------------------------------------------------------------
    # Building blocks for strategy credit rules
    # -----------------------------------------------------------------------

    def propagate_weighted_sum(
        self,
        neuron: Neuron,
        strategy: ActivationStrategy,
        target: float,
        config: BackPropagationConfig,
    ) -> float:
        """Generic credit rule for a squash over a weighted input sum."""
        index = neuron.index
        activation = self.adjusted_activation(index)
        hint = self.state.activity(index).state

        try:
            target_value = self.to_value(neuron, strategy, target, hint)
        except NonFinite:
            logger.debug("No inverse for target %r on neuron %d", target, index)
            target_value = target
        try:
            current_value = self.to_value(neuron, strategy, activation, hint)
        except NonFinite:
            current_value = activation
        error = limit_activation(target_value - current_value)

        current_bias = self.bias_of(neuron)
        improved_value = current_bias
        inward = self.graph.inward_connections(index)
        if inward:
            share = error / len(inward)
            for position in self.visit_order(len(inward)):
                syn = inward[position]
                from_value = limit_activation(
                    self.activation_of(syn) * self.weight_of(syn) * self.gain_of(syn)
                )
                if syn.is_self_loop:
                    improved_value = limit_activation(improved_value + from_value)
                    continue
                improved_value = limit_activation(
                    improved_value
                    + self.propagate_connection(syn, from_value + share, config)
                )

        value = self.settle_bias(neuron, target_value, improved_value, current_bias, config)
        return strategy.squash(value)

    def propagate_connection(
        self, synapse: Synapse, target_from_value: float, config: BackPropagationConfig
    ) -> float:
        """Push ``target_from_value`` through one synapse.

        Recurses into the source when it is computed and reached by a forward
        edge, records weight evidence for the achieved source activation, and
        returns the contribution the synapse now makes to its target.  A
        synapse whose signal or weight is below the plank constant
        contributes nothing.
        """
        target_from_value = limit_activation(target_from_value)
        source = self.graph.neurons[synapse.from_index]
        from_activation = self.activation_of(synapse)
        from_weight = self.weight_of(synapse)
        gain = self.gain_of(synapse)
        effective_weight = from_weight * gain

        improved_activation = from_activation
        if (
            effective_weight != 0
            and not source.fixed_activation
            and not synapse.is_back_edge
        ):
            improved_activation = self.propagate_neuron(
                synapse.from_index,
                limit_activation(target_from_value / effective_weight),
                config,
            )

        signal = limit_activation(improved_activation * gain)
        plank = config.plank_constant
        if abs(signal) > plank and abs(from_weight) > plank:
            synapse_state = self.state.synapse(synapse.from_index, synapse.to_index)
            accumulate_weight(synapse.weight, synapse_state, target_from_value, signal, config)
            return limit_activation(signal * self.weight_of(synapse))
        return 0.0

    def refresh_source(self, synapse: Synapse, config: BackPropagationConfig) -> None:
        """Keep the source of an unused synapse counting in its batch."""
        if synapse.is_back_edge:
            return
        if self.graph.neurons[synapse.from_index].fixed_activation:
            return
        self.no_change_propagate(
            synapse.from_index, self.adjusted_activation(synapse.from_index), config
        )

    def settle_bias(
        self,
        neuron: Neuron,
        target_value: float,
        improved_value: float,
        current_bias: float,
        config: BackPropagationConfig,
    ) -> float:
        """Record bias evidence and return the value under the adjusted bias."""
        target_value = limit_activation(target_value)
        improved_value = limit_activation(improved_value)
        accumulate_bias(
            self.state.neuron(neuron.index),
            target_value,
            improved_value,
            current_bias,
            config,
        )
        return limit_activation(improved_value + self.bias_of(neuron) - current_bias)
