"""
Aggregate activation strategies.

Aggregates combine their weighted inputs without a squash, so activations
are already in value space.  Self-loops are ignored (and removed by
``fix``) except by SUM, which behaves like an identity-squashed weighted
sum and reuses the generic credit rule.

Credit rules:
    SUM                  generic weighted-sum rule
    MAXIMUM / MINIMUM    all error routed through the extremal input
    IF                   error split over the active branch only
    MEAN, HYPOT, HYPOTv2 accumulators refreshed, activation kept
"""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

from activation_base import ActivationRange, AggregateActivation, limit_activation
from neuroprop_errors import MissingEdgeKind
from topology import Synapse, SynapseTag


class SumAggregate(AggregateActivation):
    NAME = "SUM"
    PREFERRED_INPUTS = 0

    def squash(self, x):
        return x

    def activate(self, ctx, neuron):
        return ctx.pre_activation(neuron)

    def propagate(self, ctx, neuron, target, config):
        return ctx.propagate_weighted_sum(neuron, self, target, config)

    def fix(self, graph, neuron, rng):
        pass


class MeanAggregate(AggregateActivation):
    NAME = "MEAN"

    def activate(self, ctx, neuron):
        values = ctx.weighted_inputs(neuron, include_self=False)
        bias = ctx.bias_of(neuron)
        if not values:
            return bias
        return bias + sum(v for _, v in values) / len(values)


class HypotAggregate(AggregateActivation):
    """Euclidean norm of the weighted inputs."""

    NAME = "HYPOT"
    range = ActivationRange(0.0, math.inf)

    def activate(self, ctx, neuron):
        values = [v for _, v in ctx.weighted_inputs(neuron, include_self=False)]
        return math.hypot(*values)


class HypotV2Aggregate(AggregateActivation):
    """Euclidean norm of ``bias + activation·weight`` over the finite terms."""

    NAME = "HYPOTv2"
    range = ActivationRange(0.0, math.inf)

    def activate(self, ctx, neuron):
        bias = ctx.bias_of(neuron)
        terms = [
            bias + v
            for _, v in ctx.weighted_inputs(neuron, include_self=False)
            if math.isfinite(bias + v)
        ]
        if not terms:
            return 0.0
        return math.hypot(*terms)


# ---------------------------------------------------------------------------
# Extremum selection
# ---------------------------------------------------------------------------

class _ExtremumAggregate(AggregateActivation):
    """Passes through the extremal weighted input plus bias."""

    REQUIRED_INPUTS = 1

    def select(
        self, values: List[Tuple[Synapse, float]]
    ) -> Optional[Tuple[Synapse, float]]:
        raise NotImplementedError

    def activate(self, ctx, neuron):
        chosen = self.select(ctx.weighted_inputs(neuron, include_self=False))
        bias = ctx.bias_of(neuron)
        if chosen is None:
            return bias
        return bias + chosen[1]

    def activate_and_trace(self, ctx, neuron):
        chosen = self.select(ctx.weighted_inputs(neuron, include_self=False))
        bias = ctx.bias_of(neuron)
        if chosen is None:
            return bias
        syn, value = chosen
        ctx.state.activity(neuron.index).selected_from = syn.from_index
        ctx.state.synapse(syn.from_index, syn.to_index).used = True
        return bias + value

    def propagate(self, ctx, neuron, target, config):
        activation = ctx.adjusted_activation(neuron.index)
        values = ctx.weighted_inputs(neuron, include_self=False)
        chosen = self.select(values)
        current_bias = ctx.bias_of(neuron)
        improved_value = current_bias

        if chosen is not None:
            main, main_value = chosen
            for syn, _ in values:
                if syn is not main:
                    ctx.refresh_source(syn, config)
            error = limit_activation(target - activation)
            improved_value = limit_activation(
                improved_value + ctx.propagate_connection(main, main_value + error, config)
            )

        return ctx.settle_bias(neuron, target, improved_value, current_bias, config)


class MaximumAggregate(_ExtremumAggregate):
    NAME = "MAXIMUM"

    def select(self, values):
        if not values:
            return None
        return max(values, key=lambda pair: pair[1])


class MinimumAggregate(_ExtremumAggregate):
    NAME = "MINIMUM"

    def select(self, values):
        if not values:
            return None
        return min(values, key=lambda pair: pair[1])


# ---------------------------------------------------------------------------
# Conditional routing
# ---------------------------------------------------------------------------

class IfAggregate(AggregateActivation):
    """Routes the positive or negative branch depending on the condition.

    Inputs tagged CONDITION are summed; if the sum is positive the
    POSITIVE-tagged inputs (untagged ones count as positive) are summed,
    otherwise the NEGATIVE-tagged ones.  The bias is added to the result.
    """

    NAME = "IF"
    PREFERRED_INPUTS = 3

    @staticmethod
    def _branches(values):
        condition, positive, negative = [], [], []
        for syn, value in values:
            if syn.tag == SynapseTag.CONDITION:
                condition.append((syn, value))
            elif syn.tag == SynapseTag.NEGATIVE:
                negative.append((syn, value))
            else:
                positive.append((syn, value))
        return condition, positive, negative

    def _route(self, ctx, neuron):
        condition, positive, negative = self._branches(
            ctx.weighted_inputs(neuron, include_self=False)
        )
        if sum(v for _, v in condition) > 0:
            return condition, positive, negative
        return condition, negative, positive

    def activate(self, ctx, neuron):
        _, active, _ = self._route(ctx, neuron)
        return ctx.bias_of(neuron) + sum(v for _, v in active)

    def activate_and_trace(self, ctx, neuron):
        condition, active, _ = self._route(ctx, neuron)
        for syn, _ in condition + active:
            ctx.state.synapse(syn.from_index, syn.to_index).used = True
        return ctx.bias_of(neuron) + sum(v for _, v in active)

    def propagate(self, ctx, neuron, target, config):
        activation = ctx.adjusted_activation(neuron.index)
        condition, active, inactive = self._route(ctx, neuron)
        current_bias = ctx.bias_of(neuron)
        improved_value = current_bias

        for syn, _ in condition + inactive:
            ctx.refresh_source(syn, config)

        if active:
            share = limit_activation(target - activation) / len(active)
            for position in ctx.visit_order(len(active)):
                syn, value = active[position]
                improved_value = limit_activation(
                    improved_value + ctx.propagate_connection(syn, value + share, config)
                )

        return ctx.settle_bias(neuron, target, improved_value, current_bias, config)

    def fix(self, graph, neuron, rng):
        index = neuron.index
        if graph.self_connection(index) is not None:
            graph.disconnect(index, index)

        inward = graph.inward_connections(index)
        present = {syn.tag for syn in inward if syn.tag is not None}
        missing = [
            tag for tag in (SynapseTag.CONDITION, SynapseTag.POSITIVE, SynapseTag.NEGATIVE)
            if tag not in present
        ]
        for syn in inward:
            if syn.tag is None:
                syn.tag = missing.pop(0) if missing else SynapseTag.POSITIVE

        for tag in missing:
            syn = graph.make_random_connection(index, rng)
            if syn is None:
                raise MissingEdgeKind(
                    f"IF neuron {index} has no {tag.name.lower()} input and no free source"
                )
            syn.tag = tag


AGGREGATE_STRATEGIES = (
    SumAggregate(),
    MeanAggregate(),
    MaximumAggregate(),
    MinimumAggregate(),
    HypotAggregate(),
    HypotV2Aggregate(),
    IfAggregate(),
)
