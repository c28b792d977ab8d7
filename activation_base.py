"""
Activation strategy contract and evaluation context.

Every neuron with a computed activation delegates to an
``ActivationStrategy``.  Strategies come in two families:

    - ``ElementaryActivation``: squashes ``bias + Σ(activation·weight·gain)``
      through an invertible function; credit assignment uses the generic
      weighted-sum rule.
    - ``AggregateActivation``: combines the weighted inputs in some other
      way (max, mean, norm, routing) and supplies its own credit rule.

Strategies never hold references to the network.  They receive an
``EvaluationContext`` that exposes the graph, the state and the value
accessors for the pass in progress: the forward pass reads stored weights
and activations, the credit-assignment pass reads adjusted ones.
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Tuple

from neuroprop_errors import NonFinite, RangeViolation, StructuralError
from topology import Neuron, Synapse

if TYPE_CHECKING:
    from network_state import NetworkState
    from propagation_config import BackPropagationConfig
    from topology import TopologyGraph

MAX_ACTIVATION = sys.float_info.max
VALUE_LIMIT = 1e12


def limit_activation(value: float) -> float:
    """Clamp to a finite activation: ±inf to the extreme of matching sign, NaN to 0."""
    if math.isnan(value):
        return 0.0
    if value > MAX_ACTIVATION:
        return MAX_ACTIVATION
    if value < -MAX_ACTIVATION:
        return -MAX_ACTIVATION
    return value


def limit_value(value: float) -> float:
    """Clamp a pre-activation value to ±1e12."""
    if value > VALUE_LIMIT:
        return VALUE_LIMIT
    if value < -VALUE_LIMIT:
        return -VALUE_LIMIT
    return value


# ---------------------------------------------------------------------------
# Range
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivationRange:
    """Closed interval an activation must lie in.

    Attributes:
        low: Lower bound, may be ``-inf``.
        high: Upper bound, may be ``inf``.
    """

    low: float = -math.inf
    high: float = math.inf

    def validate(self, activation: float, hint: Optional[float] = None) -> None:
        """Raise ``RangeViolation`` unless ``activation`` is finite and in range."""
        if not math.isfinite(activation):
            raise RangeViolation(
                f"activation {activation} is not finite"
                + (f" (hint {hint})" if hint is not None else "")
            )
        if activation < self.low or activation > self.high:
            raise RangeViolation(
                f"activation {activation} outside [{self.low}, {self.high}]"
                + (f" (hint {hint})" if hint is not None else "")
            )

    def limit(self, activation: float) -> float:
        """Clamp into the range.  NaN cannot be clamped and raises ``NonFinite``."""
        if math.isnan(activation):
            raise NonFinite("cannot limit NaN activation", activation)
        return max(self.low, min(self.high, limit_activation(activation)))


UNBOUNDED = ActivationRange()


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------

class EvaluationContext:
    """Read access to a network for the duration of one pass.

    Subclasses decide which values the accessors return.  Strategies only
    talk to the network through this interface.
    """

    def __init__(self, graph: "TopologyGraph", state: "NetworkState"):
        self.graph = graph
        self.state = state

    def activation_of(self, synapse: Synapse) -> float:
        """Activation of the synapse's source as seen by its target."""
        raise NotImplementedError

    def weight_of(self, synapse: Synapse) -> float:
        raise NotImplementedError

    def gain_of(self, synapse: Synapse) -> float:
        raise NotImplementedError

    def bias_of(self, neuron: Neuron) -> float:
        raise NotImplementedError

    def weighted_inputs(
        self, neuron: Neuron, include_self: bool = True
    ) -> List[Tuple[Synapse, float]]:
        """(synapse, activation·weight·gain) for each inward synapse.

        Contributions are clamped to finite values.
        """
        result = []
        for syn in self.graph.inward_connections(neuron.index):
            if syn.is_self_loop and not include_self:
                continue
            value = limit_activation(
                self.activation_of(syn) * self.weight_of(syn) * self.gain_of(syn)
            )
            result.append((syn, value))
        return result

    def pre_activation(self, neuron: Neuron) -> float:
        """Bias plus the weighted sum of every inward synapse."""
        value = self.bias_of(neuron)
        for _, contribution in self.weighted_inputs(neuron):
            value += contribution
        return limit_activation(value)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class ActivationStrategy:
    """Base class for all activation strategies.

    Subclasses set ``NAME`` and ``range`` and override what they need.
    Credit-assignment hooks receive a ``CreditAssignmentPass`` as ``ctx``.
    """

    NAME = ""
    range = UNBOUNDED
    aggregate = False

    def name(self) -> str:
        return self.NAME

    def activate(self, ctx: EvaluationContext, neuron: Neuron) -> float:
        raise NotImplementedError

    def activate_and_trace(self, ctx: EvaluationContext, neuron: Neuron) -> float:
        """Like ``activate``; may also fill ephemeral trace fields."""
        return self.activate(ctx, neuron)

    def inverse(self, activation: float, hint: Optional[float] = None) -> float:
        raise NotImplementedError

    def propagate(
        self,
        ctx,
        neuron: Neuron,
        target: float,
        config: "BackPropagationConfig",
    ) -> float:
        """Move ``neuron`` toward ``target``; return the achieved activation."""
        raise NotImplementedError

    def fix(self, graph: "TopologyGraph", neuron: Neuron, rng) -> None:
        """Repair structural requirements of this strategy in place."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.NAME}>"


class ElementaryActivation(ActivationStrategy):
    """Invertible squash applied to the neuron's weighted input sum."""

    def squash(self, x: float) -> float:
        raise NotImplementedError

    def derivative(self, x: float) -> float:
        h = 1e-6 * max(1.0, abs(x))
        return (self.squash(x + h) - self.squash(x - h)) / (2 * h)

    def activate(self, ctx: EvaluationContext, neuron: Neuron) -> float:
        return self.squash(ctx.pre_activation(neuron))

    def activate_and_trace(self, ctx: EvaluationContext, neuron: Neuron) -> float:
        value = ctx.pre_activation(neuron)
        activity = ctx.state.activity(neuron.index)
        activity.state = value
        activity.derivative = limit_activation(self.derivative(value))
        return self.squash(value)

    def propagate(self, ctx, neuron, target, config):
        return ctx.propagate_weighted_sum(neuron, self, target, config)


class AggregateActivation(ActivationStrategy):
    """Non-weighted-sum combination of inputs.

    Activations are reported in value space, so the inverse is the identity.
    The default credit rule only refreshes predecessor accumulators and
    keeps the current activation.
    """

    aggregate = True
    # Inward synapses fix() tries to provide, and the number it insists on.
    PREFERRED_INPUTS = 2
    REQUIRED_INPUTS = 0

    def inverse(self, activation, hint=None):
        return activation

    def activate_and_trace(self, ctx, neuron):
        for syn in ctx.graph.inward_connections(neuron.index):
            if not syn.is_self_loop:
                ctx.state.synapse(syn.from_index, syn.to_index).used = True
        return self.activate(ctx, neuron)

    def propagate(self, ctx, neuron, target, config):
        activation = ctx.adjusted_activation(neuron.index)
        ctx.no_change_propagate(neuron.index, activation, config)
        return activation

    def fix(self, graph, neuron, rng):
        if graph.self_connection(neuron.index) is not None:
            graph.disconnect(neuron.index, neuron.index)
        while len(graph.inward_connections(neuron.index)) < self.PREFERRED_INPUTS:
            if graph.make_random_connection(neuron.index, rng) is None:
                break
        if len(graph.inward_connections(neuron.index)) < self.REQUIRED_INPUTS:
            raise StructuralError(
                f"{self.NAME} neuron {neuron.index} needs at least "
                f"{self.REQUIRED_INPUTS} inward synapse(s)"
            )
