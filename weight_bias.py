"""
Weight and bias accumulation.

Credit assignment does not write weights or biases directly.  Every
propagated sample adds evidence to the persistent ``SynapseState`` /
``NeuronState`` of the batch; the *adjusted* weight or bias is a blend of
that evidence with the current value, weighted by ``generations``, and
limited by the learning rate, the per-step scale and the absolute scale.

Limit order for a target ``t`` and current value ``c``:
    1. |t| below the plank constant snaps to 0
    2. |t - c| below the plank constant keeps c
    3. step = learning_rate · (t - c)
    4. step clamped to ±maximum adjustment scale
    5. c + step clamped to ±limit scale
"""

from __future__ import annotations

import math

from activation_base import limit_activation
from neuroprop_errors import NonFinite
from network_state import NeuronState, SynapseState
from propagation_config import BackPropagationConfig
from topology import Neuron, NeuronKind, Synapse


def _require_finite(value: float, what: str) -> None:
    if not math.isfinite(value):
        raise NonFinite(f"{what} is not finite: {value}", value)


def _limit(
    target: float,
    current: float,
    config: BackPropagationConfig,
    maximum_adjustment: float,
    limit_scale: float,
) -> float:
    plank = config.plank_constant
    if abs(target) < plank:
        return 0.0
    if abs(target - current) < plank:
        return current
    step = config.learning_rate * (target - current)
    step = max(-maximum_adjustment, min(maximum_adjustment, step))
    return max(-limit_scale, min(limit_scale, current + step))


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

def limit_weight(target: float, current: float, config: BackPropagationConfig) -> float:
    """Move ``current`` toward ``target`` within the weight limits."""
    _require_finite(target, "target weight")
    _require_finite(current, "current weight")
    return _limit(
        target,
        current,
        config,
        config.maximum_weight_adjustment_scale,
        config.limit_weight_scale,
    )


def accumulate_weight(
    current_weight: float,
    synapse_state: SynapseState,
    target_value: float,
    activation: float,
    config: BackPropagationConfig,
) -> None:
    """Record one sample of evidence that ``activation · w ≈ target_value``.

    Magnitudes below the plank constant are floored to it before dividing.
    Unless exponential scaling is disabled, the implied weight is pulled
    toward ``current_weight`` with ``tanh(Δ / scale) · scale``.
    """
    _require_finite(target_value, "target value")
    _require_finite(activation, "activation")
    plank = config.plank_constant

    sign = -1.0 if activation < 0 else 1.0
    safe_activation = activation if abs(activation) >= plank else sign * plank
    safe_value = (
        target_value if abs(target_value) >= plank
        else math.copysign(plank, target_value)
    )
    implied = limit_activation(safe_value / safe_activation)

    if not config.disable_exponential_scaling:
        scale = config.maximum_weight_adjustment_scale
        if scale > 0:
            implied = current_weight + math.tanh((implied - current_weight) / scale) * scale
        else:
            implied = current_weight

    value = limit_activation(implied * safe_activation)
    if safe_activation > 0:
        synapse_state.positive_value = limit_activation(synapse_state.positive_value + value)
        synapse_state.positive_activation = limit_activation(
            synapse_state.positive_activation + safe_activation
        )
        synapse_state.positive_count += 1
    else:
        synapse_state.negative_value = limit_activation(synapse_state.negative_value + value)
        synapse_state.negative_activation = limit_activation(
            synapse_state.negative_activation + safe_activation
        )
        synapse_state.negative_count += 1
    synapse_state.count += 1


def calculate_weight(
    synapse: Synapse, synapse_state: SynapseState, config: BackPropagationConfig
) -> float:
    """Blend bucket averages with the current weight, then limit."""
    total = synapse.weight * config.generations
    samples = config.generations
    if synapse_state.positive_count:
        average = limit_activation(
            synapse_state.positive_value / synapse_state.positive_activation
        )
        total = limit_activation(total + average * synapse_state.positive_count)
        samples += synapse_state.positive_count
    if synapse_state.negative_count:
        average = limit_activation(
            synapse_state.negative_value / synapse_state.negative_activation
        )
        total = limit_activation(total + average * synapse_state.negative_count)
        samples += synapse_state.negative_count
    if samples == 0:
        return synapse.weight
    return limit_weight(total / samples, synapse.weight, config)


def adjusted_weight(
    synapse: Synapse, synapse_state: SynapseState, config: BackPropagationConfig
) -> float:
    """Weight to use now; recomputed each time the count completes a batch."""
    if config.disable_weight_adjustment:
        return synapse.weight
    if synapse_state.count and synapse_state.count % config.batch_size == 0:
        synapse_state.batch_weight = calculate_weight(synapse, synapse_state, config)
    if synapse_state.batch_weight is None:
        return synapse.weight
    return synapse_state.batch_weight


# ---------------------------------------------------------------------------
# Biases
# ---------------------------------------------------------------------------

def limit_bias(target: float, current: float, config: BackPropagationConfig) -> float:
    """Move ``current`` toward ``target`` within the bias limits."""
    _require_finite(target, "target bias")
    _require_finite(current, "current bias")
    return _limit(
        target,
        current,
        config,
        config.maximum_bias_adjustment_scale,
        config.limit_bias_scale,
    )


def accumulate_bias(
    neuron_state: NeuronState,
    target_value: float,
    value: float,
    current_bias: float,
    config: BackPropagationConfig,
) -> None:
    """Record the bias that would turn ``value`` into ``target_value``."""
    _require_finite(target_value, "target value")
    _require_finite(value, "value")
    target_bias = limit_activation(current_bias + limit_activation(target_value - value))
    neuron_state.count += 1
    neuron_state.total_bias = limit_activation(neuron_state.total_bias + target_bias)
    neuron_state.total_adjusted_bias += limit_bias(target_bias, current_bias, config)


def hold_bias(neuron_state: NeuronState, bias: float) -> None:
    """Record a sample in which the bias needed no change."""
    neuron_state.count += 1
    neuron_state.total_bias += bias
    neuron_state.total_adjusted_bias += bias


def calculate_bias(
    neuron: Neuron, neuron_state: NeuronState, config: BackPropagationConfig
) -> float:
    if not neuron_state.count:
        return neuron.bias
    total = neuron_state.total_adjusted_bias + neuron.bias * config.generations
    samples = neuron_state.count + config.generations
    return limit_bias(total / samples, neuron.bias, config)


def adjusted_bias(
    neuron: Neuron, neuron_state: NeuronState, config: BackPropagationConfig
) -> float:
    """Bias to use now; constants and disabled adjustment keep the bias."""
    if neuron.kind == NeuronKind.CONSTANT or config.disable_bias_adjustment:
        return neuron.bias
    if neuron_state.count and neuron_state.count % config.batch_size == 0:
        neuron_state.batch_bias = calculate_bias(neuron, neuron_state, config)
    if neuron_state.batch_bias is None:
        return neuron.bias
    return neuron_state.batch_bias
