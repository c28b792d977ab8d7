"""
Activation strategy registry.

Maps strategy names to the shared, stateless strategy instances and
resolves (and caches) the strategy of a neuron.
"""

from __future__ import annotations

from typing import Dict, List

from activation_base import ActivationStrategy
from aggregates import AGGREGATE_STRATEGIES
from squashes import ELEMENTARY_STRATEGIES
from topology import Neuron

_REGISTRY: Dict[str, ActivationStrategy] = {
    s.NAME: s for s in ELEMENTARY_STRATEGIES + AGGREGATE_STRATEGIES
}

ACTIVATION_NAMES: List[str] = [s.NAME for s in ELEMENTARY_STRATEGIES + AGGREGATE_STRATEGIES]
ELEMENTARY_NAMES: List[str] = [s.NAME for s in ELEMENTARY_STRATEGIES]
AGGREGATE_NAMES: List[str] = [s.NAME for s in AGGREGATE_STRATEGIES]


def find_activation(name: str) -> ActivationStrategy:
    """Look up a strategy by name.

    Raises:
        KeyError: ``name`` is not a known strategy.
    """
    try:
        return _REGISTRY[name]
    except KeyError:
        raise KeyError(f"Unknown activation strategy: {name}") from None


def resolve_strategy(neuron: Neuron) -> ActivationStrategy:
    """Strategy of ``neuron``, using its cached handle when still current."""
    cached = neuron.strategy_cache
    if cached is None or cached.NAME != neuron.squash:
        cached = find_activation(neuron.squash)
        neuron.strategy_cache = cached
    return cached
