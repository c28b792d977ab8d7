"""
Training driver for batch target propagation over in-memory samples.

Each iteration traces and propagates every sample, applies the learnings
once, then measures the mean squared error with a plain forward pass.  The
generational weight grows by one per iteration so later iterations move
the network less.  The best network seen is kept and restored at the end.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from network import Network
from neuroprop_errors import InvalidInput
from propagation_config import TrainingConfig, create_backprop_config

logger = logging.getLogger("neuroprop.training")

Sample = Tuple[Sequence[float], Sequence[float]]


@dataclass
class TrainResult:
    """Outcome of ``train``.

    Attributes:
        error: Mean squared error of the returned network.
        initial_error: Error before the first iteration.
        iterations: Iterations actually run.
    """

    error: float
    initial_error: float
    iterations: int


def mean_squared_error(expected: Sequence[float], actual: Sequence[float]) -> float:
    diff = np.asarray(expected, dtype=np.float64) - np.asarray(actual, dtype=np.float64)
    return float(np.mean(diff * diff))


def _split(sample: Any) -> Sample:
    if isinstance(sample, dict):
        return sample["input"], sample["output"]
    inputs, outputs = sample
    return inputs, outputs


def evaluate(network: Network, samples: Sequence[Any]) -> float:
    """Mean squared error of ``network`` over ``samples``."""
    if not samples:
        raise InvalidInput("no samples to evaluate")
    total = 0.0
    for sample in samples:
        inputs, outputs = _split(sample)
        total += mean_squared_error(outputs, network.activate(inputs))
    return total / len(samples)


def train(
    network: Network,
    samples: Sequence[Any],
    training_config: Optional[TrainingConfig] = None,
    backprop_options: Optional[Dict[str, Any]] = None,
) -> TrainResult:
    """Train ``network`` in place.

    Args:
        network: Network to adjust.
        samples: ``(inputs, outputs)`` pairs or ``{"input", "output"}`` dicts.
        training_config: Iteration count, target error, shuffling, seed.
        backprop_options: Options for ``create_backprop_config``; the
            ``generations`` value is the base for the first iteration.

    Returns:
        ``TrainResult`` describing the best network, which ``network`` now holds.
    """
    if not samples:
        raise InvalidInput("no training samples")
    tcfg = training_config or TrainingConfig()
    base = create_backprop_config(backprop_options)
    rng = np.random.default_rng(tcfg.seed)

    initial_error = evaluate(network, samples)
    best_error = initial_error
    best_records = network.to_records()
    error = initial_error
    iteration = 0

    while iteration < tcfg.iterations and best_error > tcfg.target_error:
        iteration += 1
        config = dataclasses.replace(base, generations=base.generations + iteration)

        if tcfg.shuffle:
            order = rng.permutation(len(samples)).tolist()
        else:
            order = range(len(samples))
        for position in order:
            inputs, outputs = _split(samples[position])
            network.activate_and_trace(inputs)
            network.propagate(outputs, config)

        network.apply_learnings(config)
        error = evaluate(network, samples)
        if error < best_error:
            best_error = error
            best_records = network.to_records()

        if tcfg.log_every and iteration % tcfg.log_every == 0:
            logger.info("Iteration %d: error %.6f (best %.6f)", iteration, error, best_error)

    if error > best_error:
        network.load_records(best_records)
        logger.debug("Restored best network (error %.6f)", best_error)

    return TrainResult(error=best_error, initial_error=initial_error, iterations=iteration)
