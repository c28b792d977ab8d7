"""
Propagation configuration — tunables for credit assignment and training.

``BackPropagationConfig`` is frozen: it is built once per training call and
only read afterwards.  ``TrainingConfig`` holds the knobs of the in-memory
training driver.  Both can be loaded from a dict of overrides, a JSON file,
or left at their defaults.

Usage::

    from propagation_config import load_backprop_config

    # Defaults
    cfg = load_backprop_config()

    # With overrides
    cfg = load_backprop_config({"backprop": {"learning_rate": 1.0}})

    # From JSON file
    cfg = load_backprop_config(config_path="~/.neuroprop/config.json")
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

logger = logging.getLogger("neuroprop.config")

MIN_LEARNING_RATE = 0.01
MAX_LEARNING_RATE = 1.0


@dataclass(frozen=True)
class BackPropagationConfig:
    """Parameters of one credit-assignment / apply cycle.

    Attributes:
        learning_rate: Fraction of the distance to a target weight or bias
            taken per update, in [0.01, 1].
        generations: Weight given to the current value when blending it with
            accumulated evidence.  Higher means slower change.
        maximum_bias_adjustment_scale: Largest single bias step.
        maximum_weight_adjustment_scale: Largest single weight step.
        limit_bias_scale: Absolute bound on any bias.
        limit_weight_scale: Absolute bound on any weight.
        plank_constant: Magnitude below which differences are treated as zero.
        exclude_squash: Strategy names whose neurons are never adjusted.
        batch_size: Samples per batch; adjusted values are recomputed when the
            accumulation count reaches a multiple of it.
        disable_random_samples: Visit connections and outputs in index order.
        disable_exponential_scaling: Use raw per-sample weight evidence
            instead of soft-clamping it around the current weight.
        disable_bias_adjustment: Keep biases fixed.
        disable_weight_adjustment: Keep weights fixed.
    """

    learning_rate: float = 0.5
    generations: int = 10
    maximum_bias_adjustment_scale: float = 10.0
    maximum_weight_adjustment_scale: float = 10.0
    limit_bias_scale: float = 10_000.0
    limit_weight_scale: float = 100_000.0
    plank_constant: float = 1e-7
    exclude_squash: FrozenSet[str] = field(default_factory=frozenset)
    batch_size: int = 1
    disable_random_samples: bool = False
    disable_exponential_scaling: bool = False
    disable_bias_adjustment: bool = False
    disable_weight_adjustment: bool = False


@dataclass
class TrainingConfig:
    """Configuration for the in-memory training driver."""

    iterations: int = 2
    target_error: float = 0.05
    shuffle: bool = True
    seed: Optional[int] = None
    log_every: int = 0


# ── Helpers ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> None:
    """Set attributes on a mutable dataclass from a flat dict."""
    for key, value in overrides.items():
        if hasattr(obj, key):
            setattr(obj, key, value)
        else:
            logger.warning("Ignoring unknown config key: %s", key)


def create_backprop_config(
    options: Optional[Dict[str, Any]] = None,
) -> BackPropagationConfig:
    """Build a normalized ``BackPropagationConfig`` from a dict of options.

    Scales are floored at zero (limits at one), the learning rate is clamped
    to [0.01, 1], the batch size is at least one and generations are never
    negative.  Unknown keys are logged and ignored.
    """
    options = dict(options or {})
    known = {f.name for f in dataclasses.fields(BackPropagationConfig)}
    for key in list(options):
        if key not in known:
            logger.warning("Ignoring unknown config key: %s", key)
            del options[key]

    cfg = BackPropagationConfig(**options)
    return dataclasses.replace(
        cfg,
        learning_rate=min(
            MAX_LEARNING_RATE, max(MIN_LEARNING_RATE, float(cfg.learning_rate))
        ),
        generations=max(int(cfg.generations), 0),
        maximum_bias_adjustment_scale=max(float(cfg.maximum_bias_adjustment_scale), 0.0),
        maximum_weight_adjustment_scale=max(
            float(cfg.maximum_weight_adjustment_scale), 0.0
        ),
        limit_bias_scale=max(float(cfg.limit_bias_scale), 1.0),
        limit_weight_scale=max(float(cfg.limit_weight_scale), 1.0),
        plank_constant=abs(float(cfg.plank_constant)),
        exclude_squash=frozenset(cfg.exclude_squash),
        batch_size=max(int(cfg.batch_size), 1),
    )


def _read_config_file(config_path: Optional[str]) -> Dict[str, Any]:
    if config_path is None:
        return {}
    p = Path(config_path).expanduser()
    if not p.exists():
        return {}
    try:
        with open(p) as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load NeuroProp config from %s: %s", p, exc)
        return {}


def load_backprop_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> BackPropagationConfig:
    """Create a ``BackPropagationConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict with a ``backprop`` section of field→value pairs.
        config_path: Path to a JSON file with the same structure.

    Returns:
        Normalized, frozen ``BackPropagationConfig``.
    """
    options: Dict[str, Any] = {}
    options.update(_read_config_file(config_path).get("backprop", {}))
    if overrides is not None:
        options.update(overrides.get("backprop", {}))
    return create_backprop_config(options)


def load_training_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> TrainingConfig:
    """Create a ``TrainingConfig``; same layering as ``load_backprop_config``."""
    cfg = TrainingConfig()
    file_data = _read_config_file(config_path)
    if "training" in file_data:
        _apply_overrides(cfg, file_data["training"])
    if overrides is not None and "training" in overrides:
        _apply_overrides(cfg, overrides["training"])
    return cfg
