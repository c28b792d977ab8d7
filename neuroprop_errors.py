"""
NeuroProp exception hierarchy.

All engine errors derive from ``NeuroPropError`` so callers can catch the
whole family at once.  Structural problems (bad indices, duplicate edges,
unrepairable aggregates) surface to the mutation layer; numeric failures
abort the current pass; range violations indicate a faulty activation
strategy.

Usage::

    from neuroprop_errors import DuplicateEdge, NeuroPropError

    try:
        graph.connect(0, 3, 0.5)
    except DuplicateEdge:
        ...
"""

from __future__ import annotations


class NeuroPropError(Exception):
    """Base exception for all NeuroProp errors."""


# ---------------------------------------------------------------------------
# Structural errors
# ---------------------------------------------------------------------------

class StructuralError(NeuroPropError):
    """The graph violates a structural invariant."""


class DuplicateEdge(StructuralError):
    """A synapse already exists for the requested (from, to) pair."""

    def __init__(self, from_index: int, to_index: int):
        super().__init__(f"synapse {from_index} -> {to_index} already exists")
        self.from_index = from_index
        self.to_index = to_index


class InvalidIndex(StructuralError):
    """A neuron index is out of range or not valid for the operation."""


class MissingEdgeKind(StructuralError):
    """An IF neuron is missing a condition, positive or negative input."""


# ---------------------------------------------------------------------------
# Numeric errors
# ---------------------------------------------------------------------------

class NumericError(NeuroPropError):
    """A numeric computation could not produce a usable value."""


class NonFinite(NumericError):
    """A value that must be finite was NaN or infinite."""

    def __init__(self, message: str, value: float = float("nan")):
        super().__init__(message)
        self.value = value


# ---------------------------------------------------------------------------
# Contract errors
# ---------------------------------------------------------------------------

class RangeViolation(NeuroPropError):
    """An activation fell outside the declared range of its strategy."""


class InvalidInput(NeuroPropError, ValueError):
    """Caller supplied an input vector the network cannot evaluate."""
