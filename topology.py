"""
Topology Graph — neurons, synapses and index-stable adjacency queries.

The graph owns the structure of a network: an ordered list of neurons
(inputs first, outputs last, hidden and constant neurons in between) and a
list of weighted synapses kept sorted by ``(from_index, to_index)``.

Every mutation that renumbers neurons or removes a synapse bumps
``version`` and appends an ``IndexEvent``; a ``NetworkState`` replays those
events to drop or shift its per-index entries and then discards them.  Weight
and bias edits do not bump the version.

Design principles:
    - Sparse: per-neuron adjacency lists built lazily from the synapse list
    - Stable order: queries always return connections sorted by (from, to)
    - No back-references: runtime state lives in ``NetworkState``
"""

from __future__ import annotations

import bisect
import logging
import math
import uuid
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from neuroprop_errors import DuplicateEdge, InvalidIndex, NonFinite, StructuralError

logger = logging.getLogger("neuroprop.topology")

# Attempts at a random source before falling back to a sequential scan.
RANDOM_CONNECTION_ATTEMPTS = 12


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class NeuronKind(Enum):
    """Role of a neuron in the index layout."""
    INPUT = auto()
    HIDDEN = auto()
    OUTPUT = auto()
    CONSTANT = auto()


class SynapseTag(Enum):
    """Routing tag of a synapse feeding an IF neuron."""
    CONDITION = auto()
    POSITIVE = auto()
    NEGATIVE = auto()


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass
class Neuron:
    """A single unit of the network.

    Attributes:
        index: Position in the graph, stable within one graph version.
        kind: INPUT, HIDDEN, OUTPUT or CONSTANT.
        bias: Finite bias.  For a constant neuron this is its activation.
        squash: Activation strategy name; ``None`` for inputs and constants.
        uuid: Identity that survives renumbering.
        tags: Free-form metadata carried through serialization.
    """

    index: int
    kind: NeuronKind
    bias: float = 0.0
    squash: Optional[str] = None
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    tags: Dict[str, Any] = field(default_factory=dict)
    strategy_cache: Any = field(default=None, repr=False, compare=False)

    @property
    def fixed_activation(self) -> bool:
        """True when the activation is supplied rather than computed."""
        return self.kind in (NeuronKind.INPUT, NeuronKind.CONSTANT)


@dataclass
class Synapse:
    """Directed, weighted connection between two neurons.

    Attributes:
        from_index: Source neuron.
        to_index: Target neuron (equal to ``from_index`` for a self-loop).
        weight: Finite weight.
        tag: Routing tag, only meaningful when the target is an IF neuron.
        gater: Index of the neuron whose activation scales this synapse.
    """

    from_index: int
    to_index: int
    weight: float
    tag: Optional[SynapseTag] = None
    gater: Optional[int] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.from_index, self.to_index)

    @property
    def is_self_loop(self) -> bool:
        return self.from_index == self.to_index

    @property
    def is_back_edge(self) -> bool:
        """True when the source is evaluated at or after the target."""
        return self.from_index >= self.to_index


class IndexEvent(NamedTuple):
    """Structural change that invalidates index-keyed state.

    ``kind`` is ``"insert"`` (args: position), ``"remove"`` (args: index) or
    ``"disconnect"`` (args: from_index, to_index).
    """

    version: int
    kind: str
    args: Tuple[int, ...]


def _synapse_key(syn: Synapse) -> Tuple[int, int]:
    return (syn.from_index, syn.to_index)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class TopologyGraph:
    """Mutable directed graph of neurons and synapses.

    Args:
        input_count: Number of input neurons.
        output_count: Number of output neurons.
        output_squash: Strategy name given to the initial output neurons.
    """

    def __init__(
        self,
        input_count: int,
        output_count: int,
        output_squash: str = "IDENTITY",
    ):
        if input_count < 1 or output_count < 1:
            raise InvalidIndex("a network needs at least one input and one output")
        self.input_count = input_count
        self.output_count = output_count
        self.neurons: List[Neuron] = []
        self.synapses: List[Synapse] = []
        self.version = 0
        self.events: List[IndexEvent] = []

        self._pairs: Dict[Tuple[int, int], Synapse] = {}
        self._inward: Optional[Dict[int, List[Synapse]]] = None
        self._outward: Optional[Dict[int, List[Synapse]]] = None
        self._gated: Optional[Dict[int, List[Synapse]]] = None

        for i in range(input_count):
            self.neurons.append(Neuron(index=i, kind=NeuronKind.INPUT))
        for i in range(output_count):
            self.neurons.append(
                Neuron(
                    index=input_count + i,
                    kind=NeuronKind.OUTPUT,
                    squash=output_squash,
                )
            )

    # -----------------------------------------------------------------------
    # Layout
    # -----------------------------------------------------------------------

    @property
    def neuron_count(self) -> int:
        return len(self.neurons)

    @property
    def first_output(self) -> int:
        """Index of the first output neuron."""
        return len(self.neurons) - self.output_count

    def neuron(self, index: int) -> Neuron:
        self._check_index(index)
        return self.neurons[index]

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.neurons):
            raise InvalidIndex(f"neuron index {index} out of range")

    # -----------------------------------------------------------------------
    # Versioning
    # -----------------------------------------------------------------------

    def invalidate(self, kind: Optional[str] = None, *args: int) -> None:
        """Bump the version and drop cached adjacency.

        Callers that renumber neurons or delete synapses pass the event kind
        and its arguments so dependent state can follow the change.
        """
        self.version += 1
        if kind is not None:
            self.events.append(IndexEvent(self.version, kind, tuple(args)))
        self.clear_cache()

    def clear_cache(self) -> None:
        self._inward = None
        self._outward = None
        self._gated = None

    def events_since(self, version: int) -> List[IndexEvent]:
        return [e for e in self.events if e.version > version]

    def discard_events(self, version: int) -> None:
        """Forget events up to ``version`` once the state has replayed them."""
        self.events = [e for e in self.events if e.version > version]

    def _build_adjacency(self) -> None:
        inward: Dict[int, List[Synapse]] = {}
        outward: Dict[int, List[Synapse]] = {}
        gated: Dict[int, List[Synapse]] = {}
        for syn in self.synapses:
            inward.setdefault(syn.to_index, []).append(syn)
            outward.setdefault(syn.from_index, []).append(syn)
            if syn.gater is not None:
                gated.setdefault(syn.gater, []).append(syn)
        self._inward = inward
        self._outward = outward
        self._gated = gated

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def inward_connections(self, index: int) -> List[Synapse]:
        """Synapses ending at ``index``, self-loop included, sorted by source."""
        if self._inward is None:
            self._build_adjacency()
        return self._inward.get(index, [])

    def outward_connections(self, index: int) -> List[Synapse]:
        """Synapses starting at ``index``, sorted by target."""
        if self._outward is None:
            self._build_adjacency()
        return self._outward.get(index, [])

    def gated_connections(self, gater: int) -> List[Synapse]:
        """Synapses whose gain is controlled by neuron ``gater``."""
        if self._gated is None:
            self._build_adjacency()
        return self._gated.get(gater, [])

    def self_connection(self, index: int) -> Optional[Synapse]:
        return self._pairs.get((index, index))

    def get_synapse(self, from_index: int, to_index: int) -> Optional[Synapse]:
        return self._pairs.get((from_index, to_index))

    # -----------------------------------------------------------------------
    # Synapse mutation
    # -----------------------------------------------------------------------

    def connect(
        self,
        from_index: int,
        to_index: int,
        weight: float,
        tag: Optional[SynapseTag] = None,
        gater: Optional[int] = None,
    ) -> Synapse:
        """Create a synapse.

        Raises:
            DuplicateEdge: The pair is already connected.
            InvalidIndex: An index is out of range, or the target is an
                input or constant neuron.
            NonFinite: ``weight`` is NaN or infinite.
        """
        self._check_index(from_index)
        self._check_index(to_index)
        if self.neurons[to_index].fixed_activation:
            raise InvalidIndex(
                f"neuron {to_index} is {self.neurons[to_index].kind.name.lower()} "
                "and cannot receive synapses"
            )
        if gater is not None:
            self._check_index(gater)
        if (from_index, to_index) in self._pairs:
            raise DuplicateEdge(from_index, to_index)
        if not math.isfinite(weight):
            raise NonFinite(f"weight {from_index} -> {to_index} is not finite", weight)

        syn = Synapse(from_index, to_index, float(weight), tag=tag, gater=gater)
        bisect.insort(self.synapses, syn, key=_synapse_key)
        self._pairs[syn.key] = syn
        self.invalidate()
        return syn

    def disconnect(self, from_index: int, to_index: int) -> None:
        """Remove a synapse; no-op if absent."""
        syn = self._pairs.pop((from_index, to_index), None)
        if syn is None:
            return
        self.synapses.remove(syn)
        self.invalidate("disconnect", from_index, to_index)

    def gate(self, from_index: int, to_index: int, gater: Optional[int]) -> None:
        """Set or clear the gater of an existing synapse."""
        syn = self._pairs.get((from_index, to_index))
        if syn is None:
            raise InvalidIndex(f"no synapse {from_index} -> {to_index}")
        if gater is not None:
            self._check_index(gater)
        syn.gater = gater
        self.invalidate()

    # -----------------------------------------------------------------------
    # Neuron mutation
    # -----------------------------------------------------------------------

    def insert_neuron(
        self,
        kind: NeuronKind = NeuronKind.HIDDEN,
        bias: float = 0.0,
        squash: Optional[str] = "IDENTITY",
        position: Optional[int] = None,
    ) -> Neuron:
        """Insert a hidden or constant neuron, shifting later indices up.

        Args:
            kind: HIDDEN or CONSTANT.
            bias: Initial bias (the activation of a constant).
            squash: Strategy name; ignored for constants.
            position: Index for the new neuron; defaults to just before the
                outputs.  Must lie in ``[input_count, first_output]``.
        """
        if kind not in (NeuronKind.HIDDEN, NeuronKind.CONSTANT):
            raise InvalidIndex("only hidden or constant neurons can be inserted")
        if not math.isfinite(bias):
            raise NonFinite("bias is not finite", bias)
        if position is None:
            position = self.first_output
        if not self.input_count <= position <= self.first_output:
            raise InvalidIndex(
                f"position {position} outside [{self.input_count}, {self.first_output}]"
            )

        for n in self.neurons[position:]:
            n.index += 1
        self._shift_synapses(lambda i: i + 1 if i >= position else i)

        neuron = Neuron(
            index=position,
            kind=kind,
            bias=float(bias),
            squash=None if kind == NeuronKind.CONSTANT else squash,
        )
        self.neurons.insert(position, neuron)
        self.invalidate("insert", position)
        logger.debug("Inserted %s neuron at %d", kind.name.lower(), position)
        return neuron

    def remove_neuron(self, index: int) -> None:
        """Remove a hidden or constant neuron and every synapse touching it."""
        self._check_index(index)
        if self.neurons[index].kind in (NeuronKind.INPUT, NeuronKind.OUTPUT):
            raise InvalidIndex(f"neuron {index} is an input or output")

        self.synapses = [
            s for s in self.synapses
            if s.from_index != index and s.to_index != index
        ]
        for s in self.synapses:
            if s.gater == index:
                s.gater = None
        del self.neurons[index]
        for n in self.neurons[index:]:
            n.index -= 1
        self._shift_synapses(lambda i: i - 1 if i > index else i)
        self.invalidate("remove", index)
        logger.debug("Removed neuron %d", index)

    def _shift_synapses(self, remap) -> None:
        for s in self.synapses:
            s.from_index = remap(s.from_index)
            s.to_index = remap(s.to_index)
            if s.gater is not None:
                s.gater = remap(s.gater)
        self.synapses.sort(key=_synapse_key)
        self._pairs = {s.key: s for s in self.synapses}

    def set_squash(self, index: int, squash: str) -> None:
        neuron = self.neuron(index)
        if neuron.fixed_activation:
            raise InvalidIndex(f"neuron {index} has no activation strategy")
        neuron.squash = squash
        neuron.strategy_cache = None
        self.invalidate()

    def set_bias(self, index: int, bias: float) -> None:
        if not math.isfinite(bias):
            raise NonFinite(f"bias of neuron {index} is not finite", bias)
        self.neuron(index).bias = float(bias)

    # -----------------------------------------------------------------------
    # Repair helpers
    # -----------------------------------------------------------------------

    def make_random_connection(self, index: int, rng) -> Optional[Synapse]:
        """Connect a random earlier, non-output neuron to ``index``.

        Tries a handful of random sources, then scans sequentially.  Returns
        the new synapse, or ``None`` when every candidate is taken.
        """
        target = self.neuron(index)
        if target.fixed_activation:
            raise InvalidIndex(f"neuron {index} cannot receive synapses")

        limit = min(index, self.first_output)
        if limit <= 0:
            return None

        weight = float(rng.uniform(-0.1, 0.1))
        for _ in range(RANDOM_CONNECTION_ATTEMPTS):
            from_index = int(rng.integers(0, limit))
            if (from_index, index) not in self._pairs:
                return self.connect(from_index, index, weight)
        for from_index in range(limit):
            if (from_index, index) not in self._pairs:
                return self.connect(from_index, index, weight)
        logger.debug("No free source for neuron %d", index)
        return None

    def validate(self) -> None:
        """Check layout and synapse invariants.

        Raises:
            StructuralError: On the first violated invariant.
        """
        for i, n in enumerate(self.neurons):
            if n.index != i:
                raise StructuralError(f"neuron at position {i} claims index {n.index}")
            expected_input = i < self.input_count
            expected_output = i >= self.first_output
            if (n.kind == NeuronKind.INPUT) != expected_input:
                raise StructuralError(f"neuron {i} breaks the input layout")
            if (n.kind == NeuronKind.OUTPUT) != expected_output:
                raise StructuralError(f"neuron {i} breaks the output layout")
            if not math.isfinite(n.bias):
                raise StructuralError(f"neuron {i} has a non-finite bias")
            if not n.fixed_activation and not n.squash:
                raise StructuralError(f"neuron {i} has no activation strategy")

        previous: Optional[Tuple[int, int]] = None
        for s in self.synapses:
            if previous is not None and s.key <= previous:
                raise StructuralError(f"synapse {s.key} out of order or duplicated")
            previous = s.key
            for idx in (s.from_index, s.to_index):
                if not 0 <= idx < len(self.neurons):
                    raise StructuralError(f"synapse {s.key} references missing neuron")
            if self.neurons[s.to_index].fixed_activation:
                raise StructuralError(f"synapse {s.key} targets a fixed neuron")
            if not math.isfinite(s.weight):
                raise StructuralError(f"synapse {s.key} has a non-finite weight")

    # -----------------------------------------------------------------------
    # Records
    # -----------------------------------------------------------------------

    def to_records(self) -> Dict[str, Any]:
        """Export the graph as plain dicts (inputs are implied by the count)."""
        neurons = []
        for n in self.neurons[self.input_count:]:
            rec: Dict[str, Any] = {
                "index": n.index,
                "uuid": n.uuid,
                "type": n.kind.name.lower(),
                "bias": n.bias,
            }
            if n.squash is not None:
                rec["squash"] = n.squash
            if n.tags:
                rec["tags"] = dict(n.tags)
            neurons.append(rec)

        synapses = []
        for s in self.synapses:
            rec = {"from": s.from_index, "to": s.to_index, "weight": s.weight}
            if s.tag is not None:
                rec["type"] = s.tag.name.lower()
            if s.gater is not None:
                rec["gater"] = s.gater
            synapses.append(rec)

        return {
            "input": self.input_count,
            "output": self.output_count,
            "neurons": neurons,
            "synapses": synapses,
        }

    @classmethod
    def from_records(cls, data: Dict[str, Any]) -> "TopologyGraph":
        """Rebuild a graph from ``to_records`` output."""
        graph = cls(int(data["input"]), int(data["output"]))
        graph.neurons = graph.neurons[: graph.input_count]
        for rec in sorted(data.get("neurons", []), key=lambda r: r["index"]):
            if rec["index"] != len(graph.neurons):
                raise StructuralError(f"neuron record {rec['index']} out of sequence")
            graph.neurons.append(
                Neuron(
                    index=rec["index"],
                    kind=NeuronKind[rec["type"].upper()],
                    bias=float(rec.get("bias", 0.0)),
                    squash=rec.get("squash"),
                    uuid=rec.get("uuid") or str(uuid.uuid4()),
                    tags=dict(rec.get("tags", {})),
                )
            )
        for rec in data.get("synapses", []):
            tag = rec.get("type")
            graph.connect(
                rec["from"],
                rec["to"],
                float(rec["weight"]),
                tag=SynapseTag[tag.upper()] if tag else None,
                gater=rec.get("gater"),
            )
        graph.validate()
        return graph
