# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Derivation graph for one analyzed unit.

Nodes are memory locations and references; edges point from a parent (the
node a reference was derived from) to the derived child. Every reference has
exactly one incoming edge, except the result of an ambiguous call, which keeps
one edge per candidate argument.

Nodes are immutable. Lifecycle state is tracked per identity in the graph so
a working copy can be flattened tentatively and either committed (`adopt`) or
thrown away without touching the source graph.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from borrowup.core.errors import (
	AnalysisFault,
	CYCLE,
	DUPLICATE_DEFINITION,
	MALFORMED_EVENT,
	UNKNOWN_NODE,
)
from borrowup.core.span import Span
from borrowup.places import Place, PlaceBase, PlaceKind
from borrowup.types_model import TypeDescriptor


class RefRole(Enum):
	OWNER = "owner"
	EXCLUSIVE = "exclusive"
	SHARED = "shared"


class RefState(Enum):
	"""Lifecycle of a reference identity."""

	CREATED = auto()
	LIVE = auto()
	FLATTENED = auto()  # graph transition only; always followed by LIVE
	UPGRADED = auto()
	DROPPED = auto()


_TRANSITIONS: Dict[RefState, Tuple[RefState, ...]] = {
	RefState.CREATED: (RefState.LIVE, RefState.DROPPED),
	RefState.LIVE: (RefState.FLATTENED, RefState.UPGRADED, RefState.DROPPED),
	RefState.FLATTENED: (RefState.LIVE,),
	# The identity lives on as the exclusive incarnation; the retired shared
	# incarnation records DROPPED separately (`retired_states`).
	RefState.UPGRADED: (RefState.LIVE,),
	RefState.DROPPED: (),
}


class EdgeKind(Enum):
	OWNERSHIP = "ownership"
	FIELD_PROJECTION = "field-projection"
	CALL_ACCESSIBILITY = "call-accessibility"


@dataclass(frozen=True)
class MemoryLocation:
	"""A unit of storage with a structural type."""

	node_id: int
	name: str
	type: TypeDescriptor
	kind: PlaceKind = PlaceKind.LOCAL

	@property
	def is_static(self) -> bool:
		return self.kind is PlaceKind.STATIC

	def place_base(self) -> PlaceBase:
		return PlaceBase(self.kind, self.node_id, self.name)


@dataclass(frozen=True)
class Reference:
	"""A borrow or owner pointer."""

	node_id: int
	name: str
	role: RefRole
	def_point: Optional[int] = None
	span: Span = field(default_factory=Span, compare=False)


Node = MemoryLocation | Reference


@dataclass(frozen=True)
class DerivationEdge:
	"""
	`parent` derives `child`.

	`path` is the field path from the parent's place to the child's place;
	flattening composes paths so the child's place never changes.
	"""

	parent: int
	child: int
	kind: EdgeKind
	path: Tuple[str, ...] = ()
	call_site: Optional[str] = None
	param: Optional[str] = None  # accessibility root parameter of a call edge


@dataclass(frozen=True)
class Resolution:
	"""Where a reference ultimately points."""

	location: MemoryLocation
	place: Place
	chain: Tuple[DerivationEdge, ...]  # child-first


class AmbiguousDependency(Exception):
	"""
	A reference's derivation cannot be pinned to one root.

	This is an ordinary negative result (it becomes a rejection), not a fault.
	"""

	def __init__(
		self,
		message: str,
		*,
		reference: Optional[Reference] = None,
		candidates: Sequence[int] = (),
		call_site: Optional[str] = None,
	) -> None:
		super().__init__(message)
		self.reference = reference
		self.candidates = tuple(candidates)
		self.call_site = call_site


class DerivationGraph:
	"""All locations, references and derivation edges of one analyzed unit."""

	def __init__(self, unit: Optional[str] = None) -> None:
		self.unit = unit
		self._nodes: Dict[int, Node] = {}
		self._by_name: Dict[str, int] = {}
		self._edges: Dict[int, Tuple[DerivationEdge, ...]] = {}  # child -> incoming edges
		self._history: Dict[int, List[RefState]] = {}
		self._retired: List[Tuple[Reference, Tuple[RefState, ...]]] = []
		self._next_id = 1
		self._flatten_lock = threading.Lock()

	# ------------------------------------------------------------------
	# construction

	def _fault(self, code: str, message: str, subject: Optional[str] = None) -> AnalysisFault:
		return AnalysisFault(code, message, subject=subject, unit=self.unit)

	def _alloc(self) -> int:
		node_id = self._next_id
		self._next_id += 1
		return node_id

	def _register_name(self, name: str) -> None:
		if name in self._by_name:
			raise self._fault(DUPLICATE_DEFINITION, f"'{name}' is defined more than once", subject=name)

	def _add_reference(self, name: str, role: RefRole, edges: Sequence[DerivationEdge], def_point: Optional[int], span: Optional[Span]) -> Reference:
		ref = Reference(node_id=edges[0].child, name=name, role=role, def_point=def_point, span=span or Span())
		self._nodes[ref.node_id] = ref
		self._by_name[name] = ref.node_id
		self._edges[ref.node_id] = tuple(edges)
		self._history[ref.node_id] = [RefState.CREATED]
		return ref

	def add_location(self, name: str, ty: TypeDescriptor, kind: PlaceKind = PlaceKind.LOCAL) -> MemoryLocation:
		"""Register a memory location; locations are named after what introduced them."""
		loc = MemoryLocation(node_id=self._alloc(), name=name, type=ty, kind=kind)
		self._nodes[loc.node_id] = loc
		return loc

	def declare_owner(self, name: str, ty: TypeDescriptor, *, def_point: Optional[int] = None, span: Optional[Span] = None, kind: PlaceKind = PlaceKind.LOCAL) -> Reference:
		"""Create a location together with its owning reference."""
		self._register_name(name)
		loc = self.add_location(name, ty, kind)
		edge = DerivationEdge(parent=loc.node_id, child=self._alloc(), kind=EdgeKind.OWNERSHIP)
		return self._add_reference(name, RefRole.OWNER, [edge], def_point, span)

	def declare_param(self, name: str, ty: TypeDescriptor, role: RefRole, *, def_point: Optional[int] = None, span: Optional[Span] = None) -> Reference:
		"""
		Introduce a parameter.

		An owned parameter owns a fresh location. A borrowed parameter points
		into a location owned by the caller, which therefore has no owner in
		this unit.
		"""
		if role is RefRole.OWNER:
			return self.declare_owner(name, ty, def_point=def_point, span=span, kind=PlaceKind.PARAM)
		self._register_name(name)
		loc = self.add_location(f"*{name}", ty, PlaceKind.PARAM)
		edge = DerivationEdge(parent=loc.node_id, child=self._alloc(), kind=EdgeKind.FIELD_PROJECTION)
		return self._add_reference(name, role, [edge], def_point, span)

	def declare_static(self, name: str, ty: TypeDescriptor) -> MemoryLocation:
		"""Register global immutable storage; it never has an owning reference."""
		self._register_name(name)
		loc = self.add_location(name, ty, PlaceKind.STATIC)
		self._by_name[name] = loc.node_id
		return loc

	def add_field_borrow(
		self,
		parent: int,
		fields: Sequence[str],
		*,
		name: str,
		role: RefRole = RefRole.SHARED,
		def_point: Optional[int] = None,
		span: Optional[Span] = None,
	) -> Reference:
		"""Borrow `parent.<fields>`; an empty field list borrows the whole parent."""
		self.node(parent)
		if role is RefRole.OWNER:
			raise self._fault(MALFORMED_EVENT, f"borrow '{name}' cannot create an owner", subject=name)
		self._register_name(name)
		edge = DerivationEdge(parent=parent, child=self._alloc(), kind=EdgeKind.FIELD_PROJECTION, path=tuple(fields))
		return self._add_reference(name, role, [edge], def_point, span)

	def add_call_edge(
		self,
		parent: int,
		*,
		name: str,
		role: RefRole = RefRole.SHARED,
		call_site: Optional[str] = None,
		param: Optional[str] = None,
		def_point: Optional[int] = None,
		span: Optional[Span] = None,
	) -> Reference:
		"""Register a call result whose accessibility root is the argument `parent`."""
		self.node(parent)
		self._register_name(name)
		edge = DerivationEdge(parent=parent, child=self._alloc(), kind=EdgeKind.CALL_ACCESSIBILITY, call_site=call_site, param=param)
		return self._add_reference(name, role, [edge], def_point, span)

	def add_ambiguous_call(
		self,
		candidates: Sequence[Tuple[int, str]],
		*,
		name: str,
		role: RefRole = RefRole.SHARED,
		call_site: Optional[str] = None,
		def_point: Optional[int] = None,
		span: Optional[Span] = None,
	) -> Reference:
		"""
		Register a call result that may derive from any candidate.

		`candidates` pairs each argument node with the parameter it was passed
		to; the same node passed twice still yields two edges, since ambiguity
		is a property of the declaration, not of the arguments.
		"""
		if len(candidates) < 2:
			raise self._fault(MALFORMED_EVENT, f"ambiguous result '{name}' needs at least two candidates", subject=name)
		for parent, _ in candidates:
			self.node(parent)
		self._register_name(name)
		child = self._alloc()
		edges = [
			DerivationEdge(parent=parent, child=child, kind=EdgeKind.CALL_ACCESSIBILITY, call_site=call_site, param=param)
			for parent, param in candidates
		]
		return self._add_reference(name, role, edges, def_point, span)

	def add_external_ref(
		self,
		ty: TypeDescriptor,
		*,
		name: str,
		role: RefRole = RefRole.SHARED,
		call_site: Optional[str] = None,
		def_point: Optional[int] = None,
		span: Optional[Span] = None,
	) -> Reference:
		"""Register a call result that derives from none of the arguments."""
		self._register_name(name)
		loc = self.add_location(f"*{name}", ty, PlaceKind.PARAM)
		edge = DerivationEdge(parent=loc.node_id, child=self._alloc(), kind=EdgeKind.CALL_ACCESSIBILITY, call_site=call_site)
		return self._add_reference(name, role, [edge], def_point, span)

	def transfer(self, owner: int, *, name: str, def_point: Optional[int] = None, span: Optional[Span] = None) -> Reference:
		"""Move ownership of `owner`'s location to a new owning reference."""
		src = self.reference(owner)
		if src.role is not RefRole.OWNER:
			raise self._fault(MALFORMED_EVENT, f"cannot transfer ownership from non-owner '{src.name}'", subject=src.name)
		loc = self.location_of_owner(owner)
		self._register_name(name)
		edge = DerivationEdge(parent=loc.node_id, child=self._alloc(), kind=EdgeKind.OWNERSHIP)
		return self._add_reference(name, RefRole.OWNER, [edge], def_point, span)

	def add_edge(self, edge: DerivationEdge) -> None:
		"""
		Insert an edge supplied directly by an upstream collaborator.

		Edges built through the typed constructors above are acyclic by
		construction; raw edges are validated here.
		"""
		parent = self.node(edge.parent)
		child = self.node(edge.child)
		if not isinstance(child, Reference):
			raise self._fault(MALFORMED_EVENT, f"edge target '{child.name}' is not a reference", subject=child.name)
		if edge.parent == edge.child or edge.child in self.ancestors(edge.parent):
			raise self._fault(CYCLE, f"edge {parent.name} -> {child.name} closes a derivation cycle", subject=child.name)
		self._edges[edge.child] = self._edges.get(edge.child, ()) + (edge,)

	# ------------------------------------------------------------------
	# lookup

	def node(self, node_id: int) -> Node:
		n = self._nodes.get(node_id)
		if n is None:
			raise self._fault(UNKNOWN_NODE, f"derivation graph has no node #{node_id}", subject=str(node_id))
		return n

	def reference(self, node_id: int) -> Reference:
		n = self.node(node_id)
		if not isinstance(n, Reference):
			raise self._fault(UNKNOWN_NODE, f"'{n.name}' is a memory location, not a reference", subject=n.name)
		return n

	def lookup(self, name: str) -> Node:
		node_id = self._by_name.get(name)
		if node_id is None:
			raise self._fault(UNKNOWN_NODE, f"unknown reference '{name}'", subject=name)
		return self._nodes[node_id]

	def has_name(self, name: str) -> bool:
		return name in self._by_name

	def references(self) -> Iterator[Reference]:
		for n in self._nodes.values():
			if isinstance(n, Reference):
				yield n

	def parent_edges(self, child: int) -> Tuple[DerivationEdge, ...]:
		return self._edges.get(child, ())

	def edges(self) -> List[DerivationEdge]:
		return [e for es in self._edges.values() for e in es]

	def ancestors(self, node_id: int) -> Set[int]:
		"""Every node reachable by following parent edges (all candidates of ambiguous edges)."""
		seen: Set[int] = set()
		stack = [node_id]
		while stack:
			cur = stack.pop()
			for e in self._edges.get(cur, ()):
				if e.parent not in seen:
					seen.add(e.parent)
					stack.append(e.parent)
		return seen

	def location_of_owner(self, owner: int) -> MemoryLocation:
		for e in self._edges.get(owner, ()):
			if e.kind is EdgeKind.OWNERSHIP:
				loc = self.node(e.parent)
				if isinstance(loc, MemoryLocation):
					return loc
		ref = self.reference(owner)
		raise self._fault(MALFORMED_EVENT, f"'{ref.name}' does not own a location", subject=ref.name)

	def owners_of(self, location_id: int) -> List[Reference]:
		"""Every owning reference ever bound to the location (ownership may be transferred)."""
		out: List[Reference] = []
		for child, es in self._edges.items():
			if any(e.kind is EdgeKind.OWNERSHIP and e.parent == location_id for e in es):
				out.append(self.reference(child))
		return out

	def resolve(self, ref_id: int) -> Resolution:
		"""
		Follow the derivation chain of `ref_id` to its root location.

		Raises AmbiguousDependency when the chain crosses an ambiguous call
		edge: such a reference has no single root.
		"""
		chain: List[DerivationEdge] = []
		path: Tuple[str, ...] = ()
		seen: Set[int] = set()
		node_id = ref_id
		while True:
			n = self.node(node_id)
			if isinstance(n, MemoryLocation):
				return Resolution(location=n, place=Place(n.place_base()).with_path(path), chain=tuple(chain))
			if node_id in seen:
				raise self._fault(CYCLE, f"derivation chain of '{self.node(ref_id).name}' is cyclic", subject=n.name)
			seen.add(node_id)
			es = self._edges.get(node_id, ())
			if not es:
				raise self._fault(UNKNOWN_NODE, f"reference '{n.name}' has no derivation parent", subject=n.name)
			if len(es) > 1:
				raise AmbiguousDependency(
					f"'{n.name}' may derive from any of {self._names(e.parent for e in es)}",
					reference=n,
					candidates=[e.parent for e in es],
					call_site=es[0].call_site,
				)
			chain.append(es[0])
			path = es[0].path + path
			node_id = es[0].parent

	def candidate_places(self, ref_id: int) -> List[Place]:
		"""Every place `ref_id` might denote (more than one only through ambiguous edges)."""
		out: List[Place] = []

		def walk(node_id: int, path: Tuple[str, ...], seen: frozenset[int]) -> None:
			n = self.node(node_id)
			if isinstance(n, MemoryLocation):
				place = Place(n.place_base()).with_path(path)
				if place not in out:
					out.append(place)
				return
			if node_id in seen:
				raise self._fault(CYCLE, f"derivation chain through '{n.name}' is cyclic", subject=n.name)
			for e in self._edges.get(node_id, ()):
				walk(e.parent, e.path + path, seen | {node_id})

		walk(ref_id, (), frozenset())
		return out

	def describe_edge(self, edge: DerivationEdge) -> str:
		parent = self.node(edge.parent).name
		child = self.node(edge.child).name
		path = "".join(f".{p}" for p in edge.path)
		site = f" @{edge.call_site}" if edge.call_site else ""
		if edge.param:
			site += f" via {edge.param}"
		return f"{parent}{path} -> {child} ({edge.kind.value}{site})"

	def _names(self, ids) -> str:
		return ", ".join(f"'{self.node(i).name}'" for i in ids)

	# ------------------------------------------------------------------
	# lifecycle and rewriting

	def state(self, ref_id: int) -> RefState:
		self.reference(ref_id)
		return self._history[ref_id][-1]

	def history(self, ref_id: int) -> List[RefState]:
		self.reference(ref_id)
		return list(self._history[ref_id])

	def _transition(self, ref_id: int, new_state: RefState) -> None:
		curr = self.state(ref_id)
		if new_state not in _TRANSITIONS[curr]:
			ref = self.reference(ref_id)
			raise self._fault(MALFORMED_EVENT, f"'{ref.name}' cannot go from {curr.name} to {new_state.name}", subject=ref.name)
		self._history[ref_id].append(new_state)

	def mark_live(self, ref_id: int) -> None:
		if self.state(ref_id) is RefState.CREATED:
			self._transition(ref_id, RefState.LIVE)

	def mark_dropped(self, ref_id: int) -> None:
		if self.state(ref_id) is not RefState.DROPPED:
			self._transition(ref_id, RefState.DROPPED)

	def replace_edge(self, old: DerivationEdge, new: DerivationEdge) -> None:
		"""Swap the single incoming edge of a child (used by flattening)."""
		if self._edges.get(old.child) != (old,) or new.child != old.child:
			ref = self.node(old.child)
			raise self._fault(MALFORMED_EVENT, f"edge into '{ref.name}' cannot be rewritten", subject=ref.name)
		self.node(new.parent)
		self._edges[old.child] = (new,)
		if self.state(old.child) is RefState.LIVE:
			self._transition(old.child, RefState.FLATTENED)
			self._transition(old.child, RefState.LIVE)

	def upgrade(self, ref_id: int) -> Reference:
		"""
		Replace the shared incarnation of `ref_id` by an exclusive one.

		The old incarnation is retired as DROPPED; the new one keeps the identity
		and the derivation edges.
		"""
		old = self.reference(ref_id)
		shared = tuple(self._history[ref_id]) + (RefState.DROPPED,)
		self._transition(ref_id, RefState.UPGRADED)
		new = replace(old, role=RefRole.EXCLUSIVE)
		self._nodes[ref_id] = new
		self._retired.append((old, shared))
		self._transition(ref_id, RefState.LIVE)
		return new

	def retired(self) -> List[Reference]:
		"""Shared incarnations dropped by upgrades, oldest first."""
		return [ref for ref, _ in self._retired]

	def retired_states(self) -> List[Tuple[Reference, Tuple[RefState, ...]]]:
		"""Each retired incarnation with its own lifecycle, which ends in DROPPED."""
		return list(self._retired)

	@property
	def flatten_lock(self) -> threading.Lock:
		return self._flatten_lock

	def copy(self) -> "DerivationGraph":
		"""A working copy; nodes are shared (immutable), edges and states are not."""
		g = DerivationGraph(self.unit)
		g._nodes = dict(self._nodes)
		g._by_name = dict(self._by_name)
		g._edges = dict(self._edges)
		g._history = {k: list(v) for k, v in self._history.items()}
		g._retired = list(self._retired)
		g._next_id = self._next_id
		return g

	def adopt(self, other: "DerivationGraph") -> None:
		"""Commit a working copy produced by `copy()`."""
		self._nodes = other._nodes
		self._by_name = other._by_name
		self._edges = other._edges
		self._history = other._history
		self._retired = other._retired
		self._next_id = other._next_id


__all__ = [
	"AmbiguousDependency",
	"DerivationEdge",
	"DerivationGraph",
	"EdgeKind",
	"MemoryLocation",
	"Node",
	"Reference",
	"RefRole",
	"RefState",
	"Resolution",
]
