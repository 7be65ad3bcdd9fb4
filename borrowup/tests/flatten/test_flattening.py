#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Flattening of dead intermediate borrows."""

from borrowup import events as E
from borrowup.flatten import flatten, flatten_to_fixpoint
from borrowup.graph import DerivationGraph, EdgeKind, RefRole, RefState
from borrowup.liveness import ControlFlowGraph, LivenessTracker
from borrowup.types_model import INT, FieldKind, FieldSpec, TypeDescriptor


PAIR = TypeDescriptor(
	"Pair",
	(FieldSpec("data1", FieldKind.VALUE, INT), FieldSpec("data2", FieldKind.VALUE, INT)),
)
NESTED = TypeDescriptor(
	"Nested",
	(FieldSpec("inner", FieldKind.VALUE, TypeDescriptor("Inner", (FieldSpec("left", FieldKind.VALUE, PAIR),))),),
)


def _setup(events, build):
	"""Liveness from `events`; the graph is built by `build(graph)` with matching names."""
	lv = LivenessTracker(ControlFlowGraph.build(events))
	g = DerivationGraph("main")
	build(g)
	for ref in list(g.references()):
		g.mark_live(ref.node_id)
	return g, lv


def _chain(g, x1_role=RefRole.SHARED, x2_role=RefRole.SHARED):
	v = g.declare_owner("v", PAIR)
	x1 = g.add_field_borrow(v.node_id, (), name="x1", role=x1_role)
	g.add_field_borrow(x1.node_id, ("data1",), name="x2", role=x2_role)


CHAIN_EVENTS = (
	E.OwnerDeclared("v", PAIR),
	E.Borrow("x1", "v"),
	E.Borrow("x2", "x1", ("data1",)),
	E.UpgradeRequest("x2"),
	E.Use("x2"),
)


def test_dead_intermediate_is_elided_and_place_is_preserved():
	"""The child is attached to v with the composed path and resolves unchanged."""
	g, lv = _setup(CHAIN_EVENTS, _chain)
	x2 = g.lookup("x2")
	before = g.resolve(x2.node_id).place
	steps = flatten_to_fixpoint(g, 3, lv)
	assert len(steps) == 1
	(edge,) = g.parent_edges(x2.node_id)
	assert edge.parent == g.lookup("v").node_id
	assert edge.path == ("data1",)
	assert g.resolve(x2.node_id).place == before
	assert g.history(x2.node_id)[-2:] == [RefState.FLATTENED, RefState.LIVE]


def test_flattening_is_idempotent():
	"""A second pass at the same point rewrites nothing."""
	g, lv = _setup(CHAIN_EVENTS, _chain)
	flatten_to_fixpoint(g, 3, lv)
	edges = g.edges()
	assert flatten_to_fixpoint(g, 3, lv) == []
	assert g.edges() == edges


def test_live_intermediate_is_kept():
	"""A used intermediate borrow is not skipped."""
	events = CHAIN_EVENTS + (E.Use("x1"),)
	g, lv = _setup(events, _chain)
	assert flatten_to_fixpoint(g, 3, lv) == []
	assert g.parent_edges(g.lookup("x2").node_id)[0].parent == g.lookup("x1").node_id


def test_exclusive_child_is_not_flattened():
	"""Edges into exclusive references are left alone."""
	g, lv = _setup(CHAIN_EVENTS, lambda g: _chain(g, x2_role=RefRole.EXCLUSIVE))
	edge = g.parent_edges(g.lookup("x2").node_id)[0]
	assert flatten(g, edge, 3, lv) == edge


def test_walk_stops_at_exclusive_intermediate():
	"""The walk never crosses an exclusive reference."""
	g, lv = _setup(CHAIN_EVENTS, lambda g: _chain(g, x1_role=RefRole.EXCLUSIVE))
	assert flatten_to_fixpoint(g, 3, lv) == []


def test_multi_hop_chain_composes_paths():
	"""Several dead hops collapse into one edge with the full path."""
	events = (
		E.OwnerDeclared("v", NESTED),
		E.Borrow("a", "v", ("inner",)),
		E.Borrow("b", "a", ("left",)),
		E.Borrow("c", "b", ("data1",)),
		E.UpgradeRequest("c"),
		E.Use("c"),
	)

	def build(g):
		v = g.declare_owner("v", NESTED)
		a = g.add_field_borrow(v.node_id, ("inner",), name="a")
		b = g.add_field_borrow(a.node_id, ("left",), name="b")
		g.add_field_borrow(b.node_id, ("data1",), name="c")

	g, lv = _setup(events, build)
	flatten_to_fixpoint(g, 4, lv)
	(edge,) = g.parent_edges(g.lookup("c").node_id)
	assert edge.parent == g.lookup("v").node_id
	assert edge.path == ("inner", "left", "data1")
	assert str(g.resolve(g.lookup("c").node_id).place) == "v.inner.left.data1"


CALL_EVENTS = (
	E.OwnerDeclared("v", PAIR),
	E.Borrow("x1", "v"),
	E.Call("first", ("x1",), result="r"),
	E.Borrow("y", "r", ("data1",)),
	E.UpgradeRequest("y"),
	E.Use("y"),
)


def _call_chain(g):
	v = g.declare_owner("v", PAIR)
	x1 = g.add_field_borrow(v.node_id, (), name="x1")
	r = g.add_call_edge(x1.node_id, name="r", call_site="first#2", param="a")
	g.add_field_borrow(r.node_id, ("data1",), name="y")


def test_dead_call_result_and_argument_are_elided():
	"""A borrow of a dead call result whose argument is dead hangs off the owner."""
	g, lv = _setup(CALL_EVENTS, _call_chain)
	y = g.lookup("y")
	before = g.resolve(y.node_id).place
	flatten_to_fixpoint(g, 4, lv)
	(edge,) = g.parent_edges(y.node_id)
	assert edge.parent == g.lookup("v").node_id
	assert edge.path == ("data1",)
	assert g.resolve(y.node_id).place == before


def test_call_edge_is_rerooted_and_keeps_its_call_site():
	"""The call edge itself moves past the dead argument and stays a call edge."""
	g, lv = _setup(CALL_EVENTS, _call_chain)
	flatten_to_fixpoint(g, 4, lv)
	(edge,) = g.parent_edges(g.lookup("r").node_id)
	assert edge.parent == g.lookup("v").node_id
	assert edge.kind is EdgeKind.CALL_ACCESSIBILITY
	assert (edge.call_site, edge.param) == ("first#2", "a")


def test_walk_stops_at_live_call_result():
	"""A call result that is still used keeps the borrow taken from it."""
	g, lv = _setup(CALL_EVENTS + (E.Use("r"),), _call_chain)
	flatten_to_fixpoint(g, 4, lv)
	assert g.parent_edges(g.lookup("y").node_id)[0].parent == g.lookup("r").node_id
	assert g.parent_edges(g.lookup("r").node_id)[0].parent == g.lookup("v").node_id


def test_ambiguous_call_edges_are_never_rewritten():
	"""Every candidate edge of an ambiguous result survives, and so does a borrow of it."""
	events = (
		E.OwnerDeclared("v", PAIR),
		E.OwnerDeclared("w", PAIR),
		E.Borrow("a", "v"),
		E.Borrow("b", "w"),
		E.Call("pick", ("a", "b"), result="r"),
		E.Borrow("y", "r", ("data1",)),
		E.UpgradeRequest("y"),
		E.Use("y"),
	)

	def build(g):
		v = g.declare_owner("v", PAIR)
		w = g.declare_owner("w", PAIR)
		a = g.add_field_borrow(v.node_id, (), name="a")
		b = g.add_field_borrow(w.node_id, (), name="b")
		r = g.add_ambiguous_call([(a.node_id, "a"), (b.node_id, "b")], name="r", call_site="pick#4")
		g.add_field_borrow(r.node_id, ("data1",), name="y")

	g, lv = _setup(events, build)
	assert flatten_to_fixpoint(g, 6, lv) == []
	assert [e.parent for e in g.parent_edges(g.lookup("r").node_id)] == [g.lookup("a").node_id, g.lookup("b").node_id]
