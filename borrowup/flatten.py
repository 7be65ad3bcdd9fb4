# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Derivation-chain flattening.

Given `v → x1 → x2` with `x2 = &x1.data1`, once `x1` has no remaining use the
edge into `x2` is rewritten to hang directly off `v` with the composed path
(`v.data1`). The rewritten chain denotes the same place, so resolution is
unchanged; only the containment invariant stops holding `x1` alive.

A resolved call edge behaves like a projection with an empty path: the result
of `first(x1)` is re-rooted onto `x1`'s nearest live ancestor once `x1` is
dead, and a dead call result is skipped over by borrows taken from it. The
edges of an ambiguous result are never rewritten.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Tuple

from borrowup.graph import DerivationEdge, DerivationGraph, EdgeKind, Reference, RefRole
from borrowup.liveness import LivenessTracker


_REWRITABLE = (EdgeKind.FIELD_PROJECTION, EdgeKind.CALL_ACCESSIBILITY)


@dataclass(frozen=True)
class FlattenStep:
	"""One edge rewrite, recorded for diagnostics."""

	old: DerivationEdge
	new: DerivationEdge


def _elidable(graph: DerivationGraph, parent_id: int, point: int, liveness: LivenessTracker) -> Tuple[bool, DerivationEdge | None]:
	"""
	Return (True, parent's incoming edge) when `parent_id` can be skipped over.

	Only a shared reference with no direct use reachable from `point`, itself
	derived through a single projection or resolved call edge, is skipped.
	"""
	parent = graph.node(parent_id)
	if not isinstance(parent, Reference) or parent.role is not RefRole.SHARED:
		return False, None
	if parent.name in liveness.direct_live(point):
		return False, None
	es = graph.parent_edges(parent_id)
	if len(es) != 1 or es[0].kind not in _REWRITABLE:
		return False, None
	return True, es[0]


def flatten(graph: DerivationGraph, edge: DerivationEdge, point: int, liveness: LivenessTracker) -> DerivationEdge:
	"""
	Rewrite `edge` to the nearest ancestor that must stay, and return the edge in effect.

	The walk stops at a live reference, an owner, an exclusive reference, an
	ambiguous call result, or the memory location. Exclusive children, ownership
	edges and the edges of ambiguous results are returned unchanged.
	"""
	if edge.kind not in _REWRITABLE or len(graph.parent_edges(edge.child)) != 1:
		return edge
	child = graph.reference(edge.child)
	if child.role is not RefRole.SHARED:
		return edge

	parent_id = edge.parent
	path = edge.path
	while True:
		ok, up = _elidable(graph, parent_id, point, liveness)
		if not ok:
			break
		path = up.path + path
		parent_id = up.parent

	if parent_id == edge.parent:
		return edge
	new = replace(edge, parent=parent_id, path=path)
	graph.replace_edge(edge, new)
	return new


def flatten_to_fixpoint(graph: DerivationGraph, point: int, liveness: LivenessTracker) -> List[FlattenStep]:
	"""
	Flatten every eligible edge of `graph` at `point` until nothing changes.

	Runs under the graph's flatten lock. Returns the rewrites, oldest first;
	a second call at the same point returns an empty list.
	"""
	steps: List[FlattenStep] = []
	with graph.flatten_lock:
		changed = True
		while changed:
			changed = False
			for edge in graph.edges():
				new = flatten(graph, edge, point, liveness)
				if new != edge:
					steps.append(FlattenStep(edge, new))
					changed = True
	return steps


__all__ = ["FlattenStep", "flatten", "flatten_to_fixpoint"]
