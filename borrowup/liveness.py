# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Control flow and liveness for one analyzed unit.

The event stream is lowered into basic blocks of program points (one point per
straight-line event, numbered in source order). Two fixpoints run over it:

  * backward liveness: a name is live before a point if some use is reachable
    from it without an intervening redefinition or drop. Branch joins take the
    union, so a name counts as dead only when it is dead on every path;
  * forward availability: a name is available before a point when it is
    defined on every path reaching the point and dropped on none. This is
    what "owner in scope" means.

`live_set` adds the containment invariant on top of direct liveness: the
parent of every edge in the derivation graph is live wherever its child is.
Flattening removes edges, so the closure is recomputed on every query.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

from borrowup.core.errors import AnalysisFault, LIVENESS_DIVERGED, MALFORMED_EVENT
from borrowup import events as E
from borrowup.graph import DerivationGraph, Reference


@dataclass
class Terminator:
	"""CFG terminator describing control-flow edges out of a basic block."""

	kind: str  # "jump", "branch", "return"
	targets: List[int] = field(default_factory=list)


@dataclass
class BasicBlock:
	"""Basic block of program points with a single terminator."""

	id: int
	points: List[int] = field(default_factory=list)
	terminator: Optional[Terminator] = None


@dataclass(frozen=True)
class ProgramPoint:
	index: int
	block: int
	event: E.Event


class ControlFlowGraph:
	"""Blocks and program points lowered from a structured event stream."""

	def __init__(self) -> None:
		self.blocks: List[BasicBlock] = []
		self.points: List[ProgramPoint] = []
		self.entry = 0
		self._preds: Optional[Dict[int, List[int]]] = None

	@classmethod
	def build(cls, events: Sequence[E.Event]) -> "ControlFlowGraph":
		"""
		Lower events into blocks.

		A Branch ends the current block with a two-way branch; both arms jump
		to a fresh join block. A Loop jumps to a header that either enters the
		body (whose end jumps back to the header) or exits. Return ends a block
		with no successors; anything after it lands in an unreachable block.
		"""
		cfg = cls()
		entry = cfg._new_block()
		cfg.entry = entry.id
		end = cfg._lower(events, entry)
		if end is not None:
			end.terminator = Terminator("return")
		return cfg

	def _new_block(self) -> BasicBlock:
		bb = BasicBlock(id=len(self.blocks))
		self.blocks.append(bb)
		return bb

	def _add_point(self, bb: BasicBlock, ev: E.Event) -> None:
		pt = ProgramPoint(index=len(self.points), block=bb.id, event=ev)
		self.points.append(pt)
		bb.points.append(pt.index)

	def _lower(self, events: Sequence[E.Event], bb: Optional[BasicBlock]) -> Optional[BasicBlock]:
		for ev in events:
			if bb is None:
				bb = self._new_block()  # unreachable tail after a return
			if isinstance(ev, E.Branch):
				then_bb = self._new_block()
				else_bb = self._new_block()
				bb.terminator = Terminator("branch", [then_bb.id, else_bb.id])
				ends = [self._lower(ev.then_events, then_bb), self._lower(ev.else_events, else_bb)]
				join = self._new_block()
				for end in ends:
					if end is not None:
						end.terminator = Terminator("jump", [join.id])
				bb = join
			elif isinstance(ev, E.Loop):
				head = self._new_block()
				bb.terminator = Terminator("jump", [head.id])
				body = self._new_block()
				exit_bb = self._new_block()
				head.terminator = Terminator("branch", [body.id, exit_bb.id])
				body_end = self._lower(ev.body, body)
				if body_end is not None:
					body_end.terminator = Terminator("jump", [head.id])
				bb = exit_bb
			elif isinstance(ev, E.Return):
				self._add_point(bb, ev)
				bb.terminator = Terminator("return")
				bb = None
			else:
				self._add_point(bb, ev)
		return bb

	def succs(self, block_id: int) -> List[int]:
		term = self.blocks[block_id].terminator
		return list(term.targets) if term else []

	def preds(self, block_id: int) -> List[int]:
		if self._preds is None:
			preds: Dict[int, List[int]] = {b.id: [] for b in self.blocks}
			for b in self.blocks:
				for t in self.succs(b.id):
					preds[t].append(b.id)
			self._preds = preds
		return self._preds[block_id]

	def point(self, index: int) -> ProgramPoint:
		if index < 0 or index >= len(self.points):
			raise AnalysisFault(MALFORMED_EVENT, f"no program point {index}", subject=str(index))
		return self.points[index]

	def pass_limit(self) -> int:
		return len(self.points) + len(self.blocks) + 1


class LivenessTracker:
	"""Backward liveness and forward availability over a ControlFlowGraph."""

	def __init__(self, cfg: ControlFlowGraph, *, unit: Optional[str] = None) -> None:
		self.cfg = cfg
		self.unit = unit
		self.passes = 0
		self._live_before: List[FrozenSet[str]] = [frozenset()] * len(cfg.points)
		self._live_after: List[FrozenSet[str]] = [frozenset()] * len(cfg.points)
		self._avail_before: List[FrozenSet[str]] = [frozenset()] * len(cfg.points)
		self._unreachable: Set[int] = set()
		self._compute_liveness()
		self._compute_availability()

	def _diverged(self, what: str) -> AnalysisFault:
		return AnalysisFault(
			LIVENESS_DIVERGED,
			f"{what} did not reach a fixpoint within {self.cfg.pass_limit()} passes",
			unit=self.unit,
		)

	def _compute_liveness(self) -> None:
		cfg = self.cfg
		live_in: Dict[int, FrozenSet[str]] = {b.id: frozenset() for b in cfg.blocks}
		live_out: Dict[int, FrozenSet[str]] = {b.id: frozenset() for b in cfg.blocks}
		changed = True
		passes = 0
		while changed:
			passes += 1
			if passes > cfg.pass_limit():
				raise self._diverged("liveness")
			changed = False
			for blk in reversed(cfg.blocks):
				out: Set[str] = set()
				for succ in cfg.succs(blk.id):
					out |= live_in[succ]
				live = frozenset(out)
				for idx in reversed(blk.points):
					live = self._transfer_backward(cfg.points[idx].event, live)
				out_f = frozenset(out)
				if out_f != live_out[blk.id] or live != live_in[blk.id]:
					live_out[blk.id] = out_f
					live_in[blk.id] = live
					changed = True
		self.passes = passes

		for blk in cfg.blocks:
			live = live_out[blk.id]
			for idx in reversed(blk.points):
				self._live_after[idx] = live
				live = self._transfer_backward(cfg.points[idx].event, live)
				self._live_before[idx] = live

	@staticmethod
	def _transfer_backward(ev: E.Event, live: FrozenSet[str]) -> FrozenSet[str]:
		killed = set(E.defs_of(ev)) | set(E.kills_of(ev))
		return frozenset((live - killed) | set(E.uses_of(ev)))

	def _compute_availability(self) -> None:
		cfg = self.cfg
		# None is "not reached yet" (top of the must-lattice).
		avail_out: Dict[int, Optional[FrozenSet[str]]] = {b.id: None for b in cfg.blocks}
		changed = True
		passes = 0
		while changed:
			passes += 1
			if passes > cfg.pass_limit():
				raise self._diverged("availability")
			changed = False
			for blk in cfg.blocks:
				avail = self._avail_in(blk.id, avail_out)
				if avail is None:
					continue
				for idx in blk.points:
					avail = self._transfer_forward(cfg.points[idx].event, avail)
				if avail != avail_out[blk.id]:
					avail_out[blk.id] = avail
					changed = True

		for blk in cfg.blocks:
			avail = self._avail_in(blk.id, avail_out)
			if avail is None:
				# Unreachable code: nothing is available there.
				avail = frozenset()
				self._unreachable.update(blk.points)
			for idx in blk.points:
				self._avail_before[idx] = avail
				avail = self._transfer_forward(cfg.points[idx].event, avail)

	def _avail_in(self, block_id: int, avail_out: Dict[int, Optional[FrozenSet[str]]]) -> Optional[FrozenSet[str]]:
		if block_id == self.cfg.entry:
			return frozenset()
		reached = [avail_out[p] for p in self.cfg.preds(block_id) if avail_out[p] is not None]
		if not reached:
			return None
		out = reached[0]
		for other in reached[1:]:
			out = out & other
		return out

	@staticmethod
	def _transfer_forward(ev: E.Event, avail: FrozenSet[str]) -> FrozenSet[str]:
		return frozenset((avail - set(E.kills_of(ev))) | set(E.defs_of(ev)))

	# ------------------------------------------------------------------
	# queries

	def direct_live(self, point: int) -> FrozenSet[str]:
		"""Names with a use reachable from `point` (the event at `point` included)."""
		self.cfg.point(point)
		return self._live_before[point]

	def live_after(self, point: int) -> FrozenSet[str]:
		self.cfg.point(point)
		return self._live_after[point]

	def available(self, point: int) -> FrozenSet[str]:
		"""Names defined on every path to `point` and dropped on none."""
		self.cfg.point(point)
		return self._avail_before[point]

	def reachable(self, point: int) -> bool:
		"""False for points in blocks no path from the entry reaches (code after a return)."""
		self.cfg.point(point)
		return point not in self._unreachable

	def interval(self, name: str) -> FrozenSet[int]:
		"""Program points where `name` is directly live."""
		return frozenset(idx for idx, live in enumerate(self._live_before) if name in live)

	def live_set(self, point: int, graph: DerivationGraph) -> Set[int]:
		"""
		References live at `point`, closed under the containment invariant.

		Every parent of a live reference's (un-flattened) edge is live too.
		"""
		ids: Set[int] = set()
		for name in self.direct_live(point):
			if not graph.has_name(name):
				continue
			node = graph.lookup(name)
			if isinstance(node, Reference):
				ids.add(node.node_id)
		stack = list(ids)
		while stack:
			cur = stack.pop()
			for edge in graph.parent_edges(cur):
				parent = graph.node(edge.parent)
				if isinstance(parent, Reference) and parent.node_id not in ids:
					ids.add(parent.node_id)
					stack.append(parent.node_id)
		return ids


__all__ = [
	"BasicBlock",
	"ControlFlowGraph",
	"LivenessTracker",
	"ProgramPoint",
	"Terminator",
]
