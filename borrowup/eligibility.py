# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Upgrade decision rule.

`check_upgrade(y, p)` decides whether the shared reference `y` may become
exclusive at program point `p`. The graph is flattened on a working copy first
so that dead intermediate borrows no longer keep the root's other places
alive. The conditions are then evaluated in this order, and the first failure
is the rejection reason:

  1. AmbiguousDependency: `y`'s chain crosses an ambiguous call edge;
  2. StructIneligible: the root is static or its type has a `plain` field;
  3. NoOwnerInScope: no owner of the root location is available at `p`;
  4. LiveAliasExists: some other live non-owner reference overlaps `y`'s place.

A rejection leaves the graph untouched. An allowed upgrade commits the
flattened copy and replaces `y` by its exclusive incarnation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from borrowup.core.diagnostics import Diagnostic, PHASE_UPGRADECHECK
from borrowup.core.errors import AnalysisFault, MALFORMED_REQUEST
from borrowup.core.span import Span
from borrowup.flatten import FlattenStep, flatten_to_fixpoint
from borrowup.graph import AmbiguousDependency, DerivationGraph, Reference, RefRole
from borrowup.liveness import LivenessTracker
from borrowup.places import AliasGranularity, places_overlap
from borrowup.types_model import TypeEligibilityModel


class RejectReason(Enum):
	LIVE_ALIAS_EXISTS = "LiveAliasExists"
	AMBIGUOUS_DEPENDENCY = "AmbiguousDependency"
	STRUCT_INELIGIBLE = "StructIneligible"
	NO_OWNER_IN_SCOPE = "NoOwnerInScope"


@dataclass(frozen=True)
class Allowed:
	"""`reference` became exclusive; `new_ref_id` is its (unchanged) identity."""

	reference: str
	new_ref_id: int
	point: int
	label: Optional[str] = None
	place: str = ""
	flattened: Tuple[str, ...] = ()
	span: Span = field(default_factory=Span, compare=False)

	@property
	def allowed(self) -> bool:
		return True

	def to_dict(self) -> Dict[str, Any]:
		return {
			"verdict": "Allowed",
			"reference": self.reference,
			"new_ref_id": self.new_ref_id,
			"point": self.point,
			"label": self.label,
			"place": self.place,
			"flattened": list(self.flattened),
		}

	def to_diagnostic(self) -> Diagnostic:
		notes = [f"flattened {step}" for step in self.flattened]
		return Diagnostic(
			message=f"upgrade of '{self.reference}' to exclusive is allowed ({self.place})",
			code="upgrade-allowed",
			phase=PHASE_UPGRADECHECK,
			severity="note",
			span=self.span,
			notes=notes,
		)


@dataclass(frozen=True)
class Rejected:
	"""The upgrade was refused; `offending` names the reference, edge or location at fault."""

	reference: str
	reason: RejectReason
	offending: Optional[str]
	point: int
	label: Optional[str] = None
	detail: str = ""
	span: Span = field(default_factory=Span, compare=False)

	@property
	def allowed(self) -> bool:
		return False

	def to_dict(self) -> Dict[str, Any]:
		return {
			"verdict": "Rejected",
			"reference": self.reference,
			"reason": self.reason.value,
			"offending": self.offending,
			"point": self.point,
			"label": self.label,
			"detail": self.detail,
		}

	def to_diagnostic(self) -> Diagnostic:
		msg = f"cannot upgrade '{self.reference}' to exclusive: {self.reason.value}"
		if self.offending:
			msg += f" ('{self.offending}')"
		return Diagnostic(
			message=msg,
			code=self.reason.value,
			phase=PHASE_UPGRADECHECK,
			severity="error",
			span=self.span,
			notes=[self.detail] if self.detail else [],
		)


Verdict = Union[Allowed, Rejected]


class EligibilityChecker:
	"""Evaluates upgrade requests against one unit's graph and liveness."""

	def __init__(
		self,
		graph: DerivationGraph,
		liveness: LivenessTracker,
		*,
		types: Optional[TypeEligibilityModel] = None,
		granularity: AliasGranularity = AliasGranularity.FIELD,
	) -> None:
		self.graph = graph
		self.liveness = liveness
		self.types = types or TypeEligibilityModel()
		self.granularity = granularity

	def _request_fault(self, message: str, subject: str, span: Optional[Span] = None) -> AnalysisFault:
		return AnalysisFault(MALFORMED_REQUEST, message, subject=subject, unit=self.graph.unit, span=span)

	def _target(self, ref: Union[int, str], point: int) -> Reference:
		if isinstance(ref, str):
			if not self.graph.has_name(ref):
				raise self._request_fault(f"upgrade of unknown reference '{ref}'", ref)
			node = self.graph.lookup(ref)
		else:
			node = self.graph.node(ref)
		if not isinstance(node, Reference):
			raise self._request_fault(f"'{node.name}' is a memory location, not a reference", node.name)
		if node.role is not RefRole.SHARED:
			raise self._request_fault(f"'{node.name}' is {node.role.value}; only shared references can be upgraded", node.name, node.span)
		if node.name not in self.liveness.available(point):
			raise self._request_fault(f"'{node.name}' is not in scope at point {point}", node.name, node.span)
		return node

	def check_upgrade(self, ref: Union[int, str], point: int, *, label: Optional[str] = None, span: Optional[Span] = None) -> Verdict:
		"""Decide the upgrade of `ref` (node id or name) at `point`."""
		y = self._target(ref, point)
		span = span or y.span
		with self.graph.flatten_lock:
			working = self.graph.copy()
		steps = flatten_to_fixpoint(working, point, self.liveness)

		def reject(reason: RejectReason, offending: Optional[str], detail: str = "") -> Rejected:
			return Rejected(y.name, reason, offending, point, label=label, detail=detail, span=span)

		try:
			res = working.resolve(y.node_id)
		except AmbiguousDependency as exc:
			offending = exc.reference.name if exc.reference is not None else None
			return reject(RejectReason.AMBIGUOUS_DEPENDENCY, offending, str(exc))

		loc = res.location
		if loc.is_static:
			return reject(RejectReason.STRUCT_INELIGIBLE, loc.name, f"'{loc.name}' is static storage and has no owner")
		bad = self.types.ineligible_field(loc.type)
		if bad is not None:
			return reject(
				RejectReason.STRUCT_INELIGIBLE,
				f"{loc.name}.{bad}",
				f"type '{loc.type.name}' holds a plain immutable reference in field '{bad}'",
			)

		in_scope = self.liveness.available(point)
		if not any(o.name in in_scope for o in working.owners_of(loc.node_id)):
			return reject(RejectReason.NO_OWNER_IN_SCOPE, loc.name, f"'{loc.name}' is not owned by a reference in scope")

		for z_id in sorted(self.liveness.live_set(point, working)):
			if z_id == y.node_id:
				continue
			z = working.reference(z_id)
			if z.role is RefRole.OWNER:
				continue
			for place in working.candidate_places(z_id):
				if places_overlap(res.place, place, self.granularity):
					return reject(
						RejectReason.LIVE_ALIAS_EXISTS,
						z.name,
						f"'{z.name}' ({place}) is live and overlaps {res.place}",
					)

		with self.graph.flatten_lock:
			working.mark_live(y.node_id)
			new = working.upgrade(y.node_id)
			self.graph.adopt(working)
		return Allowed(
			reference=y.name,
			new_ref_id=new.node_id,
			point=point,
			label=label,
			place=str(res.place),
			flattened=tuple(_describe(working, s) for s in steps),
			span=span,
		)


def _describe(graph: DerivationGraph, step: FlattenStep) -> str:
	return f"{graph.describe_edge(step.old)} => {graph.describe_edge(step.new)}"


__all__ = [
	"Allowed",
	"EligibilityChecker",
	"RejectReason",
	"Rejected",
	"Verdict",
]
