# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Accessibility propagation across call boundaries.

A signature may declare which parameter its returned reference is accessible
from (`AccessibleFrom(param)`). At a call site the propagator turns that into a
call-accessibility edge from the matching argument to the call result, so the
result's derivation chain continues into the caller's graph.

Exactly one root is supported. A declaration naming several parameters, or an
un-annotated signature whose root would have to be a join of several reference
arguments (the "longer of two strings" case), is reported as
AmbiguousDependency. The result reference is still registered, with one
ambiguous edge per candidate, so it keeps every candidate alive and any later
upgrade of it is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from borrowup.core.errors import AnalysisFault, MALFORMED_EVENT
from borrowup.core.span import Span
from borrowup.graph import AmbiguousDependency, DerivationGraph, Reference, RefRole
from borrowup.types_model import TypeDescriptor, leaf


@dataclass(frozen=True)
class ParamSpec:
	"""A callee parameter; `role` is None for parameters passed by value."""

	name: str
	role: Optional[RefRole] = RefRole.SHARED
	type: Optional[TypeDescriptor] = None


@dataclass(frozen=True)
class AccessibilityAnnotation:
	"""`AccessibleFrom(...)` on a returned reference."""

	roots: Tuple[str, ...]

	@property
	def is_multi_root(self) -> bool:
		return len(self.roots) > 1


@dataclass(frozen=True)
class FnSignature:
	"""
	Callee signature as seen by the analyzer.

	`returns` is the role of the returned reference, or None when the function
	does not return a reference.
	"""

	name: str
	params: Tuple[ParamSpec, ...] = ()
	returns: Optional[RefRole] = None
	accessible_from: Optional[AccessibilityAnnotation] = None
	return_type: TypeDescriptor = field(default_factory=lambda: leaf("Unknown"))

	def param_index(self, name: str) -> Optional[int]:
		for idx, p in enumerate(self.params):
			if p.name == name:
				return idx
		return None

	def ref_param_indexes(self) -> Tuple[int, ...]:
		return tuple(idx for idx, p in enumerate(self.params) if p.role is not None and p.role is not RefRole.OWNER)


@dataclass(frozen=True)
class CallSite:
	"""One call in the analyzed unit: callee, argument nodes and the result's name."""

	label: str
	signature: FnSignature
	args: Tuple[int, ...]
	result: Optional[str] = None
	def_point: Optional[int] = None
	span: Span = field(default_factory=Span, compare=False)


class AccessibilityPropagator:
	"""Stitches call-site edges into a DerivationGraph."""

	def __init__(self, graph: DerivationGraph) -> None:
		self.graph = graph

	def _fault(self, site: CallSite, message: str) -> AnalysisFault:
		return AnalysisFault(MALFORMED_EVENT, message, subject=site.label, unit=self.graph.unit, span=site.span)

	def candidate_roots(self, site: CallSite) -> Tuple[int, ...]:
		"""
		Parameter indexes the returned reference may derive from.

		An empty tuple means the result derives from none of the arguments.
		"""
		sig = site.signature
		ann = sig.accessible_from
		if ann is not None:
			out = []
			for root in ann.roots:
				idx = sig.param_index(root)
				if idx is None:
					raise self._fault(site, f"'{sig.name}' declares AccessibleFrom({root}) but has no such parameter")
				if sig.params[idx].role is None or sig.params[idx].role is RefRole.OWNER:
					raise self._fault(site, f"'{sig.name}' returns a reference accessible from by-value parameter '{root}'")
				out.append(idx)
			return tuple(out)
		return sig.ref_param_indexes()

	def is_ambiguous(self, site: CallSite, roots: Tuple[int, ...]) -> bool:
		"""True for multi-root declarations and for un-annotated roots that would need a join."""
		ann = site.signature.accessible_from
		if ann is not None:
			return ann.is_multi_root
		# A lone reference parameter is the inferred root; several would need a join.
		return len(roots) > 1

	def add_call_edge(self, site: CallSite, chosen_argument_root: Optional[int] = None) -> Reference:
		"""
		Register the call result and its call-accessibility edge.

		`chosen_argument_root` is the argument node a front-end believes the
		result comes from; it must agree with the signature. It never breaks a
		tie between several declared candidates.
		"""
		sig = site.signature
		if sig.returns is None or site.result is None:
			raise self._fault(site, f"call to '{sig.name}' has no reference result")
		if len(site.args) != len(sig.params):
			raise self._fault(site, f"'{sig.name}' expects {len(sig.params)} argument(s), got {len(site.args)}")
		for arg in site.args:
			self.graph.node(arg)

		roots = self.candidate_roots(site)
		if chosen_argument_root is not None and chosen_argument_root not in {site.args[i] for i in roots}:
			raise self._fault(site, f"argument #{chosen_argument_root} is not an accessibility root of '{sig.name}'")

		common = dict(name=site.result, role=sig.returns, call_site=site.label, def_point=site.def_point, span=site.span)
		if not roots:
			return self.graph.add_external_ref(sig.return_type, **common)
		if not self.is_ambiguous(site, roots):
			idx = roots[0]
			return self.graph.add_call_edge(site.args[idx], param=sig.params[idx].name, **common)

		candidates = [(site.args[i], sig.params[i].name) for i in roots]
		ref = self.graph.add_ambiguous_call(candidates, **common)
		if sig.accessible_from is not None:
			why = f"'{sig.name}' declares more than one accessibility root ({', '.join(sig.accessible_from.roots)})"
		else:
			why = f"'{sig.name}' has no AccessibleFrom annotation and takes several references"
		raise AmbiguousDependency(
			f"result '{site.result}' of {site.label}: {why}",
			reference=ref,
			candidates=[parent for parent, _ in candidates],
			call_site=site.label,
		)


def call_site_for(
	graph: DerivationGraph,
	label: str,
	signature: FnSignature,
	arg_names: Sequence[str],
	result: Optional[str] = None,
	*,
	def_point: Optional[int] = None,
	span: Optional[Span] = None,
) -> CallSite:
	"""Build a CallSite from argument names already present in `graph`."""
	args = tuple(graph.lookup(a).node_id for a in arg_names)
	return CallSite(label=label, signature=signature, args=args, result=result, def_point=def_point, span=span or Span())


__all__ = [
	"AccessibilityAnnotation",
	"AccessibilityPropagator",
	"CallSite",
	"FnSignature",
	"ParamSpec",
	"call_site_for",
]
