# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Upgrade-check pass: drives one analyzed unit end to end.

  1. lower the event stream into a CFG and run the liveness/availability
     fixpoints;
  2. build the derivation graph in program-point order, stitching call-site
     edges through the accessibility propagator and validating that every
     parent is in scope where it is used;
  3. answer every upgrade request, in program-point order, with a verdict.

Code after a return is lowered into unreachable blocks. It is not scope
checked, and upgrade requests there get a note instead of a verdict.

Malformed input raises AnalysisFault, which aborts the unit. `analyze_program`
records the fault on that unit's result and carries on with the others.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from borrowup import events as E
from borrowup.accessibility import AccessibilityPropagator, call_site_for
from borrowup.core.diagnostics import Diagnostic, PHASE_UPGRADECHECK
from borrowup.core.errors import AnalysisFault, MALFORMED_EVENT, UNAVAILABLE_PARENT
from borrowup.core.span import Span
from borrowup.eligibility import EligibilityChecker, Verdict
from borrowup.graph import AmbiguousDependency, DerivationGraph, Reference
from borrowup.liveness import ControlFlowGraph, LivenessTracker
from borrowup.places import AliasGranularity
from borrowup.types_model import TypeEligibilityModel


@dataclass(frozen=True)
class AnalyzerOptions:
	"""Knobs shared by every unit of one analysis run."""

	granularity: AliasGranularity = AliasGranularity.FIELD
	jobs: int = 1


@dataclass
class UnitResult:
	"""Verdicts and diagnostics of one unit; `fault` is set when the unit was aborted."""

	name: str
	verdicts: List[Verdict] = field(default_factory=list)
	diagnostics: List[Diagnostic] = field(default_factory=list)
	fault: Optional[AnalysisFault] = None
	graph: Optional[DerivationGraph] = field(default=None, repr=False, compare=False)

	@property
	def ok(self) -> bool:
		return self.fault is None

	def verdict_for(self, label: str) -> Verdict:
		for v in self.verdicts:
			if v.label == label:
				return v
		raise KeyError(label)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"unit": self.name,
			"verdicts": [v.to_dict() for v in self.verdicts],
			"diagnostics": [d.to_dict() for d in self.diagnostics],
			"fault": self.fault.to_dict() if self.fault is not None else None,
		}


@dataclass
class UnitAnalyzer:
	"""
	Upgrade checker for a single unit.

	Inputs:
	- unit: the event stream plus the signatures and statics it refers to.
	- options: alias granularity (parallelism is handled by `analyze_program`).
	- types: eligibility cache, shareable across units.
	"""

	unit: E.Unit
	options: AnalyzerOptions = field(default_factory=AnalyzerOptions)
	types: TypeEligibilityModel = field(default_factory=TypeEligibilityModel)
	diagnostics: List[Diagnostic] = field(default_factory=list)

	def _warning(self, message: str, span: Span | None = None, code: str | None = None) -> None:
		self.diagnostics.append(
			Diagnostic(message=message, code=code, severity="warning", phase=PHASE_UPGRADECHECK, span=span or Span())
		)

	def _note(self, message: str, span: Span | None = None, code: str | None = None) -> None:
		self.diagnostics.append(
			Diagnostic(message=message, code=code, severity="note", phase=PHASE_UPGRADECHECK, span=span or Span())
		)

	def _fault(self, code: str, message: str, subject: str, span: Span) -> AnalysisFault:
		return AnalysisFault(code, message, subject=subject, unit=self.unit.name, span=span)

	def run(self) -> UnitResult:
		self.diagnostics.clear()
		cfg = ControlFlowGraph.build(self.unit.events)
		liveness = LivenessTracker(cfg, unit=self.unit.name)
		graph = self._build_graph(cfg, liveness)

		checker = EligibilityChecker(graph, liveness, types=self.types, granularity=self.options.granularity)
		verdicts: List[Verdict] = []
		for pt in cfg.points:
			if isinstance(pt.event, E.UpgradeRequest):
				ev = pt.event
				if not liveness.reachable(pt.index):
					self._note(f"upgrade of '{ev.name}' is unreachable and was not checked", ev.span, code="unreachable-upgrade")
					continue
				verdict = checker.check_upgrade(ev.name, pt.index, label=ev.label, span=ev.span)
				verdicts.append(verdict)
				self.diagnostics.append(verdict.to_diagnostic())

		for pt in cfg.points:
			if not liveness.reachable(pt.index):
				continue
			for name in E.kills_of(pt.event):
				node = graph.lookup(name)
				if isinstance(node, Reference):
					graph.mark_dropped(node.node_id)
		return UnitResult(self.unit.name, verdicts, list(self.diagnostics), graph=graph)

	def _build_graph(self, cfg: ControlFlowGraph, liveness: LivenessTracker) -> DerivationGraph:
		graph = DerivationGraph(self.unit.name)
		for name, ty in self.unit.statics.items():
			graph.declare_static(name, ty)
		statics = frozenset(self.unit.statics)
		propagator = AccessibilityPropagator(graph)

		for pt in cfg.points:
			ev = pt.event
			if liveness.reachable(pt.index):
				self._require_in_scope(ev, liveness.available(pt.index) | statics)
			created: Optional[Reference] = None
			if isinstance(ev, E.OwnerDeclared):
				created = graph.declare_owner(ev.name, ev.type, def_point=pt.index, span=ev.span)
			elif isinstance(ev, E.ParamDeclared):
				created = graph.declare_param(ev.name, ev.type, ev.role, def_point=pt.index, span=ev.span)
			elif isinstance(ev, E.Borrow):
				parent = graph.lookup(ev.parent)
				created = graph.add_field_borrow(parent.node_id, ev.fields, name=ev.name, role=ev.role, def_point=pt.index, span=ev.span)
			elif isinstance(ev, E.Transfer):
				created = graph.transfer(graph.lookup(ev.src).node_id, name=ev.dst, def_point=pt.index, span=ev.span)
			elif isinstance(ev, E.Call):
				created = self._call(graph, propagator, pt.index, ev)
			if created is not None:
				graph.mark_live(created.node_id)
		return graph

	def _require_in_scope(self, ev: E.Event, in_scope: FrozenSet[str]) -> None:
		# A request for an out-of-scope reference is reported by the checker.
		if isinstance(ev, E.UpgradeRequest):
			return
		for name in E.uses_of(ev) + E.kills_of(ev):
			if name not in in_scope:
				raise self._fault(UNAVAILABLE_PARENT, f"'{name}' is used where it is not in scope", name, ev.span)

	def _call(self, graph: DerivationGraph, propagator: AccessibilityPropagator, point: int, ev: E.Call) -> Optional[Reference]:
		sig = self.unit.signatures.get(ev.callee)
		if sig is None:
			raise self._fault(MALFORMED_EVENT, f"call to undeclared function '{ev.callee}'", ev.callee, ev.span)
		if ev.result is None:
			return None
		if sig.returns is None:
			# A by-value result is a fresh owned value.
			return graph.declare_owner(ev.result, sig.return_type, def_point=point, span=ev.span)
		site = call_site_for(graph, f"{ev.callee}#{point}", sig, ev.args, ev.result, def_point=point, span=ev.span)
		try:
			return propagator.add_call_edge(site)
		except AmbiguousDependency as exc:
			self._warning(str(exc), ev.span, code="AmbiguousDependency")
			return exc.reference


def analyze_unit(unit: E.Unit, options: Optional[AnalyzerOptions] = None, *, types: Optional[TypeEligibilityModel] = None) -> UnitResult:
	"""Analyze one unit; a fault aborts only this unit and is returned on the result."""
	opts = options or AnalyzerOptions()
	analyzer = UnitAnalyzer(unit, opts, types or TypeEligibilityModel())
	try:
		return analyzer.run()
	except AnalysisFault as fault:
		fault = fault.in_unit(unit.name)
		diags = list(analyzer.diagnostics)
		diags.append(
			Diagnostic(
				message=fault.message,
				code=fault.reason_code,
				phase=PHASE_UPGRADECHECK,
				severity="error",
				span=fault.span or Span(),
				notes=[f"subject: {fault.subject}"] if fault.subject else [],
			)
		)
		return UnitResult(unit.name, [], diags, fault=fault)


def analyze_program(units: Iterable[E.Unit], options: Optional[AnalyzerOptions] = None) -> List[UnitResult]:
	"""
	Analyze independent units, in parallel when `options.jobs > 1`.

	Results come back in input order regardless of completion order.
	"""
	opts = options or AnalyzerOptions()
	units = list(units)
	types = TypeEligibilityModel()
	if opts.jobs <= 1 or len(units) <= 1:
		return [analyze_unit(u, opts, types=types) for u in units]
	with ThreadPoolExecutor(max_workers=opts.jobs) as pool:
		futures = [pool.submit(analyze_unit, u, opts, types=types) for u in units]
		return [f.result() for f in futures]


def summarize(results: Iterable[UnitResult]) -> Tuple[int, int, int]:
	"""Return (allowed, rejected, faulted-unit) counts."""
	allowed = rejected = faulted = 0
	for r in results:
		if r.fault is not None:
			faulted += 1
		for v in r.verdicts:
			if v.allowed:
				allowed += 1
			else:
				rejected += 1
	return allowed, rejected, faulted


__all__ = [
	"AnalyzerOptions",
	"UnitAnalyzer",
	"UnitResult",
	"analyze_program",
	"analyze_unit",
	"summarize",
]
