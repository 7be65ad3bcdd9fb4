# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
borrowup: shared-to-exclusive reference upgrade analysis.

Modules:
  types_model: structural upgrade eligibility of types
  places: storage places and the overlap rule
  graph: derivation graph of locations and references
  accessibility: call-boundary edges from AccessibleFrom annotations
  events: event stream of one analyzed unit
  liveness: CFG, backward liveness and forward availability
  flatten: derivation-chain flattening
  eligibility: the upgrade decision rule
  analyzer: per-unit driver
  script: textual event-script front-end
"""

__all__ = [
	"types_model",
	"places",
	"graph",
	"accessibility",
	"events",
	"liveness",
	"flatten",
	"eligibility",
	"analyzer",
	"script",
]
