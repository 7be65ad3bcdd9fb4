# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Structured fault raised when the analyzer is fed a malformed unit.

Rejections of an upgrade are ordinary results and never use this type. An
AnalysisFault means the upstream collaborator produced something inconsistent
(an edge to an unknown node, a cycle, a request for an out-of-scope reference)
and the unit cannot be analyzed at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .span import Span


UNKNOWN_NODE = "unknown-node"
DUPLICATE_DEFINITION = "duplicate-definition"
CYCLE = "cycle"
UNAVAILABLE_PARENT = "unavailable-parent"
MALFORMED_TYPE = "malformed-type"
MALFORMED_REQUEST = "malformed-request"
MALFORMED_EVENT = "malformed-event"
LIVENESS_DIVERGED = "liveness-diverged"


@dataclass(frozen=True)
class AnalysisFault(Exception):
	"""An unrecoverable internal-consistency fault for one analyzed unit."""

	reason_code: str
	message: str
	subject: str | None = None  # offending node/edge/type name
	unit: str | None = None
	span: Span | None = None

	def __str__(self) -> str:
		return self.format_human()

	def in_unit(self, unit: str) -> "AnalysisFault":
		"""Return a copy tagged with the unit name (faults are raised before the unit is known)."""
		if self.unit is not None:
			return self
		return AnalysisFault(
			reason_code=self.reason_code,
			message=self.message,
			subject=self.subject,
			unit=unit,
			span=self.span,
		)

	def to_dict(self) -> dict[str, Any]:
		return {
			"reason_code": self.reason_code,
			"message": self.message,
			"subject": self.subject,
			"unit": self.unit,
			"line": self.span.line if self.span is not None else None,
			"column": self.span.column if self.span is not None else None,
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.subject is not None:
			parts.append(f"subject: {self.subject}")
		if self.unit is not None:
			parts.append(f"unit: {self.unit}")
		if self.span is not None and self.span.is_known():
			parts.append(f"at: {self.span}")
		return "\n".join(parts)


__all__ = [
	"AnalysisFault",
	"UNKNOWN_NODE",
	"DUPLICATE_DEFINITION",
	"CYCLE",
	"UNAVAILABLE_PARENT",
	"MALFORMED_TYPE",
	"MALFORMED_REQUEST",
	"MALFORMED_EVENT",
	"LIVENESS_DIVERGED",
]
