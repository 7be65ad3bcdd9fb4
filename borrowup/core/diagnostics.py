# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Common diagnostic structure for the analysis passes.

Passes never print; they append Diagnostic records to a per-unit sink and the
hosting tool decides how to render them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .span import Span


PHASE_UPGRADECHECK = "upgradecheck"
PHASE_SCRIPT = "script"


@dataclass
class Diagnostic:
	"""Represents an analyzer diagnostic (error/warning/note)."""

	message: str
	code: str | None = None
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Span() denotes unknown.
	notes: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	def to_dict(self) -> dict[str, Any]:
		return {
			"phase": self.phase,
			"code": self.code,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"notes": list(self.notes),
		}

	def format_human(self) -> str:
		head = f"{self.span}: {self.severity}"
		if self.code:
			head += f"[{self.code}]"
		lines = [f"{head}: {self.message}"]
		lines.extend(f"  note: {n}" for n in self.notes)
		return "\n".join(lines)


__all__ = ["Diagnostic", "PHASE_UPGRADECHECK", "PHASE_SCRIPT"]
