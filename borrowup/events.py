# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Event stream of one analyzed unit.

An upstream front-end lowers a function body into these events. Straight-line
events become program points; `Branch` and `Loop` carry nested event lists and
only shape the control-flow graph. Every name is defined by exactly one event
(the event may run several times inside a loop).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from borrowup.accessibility import FnSignature
from borrowup.core.span import Span
from borrowup.graph import RefRole
from borrowup.types_model import TypeDescriptor


@dataclass(frozen=True)
class OwnerDeclared:
	"""`owner v: T` - a fresh location and its owning reference."""

	name: str
	type: TypeDescriptor
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class ParamDeclared:
	"""A parameter entering the unit; `role` OWNER means passed by value."""

	name: str
	type: TypeDescriptor
	role: RefRole = RefRole.SHARED
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Borrow:
	"""`name = &parent.f1.f2` (or `&mut` for an exclusive role)."""

	name: str
	parent: str
	fields: Tuple[str, ...] = ()
	role: RefRole = RefRole.SHARED
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Call:
	"""`result = callee(args...)`; `result` is None when nothing is bound."""

	callee: str
	args: Tuple[str, ...] = ()
	result: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Use:
	"""A dereference of `name`."""

	name: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Return:
	"""Leave the unit, optionally returning `name`."""

	name: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Drop:
	"""Explicit end of `name` (owner scope end or last use of a borrow)."""

	name: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Transfer:
	"""Move ownership from owner `src` to a new owner `dst`."""

	src: str
	dst: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class UpgradeRequest:
	"""Ask whether `name` may become exclusive at this point."""

	name: str
	label: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Branch:
	then_events: Tuple["Event", ...] = ()
	else_events: Tuple["Event", ...] = ()
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Loop:
	body: Tuple["Event", ...] = ()
	span: Span = field(default_factory=Span, compare=False)


Event = (
	OwnerDeclared
	| ParamDeclared
	| Borrow
	| Call
	| Use
	| Return
	| Drop
	| Transfer
	| UpgradeRequest
	| Branch
	| Loop
)


@dataclass(frozen=True)
class Unit:
	"""One analyzed unit plus the context its events refer to."""

	name: str
	events: Tuple[Event, ...]
	signatures: Mapping[str, FnSignature] = field(default_factory=dict)
	statics: Mapping[str, TypeDescriptor] = field(default_factory=dict)


def uses_of(ev: Event) -> Tuple[str, ...]:
	"""Names read by an event (liveness gen set)."""
	if isinstance(ev, Borrow):
		return (ev.parent,)
	if isinstance(ev, Call):
		return tuple(ev.args)
	if isinstance(ev, (Use, UpgradeRequest)):
		return (ev.name,)
	if isinstance(ev, Return):
		return (ev.name,) if ev.name is not None else ()
	if isinstance(ev, Transfer):
		return (ev.src,)
	return ()


def defs_of(ev: Event) -> Tuple[str, ...]:
	"""Names (re)defined by an event."""
	if isinstance(ev, (OwnerDeclared, ParamDeclared, Borrow)):
		return (ev.name,)
	if isinstance(ev, Call):
		return (ev.result,) if ev.result is not None else ()
	if isinstance(ev, Transfer):
		return (ev.dst,)
	return ()


def kills_of(ev: Event) -> Tuple[str, ...]:
	"""Names an event ends without redefining them."""
	if isinstance(ev, Drop):
		return (ev.name,)
	if isinstance(ev, Transfer):
		return (ev.src,)
	return ()


__all__ = [
	"Borrow",
	"Branch",
	"Call",
	"Drop",
	"Event",
	"Loop",
	"OwnerDeclared",
	"ParamDeclared",
	"Return",
	"Transfer",
	"Unit",
	"UpgradeRequest",
	"Use",
	"defs_of",
	"kills_of",
	"uses_of",
]
