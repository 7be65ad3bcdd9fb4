# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Type eligibility model.

A TypeDescriptor is the structural shape of a type: a name and an ordered set
of fields, each tagged with how it holds its contents. Upgrade eligibility is
a pure function of that shape:

  * `interior-mutable` and `owning-indirection` fields never disqualify a type
    (exclusive access to the outer value already implies exclusive access to
    their contents);
  * a `plain` field (a plain immutable reference, e.g. to a static) disqualifies
    the type permanently;
  * `value` fields are stored inline and are transparent: the element type is
    inspected recursively.

A type without fields is a leaf and is always eligible.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from borrowup.core.errors import AnalysisFault, MALFORMED_TYPE


class FieldKind(Enum):
	"""How a field holds its contents."""

	VALUE = "value"
	PLAIN = "plain"
	INTERIOR_MUTABLE = "interior-mutable"
	OWNING_INDIRECTION = "owning-indirection"


@dataclass(frozen=True)
class FieldSpec:
	"""One field of a TypeDescriptor."""

	name: str
	kind: FieldKind
	element: Optional["TypeDescriptor"] = None


@dataclass(frozen=True)
class TypeDescriptor:
	"""Structural shape of a type (hashable, so it can key the eligibility cache)."""

	name: str
	fields: Tuple[FieldSpec, ...] = field(default_factory=tuple)

	def field_named(self, name: str) -> Optional[FieldSpec]:
		for f in self.fields:
			if f.name == name:
				return f
		return None


def leaf(name: str) -> TypeDescriptor:
	"""Return a field-less (leaf) type."""
	return TypeDescriptor(name)


INT = leaf("Int")
BOOL = leaf("Bool")
STR = leaf("Str")

BUILTIN_LEAVES: Dict[str, TypeDescriptor] = {t.name: t for t in (INT, BOOL, STR)}


class TypeEligibilityModel:
	"""
	Caches `is_eligible` per distinct TypeDescriptor.

	The cache is keyed by descriptor value, so structurally identical
	descriptors built by different front-ends share one entry.
	"""

	def __init__(self) -> None:
		self._cache: Dict[TypeDescriptor, Optional[str]] = {}

	def is_eligible(self, ty: TypeDescriptor) -> bool:
		"""Return True if references rooted at a value of `ty` may be upgraded."""
		return self.ineligible_field(ty) is None

	def ineligible_field(self, ty: TypeDescriptor) -> Optional[str]:
		"""
		Return the dotted path of the first disqualifying field, or None.

		`Holder { inner: value Pair, label: plain Str }` reports "label";
		a disqualifying field nested inline reports e.g. "inner.label".
		"""
		if ty in self._cache:
			return self._cache[ty]
		found = self._scan(ty, ())
		self._cache[ty] = found
		return found

	def _scan(self, ty: TypeDescriptor, stack: Tuple[str, ...]) -> Optional[str]:
		if ty.name in stack:
			# An inline value cannot contain itself; recursion must go through an
			# owning-indirection field.
			cycle = " -> ".join(stack + (ty.name,))
			raise AnalysisFault(MALFORMED_TYPE, f"type '{ty.name}' contains itself inline ({cycle})", subject=ty.name)
		for f in ty.fields:
			if f.kind is FieldKind.PLAIN:
				return f.name
			if f.kind is FieldKind.VALUE and f.element is not None:
				if f.element in self._cache:
					inner = self._cache[f.element]
				else:
					inner = self._scan(f.element, stack + (ty.name,))
					self._cache[f.element] = inner
				if inner is not None:
					return f"{f.name}.{inner}"
		return None

	def cache_size(self) -> int:
		return len(self._cache)


__all__ = [
	"FieldKind",
	"FieldSpec",
	"TypeDescriptor",
	"TypeEligibilityModel",
	"leaf",
	"INT",
	"BOOL",
	"STR",
	"BUILTIN_LEAVES",
]
