# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place representation: the "where" of a reference.

A place is a root memory location plus a field path, so a reference reached
through `v → x1 → &x1.data1` denotes Place(base=<v's location>, ("data1",)).
Flattening composes edge paths and must leave a reference's place unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable, Tuple


class PlaceKind(Enum):
	"""Where the root location of a place comes from."""

	LOCAL = auto()   # declared by an owner inside the analyzed unit
	PARAM = auto()   # reached through a parameter; owned outside the unit
	STATIC = auto()  # global immutable storage, never owned


class AliasGranularity(Enum):
	"""How precisely two places are compared for aliasing."""

	FIELD = "field"  # distinct field paths of the same location do not alias
	OWNER = "owner"  # any two places of the same location alias


@dataclass(frozen=True)
class FieldProj:
	"""Field access projection (e.g., `.name`)."""

	name: str


@dataclass(frozen=True)
class PlaceBase:
	"""Identity for the root of a Place."""

	kind: PlaceKind
	location_id: int
	name: str


@dataclass(frozen=True)
class Place:
	"""A root location plus the field projections leading to the referenced storage."""

	base: PlaceBase
	projections: Tuple[FieldProj, ...] = field(default_factory=tuple)

	def with_path(self, path: Iterable[str]) -> "Place":
		"""Return a new Place with the given field names appended."""
		extra = tuple(FieldProj(name) for name in path)
		if not extra:
			return self
		return Place(self.base, self.projections + extra)

	def path(self) -> Tuple[str, ...]:
		return tuple(p.name for p in self.projections)

	def __str__(self) -> str:
		return ".".join((self.base.name,) + self.path())


def places_overlap(a: Place, b: Place, granularity: AliasGranularity = AliasGranularity.FIELD) -> bool:
	"""
	Return True when two places may refer to overlapping storage.

	Rules:
	- Different bases never overlap.
	- OWNER granularity: same base always overlaps.
	- Prefix overlap counts: `v` overlaps `v.data1`.
	- Field projections are disjoint when the field names differ.
	"""
	if a.base != b.base:
		return False
	if granularity is AliasGranularity.OWNER:
		return True
	for pa, pb in zip(a.projections, b.projections):
		if pa != pb:
			return False
	# One place is a prefix of the other (or identical): overlaps by definition.
	return True


__all__ = [
	"AliasGranularity",
	"FieldProj",
	"Place",
	"PlaceBase",
	"PlaceKind",
	"places_overlap",
]
