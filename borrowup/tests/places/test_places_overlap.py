#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Place overlap under field and owner alias granularity."""

from borrowup.places import AliasGranularity, FieldProj, Place, PlaceBase, PlaceKind, places_overlap


V = PlaceBase(PlaceKind.LOCAL, 1, "v")
W = PlaceBase(PlaceKind.LOCAL, 3, "w")


def _place(base: PlaceBase, *path: str) -> Place:
	return Place(base).with_path(path)


def test_with_path_appends_projections():
	"""with_path extends a place by field projections."""
	p = _place(V, "inner", "left")
	assert p.projections == (FieldProj("inner"), FieldProj("left"))
	assert p.path() == ("inner", "left")
	assert str(p) == "v.inner.left"


def test_empty_path_returns_same_place():
	"""An empty path leaves the place unchanged."""
	p = Place(V)
	assert p.with_path(()) is p


def test_different_bases_never_overlap():
	"""Places of different locations never alias."""
	assert not places_overlap(_place(V, "data1"), _place(W, "data1"))
	assert not places_overlap(Place(V), Place(W), AliasGranularity.OWNER)


def test_prefix_overlaps():
	"""A place overlaps every place inside it."""
	assert places_overlap(Place(V), _place(V, "data1"))
	assert places_overlap(_place(V, "data1", "x"), _place(V, "data1"))


def test_disjoint_fields_do_not_overlap_at_field_granularity():
	"""Sibling fields are disjoint at field granularity."""
	assert not places_overlap(_place(V, "data1"), _place(V, "data2"))
	assert not places_overlap(_place(V, "inner", "left"), _place(V, "inner", "right"))


def test_owner_granularity_overlaps_any_two_places_of_a_location():
	"""Owner granularity makes any two places of a location alias."""
	assert places_overlap(_place(V, "data1"), _place(V, "data2"), AliasGranularity.OWNER)
