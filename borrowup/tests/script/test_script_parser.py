#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Event-script front-end: parsing, resolution and end-to-end runs."""

from pathlib import Path

import pytest

from borrowup import events as E
from borrowup.analyzer import AnalyzerOptions, analyze_program
from borrowup.eligibility import RejectReason
from borrowup.graph import RefRole
from borrowup.places import AliasGranularity
from borrowup.script import ScriptError, parse_file, parse_script
from borrowup.types_model import INT, FieldKind


PLAYGROUND = Path(__file__).resolve().parents[3] / "playground"

SAMPLE = """
type Pair { data1: value Int, data2: value Int }
static GREETING: Str
fn pick(a: & Pair, b: & Pair) -> & accessible(a, b)
unit main() {
	owner v: Pair
	x1 = &v
	x2 = &x1.data1
	upgrade x2 @here
	use x2
}
"""


def test_sample_script_declarations():
	"""Types, statics and signatures are read from a script."""
	script = parse_script(SAMPLE)
	pair = script.types["Pair"]
	assert [(f.name, f.kind, f.element) for f in pair.fields] == [
		("data1", FieldKind.VALUE, INT),
		("data2", FieldKind.VALUE, INT),
	]
	assert script.statics["GREETING"].name == "Str"
	pick = script.signatures["pick"]
	assert [p.name for p in pick.params] == ["a", "b"]
	assert pick.returns is RefRole.SHARED
	assert pick.accessible_from.roots == ("a", "b")


def test_sample_script_events():
	"""Unit bodies become event tuples with source spans."""
	unit = parse_script(SAMPLE).unit("main")
	assert unit.events == (
		E.OwnerDeclared("v", parse_script(SAMPLE).types["Pair"]),
		E.Borrow("x1", "v"),
		E.Borrow("x2", "x1", ("data1",)),
		E.UpgradeRequest("x2", "here"),
		E.Use("x2"),
	)
	assert unit.events[0].span.line == 6


def test_statements_and_control_flow():
	script = parse_script("""
type Pair { data1: value Int, data2: value Int, }
fn first(a: & Pair) -> &mut Pair accessible(a)
fn size(a: & Pair) -> Int
unit f(p: & Pair, q: own Pair, n: Int) {
	owner v: Pair
	m = &mut v.data2
	r = call first(p)
	call size(q)
	w = move v
	if { use m } else { drop r }
	loop { use n }
	return ()
}
""")
	events = script.unit("f").events
	assert [(e.name, e.role) for e in events[:3]] == [("p", RefRole.SHARED), ("q", RefRole.OWNER), ("n", RefRole.OWNER)]
	assert events[4] == E.Borrow("m", "v", ("data2",), role=RefRole.EXCLUSIVE)
	assert events[5] == E.Call("first", ("p",), result="r")
	assert events[6] == E.Call("size", ("q",))
	assert events[7] == E.Transfer("v", "w")
	assert events[8] == E.Branch((E.Use("m"),), (E.Drop("r"),))
	assert events[9] == E.Loop((E.Use("n"),))
	assert events[10] == E.Return()
	first = script.signatures["first"]
	assert first.returns is RefRole.EXCLUSIVE
	assert first.return_type.name == "Pair"
	assert script.signatures["size"].returns is None


def test_indirect_recursion_is_allowed():
	"""A type may refer to itself through an indirect field."""
	script = parse_script("type Node { id: value Int, next: indirect Node }")
	node = script.types["Node"]
	assert node.field_named("next").kind is FieldKind.OWNING_INDIRECTION
	assert node.field_named("next").element.name == "Node"


def test_inline_recursion_is_rejected():
	"""A type containing itself inline is a script error."""
	with pytest.raises(ScriptError, match="contains itself inline"):
		parse_script("type A { b: value B }\ntype B { a: value A }")


def test_unknown_type_is_reported_with_position():
	"""Unknown type names point at the offending line."""
	with pytest.raises(ScriptError) as err:
		parse_script("unit main() {\n\towner v: Missing\n}")
	assert "unknown type 'Missing'" in str(err.value)
	assert err.value.span.line == 2


def test_syntax_error_is_reported_with_position():
	"""Syntax errors carry the file and line."""
	with pytest.raises(ScriptError) as err:
		parse_script("unit main() {\n\tuse\n}", file="bad.bu")
	assert err.value.span.file == "bad.bu"
	assert err.value.span.line is not None
	diag = err.value.to_diagnostic()
	assert diag.phase == "script"
	assert diag.severity == "error"


def test_duplicate_declarations_are_rejected():
	"""Declarations clash with each other and with built-in types."""
	with pytest.raises(ScriptError, match="clashes"):
		parse_script("type Pair { a: value Int }\nstatic Pair: Int")
	with pytest.raises(ScriptError, match="built in"):
		parse_script("type Int { a: value Bool }")


def test_annotation_must_name_a_parameter():
	"""accessible(...) may only name parameters of the function."""
	with pytest.raises(ScriptError, match="no parameter 'z'"):
		parse_script("fn f(a: & Int) -> & accessible(z)")


def test_labels_may_spell_keywords():
	"""A label is lexed as one token, so `@static` or `@loop` is not a keyword."""
	unit = parse_script("unit main() {\n\towner v: Int\n\tx = &v\n\tupgrade x @static\n\tupgrade x @loop\n\tupgrade x\n}").unit("main")
	assert [e.label for e in unit.events[2:]] == ["static", "loop", None]


def test_keywords_are_not_names():
	"""Reserved words cannot be used as names."""
	with pytest.raises(ScriptError):
		parse_script("unit main() { owner value: Int }")


def _verdicts(path, granularity=AliasGranularity.FIELD):
	script = parse_file(path)
	results = analyze_program(script.units, AnalyzerOptions(granularity=granularity))
	assert all(r.ok for r in results)
	return {v.label: v for r in results for v in r.verdicts}


def test_playground_flatten_scenarios():
	"""flatten.bu gives the documented verdicts at both granularities."""
	verdicts = _verdicts(PLAYGROUND / "flatten.bu")
	assert verdicts["flattened"].allowed
	assert verdicts["beside_data2"].allowed
	assert verdicts["blocked"].reason is RejectReason.LIVE_ALIAS_EXISTS
	assert verdicts["blocked"].offending == "x1"
	strict = _verdicts(PLAYGROUND / "flatten.bu", AliasGranularity.OWNER)
	assert strict["beside_data2"].offending == "x3"


def test_playground_call_scenarios():
	"""calls.bu gives the documented verdicts."""
	verdicts = _verdicts(PLAYGROUND / "calls.bu")
	assert verdicts["through_call"].allowed
	assert verdicts["through_borrow"].allowed
	assert verdicts["through_borrow"].place == "v.data1"
	assert verdicts["ambiguous"].reason is RejectReason.AMBIGUOUS_DEPENDENCY
	assert verdicts["join"].reason is RejectReason.AMBIGUOUS_DEPENDENCY


def test_playground_ineligible_scenarios():
	"""ineligible.bu parses and gives the documented verdicts."""
	verdicts = _verdicts(PLAYGROUND / "ineligible.bu")
	assert verdicts["tagged"].reason is RejectReason.STRUCT_INELIGIBLE
	assert verdicts["tagged"].offending == "t.label"
	assert verdicts["boxed"].allowed
	assert verdicts["static"].offending == "GREETING"
	assert verdicts["param"].reason is RejectReason.NO_OWNER_IN_SCOPE
