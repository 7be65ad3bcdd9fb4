# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Event-script parser.

Turns a `.bu` script into analyzable units. Types, statics and signatures are
declared at the top level (in any order) and shared by every unit of the
script. Unit parameters become `ParamDeclared` events at the start of the
unit body.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from borrowup import events as E
from borrowup.accessibility import AccessibilityAnnotation, FnSignature, ParamSpec
from borrowup.core.diagnostics import Diagnostic, PHASE_SCRIPT
from borrowup.core.span import Span
from borrowup.graph import RefRole
from borrowup.types_model import BUILTIN_LEAVES, FieldKind, FieldSpec, TypeDescriptor, leaf

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)

_FIELD_KINDS = {
	"kind_value": FieldKind.VALUE,
	"kind_plain": FieldKind.PLAIN,
	"kind_interior": FieldKind.INTERIOR_MUTABLE,
	"kind_indirect": FieldKind.OWNING_INDIRECTION,
}


class ScriptError(ValueError):
	"""
	User-facing error for a malformed event script.

	Covers both syntax errors (converted from lark) and resolution errors such
	as unknown types or duplicate declarations.
	"""

	def __init__(self, message: str, *, span: Span | None = None) -> None:
		super().__init__(message)
		self.span = span or Span()

	def to_diagnostic(self) -> Diagnostic:
		return Diagnostic(message=str(self), code="script-error", phase=PHASE_SCRIPT, severity="error", span=self.span)


@dataclass
class Script:
	"""Everything declared by one script."""

	units: List[E.Unit] = field(default_factory=list)
	types: Dict[str, TypeDescriptor] = field(default_factory=dict)
	signatures: Dict[str, FnSignature] = field(default_factory=dict)
	statics: Dict[str, TypeDescriptor] = field(default_factory=dict)

	def unit(self, name: str) -> E.Unit:
		for u in self.units:
			if u.name == name:
				return u
		raise KeyError(name)


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	if isinstance(node, Token):
		return node.type
	return str(node)


def _tokens(tree: Tree, kind: str = "NAME") -> List[Token]:
	return [c for c in tree.children if isinstance(c, Token) and c.type == kind]


def _subtrees(tree: Tree) -> List[Tree]:
	return [c for c in tree.children if isinstance(c, Tree)]


def _has(tree: Tree, kind: str) -> bool:
	return bool(_tokens(tree, kind))


class _Builder:
	def __init__(self, file: Optional[str]) -> None:
		self.file = file
		self.script = Script()
		self._type_trees: Dict[str, Tree] = {}

	def _loc(self, node: Tree | Token) -> Span:
		if isinstance(node, Token):
			return Span(file=self.file, line=node.line, column=node.column, end_line=node.end_line, end_column=node.end_column, raw=node)
		return Span.from_loc(node.meta, file=self.file)

	def _error(self, message: str, node: Tree | Token) -> ScriptError:
		return ScriptError(message, span=self._loc(node))

	# ------------------------------------------------------------------
	# declarations

	def build(self, tree: Tree) -> Script:
		items = _subtrees(tree)
		seen: Dict[str, str] = {}

		def declare(kind: str, tok: Token) -> None:
			if tok.value in seen:
				raise self._error(f"{kind} '{tok.value}' clashes with an earlier {seen[tok.value]}", tok)
			seen[tok.value] = kind

		for item in items:
			if _name(item) == "type_def":
				tok = _tokens(item)[0]
				if tok.value in BUILTIN_LEAVES:
					raise self._error(f"type '{tok.value}' is built in", tok)
				declare("type", tok)
				self._type_trees[tok.value] = item
		for name in self._type_trees:
			self.script.types[name] = self._resolve_type(name, ())

		for item in items:
			kind = _name(item)
			if kind == "static_def":
				name_tok, ty_tok = _tokens(item)
				declare("static", name_tok)
				self.script.statics[name_tok.value] = self._type_ref(ty_tok)
			elif kind == "fn_def":
				sig = self._signature(item)
				declare("function", _tokens(item)[0])
				self.script.signatures[sig.name] = sig

		for item in items:
			if _name(item) == "unit_def":
				tok = _tokens(item)[0]
				declare("unit", tok)
				self.script.units.append(self._unit(item))
		return self.script

	def _type_ref(self, tok: Token) -> TypeDescriptor:
		if tok.value in BUILTIN_LEAVES:
			return BUILTIN_LEAVES[tok.value]
		if tok.value in self.script.types:
			return self.script.types[tok.value]
		raise self._error(f"unknown type '{tok.value}'", tok)

	def _resolve_type(self, name: str, stack: Tuple[str, ...]) -> TypeDescriptor:
		if name in self.script.types:
			return self.script.types[name]
		tree = self._type_trees[name]
		fields: List[FieldSpec] = []
		field_list = _subtrees(tree)
		for f in (_subtrees(field_list[0]) if field_list else []):
			fname, ftype = _tokens(f)
			kind = _FIELD_KINDS[_name(_subtrees(f)[0])]
			if any(existing.name == fname.value for existing in fields):
				raise self._error(f"type '{name}' declares field '{fname.value}' twice", fname)
			fields.append(FieldSpec(fname.value, kind, self._field_element(ftype, kind, stack + (name,))))
		return TypeDescriptor(name, tuple(fields))

	def _field_element(self, tok: Token, kind: FieldKind, stack: Tuple[str, ...]) -> TypeDescriptor:
		if tok.value in BUILTIN_LEAVES:
			return BUILTIN_LEAVES[tok.value]
		if tok.value not in self._type_trees:
			raise self._error(f"unknown type '{tok.value}'", tok)
		if tok.value in stack:
			if kind is FieldKind.VALUE:
				raise self._error(f"type '{tok.value}' contains itself inline; use an `indirect` field", tok)
			# Recursion through a reference or box: the element is named only.
			return leaf(tok.value)
		return self._resolve_type(tok.value, stack)

	def _params(self, tree: Optional[Tree]) -> List[Tuple[Token, Optional[RefRole], TypeDescriptor]]:
		out: List[Tuple[Token, Optional[RefRole], TypeDescriptor]] = []
		if tree is None:
			return out
		names = set()
		for p in _subtrees(tree):
			name_tok, ty_tok = _tokens(p)
			if name_tok.value in names:
				raise self._error(f"parameter '{name_tok.value}' declared twice", name_tok)
			names.add(name_tok.value)
			role = {
				"param_mut": RefRole.EXCLUSIVE,
				"param_shared": RefRole.SHARED,
				"param_own": RefRole.OWNER,
				"param_value": None,
			}[_name(p)]
			out.append((name_tok, role, self._type_ref(ty_tok)))
		return out

	def _signature(self, tree: Tree) -> FnSignature:
		name = _tokens(tree)[0].value
		subs = _subtrees(tree)
		param_tree = next((s for s in subs if _name(s) == "param_list"), None)
		params = tuple(ParamSpec(tok.value, role, ty) for tok, role, ty in self._params(param_tree))
		ret = next((s for s in subs if _name(s) in ("ret_ref", "ret_value")), None)
		if ret is None:
			return FnSignature(name, params)
		if _name(ret) == "ret_value":
			return FnSignature(name, params, returns=None, return_type=self._type_ref(_tokens(ret)[0]))

		returns = RefRole.EXCLUSIVE if _has(ret, "MUT") else RefRole.SHARED
		ty_toks = _tokens(ret)
		ann_tree = next((s for s in _subtrees(ret) if _name(s) == "accessible"), None)
		annotation = None
		if ann_tree is not None:
			roots = tuple(t.value for t in _tokens(ann_tree))
			for t in _tokens(ann_tree):
				if t.value not in {p.name for p in params}:
					raise self._error(f"'{name}' has no parameter '{t.value}'", t)
			annotation = AccessibilityAnnotation(roots)
		return_type = self._type_ref(ty_toks[0]) if ty_toks else leaf("Unknown")
		return FnSignature(name, params, returns=returns, accessible_from=annotation, return_type=return_type)

	# ------------------------------------------------------------------
	# units

	def _unit(self, tree: Tree) -> E.Unit:
		name = _tokens(tree)[0].value
		subs = _subtrees(tree)
		param_tree = next((s for s in subs if _name(s) == "param_list"), None)
		events: List[E.Event] = []
		for tok, role, ty in self._params(param_tree):
			# A by-value parameter is owned by the unit.
			events.append(E.ParamDeclared(tok.value, ty, role or RefRole.OWNER, span=self._loc(tok)))
		events.extend(self._block(subs[-1]))
		return E.Unit(
			name=name,
			events=tuple(events),
			signatures=dict(self.script.signatures),
			statics=dict(self.script.statics),
		)

	def _block(self, tree: Tree) -> List[E.Event]:
		return [self._stmt(s) for s in _subtrees(tree)]

	def _stmt(self, tree: Tree) -> E.Event:
		kind = _name(tree)
		names = [t.value for t in _tokens(tree)]
		span = self._loc(tree)
		if kind == "owner_stmt":
			return E.OwnerDeclared(names[0], self._type_ref(_tokens(tree)[1]), span=span)
		if kind == "borrow_stmt":
			place = [t.value for t in _tokens(_subtrees(tree)[0])]
			role = RefRole.EXCLUSIVE if _has(tree, "MUT") else RefRole.SHARED
			return E.Borrow(names[0], place[0], tuple(place[1:]), role=role, span=span)
		if kind == "call_stmt":
			return E.Call(names[1], self._args(tree), result=names[0], span=span)
		if kind == "void_call_stmt":
			return E.Call(names[0], self._args(tree), span=span)
		if kind == "move_stmt":
			return E.Transfer(src=names[1], dst=names[0], span=span)
		if kind == "use_stmt":
			return E.Use(names[0], span=span)
		if kind == "drop_stmt":
			return E.Drop(names[0], span=span)
		if kind == "upgrade_stmt":
			labels = _tokens(tree, "LABEL")
			return E.UpgradeRequest(names[0], label=labels[0].value[1:] if labels else None, span=span)
		if kind == "return_stmt":
			return E.Return(names[0], span=span)
		if kind == "return_void_stmt":
			return E.Return(span=span)
		if kind == "if_stmt":
			blocks = _subtrees(tree)
			else_events = tuple(self._block(blocks[1])) if len(blocks) > 1 else ()
			return E.Branch(tuple(self._block(blocks[0])), else_events, span=span)
		if kind == "loop_stmt":
			return E.Loop(tuple(self._block(_subtrees(tree)[0])), span=span)
		raise self._error(f"unsupported statement '{kind}'", tree)

	def _args(self, tree: Tree) -> Tuple[str, ...]:
		args = next((s for s in _subtrees(tree) if _name(s) == "args"), None)
		return tuple(t.value for t in _tokens(args)) if args is not None else ()


def parse_script(source: str, *, file: Optional[str] = None) -> Script:
	"""Parse a script; raises ScriptError on syntax or resolution errors."""
	try:
		tree = _PARSER.parse(source)
	except UnexpectedInput as err:
		span = Span(
			file=file,
			line=getattr(err, "line", None),
			column=getattr(err, "column", None),
			raw=err,
		)
		raise ScriptError(f"syntax error: {err}", span=span) from None
	return _Builder(file).build(tree)


def parse_file(path: Path) -> Script:
	return parse_script(Path(path).read_text(), file=str(path))


__all__ = ["Script", "ScriptError", "parse_file", "parse_script"]
