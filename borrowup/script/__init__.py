# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual event-script front-end (`.bu` files).

Stands in for an upstream compiler front-end: it produces the same event
units the analyzer consumes, so tests and the playground tool can describe
scenarios compactly.
"""

from .parser import Script, ScriptError, parse_file, parse_script

__all__ = ["Script", "ScriptError", "parse_file", "parse_script"]
