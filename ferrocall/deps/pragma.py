# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Dependency declarations embedded in Rust source.

Two forms are recognized:

  //! ```cargo
  //! [dependencies]
  //! ndarray = "0.15"
  //! ```

and the single-line pragma

  // cargo-deps: ndarray="0.15", serde={version="1", features=["derive"]}

The fenced block body is TOML (read with `tomllib`); the pragma has its own
small grammar (`pragma.lark`). Both forms may appear together and are merged.
"""

from __future__ import annotations

import json
import logging
import re
import tomllib
from pathlib import Path
from typing import Any

from lark import Lark, Transformer
from lark.exceptions import LarkError, VisitError

from ferrocall.deps.resolve import merge_dependencies
from ferrocall.deps.spec import DependencySpec

logger = logging.getLogger(__name__)

_GRAMMAR_PATH = Path(__file__).with_name("pragma.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PRAGMA_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	start="start",
	maybe_placeholders=False,
)

_PRAGMA_RE = re.compile(r"^[ \t]*//\s*cargo-deps:\s*(.+?)\s*$", re.MULTILINE)


def _unquote(tok: Any) -> str:
	return json.loads(str(tok))


class _PragmaTransformer(Transformer):
	def start(self, items):
		return list(items)

	def dep_version(self, items):
		name, version = items
		return DependencySpec(name=str(name), version=_unquote(version))

	def dep_table(self, items):
		name, table = items
		return _spec_from_table(str(name), table)

	def table(self, items):
		return dict(items)

	def pair_string(self, items):
		return str(items[0]), _unquote(items[1])

	def pair_list(self, items):
		return str(items[0]), items[1]

	def pair_bool(self, items):
		return str(items[0]), str(items[1]) == "true"

	def strlist(self, items):
		return [_unquote(s) for s in items]


def _spec_from_table(name: str, table: dict[str, Any]) -> DependencySpec:
	features = table.get("features") or []
	if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
		raise ValueError(f"dependency {name}: features must be a list of strings")
	fields: dict[str, str | None] = {}
	for key in ("version", "git", "path"):
		val = table.get(key)
		if val is not None and not isinstance(val, str):
			raise ValueError(f"dependency {name}: {key} must be a string")
		fields[key] = val
	return DependencySpec(name=name, features=frozenset(features), **fields)


def extract_cargo_block(source: str) -> str | None:
	"""Body of the first ```cargo fenced `//!` block, without comment prefixes."""
	in_block = False
	lines: list[str] = []
	for raw in source.splitlines():
		stripped = raw.strip()
		if not stripped.startswith("//!"):
			continue
		content = stripped[3:].strip()
		if not in_block and content.startswith("```cargo"):
			in_block = True
			continue
		if in_block and content == "```":
			break
		if in_block:
			lines.append(content)
	if not lines:
		return None
	return "\n".join(lines)


def parse_cargo_block(block: str) -> list[DependencySpec]:
	try:
		doc = tomllib.loads(block)
	except tomllib.TOMLDecodeError as err:
		logger.warning("ignoring malformed cargo block: %s", err)
		return []
	section = doc.get("dependencies")
	if not isinstance(section, dict):
		return []
	out: list[DependencySpec] = []
	for name, val in section.items():
		if isinstance(val, str):
			out.append(DependencySpec(name=name, version=val))
		elif isinstance(val, dict):
			try:
				out.append(_spec_from_table(name, val))
			except ValueError as err:
				logger.warning("ignoring dependency in cargo block: %s", err)
		else:
			logger.warning("ignoring dependency %s: unsupported value %r", name, val)
	return out


def extract_pragma_line(source: str) -> str | None:
	m = _PRAGMA_RE.search(source)
	return m.group(1) if m is not None else None


def parse_pragma(line: str) -> list[DependencySpec]:
	"""Parse the text after `cargo-deps:`. Raises ValueError on malformed input."""
	try:
		tree = _PRAGMA_PARSER.parse(line)
	except LarkError as err:
		raise ValueError(f"malformed cargo-deps pragma: {err}") from err
	try:
		return _PragmaTransformer().transform(tree)
	except VisitError as err:
		raise ValueError(f"malformed cargo-deps pragma: {err.orig_exc}") from err.orig_exc


def has_dependencies(source: str) -> bool:
	return extract_cargo_block(source) is not None or extract_pragma_line(source) is not None


def parse_dependencies_from_source(source: str) -> list[DependencySpec]:
	"""All declared dependencies, merged by name and sorted."""
	deps: list[DependencySpec] = []
	block = extract_cargo_block(source)
	if block is not None:
		deps.extend(parse_cargo_block(block))
	line = extract_pragma_line(source)
	if line is not None:
		try:
			deps.extend(parse_pragma(line))
		except ValueError as err:
			logger.warning("%s", err)
	return merge_dependencies(deps)


def strip_dependency_comments_mapped(source: str) -> tuple[str, list[int]]:
	"""
	`strip_dependency_comments` plus a line map: entry i is the 1-based line
	of `source` that line i + 1 of the stripped text came from.
	"""
	kept: list[tuple[int, str]] = []
	in_block = False
	for lineno, raw in enumerate(source.split("\n"), start=1):
		stripped = raw.strip()
		if stripped.startswith("//!"):
			content = stripped[3:].strip()
			if not in_block and content.startswith("```cargo"):
				in_block = True
				continue
			if in_block:
				if content == "```":
					in_block = False
				continue
		if _PRAGMA_RE.match(raw):
			continue
		kept.append((lineno, raw))

	# Runs of empty lines collapse to one.
	collapsed: list[tuple[int, str]] = []
	for lineno, raw in kept:
		if raw == "" and collapsed and collapsed[-1][1] == "":
			continue
		collapsed.append((lineno, raw))

	# str.strip() on the joined text.
	while collapsed and not collapsed[0][1].strip():
		collapsed.pop(0)
	while collapsed and not collapsed[-1][1].strip():
		collapsed.pop()
	if not collapsed:
		return "", []
	collapsed[0] = (collapsed[0][0], collapsed[0][1].lstrip())
	collapsed[-1] = (collapsed[-1][0], collapsed[-1][1].rstrip())
	return "\n".join(raw for _, raw in collapsed), [lineno for lineno, _ in collapsed]


def strip_dependency_comments(source: str) -> str:
	"""
	Remove embedded dependency declarations before the source is compiled.

	Drops the ```cargo `//!` block (fences included) and every `cargo-deps`
	pragma line, collapses runs of blank lines and trims the result.
	"""
	return strip_dependency_comments_mapped(source)[0]
