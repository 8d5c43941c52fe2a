# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Toolchain diagnostic parsing and rendering.

rustc and cargo report positions as `--> path:LINE:COL`; everything here keys
off that format. Nothing in this module decides whether a build failed: the
driver uses the exit status for that and only calls in here to enrich the
error it raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ferrocall.errors import FerroError

_POSITION_RE = re.compile(r":(\d+):\d+")
_HEADER_RE = re.compile(r"^(error|warning)(?:\[(E\d+)\])?:\s*(.*)$")
_ARROW_RE = re.compile(r"^\s*-->\s*(.+?):(\d+):(\d+)\s*$")
_HELP_RE = re.compile(r"^\s*(?:=\s*)?help:\s*(.*)$")


@dataclass(frozen=True)
class Span:
	file: str | None = None
	line: int | None = None
	column: int | None = None


@dataclass
class Diagnostic:
	"""One toolchain message (error/warning) with its primary location."""

	message: str
	code: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)
	notes: list[str] = field(default_factory=list)


def parse_rustc_diagnostics(stderr: str) -> list[Diagnostic]:
	out: list[Diagnostic] = []
	cur: Diagnostic | None = None
	for raw in stderr.splitlines():
		m = _HEADER_RE.match(raw)
		if m is not None:
			# Summary lines ("aborting due to ...") carry no location and are noise.
			if m.group(3).startswith("aborting due to"):
				cur = None
				continue
			cur = Diagnostic(message=m.group(3), code=m.group(2), severity=m.group(1))
			out.append(cur)
			continue
		if cur is None:
			continue
		m = _ARROW_RE.match(raw)
		if m is not None and cur.span.line is None:
			cur.span = Span(file=m.group(1), line=int(m.group(2)), column=int(m.group(3)))
			continue
		m = _HELP_RE.match(raw)
		if m is not None:
			cur.notes.append(m.group(1))
	return out


def extract_line_numbers(stderr: str) -> list[int]:
	return sorted({int(m.group(1)) for m in _POSITION_RE.finditer(stderr)})


def extract_help_lines(stderr: str) -> list[str]:
	seen: list[str] = []
	for raw in stderr.splitlines():
		m = _HELP_RE.match(raw)
		if m is not None and m.group(1) and m.group(1) not in seen:
			seen.append(m.group(1))
	return seen


def suggest_fixes(stderr: str, source: str) -> list[str]:
	"""
	Heuristic hints for common mistakes.

	Matches on lowercase toolchain output; the source is consulted only for
	brace counting and FFI attribute checks.
	"""
	err = stderr.lower()
	src = source.lower()
	hints: list[str] = []

	if "expected `;`, found" in err:
		hints.append("Missing semicolon. Add `;` at the end of the statement.")
	if "expected `}`, found" in err or "unclosed delimiter" in err:
		hints.append("Mismatched braces. Check that every opening `{` has a matching closing `}`.")
		opened = source.count("{")
		closed = source.count("}")
		if opened > closed:
			hints.append(f"Found {opened - closed} more opening brace(s) than closing brace(s).")
		elif closed > opened:
			hints.append(f"Found {closed - opened} more closing brace(s) than opening brace(s).")
	if "expected `)`, found" in err:
		hints.append("Mismatched parentheses. Check that every opening `(` has a matching closing `)`.")
	if "cannot find" in err and "in this scope" in err:
		hints.append("Undefined name. Check the spelling and that it is defined before use.")
	if "mismatched types" in err:
		hints.append("Type mismatch. Check that argument types match the function signature.")
	if "expected one of" in err:
		hints.append("Syntax error. Check the Rust syntax for the construct being used.")
	if "unused variable" in err:
		hints.append("Unused variable. Use it or prefix it with `_`.")
	if "cannot borrow" in err:
		hints.append("Borrow checker error. Consider passing a reference or cloning the value.")
	if "extern" in src and "#[no_mangle]" not in src and "#[python]" not in src:
		hints.append('Missing `#[no_mangle]`. Add it before `pub extern "C"` functions.')
	if 'pub extern "c"' in src and 'pub extern "C"' not in source:
		hints.append('Use `extern "C"` (capital C) for C-compatible functions.')

	out: list[str] = []
	for h in hints:
		if h not in out:
			out.append(h)
	return out


def render_source_context(source: str, lines: list[int], *, context: int = 2) -> str:
	"""Render numbered source lines around `lines`, marking error lines with `>>> `."""
	src_lines = source.splitlines()
	if not src_lines or not lines:
		return ""
	wanted: set[int] = set()
	for ln in lines:
		for n in range(max(1, ln - context), min(len(src_lines), ln + context) + 1):
			wanted.add(n)
	width = len(str(max(wanted))) if wanted else 1
	out: list[str] = []
	prev: int | None = None
	for n in sorted(wanted):
		if prev is not None and n != prev + 1:
			out.append("    ...")
		marker = ">>> " if n in lines else "    "
		out.append(f"{marker}{n:>{width}} | {src_lines[n - 1]}")
		prev = n
	return "\n".join(out)


def format_compile_failure(err: FerroError) -> str:
	parts: list[str] = [err.message]
	if err.command:
		parts.append("command: " + " ".join(err.command))
	if err.diagnostics:
		parts.append("")
		parts.append(err.diagnostics.rstrip())
	if err.source and err.diagnostics:
		lines = (err.context or {}).get("source_lines")
		if lines is None:
			lines = extract_line_numbers(err.diagnostics)
		ctx = render_source_context(err.source, list(lines))
		if ctx:
			parts.append("")
			parts.append("source:")
			parts.append(ctx)
	if err.suggestions:
		parts.append("")
		parts.append("suggestions:")
		parts.extend(f"  - {s}" for s in err.suggestions)
	return "\n".join(parts)
