# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Signature extraction for `#[python]`-annotated Rust declarations.

Only signatures are read, never bodies. A regex finds the attribute and the
item keyword; the depth scanner delimits the generic list, the parameter list
and the return type so nested generic types survive intact.

Malformed declarations are skipped (logged at DEBUG), never fatal: one bad
item must not hide the others in the same source.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from ferrocall.parser.scanner import find_body_open, find_matching, split_outer, split_top_level

logger = logging.getLogger(__name__)

EXPORT_ATTRIBUTE = "#[python]"

# `#[python]`, any further attributes, optional visibility/qualifiers, then the item keyword.
_ATTR_PREFIX = r"#\[python\]\s*(?:#\[[^\]]*\]\s*)*(?:pub(?:\([^)]*\))?\s+)?"
_FN_RE = re.compile(_ATTR_PREFIX + r"(?:const\s+)?(?:unsafe\s+)?(?:extern\s+\"C\"\s+)?fn\s+([A-Za-z_]\w*)\s*")
_STRUCT_RE = re.compile(_ATTR_PREFIX + r"struct\s+([A-Za-z_]\w*)\s*")
_WHERE_RE = re.compile(r"\bwhere\b")

SumKind = Literal["result", "option"]


@dataclass(frozen=True)
class FunctionSignature:
	name: str
	params: tuple[tuple[str, str], ...] = ()
	return_type: str = "()"
	is_generic: bool = False
	generic_params: tuple[str, ...] = ()

	@property
	def arity(self) -> int:
		return len(self.params)

	@property
	def param_types(self) -> list[str]:
		return [t for _, t in self.params]

	def to_dict(self) -> dict[str, Any]:
		return {
			"name": self.name,
			"params": [{"name": n, "type": t} for n, t in self.params],
			"return_type": self.return_type,
			"is_generic": self.is_generic,
			"generic_params": list(self.generic_params),
		}


@dataclass(frozen=True)
class StructSignature:
	name: str
	fields: tuple[tuple[str, str], ...] = ()
	generic_params: tuple[str, ...] = ()
	is_tuple: bool = False

	def to_dict(self) -> dict[str, Any]:
		return {
			"name": self.name,
			"fields": [{"name": n, "type": t} for n, t in self.fields],
			"generic_params": list(self.generic_params),
			"is_tuple": self.is_tuple,
		}


@dataclass
class _Cursor:
	text: str
	pos: int
	generic_params: list[str] = field(default_factory=list)

	def skip_ws(self) -> None:
		while self.pos < len(self.text) and self.text[self.pos].isspace():
			self.pos += 1

	def peek(self) -> str:
		return self.text[self.pos] if self.pos < len(self.text) else ""


def _normalize_type(t: str) -> str:
	return " ".join(t.split())


def parse_generic_params(inner: str) -> list[str]:
	"""Type/const parameter names from a generic list; lifetimes are dropped."""
	names: list[str] = []
	for part in split_top_level(inner):
		if part.startswith("'"):
			continue
		if part.startswith("const "):
			part = part[len("const "):]
		name = split_top_level(part, ":")[0] if ":" in part else part
		name = name.split("=", 1)[0].strip()
		if name:
			names.append(name)
	return names


def _is_self_param(part: str) -> bool:
	head = part.split(":", 1)[0]
	tokens = [tok for tok in head.replace("&", " ").split() if tok != "mut" and not tok.startswith("'")]
	return tokens == ["self"]


def _parse_params(inner: str) -> list[tuple[str, str]] | None:
	out: list[tuple[str, str]] = []
	for part in split_top_level(inner):
		if _is_self_param(part):
			continue
		pieces = split_top_level(part, ":")
		if len(pieces) < 2:
			return None
		name = pieces[0]
		if name.startswith("mut "):
			name = name[len("mut "):].strip()
		# Re-join in case the type itself holds a path separator.
		ty = part[part.index(":") + 1:]
		if ty.startswith(":"):
			return None
		out.append((name, _normalize_type(ty)))
	return out


def _parse_generics(cur: _Cursor) -> bool:
	cur.skip_ws()
	if cur.peek() != "<":
		return True
	end = find_matching(cur.text, cur.pos)
	if end is None:
		return False
	cur.generic_params = parse_generic_params(cur.text[cur.pos + 1:end])
	cur.pos = end + 1
	return True


def _parse_function(text: str, m: re.Match[str]) -> FunctionSignature | None:
	name = m.group(1)
	cur = _Cursor(text, m.end())
	if not _parse_generics(cur):
		return None
	cur.skip_ws()
	if cur.peek() != "(":
		return None
	close = find_matching(text, cur.pos)
	if close is None:
		return None
	params = _parse_params(text[cur.pos + 1:close])
	if params is None:
		return None
	body = find_body_open(text, close + 1)
	if body is None:
		return None
	tail = _WHERE_RE.split(text[close + 1:body], maxsplit=1)[0].strip()
	if tail.startswith("->"):
		ret = _normalize_type(tail[2:])
		if not ret:
			return None
	elif tail:
		return None
	else:
		ret = "()"
	return FunctionSignature(
		name=name,
		params=tuple(params),
		return_type=ret,
		is_generic=bool(cur.generic_params),
		generic_params=tuple(cur.generic_params),
	)


def extract_functions(source: str) -> list[FunctionSignature]:
	"""Every well-formed `#[python]` function, in source order."""
	out: list[FunctionSignature] = []
	for m in _FN_RE.finditer(source):
		sig = _parse_function(source, m)
		if sig is None:
			line = source.count("\n", 0, m.start()) + 1
			logger.debug("skipping malformed declaration of %r at line %d", m.group(1), line)
			continue
		out.append(sig)
	return out


def _parse_struct(text: str, m: re.Match[str]) -> StructSignature | None:
	cur = _Cursor(text, m.end())
	if not _parse_generics(cur):
		return None
	cur.skip_ws()
	ch = cur.peek()
	if ch == ";":
		return StructSignature(name=m.group(1), generic_params=tuple(cur.generic_params))
	if ch == "(":
		close = find_matching(text, cur.pos)
		if close is None:
			return None
		types = [_normalize_type(t.removeprefix("pub ").strip()) for t in split_top_level(text[cur.pos + 1:close])]
		fields = tuple((str(i), t) for i, t in enumerate(types))
		return StructSignature(name=m.group(1), fields=fields, generic_params=tuple(cur.generic_params), is_tuple=True)
	body = find_body_open(text, cur.pos)
	if body is None:
		return None
	end = _matching_brace(text, body)
	if end is None:
		return None
	fields_out: list[tuple[str, str]] = []
	for part in split_top_level(text[body + 1:end]):
		part = re.sub(r"#\[[^\]]*\]\s*", "", part).strip()
		if ":" not in part:
			return None
		fname, ftype = part.split(":", 1)
		fname = fname.strip()
		if fname.startswith("pub"):
			fname = fname.split()[-1]
		fields_out.append((fname, _normalize_type(ftype)))
	return StructSignature(name=m.group(1), fields=tuple(fields_out), generic_params=tuple(cur.generic_params))


def _matching_brace(text: str, start: int) -> int | None:
	depth = 0
	for idx in range(start, len(text)):
		if text[idx] == "{":
			depth += 1
		elif text[idx] == "}":
			depth -= 1
			if depth == 0:
				return idx
	return None


def extract_structs(source: str) -> list[StructSignature]:
	out: list[StructSignature] = []
	for m in _STRUCT_RE.finditer(source):
		sig = _parse_struct(source, m)
		if sig is None:
			logger.debug("skipping malformed struct %r", m.group(1))
			continue
		out.append(sig)
	return out


def extract(source: str) -> list[FunctionSignature]:
	return extract_functions(source)


# --- Sum-type introspection ---


def _strip_path(head: str) -> str:
	return head.rsplit("::", 1)[-1]


def result_type_args(type_str: str) -> tuple[str, str] | None:
	"""(T, E) for `Result<T, E>`; single-argument aliases such as `io::Result<T>` are not matched."""
	split = split_outer(type_str)
	if split is None:
		return None
	head, args = split
	if _strip_path(head) != "Result" or len(args) != 2:
		return None
	return _normalize_type(args[0]), _normalize_type(args[1])


def option_type_arg(type_str: str) -> str | None:
	split = split_outer(type_str)
	if split is None:
		return None
	head, args = split
	if _strip_path(head) != "Option" or len(args) != 1:
		return None
	return _normalize_type(args[0])


def sum_type_kind(type_str: str) -> SumKind | None:
	if result_type_args(type_str) is not None:
		return "result"
	if option_type_arg(type_str) is not None:
		return "option"
	return None
