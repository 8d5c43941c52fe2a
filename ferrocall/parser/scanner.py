# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Bracket-depth scanning over Rust signature text.

Three bracket kinds nest independently of each other: `<>`, `()` and `[]`.
Splitting a parameter or generic list on commas is only valid at depth zero,
otherwise `HashMap<String, Vec<(i32, u8)>>` would be torn apart.

The `>` of a `->` arrow (closure bounds such as `F: Fn(i32) -> i32`) is not a
closing angle bracket and is skipped.
"""

from __future__ import annotations

_OPEN_TO_CLOSE = {"<": ">", "(": ")", "[": "]"}
_CLOSERS = frozenset(_OPEN_TO_CLOSE.values())


def _is_arrow(text: str, idx: int) -> bool:
	return text[idx] == ">" and idx > 0 and text[idx - 1] == "-"


def find_matching(text: str, start: int) -> int | None:
	"""
	Return the index of the bracket closing the one at `text[start]`.

	Returns None when the brackets are unbalanced or interleaved, which the
	caller treats as a malformed declaration.
	"""
	if start >= len(text) or text[start] not in _OPEN_TO_CLOSE:
		return None
	stack: list[str] = []
	for idx in range(start, len(text)):
		ch = text[idx]
		if ch in _OPEN_TO_CLOSE:
			stack.append(_OPEN_TO_CLOSE[ch])
		elif ch in _CLOSERS:
			if _is_arrow(text, idx):
				continue
			if not stack or stack[-1] != ch:
				return None
			stack.pop()
			if not stack:
				return idx
	return None


def split_top_level(text: str, sep: str = ",") -> list[str]:
	"""Split on `sep` at bracket depth zero; pieces are stripped, empties dropped."""
	parts: list[str] = []
	depth = 0
	cur: list[str] = []
	for idx, ch in enumerate(text):
		if ch in _OPEN_TO_CLOSE:
			depth += 1
		elif ch in _CLOSERS and not _is_arrow(text, idx):
			depth -= 1
		if ch == sep and depth == 0:
			parts.append("".join(cur).strip())
			cur = []
			continue
		cur.append(ch)
	parts.append("".join(cur).strip())
	return [p for p in parts if p]


def find_body_open(text: str, start: int) -> int | None:
	"""
	Index of the `{` opening a body, scanning from `start` at depth zero.

	A `;` at depth zero first means a bodiless declaration (None).
	"""
	depth = 0
	for idx in range(start, len(text)):
		ch = text[idx]
		if ch in _OPEN_TO_CLOSE:
			depth += 1
		elif ch in _CLOSERS and not _is_arrow(text, idx):
			depth -= 1
		elif depth == 0 and ch == "{":
			return idx
		elif depth == 0 and ch == ";":
			return None
	return None


def split_outer(type_str: str) -> tuple[str, list[str]] | None:
	"""
	Split `Head<A, B>` into ("Head", ["A", "B"]).

	Returns None when the text is not a single generic instantiation (no angle
	list, or trailing text after the closing `>`).
	"""
	text = type_str.strip()
	lt = text.find("<")
	if lt <= 0:
		return None
	end = find_matching(text, lt)
	if end is None or end != len(text) - 1:
		return None
	return text[:lt].strip(), split_top_level(text[lt + 1:end])
