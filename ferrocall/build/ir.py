# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
LLVM IR inspection for emitted single-file builds.

rustc can dump the crate's IR next to the library (`--emit=llvm-ir`). Parsing
it with llvmlite gives the exact set of exported C symbols, which covers plain
`#[no_mangle] extern "C"` functions that carry no `#[python]` marker.

IR analysis is best-effort: rustc may embed a newer LLVM than llvmlite
understands, in which case `analyze_ir` returns None and callers fall back to
extracted signatures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import llvmlite.binding as llvm

logger = logging.getLogger(__name__)

_MANGLED_PREFIXES = ("_ZN", "_R", "__rust", "rust_")


@dataclass(frozen=True)
class IRFunction:
	name: str
	linkage: str

	@property
	def exported(self) -> bool:
		return self.linkage == "external" and not self.name.startswith(_MANGLED_PREFIXES)


def analyze_ir(text: str) -> list[IRFunction] | None:
	try:
		mod = llvm.parse_assembly(text)
	except RuntimeError as err:
		logger.debug("IR not parseable by llvmlite: %s", str(err).splitlines()[0] if str(err) else err)
		return None
	out: list[IRFunction] = []
	for fn in mod.functions:
		if fn.is_declaration:
			continue
		linkage = getattr(fn.linkage, "name", str(fn.linkage))
		out.append(IRFunction(name=fn.name, linkage=linkage))
	return out


def exported_functions(text: str) -> list[str] | None:
	funcs = analyze_ir(text)
	if funcs is None:
		return None
	return sorted(f.name for f in funcs if f.exported)
