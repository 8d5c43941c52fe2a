# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Stable reason codes. Callers branch on these, never on message text.
COMPILE_FAILURE = "COMPILE_FAILURE"
COMPILE_TIMEOUT = "COMPILE_TIMEOUT"
ARTIFACT_MISSING = "ARTIFACT_MISSING"
SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
LIBRARY_LOAD_FAILURE = "LIBRARY_LOAD_FAILURE"
LIBRARY_UNLOADED = "LIBRARY_UNLOADED"
DEPENDENCY_RESOLUTION_FAILURE = "DEPENDENCY_RESOLUTION_FAILURE"
TOOLCHAIN_MISSING = "TOOLCHAIN_MISSING"
ARITY_MISMATCH = "ARITY_MISMATCH"
UNKNOWN_FUNCTION = "UNKNOWN_FUNCTION"
WIRE_TAG_INVALID = "WIRE_TAG_INVALID"
RUST_ERROR = "RUST_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class FerroError(Exception):
	"""
	A structured, serializable error for the compile/cache/call pipeline.

	One type covers every failure kind; `reason_code` selects the variant and
	the optional fields carry whatever context that variant has. Compile
	failures keep the full source and the exact command so the caller can
	reproduce the build by hand.
	"""

	reason_code: str
	message: str
	diagnostics: str | None = None
	source: str | None = None
	command: list[str] | None = None
	file_path: str | None = None
	line: int | None = None
	dependency: str | None = None
	artifact_path: str | None = None
	symbol: str | None = None
	library_path: str | None = None
	suggestions: list[str] | None = None
	context: dict[str, Any] | None = None

	def __str__(self) -> str:
		return self.format_human()

	def to_dict(self) -> dict[str, Any]:
		return {
			"reason_code": self.reason_code,
			"message": self.message,
			"diagnostics": self.diagnostics,
			"source": self.source,
			"command": list(self.command) if self.command is not None else None,
			"file_path": self.file_path,
			"line": self.line,
			"dependency": self.dependency,
			"artifact_path": self.artifact_path,
			"symbol": self.symbol,
			"library_path": self.library_path,
			"suggestions": list(self.suggestions) if self.suggestions is not None else None,
			"context": dict(self.context) if self.context is not None else None,
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.file_path:
			loc = self.file_path if self.line is None else f"{self.file_path}:{self.line}"
			parts.append(f"at={loc}")
		elif self.line is not None:
			parts.append(f"line={self.line}")
		if self.symbol:
			parts.append(f"symbol={self.symbol}")
		if self.library_path:
			parts.append(f"library_path={self.library_path}")
		if self.artifact_path:
			parts.append(f"artifact_path={self.artifact_path}")
		if self.dependency:
			parts.append(f"dependency={self.dependency}")
		if self.command:
			parts.append(f"command={' '.join(self.command)}")
		text = " ".join(parts)
		if self.suggestions:
			text += "".join(f"\n  hint: {s}" for s in self.suggestions)
		return text


def wrap_internal(err: BaseException) -> FerroError:
	"""Wrap an unexpected exception so report-returning APIs stay total."""
	if isinstance(err, FerroError):
		return err
	return FerroError(reason_code=INTERNAL_ERROR, message=f"{type(err).__name__}: {err}")
