# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Build and toolchain configuration.

Everything that feeds a cache key lives in `BuildConfig`; everything that only
affects how the toolchain is located or run lives in `ToolchainConfig`.
"""

from __future__ import annotations

import os
import platform
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path

from ferrocall import __version__
from ferrocall.errors import TOOLCHAIN_MISSING, FerroError

ENV_CACHE_DIR = "FERROCALL_CACHE_DIR"
ENV_RUSTC = "FERROCALL_RUSTC"
ENV_CARGO = "FERROCALL_CARGO"
ENV_LOG = "FERROCALL_LOG"

DEFAULT_EDITION = "2021"


def default_target_triple() -> str:
	machine = platform.machine().lower()
	if machine in ("arm64", "aarch64"):
		arch = "aarch64"
	elif machine in ("amd64", "x86_64", "x64"):
		arch = "x86_64"
	else:
		arch = machine or "x86_64"
	if sys.platform == "darwin":
		return f"{arch}-apple-darwin"
	if sys.platform.startswith("win"):
		return f"{arch}-pc-windows-msvc"
	return f"{arch}-unknown-linux-gnu"


def library_extension() -> str:
	if sys.platform == "darwin":
		return ".dylib"
	if sys.platform.startswith("win"):
		return ".dll"
	return ".so"


def library_prefix() -> str:
	return "" if sys.platform.startswith("win") else "lib"


def default_cache_root() -> Path:
	"""
	Process-wide cache root, scoped by ferrocall and host interpreter version.

	`FERROCALL_CACHE_DIR` overrides the location verbatim.
	"""
	env = os.environ.get(ENV_CACHE_DIR)
	if env:
		return Path(env)
	base = os.environ.get("XDG_CACHE_HOME")
	root = Path(base) if base else Path.home() / ".cache"
	scope = f"v{__version__}-py{sys.version_info.major}.{sys.version_info.minor}"
	return root / "ferrocall" / scope


@dataclass(frozen=True)
class BuildConfig:
	optimization_level: int = 2
	debug_info: bool = False
	target_triple: str = field(default_factory=default_target_triple)

	def __post_init__(self) -> None:
		if not isinstance(self.optimization_level, int) or not 0 <= self.optimization_level <= 3:
			raise ValueError(f"optimization_level must be 0..3, got: {self.optimization_level!r}")
		if not self.target_triple:
			raise ValueError("target_triple must be non-empty")

	def config_string(self) -> str:
		"""Canonical form used in cache keys and metadata; field order is fixed."""
		return f"opt={self.optimization_level};debug={int(self.debug_info)};target={self.target_triple}"


@dataclass(frozen=True)
class ToolchainConfig:
	rustc: str | None = None
	cargo: str | None = None
	timeout: float | None = None
	edition: str = DEFAULT_EDITION

	def resolve_rustc(self) -> str:
		return _resolve_tool("rustc", self.rustc, ENV_RUSTC)

	def resolve_cargo(self) -> str:
		return _resolve_tool("cargo", self.cargo, ENV_CARGO)


def _resolve_tool(name: str, explicit: str | None, env_var: str) -> str:
	cand = explicit or os.environ.get(env_var) or shutil.which(name)
	if not cand:
		raise FerroError(
			reason_code=TOOLCHAIN_MISSING,
			message=f"{name} not found (set {env_var} or add it to PATH)",
		)
	return cand
