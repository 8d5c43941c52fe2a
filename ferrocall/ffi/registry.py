# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Loaded-library registry.

One entry per distinct artifact (by resolved path). Loading an artifact that
is already mapped returns the existing handle: mapping it twice would give
the native code two copies of its global state. Handles are only unmapped by
an explicit `unload`; afterwards any use raises LIBRARY_UNLOADED.
"""

from __future__ import annotations

import _ctypes
import ctypes
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path

from ferrocall.errors import LIBRARY_LOAD_FAILURE, LIBRARY_UNLOADED, SYMBOL_NOT_FOUND, FerroError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class LoadedLibrary:
	path: Path
	handle: ctypes.CDLL | None
	symbols: dict[str, int] = field(default_factory=dict)

	@property
	def loaded(self) -> bool:
		return self.handle is not None


def _close_handle(handle: ctypes.CDLL) -> None:
	raw = handle._handle
	if sys.platform.startswith("win"):
		_ctypes.FreeLibrary(raw)
	else:
		_ctypes.dlclose(raw)


class LibraryRegistry:
	def __init__(self) -> None:
		self._libs: dict[str, LoadedLibrary] = {}
		self._lock = threading.RLock()

	@staticmethod
	def _key(path: Path | str) -> str:
		return os.path.realpath(os.fspath(path))

	def load(self, path: Path | str) -> LoadedLibrary:
		key = self._key(path)
		with self._lock:
			lib = self._libs.get(key)
			if lib is not None:
				return lib
			try:
				handle = ctypes.CDLL(key)
			except OSError as err:
				raise FerroError(
					reason_code=LIBRARY_LOAD_FAILURE,
					message=f"could not load library: {err}",
					library_path=key,
				) from err
			lib = LoadedLibrary(path=Path(key), handle=handle)
			self._libs[key] = lib
			logger.debug("loaded %s", key)
			return lib

	def get(self, path: Path | str) -> LoadedLibrary | None:
		with self._lock:
			return self._libs.get(self._key(path))

	def resolve(self, lib: LoadedLibrary, name: str) -> int:
		"""Address of `name` in `lib`, cached after the first lookup."""
		with self._lock:
			if lib.handle is None:
				raise FerroError(reason_code=LIBRARY_UNLOADED, message="library was unloaded", library_path=str(lib.path))
			addr = lib.symbols.get(name)
			if addr is not None:
				return addr
			try:
				fn = getattr(lib.handle, name)
			except AttributeError as err:
				raise FerroError(
					reason_code=SYMBOL_NOT_FOUND,
					message=f"symbol {name} not found",
					symbol=name,
					library_path=str(lib.path),
				) from err
			addr = ctypes.cast(fn, ctypes.c_void_p).value
			if not addr:
				raise FerroError(
					reason_code=SYMBOL_NOT_FOUND,
					message=f"symbol {name} resolved to a null address",
					symbol=name,
					library_path=str(lib.path),
				)
			lib.symbols[name] = addr
			return addr

	def unload(self, lib: LoadedLibrary) -> None:
		with self._lock:
			if lib.handle is None:
				return
			self._libs.pop(self._key(lib.path), None)
			handle = lib.handle
			lib.handle = None
			lib.symbols.clear()
			try:
				_close_handle(handle)
			except OSError as err:
				logger.warning("could not unmap %s: %s", lib.path, err)
			logger.debug("unloaded %s", lib.path)

	def unload_all(self) -> int:
		with self._lock:
			libs = list(self._libs.values())
			for lib in libs:
				self.unload(lib)
			return len(libs)

	def list_loaded(self) -> list[Path]:
		with self._lock:
			return sorted(lib.path for lib in self._libs.values())

	def __len__(self) -> int:
		with self._lock:
			return len(self._libs)
