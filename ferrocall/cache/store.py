# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Content-addressed artifact cache.

Layout under the cache root:

  <key><ext>            compiled library
  <key>.ir              optional LLVM IR dump
  metadata/<key>.json   entry descriptor (written last)
  projects/             dependency-build namespace, same layout

An entry is complete only when its metadata and a readable artifact both
exist. Anything else (torn write, unreadable file, bad JSON) is a miss and is
never reported as an error; the caller simply rebuilds.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Iterator

from ferrocall.cache.metadata_v0 import CacheMetadata, load_metadata, save_metadata
from ferrocall.config import default_cache_root, library_extension

logger = logging.getLogger(__name__)

METADATA_DIR = "metadata"
PROJECTS_DIR = "projects"
IR_SUFFIX = ".ir"


@dataclass(frozen=True)
class CacheEntry:
	key: str
	artifact_path: Path
	metadata: CacheMetadata


def _tmp_name(path: Path) -> Path:
	return path.with_name(f".{path.name}.tmp.{os.getpid()}.{threading.get_ident()}")


def _readable(path: Path) -> bool:
	try:
		with path.open("rb") as f:
			return len(f.read(1)) == 1
	except OSError:
		return False


class CacheManager:
	def __init__(self, root: Path | None = None, *, extension: str | None = None) -> None:
		self.root = Path(root) if root is not None else default_cache_root()
		self.extension = extension or library_extension()
		self._locks: dict[str, threading.Lock] = {}
		self._locks_guard = threading.Lock()
		self._projects: CacheManager | None = None

	def __repr__(self) -> str:
		return f"CacheManager(root={str(self.root)!r})"

	@property
	def metadata_dir(self) -> Path:
		return self.root / METADATA_DIR

	def artifact_path(self, key: str) -> Path:
		return self.root / f"{key}{self.extension}"

	def ir_path(self, key: str) -> Path:
		return self.root / f"{key}{IR_SUFFIX}"

	def metadata_path(self, key: str) -> Path:
		return self.metadata_dir / f"{key}.json"

	def _ensure_dirs(self) -> None:
		self.metadata_dir.mkdir(parents=True, exist_ok=True)

	def projects(self) -> "CacheManager":
		"""Sub-namespace for dependency builds; its keys never mix with ours."""
		if self._projects is None:
			self._projects = CacheManager(self.root / PROJECTS_DIR, extension=self.extension)
		return self._projects

	def build_lock(self, key: str) -> threading.Lock:
		"""
		In-process lock serializing compile-then-store for one key.

		Other processes are not excluded; concurrent writers from different
		processes rely on atomic rename and the last writer wins.
		"""
		with self._locks_guard:
			lock = self._locks.get(key)
			if lock is None:
				lock = threading.Lock()
				self._locks[key] = lock
			return lock

	# --- lookup / store ---

	def load_metadata(self, key: str) -> CacheMetadata | None:
		path = self.metadata_path(key)
		try:
			meta = load_metadata(path)
		except FileNotFoundError:
			return None
		except (OSError, ValueError) as err:
			logger.debug("unusable cache metadata %s: %s", path, err)
			return None
		if meta.cache_key != key:
			logger.debug("cache metadata %s belongs to key %s", path, meta.cache_key)
			return None
		return meta

	def lookup(self, key: str) -> Path | None:
		meta = self.load_metadata(key)
		if meta is None:
			return None
		art = self.artifact_path(key)
		if not _readable(art):
			logger.debug("torn cache entry %s: metadata without readable artifact", key)
			return None
		logger.debug("cache hit %s", key)
		return art

	def get(self, key: str) -> CacheEntry | None:
		meta = self.load_metadata(key)
		if meta is None:
			return None
		art = self.artifact_path(key)
		if not _readable(art):
			return None
		return CacheEntry(key=key, artifact_path=art, metadata=meta)

	def is_valid(self, key: str) -> bool:
		return self.lookup(key) is not None

	def store(self, key: str, artifact: Path, metadata: CacheMetadata) -> CacheEntry:
		"""
		Copy `artifact` into the cache, then write metadata.

		The artifact lands under a temporary name in the cache directory and is
		renamed into place, so no reader ever sees a partial library.
		"""
		if metadata.cache_key != key:
			raise ValueError(f"metadata cache_key {metadata.cache_key} does not match key {key}")
		self._ensure_dirs()
		dest = self.artifact_path(key)
		tmp = _tmp_name(dest)
		try:
			shutil.copyfile(artifact, tmp)
			os.replace(tmp, dest)
		except BaseException:
			tmp.unlink(missing_ok=True)
			raise
		save_metadata(self.metadata_path(key), metadata)
		logger.debug("cache store %s -> %s", key, dest)
		return CacheEntry(key=key, artifact_path=dest, metadata=metadata)

	def store_ir(self, key: str, text: str) -> Path:
		self._ensure_dirs()
		dest = self.ir_path(key)
		tmp = _tmp_name(dest)
		tmp.write_text(text, encoding="utf-8")
		os.replace(tmp, dest)
		return dest

	def lookup_ir(self, key: str) -> str | None:
		try:
			return self.ir_path(key).read_text(encoding="utf-8")
		except OSError:
			return None

	def invalidate(self, key: str) -> bool:
		"""Remove one entry; metadata goes first so readers see a miss immediately."""
		removed = False
		for path in (self.metadata_path(key), self.artifact_path(key), self.ir_path(key)):
			try:
				path.unlink()
				removed = True
			except FileNotFoundError:
				continue
		return removed

	# --- enumeration ---

	def _artifact_keys(self) -> set[str]:
		if not self.root.is_dir():
			return set()
		out: set[str] = set()
		for p in self.root.iterdir():
			if p.is_file() and p.name.endswith(self.extension) and not p.name.startswith("."):
				out.add(p.name[: -len(self.extension)])
		return out

	def _metadata_keys(self) -> set[str]:
		if not self.metadata_dir.is_dir():
			return set()
		return {p.stem for p in self.metadata_dir.glob("*.json") if p.is_file()}

	def list_keys(self) -> list[str]:
		"""Keys of complete entries."""
		return sorted(k for k in self._artifact_keys() & self._metadata_keys() if self.lookup(k) is not None)

	def entries(self) -> Iterator[CacheEntry]:
		for key in self.list_keys():
			entry = self.get(key)
			if entry is not None:
				yield entry

	def torn_keys(self) -> list[str]:
		"""Keys whose artifact and metadata presence disagree."""
		return sorted(self._artifact_keys() ^ self._metadata_keys())

	def corrupt_keys(self) -> list[str]:
		"""Keys with both files present that still do not form a valid entry."""
		return sorted(k for k in self._artifact_keys() & self._metadata_keys() if self.lookup(k) is None)

	def size_bytes(self) -> int:
		total = 0
		if not self.root.is_dir():
			return 0
		for dirpath, _dirnames, filenames in os.walk(self.root):
			for name in filenames:
				try:
					total += os.path.getsize(os.path.join(dirpath, name))
				except OSError:
					continue
		return total

	# --- eviction ---

	def _entry_mtime(self, key: str) -> float | None:
		for path in (self.artifact_path(key), self.metadata_path(key)):
			try:
				return path.stat().st_mtime
			except OSError:
				continue
		return None

	def prune(self, max_age: timedelta | float, *, now: float | None = None, include_projects: bool = True) -> int:
		"""
		Remove entries last modified strictly before `now - max_age`.

		Best-effort: an entry that cannot be deleted is logged and skipped.
		Returns the number of entries removed.
		"""
		age = max_age.total_seconds() if isinstance(max_age, timedelta) else float(max_age)
		ts = time.time() if now is None else now
		cutoff = ts - age
		removed = 0
		for key in sorted(self._artifact_keys() | self._metadata_keys()):
			mtime = self._entry_mtime(key)
			if mtime is None or mtime >= cutoff:
				continue
			try:
				self.invalidate(key)
				removed += 1
			except OSError as err:
				logger.warning("could not prune cache entry %s: %s", key, err)
		if include_projects and (self.root / PROJECTS_DIR).is_dir():
			removed += self.projects().prune(age, now=ts, include_projects=False)
		return removed

	def clear(self) -> None:
		"""
		Remove the whole cache tree.

		A busy or non-empty directory (open handles, platform file locks) falls
		back to per-file deletion; files that still cannot be removed are logged
		and left behind.
		"""
		if not self.root.exists():
			return
		try:
			shutil.rmtree(self.root)
		except OSError as err:
			logger.debug("rmtree of %s failed (%s), deleting file by file", self.root, err)
			self._clear_per_file()

	def _clear_per_file(self) -> None:
		for dirpath, dirnames, filenames in os.walk(self.root, topdown=False):
			for name in filenames:
				path = os.path.join(dirpath, name)
				try:
					os.unlink(path)
				except OSError as err:
					logger.warning("could not remove %s: %s", path, err)
			for name in dirnames:
				path = os.path.join(dirpath, name)
				try:
					os.rmdir(path)
				except OSError:
					continue
