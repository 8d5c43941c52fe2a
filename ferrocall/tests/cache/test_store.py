# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest

from ferrocall.cache.keys import cache_key
from ferrocall.cache.metadata_v0 import CacheMetadata
from ferrocall.cache.store import CacheManager
from ferrocall.config import BuildConfig

_CFG = BuildConfig(target_triple="x86_64-unknown-linux-gnu")


def _write_file(path: Path, data: bytes) -> Path:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_bytes(data)
	return path


def _key(n: int) -> str:
	return cache_key(f"fn f{n}() {{}}", _CFG)


def _meta(key: str) -> CacheMetadata:
	return CacheMetadata(
		cache_key=key,
		code_hash="1",
		compiler_config=_CFG.config_string(),
		target_triple=_CFG.target_triple,
		functions=("f",),
	)


def _store(mgr: CacheManager, tmp_path: Path, n: int, payload: bytes = b"\x7fELF-fake") -> str:
	key = _key(n)
	art = _write_file(tmp_path / "build" / f"lib{n}.so", payload)
	mgr.store(key, art, _meta(key))
	return key


def test_store_then_lookup(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	key = _store(mgr, tmp_path, 1)
	art = mgr.lookup(key)
	assert art == tmp_path / "cache" / f"{key}.so"
	assert art.read_bytes() == b"\x7fELF-fake"
	entry = mgr.get(key)
	assert entry is not None and entry.metadata.functions == ("f",)
	assert mgr.is_valid(key)
	# No temp files are left behind.
	assert sorted(p.name for p in (tmp_path / "cache").iterdir()) == sorted(["metadata", f"{key}.so"])


def test_store_rejects_mismatched_metadata(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	art = _write_file(tmp_path / "a.so", b"x")
	with pytest.raises(ValueError):
		mgr.store(_key(1), art, _meta(_key(2)))


def test_missing_entry_is_a_miss(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	assert mgr.lookup(_key(9)) is None
	assert mgr.get(_key(9)) is None
	assert mgr.list_keys() == []


def test_torn_entries_are_misses(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	k1 = _store(mgr, tmp_path, 1)
	k2 = _store(mgr, tmp_path, 2)
	mgr.artifact_path(k1).unlink()
	mgr.metadata_path(k2).unlink()
	assert mgr.lookup(k1) is None
	assert mgr.lookup(k2) is None
	assert mgr.torn_keys() == sorted([k1, k2])
	assert mgr.list_keys() == []


def test_empty_artifact_or_bad_metadata_is_a_miss(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	k1 = _store(mgr, tmp_path, 1, payload=b"")
	k2 = _store(mgr, tmp_path, 2)
	mgr.metadata_path(k2).write_text("{}")
	k3 = _store(mgr, tmp_path, 3)
	mgr.metadata_path(k3).write_bytes(mgr.metadata_path(k1).read_bytes())
	assert mgr.lookup(k1) is None
	assert mgr.lookup(k2) is None
	assert mgr.lookup(k3) is None
	assert mgr.corrupt_keys() == sorted([k1, k2, k3])


def test_invalidate(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	key = _store(mgr, tmp_path, 1)
	mgr.store_ir(key, "define i32 @f() { ret i32 0 }")
	assert mgr.invalidate(key)
	assert mgr.lookup(key) is None
	assert mgr.lookup_ir(key) is None
	assert not mgr.invalidate(key)


def test_ir_round_trip(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	key = _key(4)
	assert mgr.lookup_ir(key) is None
	mgr.store_ir(key, "; ModuleID = 'x'\n")
	assert mgr.lookup_ir(key) == "; ModuleID = 'x'\n"


def test_projects_namespace_is_separate(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	key = _store(mgr.projects(), tmp_path, 1)
	assert mgr.lookup(key) is None
	assert mgr.projects().lookup(key) is not None
	assert mgr.projects() is mgr.projects()
	assert mgr.list_keys() == []


def test_build_lock_is_per_key(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache")
	assert mgr.build_lock("a") is mgr.build_lock("a")
	assert mgr.build_lock("a") is not mgr.build_lock("b")


def test_entries_and_size(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	assert mgr.size_bytes() == 0
	k1 = _store(mgr, tmp_path, 1, payload=b"12345")
	k2 = _store(mgr, tmp_path, 2, payload=b"678")
	assert [e.key for e in mgr.entries()] == sorted([k1, k2])
	meta_bytes = sum(p.stat().st_size for p in mgr.metadata_dir.iterdir())
	assert mgr.size_bytes() == 8 + meta_bytes


def test_prune_boundary(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	now = 1_000_000.0
	old = _store(mgr, tmp_path, 1)
	edge = _store(mgr, tmp_path, 2)
	fresh = _store(mgr, tmp_path, 3)
	for key, mtime in ((old, 999_899.0), (edge, 999_900.0), (fresh, 999_990.0)):
		os.utime(mgr.artifact_path(key), (mtime, mtime))
		os.utime(mgr.metadata_path(key), (mtime, mtime))
	assert mgr.prune(100, now=now) == 1
	assert mgr.lookup(old) is None
	assert mgr.lookup(edge) is not None
	assert mgr.lookup(fresh) is not None


def test_prune_accepts_timedelta_and_covers_projects(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	key = _store(mgr.projects(), tmp_path, 1)
	path = mgr.projects().artifact_path(key)
	os.utime(path, (10.0, 10.0))
	assert mgr.prune(timedelta(days=1), now=10.0 + 2 * 86400) == 1
	assert mgr.projects().lookup(key) is None


def test_clear(tmp_path: Path) -> None:
	mgr = CacheManager(tmp_path / "cache", extension=".so")
	_store(mgr, tmp_path, 1)
	_store(mgr.projects(), tmp_path, 2)
	mgr.clear()
	assert not (tmp_path / "cache").exists()
	assert mgr.list_keys() == []
	mgr.clear()
