# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import _ctypes
import os
import shutil
import sys
from pathlib import Path

import pytest

from ferrocall.config import ENV_CACHE_DIR, library_extension, library_prefix


@pytest.fixture(scope="session", autouse=True)
def _isolate_cache_dir(tmp_path_factory: pytest.TempPathFactory) -> None:
	"""
	Point the default cache root at a per-session temporary directory.

	Tests must never read or populate the user's real cache.
	"""
	os.environ[ENV_CACHE_DIR] = str(tmp_path_factory.mktemp("ferrocall-cache"))


@pytest.fixture
def require_rustc() -> str:
	rustc = shutil.which("rustc")
	if rustc is None:
		pytest.skip("rustc not available")
	return rustc


@pytest.fixture
def require_cargo() -> str:
	cargo = shutil.which("cargo")
	if cargo is None:
		pytest.skip("cargo not available")
	return cargo


# Stand-in toolchains. Both "build" by copying a real shared object (the
# _ctypes extension) into place, so the result can be loaded.
#
#   FERROCALL_TEST_FAIL   rustc: "all" fails every build, otherwise a build
#                         fails only at opt-level=2
#   FERROCALL_TEST_CARGO  cargo: "fail" (type error at FERROCALL_TEST_LINE),
#                         "resolve" (unknown crate), "missing" (exit 0, no
#                         library), anything else builds

_FAKE_RUSTC = """#!/bin/sh
printf '%s\\n' "$*" >> "$FERROCALL_TEST_LOG/rustc.log"
out=""
prev=""
fail=0
for a in "$@"; do
	if [ "$prev" = "-o" ]; then out="$a"; fi
	if [ "$a" = "opt-level=2" ]; then fail=1; fi
	prev="$a"
done
if [ "$FERROCALL_TEST_FAIL" = "all" ]; then fail=1; fi
if [ "$fail" = 1 ]; then
	echo "error: could not compile at this optimization level" >&2
	exit 1
fi
cp "$FERROCALL_TEST_LIB" "$out"
"""

_FAKE_CARGO = """#!/bin/sh
printf '%s\\n' "$*" >> "$FERROCALL_TEST_LOG/cargo.log"
cp Cargo.toml "$FERROCALL_TEST_LOG/Cargo.toml"
cp src/lib.rs "$FERROCALL_TEST_LOG/lib.rs"
case "$FERROCALL_TEST_CARGO" in
	fail)
		echo "error[E0308]: mismatched types" >&2
		echo " --> src/lib.rs:$FERROCALL_TEST_LINE:5" >&2
		exit 101
		;;
	resolve)
		echo "error: no matching package named \\`nosuchcrate\\` found" >&2
		exit 101
		;;
	missing)
		exit 0
		;;
esac
mode=debug
for a in "$@"; do
	if [ "$a" = "--release" ]; then mode=release; fi
done
name=$(sed -n 's/^name = "\\(.*\\)"$/\\1/p' Cargo.toml | head -n 1)
mkdir -p "target/$mode"
cp "$FERROCALL_TEST_LIB" "target/$mode/$FERROCALL_TEST_PREFIX$name$FERROCALL_TEST_EXT"
"""


def _write_script(path: Path, text: str) -> str:
	path.write_text(text, encoding="utf-8")
	path.chmod(0o755)
	return str(path)


@pytest.fixture
def toolchain_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
	"""Directory the stand-in toolchains record their argv and inputs into."""
	if sys.platform == "win32":
		pytest.skip("stand-in toolchains are shell scripts")
	lib = getattr(_ctypes, "__file__", None)
	if not lib:
		pytest.skip("_ctypes is built into the interpreter")
	log = tmp_path / "toolchain-log"
	log.mkdir()
	monkeypatch.setenv("FERROCALL_TEST_LOG", str(log))
	monkeypatch.setenv("FERROCALL_TEST_LIB", lib)
	monkeypatch.setenv("FERROCALL_TEST_PREFIX", library_prefix())
	monkeypatch.setenv("FERROCALL_TEST_EXT", library_extension())
	return log


@pytest.fixture
def fake_rustc(tmp_path: Path, toolchain_log: Path) -> str:
	return _write_script(tmp_path / "fake-rustc", _FAKE_RUSTC)


@pytest.fixture
def fake_cargo(tmp_path: Path, toolchain_log: Path) -> str:
	return _write_script(tmp_path / "fake-cargo", _FAKE_CARGO)
