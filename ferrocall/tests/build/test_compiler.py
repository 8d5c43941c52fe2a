# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from pathlib import Path

import pytest

from ferrocall.build.compiler import BuildUnit, CompilerDriver
from ferrocall.build.project import cleanup, create_project, write_manifest, write_source
from ferrocall.config import BuildConfig, ToolchainConfig
from ferrocall.core.diagnostics import format_compile_failure
from ferrocall.deps.spec import DependencySpec
from ferrocall.errors import ARTIFACT_MISSING, COMPILE_FAILURE, DEPENDENCY_RESOLUTION_FAILURE, FerroError

_ADD = """#[python]
fn add(a: i32, b: i32) -> i32 {
	a + b
}
"""

# Lines 1-2 are dropped before the source is written, so line 3 of the
# written file is line 5 here.
_DEP_BROKEN = """// cargo-deps: libc="0.2"

#[python]
fn broken(a: i32) -> i32 {
	a +
}
"""


def test_recovery_falls_back_to_opt_level_zero(fake_rustc: str, toolchain_log: Path) -> None:
	driver = CompilerDriver(ToolchainConfig(rustc=fake_rustc))
	out = driver.compile_with_recovery(BuildUnit(source=_ADD, config=BuildConfig()))
	try:
		assert out.artifact_path.exists()
		assert out.config == BuildConfig(optimization_level=0)
	finally:
		out.cleanup()
	assert driver.invocations == 2
	runs = (toolchain_log / "rustc.log").read_text(encoding="utf-8").splitlines()
	assert "opt-level=2" in runs[0]
	assert "opt-level=0" in runs[1]


def test_recovery_reraises_first_failure(fake_rustc: str, monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("FERROCALL_TEST_FAIL", "all")
	driver = CompilerDriver(ToolchainConfig(rustc=fake_rustc))
	with pytest.raises(FerroError) as excinfo:
		driver.compile_with_recovery(BuildUnit(source=_ADD, config=BuildConfig()))
	assert excinfo.value.reason_code == COMPILE_FAILURE
	assert "opt-level=2" in excinfo.value.command
	# opt=2, then opt=0, then opt=0 with debug info.
	assert driver.invocations == 3


def _project(tmp_path: Path, source: str, deps: list[DependencySpec]):
	project = create_project("demo", deps, path=tmp_path / "proj")
	write_manifest(project)
	write_source(project, source)
	return project


def test_project_failure_carries_caller_source(
	tmp_path: Path, fake_cargo: str, toolchain_log: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
	monkeypatch.setenv("FERROCALL_TEST_CARGO", "fail")
	monkeypatch.setenv("FERROCALL_TEST_LINE", "3")
	project = _project(tmp_path, _DEP_BROKEN, [DependencySpec(name="libc", version="0.2")])
	driver = CompilerDriver(ToolchainConfig(cargo=fake_cargo))
	try:
		with pytest.raises(FerroError) as excinfo:
			driver.compile_project(project, source=_DEP_BROKEN)
	finally:
		cleanup(project)
	err = excinfo.value
	assert err.reason_code == COMPILE_FAILURE
	assert err.source == _DEP_BROKEN
	assert err.line == 5
	assert err.context is not None and err.context["source_lines"] == [5]
	# The line the toolchain blamed is the same statement in both texts.
	assert (toolchain_log / "lib.rs").read_text(encoding="utf-8").splitlines()[2].strip() == "a +"
	assert _DEP_BROKEN.splitlines()[4].strip() == "a +"
	marked = [ln for ln in format_compile_failure(err).splitlines() if ln.startswith(">>> ")]
	assert len(marked) == 1 and marked[0].endswith("a +")


def test_project_failure_without_source_reads_written_file(
	tmp_path: Path, fake_cargo: str, monkeypatch: pytest.MonkeyPatch
) -> None:
	monkeypatch.setenv("FERROCALL_TEST_CARGO", "fail")
	monkeypatch.setenv("FERROCALL_TEST_LINE", "3")
	project = _project(tmp_path, _DEP_BROKEN, [])
	written = project.source_path.read_text(encoding="utf-8")
	driver = CompilerDriver(ToolchainConfig(cargo=fake_cargo))
	try:
		with pytest.raises(FerroError) as excinfo:
			driver.compile_project(project)
	finally:
		cleanup(project)
	assert excinfo.value.source == written
	assert excinfo.value.line == 3


def test_project_dependency_failure_is_classified(
	tmp_path: Path, fake_cargo: str, monkeypatch: pytest.MonkeyPatch
) -> None:
	monkeypatch.setenv("FERROCALL_TEST_CARGO", "resolve")
	project = _project(tmp_path, _ADD, [DependencySpec(name="nosuchcrate", version="1")])
	driver = CompilerDriver(ToolchainConfig(cargo=fake_cargo))
	try:
		with pytest.raises(FerroError) as excinfo:
			driver.compile_project(project, source=_ADD)
	finally:
		cleanup(project)
	assert excinfo.value.reason_code == DEPENDENCY_RESOLUTION_FAILURE
	assert excinfo.value.dependency == "nosuchcrate"
	assert excinfo.value.source == _ADD


def test_project_success_without_library_is_a_failure(
	tmp_path: Path, fake_cargo: str, monkeypatch: pytest.MonkeyPatch
) -> None:
	monkeypatch.setenv("FERROCALL_TEST_CARGO", "missing")
	project = _project(tmp_path, _ADD, [])
	driver = CompilerDriver(ToolchainConfig(cargo=fake_cargo))
	try:
		with pytest.raises(FerroError) as excinfo:
			driver.compile_project(project, source=_ADD, release=False)
	finally:
		cleanup(project)
	err = excinfo.value
	assert err.reason_code == ARTIFACT_MISSING
	assert err.artifact_path is not None and Path(err.artifact_path).parent.name == "debug"
	assert err.source == _ADD


def test_project_build_returns_release_artifact(tmp_path: Path, fake_cargo: str, toolchain_log: Path) -> None:
	project = _project(tmp_path, _ADD, [])
	driver = CompilerDriver(ToolchainConfig(cargo=fake_cargo))
	try:
		out = driver.compile_project(project, source=_ADD)
		assert out.exists()
		assert out.parent.name == "release"
	finally:
		cleanup(project)
	assert (toolchain_log / "cargo.log").read_text(encoding="utf-8").split() == ["build", "--release"]
