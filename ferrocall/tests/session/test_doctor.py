# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from pathlib import Path

import pytest

from ferrocall.config import ENV_CARGO, ENV_RUSTC, ToolchainConfig, library_extension
from ferrocall.doctor import DoctorCheckResult, DoctorOptions, DoctorReport, doctor_exit_code, doctor_v0


def _check(report: DoctorReport, check_id: str) -> DoctorCheckResult:
	(found,) = [c for c in report.checks if c.check_id == check_id]
	return found


def _report(fatal: int, degraded: int) -> DoctorReport:
	return DoctorReport(ok=fatal == 0 and degraded == 0, checks=[], fatal_count=fatal, degraded_count=degraded, info_count=0)


def test_exit_code_contract() -> None:
	assert doctor_exit_code(_report(0, 0), fail_on="fatal") == 0
	assert doctor_exit_code(_report(0, 2), fail_on="fatal") == 0
	assert doctor_exit_code(_report(0, 2), fail_on="degraded") == 1
	assert doctor_exit_code(_report(1, 2), fail_on="degraded") == 2


def test_missing_toolchain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("PATH", "")
	monkeypatch.delenv(ENV_RUSTC, raising=False)
	monkeypatch.delenv(ENV_CARGO, raising=False)
	report = doctor_v0(DoctorOptions(cache_dir=tmp_path / "cache", toolchain=ToolchainConfig()))
	assert _check(report, "toolchain.rustc").status == "fatal"
	assert _check(report, "toolchain.cargo").status == "degraded"
	assert _check(report, "cache.root").status == "ok"
	assert not report.ok
	assert doctor_exit_code(report, fail_on="fatal") == 2
	findings = report.to_dict()["checks"]
	assert [c["check_id"] for c in findings] == sorted(c["check_id"] for c in findings)


def test_unrunnable_tool_is_fatal(tmp_path: Path) -> None:
	tool = str(tmp_path / "no-such-rustc")
	report = doctor_v0(DoctorOptions(cache_dir=tmp_path / "cache", toolchain=ToolchainConfig(rustc=tool, cargo=tool)))
	rustc = _check(report, "toolchain.rustc")
	assert rustc.status == "fatal"
	assert rustc.findings[0].artifact_path == tool


def test_torn_and_corrupt_cache_entries(tmp_path: Path) -> None:
	cache = tmp_path / "cache"
	ext = library_extension()
	(cache / "metadata").mkdir(parents=True)
	(cache / f"{'a' * 64}{ext}").write_bytes(b"lib")
	(cache / f"{'b' * 64}{ext}").write_bytes(b"lib")
	(cache / "metadata" / f"{'b' * 64}.json").write_text("{}")

	shallow = _check(doctor_v0(DoctorOptions(cache_dir=cache)), "cache.entries")
	assert shallow.status == "degraded"
	assert [f.reason_code for f in shallow.findings] == ["CACHE_TORN_ENTRY"]

	deep = _check(doctor_v0(DoctorOptions(cache_dir=cache, deep=True)), "cache.entries")
	assert sorted(f.reason_code for f in deep.findings) == ["CACHE_CORRUPT_ENTRY", "CACHE_TORN_ENTRY"]
	assert deep.data is not None and deep.data["entries"] == {"single": 0, "projects": 0}


def test_empty_cache_is_consistent(tmp_path: Path) -> None:
	check = _check(doctor_v0(DoctorOptions(cache_dir=tmp_path / "fresh")), "cache.entries")
	assert check.status == "ok"
	assert check.data == {"entries": {"single": 0, "projects": 0}, "size_bytes": 0}
