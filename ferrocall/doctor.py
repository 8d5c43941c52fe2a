# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Environment health checks: toolchain availability and cache consistency.

Exit code contract (see `doctor_exit_code`):
- 0: no fatal findings, and (if fail_on=="degraded") no degraded findings
- 1: degraded findings and no fatal findings (only when fail_on=="degraded")
- 2: any fatal findings
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from ferrocall.cache.store import CacheManager
from ferrocall.config import ToolchainConfig, default_cache_root
from ferrocall.errors import INTERNAL_ERROR, FerroError

DoctorStatus = Literal["ok", "info", "degraded", "fatal"]


@dataclass(frozen=True)
class DoctorOptions:
	cache_dir: Path = field(default_factory=default_cache_root)
	toolchain: ToolchainConfig = field(default_factory=ToolchainConfig)
	deep: bool = False
	fail_on: Literal["fatal", "degraded"] = "fatal"


@dataclass(frozen=True)
class DoctorCheckResult:
	check_id: str
	status: DoctorStatus
	summary: str
	findings: list[FerroError]
	data: dict[str, Any] | None = None

	def to_dict(self) -> dict[str, Any]:
		return {
			"check_id": self.check_id,
			"status": self.status,
			"summary": self.summary,
			"findings": [f.to_dict() for f in sorted(self.findings, key=lambda e: (e.reason_code, e.artifact_path or ""))],
			"data": dict(self.data) if self.data is not None else None,
		}


@dataclass(frozen=True)
class DoctorReport:
	ok: bool
	checks: list[DoctorCheckResult]
	fatal_count: int
	degraded_count: int
	info_count: int

	def to_dict(self) -> dict[str, Any]:
		return {
			"ok": self.ok,
			"fatal_count": self.fatal_count,
			"degraded_count": self.degraded_count,
			"info_count": self.info_count,
			"checks": [c.to_dict() for c in sorted(self.checks, key=lambda c: c.check_id)],
		}


def doctor_exit_code(report: DoctorReport, *, fail_on: Literal["fatal", "degraded"]) -> int:
	if report.fatal_count > 0:
		return 2
	if fail_on == "degraded" and report.degraded_count > 0:
		return 1
	return 0


def doctor_v0(opts: DoctorOptions) -> DoctorReport:
	checks = [
		_check_tool("rustc", opts.toolchain, missing_status="fatal"),
		_check_tool("cargo", opts.toolchain, missing_status="degraded"),
		_check_cache_root(opts.cache_dir),
		_check_cache_entries(opts.cache_dir, deep=opts.deep),
	]
	fatal_count = sum(1 for c in checks if c.status == "fatal")
	degraded_count = sum(1 for c in checks if c.status == "degraded")
	info_count = sum(1 for c in checks if c.status == "info")
	ok = fatal_count == 0 and degraded_count == 0
	return DoctorReport(ok=ok, checks=checks, fatal_count=fatal_count, degraded_count=degraded_count, info_count=info_count)


def _check_tool(name: str, toolchain: ToolchainConfig, *, missing_status: DoctorStatus) -> DoctorCheckResult:
	check_id = f"toolchain.{name}"
	try:
		path = toolchain.resolve_rustc() if name == "rustc" else toolchain.resolve_cargo()
	except FerroError as err:
		return DoctorCheckResult(check_id=check_id, status=missing_status, summary=f"{name} not found", findings=[err])
	try:
		proc = subprocess.run([path, "--version"], capture_output=True, text=True, timeout=30)
	except (OSError, subprocess.TimeoutExpired) as err:
		return DoctorCheckResult(
			check_id=check_id,
			status="fatal",
			summary=f"{name} could not be executed",
			findings=[FerroError(reason_code=INTERNAL_ERROR, message=str(err), artifact_path=path)],
		)
	if proc.returncode != 0:
		return DoctorCheckResult(
			check_id=check_id,
			status="fatal",
			summary=f"{name} --version failed",
			findings=[FerroError(reason_code=INTERNAL_ERROR, message=proc.stderr.strip(), artifact_path=path)],
		)
	return DoctorCheckResult(
		check_id=check_id,
		status="ok",
		summary=proc.stdout.strip(),
		findings=[],
		data={"path": path, "version": proc.stdout.strip()},
	)


def _check_cache_root(cache_dir: Path) -> DoctorCheckResult:
	probe = cache_dir / f".doctor-probe.{os.getpid()}"
	try:
		cache_dir.mkdir(parents=True, exist_ok=True)
		probe.write_bytes(b"ok")
		probe.unlink()
	except OSError as err:
		return DoctorCheckResult(
			check_id="cache.root",
			status="fatal",
			summary="cache directory is not writable",
			findings=[FerroError(reason_code="CACHE_NOT_WRITABLE", message=str(err), artifact_path=str(cache_dir))],
		)
	return DoctorCheckResult(check_id="cache.root", status="ok", summary=f"cache at {cache_dir}", findings=[], data={"path": str(cache_dir)})


def _check_cache_entries(cache_dir: Path, *, deep: bool) -> DoctorCheckResult:
	findings: list[FerroError] = []
	counts: dict[str, int] = {}
	for label, mgr in (("single", CacheManager(cache_dir)), ("projects", CacheManager(cache_dir).projects())):
		keys = mgr.list_keys()
		counts[label] = len(keys)
		for key in mgr.torn_keys():
			findings.append(
				FerroError(
					reason_code="CACHE_TORN_ENTRY",
					message="metadata and artifact presence disagree (rebuilt on next use)",
					artifact_path=str(mgr.artifact_path(key)),
				)
			)
		if deep:
			for key in mgr.corrupt_keys():
				findings.append(
					FerroError(
						reason_code="CACHE_CORRUPT_ENTRY",
						message="unreadable artifact or invalid metadata (rebuilt on next use)",
						artifact_path=str(mgr.artifact_path(key)),
					)
				)
	data = {"entries": counts, "size_bytes": CacheManager(cache_dir).size_bytes()}
	if findings:
		return DoctorCheckResult(check_id="cache.entries", status="degraded", summary="cache has inconsistent entries", findings=findings, data=data)
	return DoctorCheckResult(check_id="cache.entries", status="ok", summary="cache consistent", findings=[], data=data)
