# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Toolchain driver: rustc for single-file builds, cargo for projects.

Success is decided by exit status alone. A failed build raises a FerroError
carrying the captured stderr, the caller's source and the exact argv, so it can
be reproduced by hand. No artifact path is ever returned for a failed build.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path

from ferrocall.build.project import ProjectDescriptor, artifact_path
from ferrocall.build.source import prepare_source
from ferrocall.config import DEFAULT_EDITION, BuildConfig, ToolchainConfig, library_extension, library_prefix
from ferrocall.core.diagnostics import extract_help_lines, extract_line_numbers, parse_rustc_diagnostics, suggest_fixes
from ferrocall.deps.pragma import strip_dependency_comments_mapped
from ferrocall.deps.resolve import classify_cargo_failure
from ferrocall.errors import (
	ARTIFACT_MISSING,
	COMPILE_FAILURE,
	COMPILE_TIMEOUT,
	DEPENDENCY_RESOLUTION_FAILURE,
	FerroError,
)

logger = logging.getLogger(__name__)

CRATE_NAME = "ferrocall_unit"


@dataclass(frozen=True)
class BuildUnit:
	source: str
	config: BuildConfig = field(default_factory=BuildConfig)


@dataclass(frozen=True)
class CompileOutput:
	artifact_path: Path
	work_dir: Path
	ir_path: Path | None = None
	config: BuildConfig | None = None

	def read_ir(self) -> str | None:
		if self.ir_path is None or not self.ir_path.exists():
			return None
		return self.ir_path.read_text(encoding="utf-8", errors="replace")

	def cleanup(self) -> None:
		shutil.rmtree(self.work_dir, ignore_errors=True)


def rustc_command(
	rustc: str,
	src: Path,
	out: Path,
	config: BuildConfig,
	*,
	ir_out: Path | None = None,
	edition: str = DEFAULT_EDITION,
) -> list[str]:
	cmd = [
		rustc,
		"--crate-type=cdylib",
		f"--crate-name={CRATE_NAME}",
		f"--edition={edition}",
		"-C",
		f"opt-level={config.optimization_level}",
		"-C",
		"panic=abort",
		f"--target={config.target_triple}",
	]
	if ir_out is not None:
		cmd.append(f"--emit=link={out},llvm-ir={ir_out}")
	else:
		cmd.extend(["-o", str(out)])
	if config.debug_info:
		cmd.append("-g")
	cmd.append(str(src))
	return cmd


class CompilerDriver:
	"""
	Runs the external toolchain synchronously.

	`invocations` counts toolchain processes started by this driver; the cache
	layer is expected to keep it at zero for repeated identical builds.
	"""

	def __init__(self, toolchain: ToolchainConfig | None = None, *, keep_failed: bool = False) -> None:
		self.toolchain = toolchain or ToolchainConfig()
		self.keep_failed = keep_failed
		self.invocations = 0

	def _run(self, cmd: list[str], *, cwd: Path, source: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
		self.invocations += 1
		logger.debug("running %s (cwd=%s)", " ".join(cmd), cwd)
		try:
			return subprocess.run(
				cmd,
				capture_output=True,
				text=True,
				cwd=str(cwd),
				env=env,
				timeout=self.toolchain.timeout,
			)
		except subprocess.TimeoutExpired as err:
			raise FerroError(
				reason_code=COMPILE_TIMEOUT,
				message=f"{Path(cmd[0]).name} did not finish within {self.toolchain.timeout}s",
				diagnostics=_text(err.stderr),
				source=source,
				command=list(cmd),
			) from err

	def _failure(
		self,
		proc: subprocess.CompletedProcess[str],
		cmd: list[str],
		source: str,
		*,
		work_dir: Path | None,
		line_map: list[int] | None = None,
	) -> FerroError:
		stderr = proc.stderr or ""
		diags = [d for d in parse_rustc_diagnostics(stderr) if d.severity == "error"]
		file_path: str | None = None
		line: int | None = None
		for d in diags:
			if d.span.line is not None:
				file_path, line = d.span.file, d.span.line
				break
		if line is None:
			lines = extract_line_numbers(stderr)
			line = lines[0] if lines else None
		hints = suggest_fixes(stderr, source)
		for h in extract_help_lines(stderr):
			if h not in hints:
				hints.append(h)
		ctx: dict[str, object] = {"exit_code": proc.returncode}
		if line_map is not None:
			line = _map_line(line, line_map)
			mapped = (_map_line(n, line_map) for n in extract_line_numbers(stderr))
			ctx["source_lines"] = sorted({n for n in mapped if n is not None})
		if proc.stdout:
			ctx["stdout"] = proc.stdout
		if work_dir is not None:
			ctx["work_dir"] = str(work_dir)
		return FerroError(
			reason_code=COMPILE_FAILURE,
			message=f"{Path(cmd[0]).name} failed with exit code {proc.returncode}",
			diagnostics=stderr,
			source=source,
			command=list(cmd),
			file_path=file_path,
			line=line,
			suggestions=hints or None,
			context=ctx,
		)

	def compile_single_file(self, unit: BuildUnit, *, emit_ir: bool = False) -> CompileOutput:
		"""
		Compile `unit.source` to a cdylib in a fresh work directory.

		The caller owns the returned work directory and removes it with
		`CompileOutput.cleanup()` once the artifact has been stored.
		"""
		rustc = self.toolchain.resolve_rustc()
		work = Path(tempfile.mkdtemp(prefix="ferrocall_build_"))
		src = work / "lib.rs"
		src.write_text(prepare_source(unit.source), encoding="utf-8")
		out = work / f"{library_prefix()}{CRATE_NAME}{library_extension()}"
		ir_out = work / f"{CRATE_NAME}.ll" if emit_ir else None
		cmd = rustc_command(rustc, src, out, unit.config, ir_out=ir_out, edition=self.toolchain.edition)
		try:
			proc = self._run(cmd, cwd=work, source=unit.source)
		except FerroError:
			self._discard(work)
			raise
		if proc.returncode != 0:
			keep = work if self.keep_failed else None
			err = self._failure(proc, cmd, unit.source, work_dir=keep)
			if keep is None:
				self._discard(work)
			raise err
		if not out.exists():
			self._discard(work)
			raise FerroError(
				reason_code=ARTIFACT_MISSING,
				message="rustc reported success but produced no library",
				artifact_path=str(out),
				command=list(cmd),
			)
		logger.info("compiled %s", out.name)
		return CompileOutput(artifact_path=out, work_dir=work, ir_path=ir_out, config=unit.config)

	def compile_with_recovery(self, unit: BuildUnit, *, emit_ir: bool = False) -> CompileOutput:
		"""
		Retry a failed build at opt-level 0, then with debug info.

		The first failure is re-raised when every attempt fails.
		"""
		try:
			return self.compile_single_file(unit, emit_ir=emit_ir)
		except FerroError as first:
			if first.reason_code != COMPILE_FAILURE:
				raise
			attempts: list[BuildConfig] = []
			if unit.config.optimization_level > 0:
				attempts.append(replace(unit.config, optimization_level=0))
			if not unit.config.debug_info:
				attempts.append(replace(unit.config, optimization_level=0, debug_info=True))
			for cfg in attempts:
				logger.warning("build failed, retrying with %s", cfg.config_string())
				try:
					return self.compile_single_file(BuildUnit(source=unit.source, config=cfg), emit_ir=emit_ir)
				except FerroError as err:
					if err.reason_code != COMPILE_FAILURE:
						raise
			raise first

	def compile_project(self, project: ProjectDescriptor, *, source: str | None = None, release: bool = True) -> Path:
		"""
		Run `cargo build` in `project`.

		`source` is the caller's text before `write_source` stripped and
		rewrote it; failures carry it, with line numbers mapped back onto it.
		"""
		cargo = self.toolchain.resolve_cargo()
		cmd = [cargo, "build"]
		if release:
			cmd.append("--release")
		env = dict(os.environ)
		env.setdefault("CARGO_TERM_COLOR", "never")
		line_map: list[int] | None = None
		if source is not None:
			line_map = strip_dependency_comments_mapped(source)[1]
		elif project.source_path.exists():
			source = project.source_path.read_text(encoding="utf-8")
		else:
			source = ""
		proc = self._run(cmd, cwd=project.root_path, source=source, env=env)
		if proc.returncode != 0:
			dep = classify_cargo_failure(proc.stderr or "", project.dependencies)
			if dep is not None:
				raise FerroError(
					reason_code=DEPENDENCY_RESOLUTION_FAILURE,
					message=f"cargo could not resolve dependency {dep or '(unknown)'}",
					diagnostics=proc.stderr,
					source=source,
					command=list(cmd),
					dependency=dep or None,
				)
			raise self._failure(proc, cmd, source, work_dir=project.root_path, line_map=line_map)
		out = artifact_path(project, release=release)
		if not out.exists():
			raise FerroError(
				reason_code=ARTIFACT_MISSING,
				message="library not found after successful cargo build",
				source=source,
				artifact_path=str(out),
				command=list(cmd),
			)
		logger.info("built project %s", project.name)
		return out

	def _discard(self, work: Path) -> None:
		shutil.rmtree(work, ignore_errors=True)


def _map_line(line: int | None, line_map: list[int]) -> int | None:
	"""Line of the caller's source for a line of the written file, if any."""
	if line is None or not 1 <= line <= len(line_map):
		return None
	return line_map[line - 1]


def _text(data: str | bytes | None) -> str | None:
	if data is None:
		return None
	if isinstance(data, bytes):
		return data.decode("utf-8", errors="replace")
	return data
