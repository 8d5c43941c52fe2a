# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Cargo project materialization for dependency-bearing builds.

A project directory is owned exclusively by its `ProjectDescriptor` and is
removed by `cleanup`. The cache never points into it: the built library is
copied into the cache before the project goes away.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ferrocall.build.source import prepare_source
from ferrocall.config import DEFAULT_EDITION, library_extension, library_prefix
from ferrocall.deps.pragma import strip_dependency_comments
from ferrocall.deps.spec import DependencySpec, normalize

logger = logging.getLogger(__name__)

_PROJECT_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

PROJECT_VERSION = "0.1.0"


@dataclass(frozen=True)
class ProjectDescriptor:
	name: str
	root_path: Path
	dependencies: tuple[DependencySpec, ...] = ()
	edition: str = DEFAULT_EDITION
	version: str = PROJECT_VERSION
	temporary: bool = True

	@property
	def manifest_path(self) -> Path:
		return self.root_path / "Cargo.toml"

	@property
	def source_path(self) -> Path:
		return self.root_path / "src" / "lib.rs"


def create_project(
	name: str,
	dependencies: list[DependencySpec] | tuple[DependencySpec, ...] = (),
	*,
	edition: str = DEFAULT_EDITION,
	path: Path | None = None,
) -> ProjectDescriptor:
	"""
	Create the project directory (temporary unless `path` is given) with an
	empty `src/`. Dependencies keep the caller's order; only the cache key
	canonicalizes them.
	"""
	if not _PROJECT_NAME_RE.match(name):
		raise ValueError(f"invalid project name: {name!r}")
	if path is None:
		root = Path(tempfile.mkdtemp(prefix=f"ferrocall_{name}_"))
		temporary = True
	else:
		root = Path(path)
		root.mkdir(parents=True, exist_ok=True)
		temporary = False
	(root / "src").mkdir(parents=True, exist_ok=True)
	logger.debug("created project %s at %s", name, root)
	return ProjectDescriptor(
		name=name,
		root_path=root,
		dependencies=tuple(dependencies),
		edition=edition,
		temporary=temporary,
	)


def _toml_str(s: str) -> str:
	return json.dumps(s, ensure_ascii=False)


def format_dependency(dep: DependencySpec) -> str:
	"""
	One `[dependencies]` line. Source priority: git, path, version (table form
	when features are present), then `"*"`.
	"""
	dep = normalize(dep)
	features = ""
	if dep.features:
		features = ", features = [" + ", ".join(_toml_str(f) for f in sorted(dep.features)) + "]"
	if dep.git:
		return f"{dep.name} = {{ git = {_toml_str(dep.git)}{features} }}"
	if dep.path:
		return f"{dep.name} = {{ path = {_toml_str(dep.path)}{features} }}"
	if dep.version and features:
		return f"{dep.name} = {{ version = {_toml_str(dep.version)}{features} }}"
	if dep.version:
		return f"{dep.name} = {_toml_str(dep.version)}"
	if features:
		return f"{dep.name} = {{ version = \"*\"{features} }}"
	return f"{dep.name} = \"*\""


def generate_manifest(project: ProjectDescriptor) -> str:
	lines = [
		"[package]",
		f"name = {_toml_str(project.name)}",
		f"version = {_toml_str(project.version)}",
		f"edition = {_toml_str(project.edition)}",
		"",
		"[lib]",
		'crate-type = ["cdylib"]',
		'path = "src/lib.rs"',
		"",
		"[dependencies]",
	]
	lines.extend(format_dependency(d) for d in project.dependencies)
	lines.extend(
		[
			"",
			"[profile.release]",
			"opt-level = 3",
			"lto = true",
			"",
			# Standalone workspace root, even when created under another Cargo workspace.
			"[workspace]",
			"",
		]
	)
	return "\n".join(lines)


def write_manifest(project: ProjectDescriptor) -> Path:
	path = project.manifest_path
	path.write_text(generate_manifest(project), encoding="utf-8")
	return path


def write_source(project: ProjectDescriptor, source: str, *, prepare: bool = True) -> Path:
	"""
	Write `src/lib.rs` with embedded dependency declarations removed and, unless
	`prepare` is False, `#[python]` exports rewritten.
	"""
	text = strip_dependency_comments(source)
	if prepare:
		text = prepare_source(text)
	path = project.source_path
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(text + "\n", encoding="utf-8")
	return path


def cleanup(project: ProjectDescriptor) -> None:
	if not project.root_path.exists():
		return
	try:
		shutil.rmtree(project.root_path)
	except OSError as err:
		logger.warning("failed to remove project directory %s: %s", project.root_path, err)


def library_filename(project_name: str) -> str:
	return f"{library_prefix()}{project_name.replace('-', '_')}{library_extension()}"


def artifact_path(project: ProjectDescriptor, *, release: bool) -> Path:
	mode = "release" if release else "debug"
	return project.root_path / "target" / mode / library_filename(project.name)
