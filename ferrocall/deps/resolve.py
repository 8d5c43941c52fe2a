# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Dependency merging, validation and resolver-failure classification.

Conflicts between two declarations of the same crate are settled locally
(more specific version wins, features are unioned). Whether a declaration can
actually be satisfied is Cargo's call; `classify_cargo_failure` maps its
resolver errors onto DEPENDENCY_RESOLUTION_FAILURE.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

from ferrocall.deps.spec import DependencySpec, normalize
from ferrocall.errors import DEPENDENCY_RESOLUTION_FAILURE, FerroError

logger = logging.getLogger(__name__)

_OPERATOR_RE = re.compile(r"^[\^~=><]+")
_SEMVER_RE = re.compile(
	r"^[\^~=><]*\d+(\.\d+)*(-[\w.]+)?(\+[\w.]+)?(,\s*[\^~=><]*\d+(\.\d+)*(-[\w.]+)?(\+[\w.]+)?)*$|^\*$"
)
_CRATE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_GIT_URL_RE = re.compile(r"^(https?://|git@|ssh://|file://)")

_RESOLVER_MARKERS = (
	"failed to select a version",
	"no matching package named",
	"failed to load source for dependency",
	"failed to get",
	"failed to resolve patches",
	"unable to update",
)
_CRATE_IN_MESSAGE_RE = re.compile(r"(?:package named|dependency|for the requirement|failed to get) `([^`]+)`")


def version_specificity(version: str) -> int:
	"""
	Number of version components, +1 for pre-release/build metadata.

	Compound constraints ("`>=1.0, <2.0`") score as their most specific part.
	"""
	best = 0
	for part in version.split(","):
		clean = _OPERATOR_RE.sub("", part.strip())
		if not clean:
			continue
		score = len(clean.split("."))
		if "-" in clean or "+" in clean:
			score += 1
		best = max(best, score)
	return best


def resolve_version(v1: str | None, v2: str | None, name: str) -> str | None:
	if v1 is None:
		return v2
	if v2 is None or v1 == v2:
		return v1
	s1 = version_specificity(v1)
	s2 = version_specificity(v2)
	if s1 > s2:
		return v1
	if s2 > s1:
		return v2
	logger.warning("version conflict for %s: %s vs %s, using %s", name, v1, v2, v1)
	return v1


def _first(a: str | None, b: str | None, what: str, name: str) -> str | None:
	if a is None:
		return b
	if b is not None and a != b:
		logger.warning("%s conflict for %s: %s vs %s, using %s", what, name, a, b, a)
	return a


def merge_two(a: DependencySpec, b: DependencySpec) -> DependencySpec:
	if a.name != b.name:
		raise FerroError(
			reason_code=DEPENDENCY_RESOLUTION_FAILURE,
			message=f"cannot merge different dependencies: {a.name} vs {b.name}",
			dependency=a.name,
		)
	return DependencySpec(
		name=a.name,
		version=resolve_version(a.version, b.version, a.name),
		features=a.features | b.features,
		git=_first(a.git, b.git, "git", a.name),
		path=_first(a.path, b.path, "path", a.name),
	)


def merge_dependencies(deps: Iterable[DependencySpec]) -> list[DependencySpec]:
	"""Normalize and merge same-name entries; result is sorted by name."""
	merged: dict[str, DependencySpec] = {}
	for dep in deps:
		dep = normalize(dep)
		prev = merged.get(dep.name)
		merged[dep.name] = dep if prev is None else merge_two(prev, dep)
	return [merged[k] for k in sorted(merged)]


def validate_version_format(version: str, name: str) -> bool:
	"""Warn-only check; Cargo has the final word on version syntax."""
	if _SEMVER_RE.match(version.strip()):
		return True
	logger.warning("dependency %s: unusual version format %r", name, version)
	return False


def validate_dependencies(deps: Iterable[DependencySpec]) -> None:
	"""
	Reject unusable dependency lists before Cargo runs. A dependency with no
	version, git or path is allowed: the manifest asks for `"*"`.
	"""
	seen: set[str] = set()
	for dep in deps:
		name = dep.name.strip()
		if not name:
			raise FerroError(reason_code=DEPENDENCY_RESOLUTION_FAILURE, message="dependency name must be non-empty")
		if name in seen:
			raise FerroError(
				reason_code=DEPENDENCY_RESOLUTION_FAILURE,
				message=f"duplicate dependency {name} (merge before validating)",
				dependency=name,
			)
		seen.add(name)
		if not (dep.version or dep.git or dep.path):
			logger.info("dependency %s has no version; using the latest release", name)
		elif dep.version:
			validate_version_format(dep.version, name)


def check_dependency_availability(deps: Iterable[DependencySpec], *, base_dir: Path | None = None) -> list[str]:
	"""Cheap local checks that catch obvious mistakes before invoking Cargo."""
	problems: list[str] = []
	for dep in deps:
		if not _CRATE_NAME_RE.match(dep.name):
			problems.append(f"{dep.name}: invalid crate name")
		if dep.git and not _GIT_URL_RE.match(dep.git):
			problems.append(f"{dep.name}: git source {dep.git!r} does not look like a URL")
		if dep.path:
			p = Path(dep.path)
			if not p.is_absolute() and base_dir is not None:
				p = base_dir / p
			if not p.exists():
				problems.append(f"{dep.name}: local path {dep.path} does not exist")
	return problems


def classify_cargo_failure(stderr: str, deps: Iterable[DependencySpec]) -> str | None:
	"""
	Name of the dependency a failed Cargo build could not resolve.

	Returns "" when the failure is a resolver error whose crate cannot be
	identified, and None when the failure is not a resolver error at all.
	"""
	low = stderr.lower()
	if not any(marker in low for marker in _RESOLVER_MARKERS):
		return None
	m = _CRATE_IN_MESSAGE_RE.search(stderr)
	if m is not None:
		return m.group(1)
	for dep in deps:
		if f"`{dep.name}`" in stderr or f" {dep.name} " in stderr:
			return dep.name
	return ""
