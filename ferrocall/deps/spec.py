# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Iterable


@dataclass(frozen=True)
class DependencySpec:
	"""
	One Cargo dependency.

	Resolution source priority is git, then path, then version; a spec with
	none of them resolves to the latest published version.
	"""

	name: str
	version: str | None = None
	features: frozenset[str] = frozenset()
	git: str | None = None
	path: str | None = None

	def __post_init__(self) -> None:
		if not isinstance(self.name, str) or not self.name.strip():
			raise ValueError("dependency name must be non-empty")
		if not isinstance(self.features, frozenset):
			object.__setattr__(self, "features", frozenset(self.features))

	@property
	def source_kind(self) -> str:
		if self.git:
			return "git"
		if self.path:
			return "path"
		if self.version:
			return "version"
		return "latest"

	def to_dict(self) -> dict[str, Any]:
		return {
			"name": self.name,
			"version": self.version,
			"features": sorted(self.features),
			"git": self.git,
			"path": self.path,
		}


def _clean(v: str | None) -> str | None:
	if v is None:
		return None
	v = v.strip()
	return v or None


def normalize(dep: DependencySpec) -> DependencySpec:
	return DependencySpec(
		name=dep.name.strip(),
		version=_clean(dep.version),
		features=frozenset(f.strip() for f in dep.features if f.strip()),
		git=_clean(dep.git),
		path=_clean(dep.path),
	)


def canonical_string(deps: Iterable[DependencySpec]) -> str:
	"""
	Order-independent serialization of a dependency set.

	Each entry is `name[:version][:[f1,f2]][:git=url][:path=p]`, entries sorted
	by name and joined with `;`.
	"""
	parts: list[str] = []
	for dep in sorted((normalize(d) for d in deps), key=lambda d: d.name):
		s = dep.name
		if dep.version:
			s += f":{dep.version}"
		if dep.features:
			s += ":[" + ",".join(sorted(dep.features)) + "]"
		if dep.git:
			s += f":git={dep.git}"
		if dep.path:
			s += f":path={dep.path}"
		parts.append(s)
	return ";".join(parts)


def hash_dependencies(deps: Iterable[DependencySpec]) -> str:
	return hashlib.sha256(canonical_string(deps).encode("utf-8")).hexdigest()
