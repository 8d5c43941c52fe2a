# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Cache key derivation.

Keys are sha256 hex digests over a content hash of the source plus a
canonical description of everything else that affects the artifact. Equal
inputs always yield equal keys, across processes and restarts.
"""

from __future__ import annotations

import hashlib
from typing import Iterable

from ferrocall.config import BuildConfig
from ferrocall.core.xxhash64 import content_hash
from ferrocall.deps.spec import DependencySpec, hash_dependencies

KEY_LENGTH = 64


def sha256_hex(data: bytes) -> str:
	return hashlib.sha256(data).hexdigest()


def code_hash(source: str) -> str:
	"""Decimal string of the 64-bit content hash, as stored in metadata."""
	return str(content_hash(source))


def cache_key(source: str, config: BuildConfig) -> str:
	return sha256_hex(f"{code_hash(source)}_{config.config_string()}".encode("utf-8"))


def build_mode(release: bool) -> str:
	return "release" if release else "debug"


def project_config_string(dependencies: Iterable[DependencySpec], *, release: bool) -> str:
	return f"deps={hash_dependencies(dependencies)};mode={build_mode(release)}"


def project_cache_key(source: str, dependencies: Iterable[DependencySpec], *, release: bool) -> str:
	deps_hash = hash_dependencies(dependencies)
	return sha256_hex(f"{code_hash(source)}_{deps_hash}_{build_mode(release)}".encode("utf-8"))


def is_cache_key(text: str) -> bool:
	return len(text) == KEY_LENGTH and all(c in "0123456789abcdef" for c in text)
