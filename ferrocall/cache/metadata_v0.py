# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Cache entry metadata (v0).

One JSON object per entry, stored as `metadata/<key>.json`. Its presence
signals "entry complete", so it is always written after the artifact.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_REQUIRED = ("cache_key", "code_hash", "compiler_config", "target_triple", "created_at", "functions")


def canonical_json_bytes(obj: Any) -> bytes:
	return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def utc_timestamp() -> str:
	return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass(frozen=True)
class CacheMetadata:
	cache_key: str
	code_hash: str
	compiler_config: str
	target_triple: str
	created_at: str = field(default_factory=utc_timestamp)
	functions: tuple[str, ...] = ()

	def to_dict(self) -> dict[str, Any]:
		return {
			"cache_key": self.cache_key,
			"code_hash": self.code_hash,
			"compiler_config": self.compiler_config,
			"target_triple": self.target_triple,
			"created_at": self.created_at,
			"functions": list(self.functions),
		}


def metadata_from_dict(data: Any) -> CacheMetadata:
	if not isinstance(data, dict):
		raise ValueError("cache metadata must be a JSON object")
	missing = [k for k in _REQUIRED if k not in data]
	if missing:
		raise ValueError(f"cache metadata is missing fields: {', '.join(missing)}")
	for k in _REQUIRED[:-1]:
		if not isinstance(data[k], str) or not data[k]:
			raise ValueError(f"cache metadata field '{k}' must be a non-empty string")
	if not data["code_hash"].isdigit():
		raise ValueError("cache metadata field 'code_hash' must be a decimal integer string")
	funcs = data["functions"]
	if not isinstance(funcs, list) or any(not isinstance(f, str) or not f for f in funcs):
		raise ValueError("cache metadata field 'functions' must be a list of strings")
	return CacheMetadata(
		cache_key=data["cache_key"],
		code_hash=data["code_hash"],
		compiler_config=data["compiler_config"],
		target_triple=data["target_triple"],
		created_at=data["created_at"],
		functions=tuple(funcs),
	)


def save_metadata(path: Path, meta: CacheMetadata) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	tmp = path.with_name(path.name + f".tmp.{os.getpid()}.{threading.get_ident()}")
	tmp.write_bytes(canonical_json_bytes(meta.to_dict()))
	os.replace(tmp, path)


def load_metadata(path: Path) -> CacheMetadata:
	"""Raises OSError when unreadable and ValueError when malformed."""
	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except json.JSONDecodeError as err:
		raise ValueError(f"cache metadata is not valid JSON: {err}") from err
	return metadata_from_dict(data)
