# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Pure-Python xxHash64, used as the stable 64-bit content hash of source text.

Python's builtin `hash()` is salted per process, so it cannot identify source
across restarts. The value is persisted in cache metadata as `code_hash`;
changing this function invalidates every existing cache entry.
"""

from __future__ import annotations

PRIME1 = 11400714785074694791
PRIME2 = 14029467366897019727
PRIME3 = 1609587929392839161
PRIME4 = 9650029242287828579
PRIME5 = 2870177450012600261
MASK64 = 0xFFFFFFFFFFFFFFFF


def _rotl(x: int, r: int) -> int:
	return ((x << r) | (x >> (64 - r))) & MASK64


def _lane(data: bytes, idx: int, width: int = 8) -> int:
	return int.from_bytes(data[idx:idx + width], "little")


def _round(acc: int, lane: int) -> int:
	acc = (acc + lane * PRIME2) & MASK64
	return (_rotl(acc, 31) * PRIME1) & MASK64


def _merge(acc: int, v: int) -> int:
	acc ^= _round(0, v)
	return (acc * PRIME1 + PRIME4) & MASK64


def _avalanche(h: int) -> int:
	h ^= h >> 33
	h = (h * PRIME2) & MASK64
	h ^= h >> 29
	h = (h * PRIME3) & MASK64
	h ^= h >> 32
	return h


def hash64(data: bytes, seed: int = 0) -> int:
	"""Compute xxHash64 of `data` with `seed`."""
	n = len(data)
	idx = 0
	if n >= 32:
		acc = [
			(seed + PRIME1 + PRIME2) & MASK64,
			(seed + PRIME2) & MASK64,
			seed & MASK64,
			(seed - PRIME1) & MASK64,
		]
		while idx + 32 <= n:
			for i in range(4):
				acc[i] = _round(acc[i], _lane(data, idx + 8 * i))
			idx += 32
		h = (_rotl(acc[0], 1) + _rotl(acc[1], 7) + _rotl(acc[2], 12) + _rotl(acc[3], 18)) & MASK64
		for v in acc:
			h = _merge(h, v)
	else:
		h = (seed + PRIME5) & MASK64

	h = (h + n) & MASK64

	while idx + 8 <= n:
		h ^= _round(0, _lane(data, idx))
		h = (_rotl(h, 27) * PRIME1 + PRIME4) & MASK64
		idx += 8
	if idx + 4 <= n:
		h ^= (_lane(data, idx, 4) * PRIME1) & MASK64
		h = (_rotl(h, 23) * PRIME2 + PRIME3) & MASK64
		idx += 4
	while idx < n:
		h ^= (data[idx] * PRIME5) & MASK64
		h = (_rotl(h, 11) * PRIME1) & MASK64
		idx += 1
	return _avalanche(h)


def content_hash(text: str) -> int:
	"""Hash source text as UTF-8."""
	return hash64(text.encode("utf-8"))
