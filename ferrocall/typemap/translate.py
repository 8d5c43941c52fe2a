# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Rust type names <-> ctypes host types.

The table is closed and fixed. Names it does not cover translate to `UNKNOWN`,
which callers pass through untranslated: the dispatcher then falls back to
ctypes' own argument conversion instead of failing the call.
"""

from __future__ import annotations

import ctypes
import struct
from typing import Any

Void = None


class _Unknown:
	_instance: "_Unknown | None" = None

	def __new__(cls) -> "_Unknown":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __repr__(self) -> str:
		return "UNKNOWN"

	def __bool__(self) -> bool:
		return False


UNKNOWN = _Unknown()

# Canonical names come first: the reverse table keeps the first name per ctype.
_PRIMITIVES: dict[str, Any] = {
	"i8": ctypes.c_int8,
	"i16": ctypes.c_int16,
	"i32": ctypes.c_int32,
	"i64": ctypes.c_int64,
	"u8": ctypes.c_uint8,
	"u16": ctypes.c_uint16,
	"u32": ctypes.c_uint32,
	"u64": ctypes.c_uint64,
	"f32": ctypes.c_float,
	"f64": ctypes.c_double,
	"bool": ctypes.c_bool,
	"isize": ctypes.c_ssize_t,
	"usize": ctypes.c_size_t,
	"c_char": ctypes.c_char,
	"c_schar": ctypes.c_byte,
	"c_uchar": ctypes.c_ubyte,
	"c_short": ctypes.c_short,
	"c_ushort": ctypes.c_ushort,
	"c_int": ctypes.c_int,
	"c_uint": ctypes.c_uint,
	"c_long": ctypes.c_long,
	"c_ulong": ctypes.c_ulong,
	"c_longlong": ctypes.c_longlong,
	"c_ulonglong": ctypes.c_ulonglong,
	"c_float": ctypes.c_float,
	"c_double": ctypes.c_double,
}

_STRING_POINTERS = frozenset({"*const c_char", "*const u8", "*const i8", "*mut c_char"})

_REVERSE: dict[Any, str] = {}
for _name, _ct in _PRIMITIVES.items():
	_REVERSE.setdefault(_ct, _name)
_REVERSE[ctypes.c_char_p] = "*const c_char"
_REVERSE[ctypes.c_void_p] = "*mut c_void"


def host_word_bits() -> int:
	return struct.calcsize("P") * 8


def _strip_path(name: str) -> str:
	# `std::os::raw::c_int` and `libc::c_int` both mean `c_int`.
	if name.startswith("*"):
		return name
	return name.rsplit("::", 1)[-1]


def _normalize(type_name: str) -> str:
	t = " ".join(type_name.split())
	if t.startswith("*"):
		kind, _, rest = t[1:].partition(" ")
		return f"*{kind} {_strip_path(rest.strip())}"
	return _strip_path(t)


def native_to_host(type_name: str) -> Any:
	"""
	ctypes type for a Rust type name.

	`()` maps to None (void). Raw pointers map to `c_char_p` for C strings,
	`POINTER(T)` when the pointee is in the table and `c_void_p` otherwise.
	Anything else is `UNKNOWN`.
	"""
	t = _normalize(type_name)
	if t in ("()", ""):
		return Void
	if t in _PRIMITIVES:
		return _PRIMITIVES[t]
	if t in _STRING_POINTERS:
		return ctypes.c_char_p
	if t.startswith("*const ") or t.startswith("*mut "):
		pointee = t.split(" ", 1)[1]
		inner = _PRIMITIVES.get(pointee)
		if inner is not None:
			return ctypes.POINTER(inner)
		return ctypes.c_void_p
	return UNKNOWN


def host_to_native(host: Any) -> str | _Unknown:
	"""Rust type name for a ctypes type or a plain Python type."""
	if host is None or host is type(None):
		return "()"
	if host is bool:
		return "bool"
	if host is int:
		return "i64" if host_word_bits() == 64 else "i32"
	if host is float:
		return "f64"
	if host in (str, bytes):
		return "*const c_char"
	name = _REVERSE.get(host)
	if name is not None:
		return name
	if isinstance(host, type) and issubclass(host, ctypes._Pointer):
		inner = _REVERSE.get(host._type_)
		if inner is not None:
			return f"*mut {inner}"
		return "*mut c_void"
	return UNKNOWN


def infer_native_type(value: Any) -> str | _Unknown:
	"""Rust type for a Python argument value or a ctypes scalar instance."""
	return host_to_native(type(value))


def is_primitive(type_name: str) -> bool:
	return _normalize(type_name) in _PRIMITIVES


def to_native_arg(value: Any, host: Any) -> Any:
	if host is ctypes.c_char_p and isinstance(value, str):
		return value.encode("utf-8")
	return value


def to_host_value(raw: Any, host: Any) -> Any:
	if host is ctypes.c_char_p and isinstance(raw, bytes):
		return raw.decode("utf-8")
	if host is ctypes.c_bool:
		return bool(raw)
	if host is ctypes.c_char and isinstance(raw, bytes):
		return raw.decode("latin-1")
	return raw
