# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Result/Option wire format.

Both sum types cross the native boundary as `#[repr(C)]` tagged structs:

    Result<T, E>:  { tag: u8, payload: union { ok: T, err: E } }
    Option<T>:     { tag: u8, value: T }

The tag byte always comes first and the payload slot is sized to the larger
variant. Tag 1 means Ok/Some, 0 means Err/None; any other tag is rejected.
`build/source.py` emits the Rust side of this layout; the two must agree.
"""

from __future__ import annotations

import ctypes
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from ferrocall.errors import RUST_ERROR, WIRE_TAG_INVALID, FerroError
from ferrocall.parser.signatures import option_type_arg, result_type_args
from ferrocall.typemap.translate import is_primitive

T = TypeVar("T")
E = TypeVar("E")

TAG_FALSE = 0
TAG_TRUE = 1


@dataclass(frozen=True)
class RustResult(Generic[T, E]):
	is_ok: bool
	ok_value: T | None = None
	err_value: E | None = None

	@classmethod
	def ok(cls, value: T) -> "RustResult[T, E]":
		return cls(is_ok=True, ok_value=value)

	@classmethod
	def err(cls, value: E) -> "RustResult[T, E]":
		return cls(is_ok=False, err_value=value)

	def unwrap(self) -> T | None:
		"""Ok value, or FerroError(RUST_ERROR) carrying the Err value."""
		if self.is_ok:
			return self.ok_value
		raise FerroError(
			reason_code=RUST_ERROR,
			message=str(self.err_value),
			context={"err_value": self.err_value},
		)


@dataclass(frozen=True)
class RustOption(Generic[T]):
	is_some: bool
	value: T | None = None

	@classmethod
	def some(cls, value: T) -> "RustOption[T]":
		return cls(is_some=True, value=value)

	@classmethod
	def none(cls) -> "RustOption[T]":
		return cls(is_some=False)

	def unwrap_or(self, default: T) -> T:
		return self.value if self.is_some else default  # type: ignore[return-value]


_RESULT_LAYOUTS: dict[tuple[Any, Any], type[ctypes.Structure]] = {}
_OPTION_LAYOUTS: dict[Any, type[ctypes.Structure]] = {}


def _ctype_name(ct: Any) -> str:
	return "unit" if ct is None else ct.__name__


def result_layout(ok_ctype: Any, err_ctype: Any) -> type[ctypes.Structure]:
	"""ctypes Structure for Result<T, E>; None for a unit variant. Cached per pair."""
	key = (ok_ctype, err_ctype)
	cached = _RESULT_LAYOUTS.get(key)
	if cached is not None:
		return cached
	payload_fields = [(n, ct) for n, ct in (("ok", ok_ctype), ("err", err_ctype)) if ct is not None]
	fields: list[tuple[str, Any]] = [("tag", ctypes.c_uint8)]
	if payload_fields:
		payload = type(
			f"ResultPayload_{_ctype_name(ok_ctype)}_{_ctype_name(err_ctype)}",
			(ctypes.Union,),
			{"_fields_": payload_fields},
		)
		fields.append(("payload", payload))
	layout = type(
		f"ResultWire_{_ctype_name(ok_ctype)}_{_ctype_name(err_ctype)}",
		(ctypes.Structure,),
		{"_fields_": fields},
	)
	_RESULT_LAYOUTS[key] = layout
	return layout


def option_layout(value_ctype: Any) -> type[ctypes.Structure]:
	cached = _OPTION_LAYOUTS.get(value_ctype)
	if cached is not None:
		return cached
	fields: list[tuple[str, Any]] = [("tag", ctypes.c_uint8)]
	if value_ctype is not None:
		fields.append(("value", value_ctype))
	layout = type(f"OptionWire_{_ctype_name(value_ctype)}", (ctypes.Structure,), {"_fields_": fields})
	_OPTION_LAYOUTS[value_ctype] = layout
	return layout


def _check_tag(tag: int, what: str) -> bool:
	if tag == TAG_TRUE:
		return True
	if tag == TAG_FALSE:
		return False
	raise FerroError(reason_code=WIRE_TAG_INVALID, message=f"{what} tag byte must be 0 or 1, got {tag}")


def encode_result(value: RustResult[Any, Any], ok_ctype: Any, err_ctype: Any) -> ctypes.Structure:
	layout = result_layout(ok_ctype, err_ctype)
	wire = layout()
	wire.tag = TAG_TRUE if value.is_ok else TAG_FALSE
	if value.is_ok and ok_ctype is not None:
		wire.payload.ok = value.ok_value
	elif not value.is_ok and err_ctype is not None:
		wire.payload.err = value.err_value
	return wire


def decode_result(wire: ctypes.Structure, ok_ctype: Any = None, err_ctype: Any = None) -> RustResult[Any, Any]:
	"""Inverse of `encode_result`; raises WIRE_TAG_INVALID for a tag outside {0, 1}."""
	is_ok = _check_tag(wire.tag, "Result")
	has_payload = any(name == "payload" for name, _ in wire._fields_)
	if is_ok:
		ok = wire.payload.ok if has_payload and ok_ctype is not None else None
		return RustResult(is_ok=True, ok_value=ok)
	err = wire.payload.err if has_payload and err_ctype is not None else None
	return RustResult(is_ok=False, err_value=err)


def encode_option(value: RustOption[Any], value_ctype: Any) -> ctypes.Structure:
	wire = option_layout(value_ctype)()
	wire.tag = TAG_TRUE if value.is_some else TAG_FALSE
	if value.is_some and value_ctype is not None:
		wire.value = value.value
	return wire


def decode_option(wire: ctypes.Structure, value_ctype: Any = None) -> RustOption[Any]:
	if not _check_tag(wire.tag, "Option"):
		return RustOption(is_some=False)
	val = wire.value if value_ctype is not None else None
	return RustOption(is_some=True, value=val)


def decode_result_bytes(data: bytes, ok_ctype: Any, err_ctype: Any) -> RustResult[Any, Any]:
	return decode_result(result_layout(ok_ctype, err_ctype).from_buffer_copy(data), ok_ctype, err_ctype)


def decode_option_bytes(data: bytes, value_ctype: Any) -> RustOption[Any]:
	return decode_option(option_layout(value_ctype).from_buffer_copy(data), value_ctype)


def _wire_safe(type_name: str) -> bool:
	return type_name.strip() == "()" or is_primitive(type_name)


def wire_kind(return_type: str) -> Literal["result", "option"] | None:
	"""
	Which wire format a declared return type travels in, if any.

	Only Result/Option over primitive (or unit) types have a wire layout;
	other instantiations are not FFI-safe and are left alone.
	"""
	res = result_type_args(return_type)
	if res is not None:
		return "result" if all(_wire_safe(t) for t in res) else None
	opt = option_type_arg(return_type)
	if opt is not None and _wire_safe(opt):
		return "option"
	return None
