# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Typed calls through resolved symbol addresses.

Each registered function gets a `FunctionDescriptor` (argument/return ctypes,
address, wire format) built once at registration time. Calls go through one
routine, `call_address`; a descriptor whose types are all known also carries
a prebuilt ctypes prototype bound to the address, which is the fast path.
"""

from __future__ import annotations

import ctypes
import functools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Literal

from ferrocall.errors import ARITY_MISMATCH, LIBRARY_UNLOADED, FerroError
from ferrocall.ffi.registry import LibraryRegistry, LoadedLibrary
from ferrocall.parser.signatures import FunctionSignature, option_type_arg, result_type_args
from ferrocall.typemap.translate import UNKNOWN, infer_native_type, native_to_host, to_host_value, to_native_arg
from ferrocall.typemap.wire import decode_option, decode_result, option_layout, result_layout, wire_kind

logger = logging.getLogger(__name__)

# ctypes' own default return type, used when the declared one is not translatable.
_DEFAULT_RESTYPE = ctypes.c_int


@functools.lru_cache(maxsize=512)
def _prototype(restype: Any, argtypes: tuple[Any, ...]) -> Any:
	return ctypes.CFUNCTYPE(restype, *argtypes)


def _argtype_for_value(value: Any) -> Any:
	if isinstance(value, ctypes._SimpleCData) or isinstance(value, (ctypes.Structure, ctypes.Union)):
		return type(value)
	if isinstance(value, ctypes._Pointer) or isinstance(value, ctypes.Array):
		return type(value)
	native = infer_native_type(value)
	if native is UNKNOWN:
		return ctypes.c_void_p
	host = native_to_host(native)
	return ctypes.c_void_p if host is UNKNOWN or host is None else host


def call_address(address: int, restype: Any, args: tuple[Any, ...], argtypes: tuple[Any, ...] | None = None) -> Any:
	"""
	Call the C function at `address`.

	`argtypes` entries may be UNKNOWN (or the whole tuple None): those are
	inferred from the Python values. Returns the raw ctypes result.
	"""
	if argtypes is None:
		argtypes = (UNKNOWN,) * len(args)
	resolved = tuple(_argtype_for_value(a) if t is UNKNOWN else t for t, a in zip(argtypes, args))
	fn = _prototype(restype, resolved)(address)
	return fn(*(to_native_arg(a, t) for a, t in zip(args, resolved)))


@dataclass(frozen=True)
class FunctionDescriptor:
	name: str
	address: int
	argtypes: tuple[Any, ...]
	restype: Any
	wire: Literal["result", "option"] | None = None
	wire_types: tuple[Any, ...] = ()
	fast: Any = None

	@property
	def arity(self) -> int:
		return len(self.argtypes)


def _host(type_name: str) -> Any:
	return native_to_host(type_name)


def build_descriptor(name: str, address: int, signature: FunctionSignature) -> FunctionDescriptor:
	argtypes = tuple(_host(t) for t in signature.param_types)
	wire = wire_kind(signature.return_type)
	wire_types: tuple[Any, ...] = ()
	if wire == "result":
		ok_t, err_t = result_type_args(signature.return_type)  # type: ignore[misc]
		wire_types = (_host(ok_t), _host(err_t))
		restype = result_layout(*wire_types)
	elif wire == "option":
		wire_types = (_host(option_type_arg(signature.return_type) or "()"),)
		restype = option_layout(wire_types[0])
	else:
		restype = _host(signature.return_type)
		if restype is UNKNOWN:
			restype = _DEFAULT_RESTYPE
	fast = None
	if all(t is not UNKNOWN and t is not None for t in argtypes):
		fast = _prototype(restype, argtypes)(address)
	return FunctionDescriptor(
		name=name,
		address=address,
		argtypes=argtypes,
		restype=restype,
		wire=wire,
		wire_types=wire_types,
		fast=fast,
	)


def convert_result(desc: FunctionDescriptor, raw: Any) -> Any:
	if desc.wire == "result":
		res = decode_result(raw, *desc.wire_types)
		ok_t, err_t = desc.wire_types
		if res.is_ok:
			return type(res)(is_ok=True, ok_value=to_host_value(res.ok_value, ok_t))
		return type(res)(is_ok=False, err_value=to_host_value(res.err_value, err_t))
	if desc.wire == "option":
		opt = decode_option(raw, desc.wire_types[0])
		if opt.is_some:
			return type(opt)(is_some=True, value=to_host_value(opt.value, desc.wire_types[0]))
		return opt
	return to_host_value(raw, desc.restype)


class Dispatcher:
	"""
	Per-library dispatch tables: function name -> descriptor.

	Arity is checked against the descriptor before anything native runs.
	"""

	def __init__(self, registry: LibraryRegistry) -> None:
		self.registry = registry
		self._tables: dict[LoadedLibrary, dict[str, FunctionDescriptor]] = {}
		self._lock = threading.Lock()

	def _table(self, lib: LoadedLibrary) -> dict[str, FunctionDescriptor]:
		return self._tables.setdefault(lib, {})

	def register(self, lib: LoadedLibrary, signature: FunctionSignature, *, symbol: str | None = None) -> FunctionDescriptor:
		name = symbol or signature.name
		address = self.registry.resolve(lib, name)
		desc = build_descriptor(name, address, signature)
		with self._lock:
			self._table(lib)[name] = desc
		return desc

	def describe(self, lib: LoadedLibrary, name: str) -> FunctionDescriptor | None:
		with self._lock:
			return self._tables.get(lib, {}).get(name)

	def names(self, lib: LoadedLibrary) -> list[str]:
		with self._lock:
			return sorted(self._tables.get(lib, {}))

	def forget(self, lib: LoadedLibrary) -> None:
		with self._lock:
			self._tables.pop(lib, None)

	def call(self, lib: LoadedLibrary, name: str, *args: Any) -> Any:
		desc = self.describe(lib, name)
		if desc is None:
			address = self.registry.resolve(lib, name)
			logger.debug("untyped call to %s", name)
			return call_address(address, _DEFAULT_RESTYPE, args)
		if len(args) != desc.arity:
			raise FerroError(
				reason_code=ARITY_MISMATCH,
				message=f"{name} takes {desc.arity} argument(s), got {len(args)}",
				symbol=name,
			)
		if not lib.loaded:
			raise FerroError(reason_code=LIBRARY_UNLOADED, message="library was unloaded", symbol=name, library_path=str(lib.path))
		if desc.fast is not None:
			raw = desc.fast(*(to_native_arg(a, t) for a, t in zip(args, desc.argtypes)))
		else:
			raw = call_address(desc.address, desc.restype, args, desc.argtypes)
		return convert_result(desc, raw)
