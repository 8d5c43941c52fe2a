# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Rust source preparation.

`#[python]` is not a real Rust attribute; it is rewritten before compiling:

  functions      -> `#[no_mangle] pub extern "C" fn`
  Result/Option  -> private impl + exported shim returning the tagged wire struct
  generics       -> plain `pub fn`; monomorphic shims come from `specialize`
  structs        -> `#[repr(C)]` (+ Copy derives when none are declared)

Every rewrite stays on the line it replaces and shims are appended at the
end, so toolchain line numbers match the caller's source.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ferrocall.parser.signatures import (
	FunctionSignature,
	extract_functions,
	option_type_arg,
	result_type_args,
)
from ferrocall.typemap.translate import is_primitive
from ferrocall.typemap.wire import wire_kind

IMPL_PREFIX = "__ferrocall_impl_"

_EXPORT_FN_RE = re.compile(
	r"#\[python\](?P<attrs>\s*(?:#\[[^\]]*\]\s*)*)(?P<vis>pub(?:\([^)]*\))?\s+)?"
	r"(?P<quals>(?:const\s+)?(?:unsafe\s+)?)(?:extern\s+\"C\"\s+)?fn(?P<ws>\s+)(?P<name>[A-Za-z_]\w*)"
)
_EXPORT_STRUCT_RE = re.compile(r"#\[python\](?P<attrs>\s*(?:#\[[^\]]*\]\s*)*)(?P<vis>pub(?:\([^)]*\))?\s+)?struct\b")
_CRATE_LEVEL_RE = re.compile(r"#!\[crate_type|^\s*extern\s+crate\b", re.MULTILINE)
_NON_WORD_RE = re.compile(r"\W+")


def wrap_source(source: str) -> str:
	"""Silence unused-code lints unless the source manages its own crate attributes."""
	if _CRATE_LEVEL_RE.search(source):
		return source
	return "#![allow(unused)] " + source


def _unit(t: str) -> bool:
	return t.strip() == "()"


def _wire_ok(t: str) -> bool:
	return _unit(t) or is_primitive(t)


def _sum_kind(sig: FunctionSignature) -> str | None:
	if sig.is_generic:
		return None
	return wire_kind(sig.return_type)


def _default_of(t: str) -> str:
	return f"<{t} as ::core::default::Default>::default()"


def _call_args(sig: FunctionSignature) -> tuple[str, str]:
	params = ", ".join(f"{n}: {t}" for n, t in sig.params)
	args = ", ".join(n for n, _ in sig.params)
	return params, args


def result_shim(sig: FunctionSignature) -> str:
	ok_t, err_t = result_type_args(sig.return_type) or ("()", "()")
	wire = f"__FerrocallResult_{sig.name}"
	payload = f"__FerrocallResultPayload_{sig.name}"
	params, args = _call_args(sig)
	fields = [(n, t) for n, t in (("ok", ok_t), ("err", err_t)) if not _unit(t)]
	out: list[str] = []
	if fields:
		members = ", ".join(f"pub {n}: {t}" for n, t in fields)
		out.append("#[repr(C)]")
		out.append("#[derive(Clone, Copy)]")
		out.append("#[allow(non_camel_case_types)]")
		out.append(f"pub union {payload} {{ {members} }}")
		out.append("")
	out.append("#[repr(C)]")
	out.append("#[allow(non_camel_case_types)]")
	if fields:
		out.append(f"pub struct {wire} {{ pub tag: u8, pub payload: {payload} }}")
	else:
		out.append(f"pub struct {wire} {{ pub tag: u8 }}")
	out.append("")

	def arm(variant: str, tag: int, value_t: str, other: tuple[str, str] | None) -> str:
		binding = "_" if _unit(value_t) else "v"
		if not fields:
			body = f"{wire} {{ tag: {tag} }}"
		elif not _unit(value_t):
			name = "ok" if variant == "Ok" else "err"
			body = f"{wire} {{ tag: {tag}, payload: {payload} {{ {name}: v }} }}"
		else:
			oname, otype = other  # type: ignore[misc]
			body = f"{wire} {{ tag: {tag}, payload: {payload} {{ {oname}: {_default_of(otype)} }} }}"
		return f"\t\t{variant}({binding}) => {body},"

	other_for_ok = ("err", err_t) if not _unit(err_t) else None
	other_for_err = ("ok", ok_t) if not _unit(ok_t) else None
	out.append("#[no_mangle]")
	out.append(f'pub extern "C" fn {sig.name}({params}) -> {wire} {{')
	out.append(f"\tmatch {IMPL_PREFIX}{sig.name}({args}) {{")
	out.append(arm("Ok", 1, ok_t, other_for_ok))
	out.append(arm("Err", 0, err_t, other_for_err))
	out.append("\t}")
	out.append("}")
	return "\n".join(out)


def option_shim(sig: FunctionSignature) -> str:
	value_t = option_type_arg(sig.return_type) or "()"
	wire = f"__FerrocallOption_{sig.name}"
	params, args = _call_args(sig)
	out = ["#[repr(C)]", "#[allow(non_camel_case_types)]"]
	if _unit(value_t):
		out.append(f"pub struct {wire} {{ pub tag: u8 }}")
		some_arm = f"\t\tSome(_) => {wire} {{ tag: 1 }},"
		none_arm = f"\t\tNone => {wire} {{ tag: 0 }},"
	else:
		out.append(f"pub struct {wire} {{ pub tag: u8, pub value: {value_t} }}")
		some_arm = f"\t\tSome(v) => {wire} {{ tag: 1, value: v }},"
		none_arm = f"\t\tNone => {wire} {{ tag: 0, value: {_default_of(value_t)} }},"
	out.append("")
	out.append("#[no_mangle]")
	out.append(f'pub extern "C" fn {sig.name}({params}) -> {wire} {{')
	out.append(f"\tmatch {IMPL_PREFIX}{sig.name}({args}) {{")
	out.append(some_arm)
	out.append(none_arm)
	out.append("\t}")
	out.append("}")
	return "\n".join(out)


def transform_exports(source: str) -> str:
	sigs = {s.name: s for s in extract_functions(source)}
	shims: list[str] = []

	def fn_repl(m: re.Match[str]) -> str:
		attrs, quals, ws, name = m.group("attrs"), m.group("quals"), m.group("ws"), m.group("name")
		vis = m.group("vis") or ""
		sig = sigs.get(name)
		if sig is None:
			# Malformed declaration: drop the marker and let rustc report the item.
			return f"{attrs}{vis}{quals}fn{ws}{name}"
		if sig.is_generic:
			return f"{attrs}pub {quals}fn{ws}{name}"
		kind = _sum_kind(sig)
		if kind == "result":
			shims.append(result_shim(sig))
			return f"{attrs}{quals}fn{ws}{IMPL_PREFIX}{name}"
		if kind == "option":
			shims.append(option_shim(sig))
			return f"{attrs}{quals}fn{ws}{IMPL_PREFIX}{name}"
		return f'#[no_mangle]{attrs}pub {quals}extern "C" fn{ws}{name}'

	def struct_repl(m: re.Match[str]) -> str:
		attrs = m.group("attrs")
		vis = m.group("vis") or ""
		derive = "" if "derive" in attrs else " #[derive(Clone, Copy, Debug)]"
		return f"#[repr(C)]{derive}{attrs}{vis}struct"

	out = _EXPORT_FN_RE.sub(fn_repl, source)
	out = _EXPORT_STRUCT_RE.sub(struct_repl, out)
	if shims:
		out = out.rstrip("\n") + "\n\n" + "\n\n".join(shims) + "\n"
	return out


def prepare_source(source: str) -> str:
	return wrap_source(transform_exports(source))


@dataclass(frozen=True)
class Specialization:
	symbol: str
	signature: FunctionSignature
	shim: str


def specialization_symbol(name: str, concrete: list[str]) -> str:
	suffix = "_".join(_NON_WORD_RE.sub("_", t).strip("_") for t in concrete)
	return f"{name}__{suffix}"


def _substitute(type_str: str, bindings: dict[str, str]) -> str:
	out = type_str
	for param, concrete in bindings.items():
		out = re.sub(rf"\b{re.escape(param)}\b", concrete, out)
	return out


def specialize(sig: FunctionSignature, bindings: dict[str, str]) -> Specialization:
	"""
	Monomorphic exported wrapper for a generic function.

	`bindings` maps every generic parameter to a concrete primitive type; the
	resulting signature must be FFI-safe.
	"""
	if not sig.is_generic:
		raise ValueError(f"{sig.name} is not generic")
	missing = [g for g in sig.generic_params if g not in bindings]
	if missing:
		raise ValueError(f"{sig.name}: no concrete type for {', '.join(missing)}")
	params = tuple((n, _substitute(t, bindings)) for n, t in sig.params)
	ret = _substitute(sig.return_type, bindings)
	for t in [t for _, t in params] + [ret]:
		if not _wire_ok(t):
			raise ValueError(f"{sig.name}: specialized type {t} is not FFI-safe")
	concrete = [bindings[g] for g in sig.generic_params]
	symbol = specialization_symbol(sig.name, concrete)
	mono = FunctionSignature(name=symbol, params=params, return_type=ret)
	param_text = ", ".join(f"{n}: {t}" for n, t in params)
	args = ", ".join(n for n, _ in params)
	turbofish = ", ".join(concrete)
	ret_text = "" if _unit(ret) else f" -> {ret}"
	shim = "\n".join(
		[
			"#[no_mangle]",
			f'pub extern "C" fn {symbol}({param_text}){ret_text} {{',
			f"\t{sig.name}::<{turbofish}>({args})",
			"}",
		]
	)
	return Specialization(symbol=symbol, signature=mono, shim=shim)
