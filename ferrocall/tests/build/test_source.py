# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from ferrocall.build.source import (
	IMPL_PREFIX,
	option_shim,
	prepare_source,
	result_shim,
	specialization_symbol,
	specialize,
	transform_exports,
	wrap_source,
)
from ferrocall.parser.signatures import FunctionSignature, extract_functions


def test_wrap_source_prefixes_first_line() -> None:
	assert wrap_source("fn f() {}") == "#![allow(unused)] fn f() {}"
	crate = '#![crate_type = "cdylib"]\nfn f() {}'
	assert wrap_source(crate) == crate


def test_plain_export_rewritten_on_same_line() -> None:
	src = "#[python]\nfn add(a: i64, b: i64) -> i64 {\n\ta + b\n}\n"
	out = transform_exports(src)
	assert out == '#[no_mangle]\npub extern "C" fn add(a: i64, b: i64) -> i64 {\n\ta + b\n}\n'


def test_line_numbers_are_preserved() -> None:
	src = "\n".join(
		[
			"#[python] fn a() -> i32 { 1 }",
			"#[python]",
			"pub fn r(x: i32) -> Result<i32, u8> {",
			"\tif x > 0 { Ok(x) } else { Err(1) }",
			"}",
			"#[python] fn o() -> Option<f64> { None }",
			"#[python] pub struct P { x: f64 }",
			"fn marker() {}",
		]
	)
	out = prepare_source(src)
	src_lines = src.splitlines()
	out_lines = out.splitlines()
	# Shims are appended after the caller's code.
	assert out_lines[7] == "fn marker() {}"
	assert len(out_lines) > len(src_lines)
	assert out_lines[0].startswith("#![allow(unused)] #[no_mangle] pub extern \"C\" fn a()")
	assert out_lines[2] == f"fn {IMPL_PREFIX}r(x: i32) -> Result<i32, u8> {{"
	assert out_lines[5].lstrip().startswith(f"fn {IMPL_PREFIX}o()")
	assert out_lines[6].startswith("#[repr(C)] #[derive(Clone, Copy, Debug)] pub struct P")


def test_result_shim_layout() -> None:
	(sig,) = extract_functions("#[python]\nfn safe_div(a: i32, b: i32) -> Result<i32, u8> { Ok(a / b) }")
	shim = result_shim(sig)
	assert "pub union __FerrocallResultPayload_safe_div { pub ok: i32, pub err: u8 }" in shim
	assert "pub struct __FerrocallResult_safe_div { pub tag: u8, pub payload: __FerrocallResultPayload_safe_div }" in shim
	assert 'pub extern "C" fn safe_div(a: i32, b: i32) -> __FerrocallResult_safe_div {' in shim
	assert f"match {IMPL_PREFIX}safe_div(a, b)" in shim
	assert "Ok(v) => __FerrocallResult_safe_div { tag: 1, payload: __FerrocallResultPayload_safe_div { ok: v } }," in shim
	assert "Err(v) => __FerrocallResult_safe_div { tag: 0, payload: __FerrocallResultPayload_safe_div { err: v } }," in shim


def test_result_shim_with_unit_ok() -> None:
	sig = FunctionSignature(name="check", params=(("x", "i32"),), return_type="Result<(), i32>")
	shim = result_shim(sig)
	assert "pub union __FerrocallResultPayload_check { pub err: i32 }" in shim
	assert "Ok(_) => __FerrocallResult_check { tag: 1, payload: __FerrocallResultPayload_check { err: <i32 as ::core::default::Default>::default() } }," in shim


def test_option_shim() -> None:
	sig = FunctionSignature(name="find", params=(("k", "u32"),), return_type="Option<f64>")
	shim = option_shim(sig)
	assert "pub struct __FerrocallOption_find { pub tag: u8, pub value: f64 }" in shim
	assert "Some(v) => __FerrocallOption_find { tag: 1, value: v }," in shim
	assert "None => __FerrocallOption_find { tag: 0, value: <f64 as ::core::default::Default>::default() }," in shim


def test_non_ffi_safe_sum_type_is_plain_export() -> None:
	out = transform_exports("#[python]\nfn s() -> Option<String> { None }")
	assert '#[no_mangle]\npub extern "C" fn s()' in out
	assert "__FerrocallOption" not in out


def test_generic_becomes_plain_pub_fn() -> None:
	out = transform_exports("#[python]\nfn id<T: Copy>(x: T) -> T { x }")
	assert out == "\npub fn id<T: Copy>(x: T) -> T { x }"


def test_specialize_generic() -> None:
	(sig,) = extract_functions("#[python]\nfn add<T: std::ops::Add<Output = T>>(a: T, b: T) -> T { a + b }")
	spec = specialize(sig, {"T": "i64"})
	assert spec.symbol == "add__i64"
	assert spec.signature == FunctionSignature(name="add__i64", params=(("a", "i64"), ("b", "i64")), return_type="i64")
	assert spec.shim == '#[no_mangle]\npub extern "C" fn add__i64(a: i64, b: i64) -> i64 {\n\tadd::<i64>(a, b)\n}'


def test_specialize_rejects_missing_or_unsafe_bindings() -> None:
	(sig,) = extract_functions("#[python]\nfn pair<A, B>(a: A, b: B) -> A { a }")
	with pytest.raises(ValueError):
		specialize(sig, {"A": "i32"})
	with pytest.raises(ValueError):
		specialize(sig, {"A": "String", "B": "i32"})
	with pytest.raises(ValueError):
		specialize(FunctionSignature(name="f"), {})


def test_specialization_symbol_sanitizes() -> None:
	assert specialization_symbol("f", ["i32", "*const u8"]) == "f__i32_const_u8"
