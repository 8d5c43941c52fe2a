# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from ferrocall.deps.pragma import (
	extract_cargo_block,
	extract_pragma_line,
	has_dependencies,
	parse_cargo_block,
	parse_dependencies_from_source,
	parse_pragma,
	strip_dependency_comments,
	strip_dependency_comments_mapped,
)
from ferrocall.deps.spec import DependencySpec

_BLOCK_SOURCE = """//! ```cargo
//! [dependencies]
//! ndarray = "0.15"
//! serde = { version = "1.0", features = ["derive"] }
//! ```

#[python]
fn f() -> i32 { 1 }
"""


def test_extract_cargo_block_strips_prefixes() -> None:
	block = extract_cargo_block(_BLOCK_SOURCE)
	assert block == '[dependencies]\nndarray = "0.15"\nserde = { version = "1.0", features = ["derive"] }'


def test_parse_cargo_block() -> None:
	deps = parse_cargo_block(extract_cargo_block(_BLOCK_SOURCE) or "")
	assert deps == [
		DependencySpec(name="ndarray", version="0.15"),
		DependencySpec(name="serde", version="1.0", features=frozenset({"derive"})),
	]


def test_malformed_cargo_block_is_ignored() -> None:
	assert parse_cargo_block("[dependencies\nbroken = ") == []
	assert parse_cargo_block("[package]\nname = 'x'") == []


def test_parse_pragma_simple_and_table() -> None:
	deps = parse_pragma('serde="1.0", rand={version="0.8", features=["small_rng", "std"]}, local={path="../l"},')
	assert deps == [
		DependencySpec(name="serde", version="1.0"),
		DependencySpec(name="rand", version="0.8", features=frozenset({"small_rng", "std"})),
		DependencySpec(name="local", path="../l"),
	]


def test_parse_pragma_rejects_garbage() -> None:
	with pytest.raises(ValueError):
		parse_pragma("serde 1.0")
	with pytest.raises(ValueError):
		parse_pragma('rand={features="std"}')


def test_extract_pragma_line() -> None:
	src = 'use std::f64;\n// cargo-deps: rand="0.8"\nfn main() {}\n'
	assert extract_pragma_line(src) == 'rand="0.8"'
	assert extract_pragma_line("fn main() {}") is None


def test_has_dependencies() -> None:
	assert has_dependencies(_BLOCK_SOURCE)
	assert has_dependencies('// cargo-deps: rand="0.8"')
	assert not has_dependencies("#[python]\nfn f() {}")


def test_both_forms_are_merged() -> None:
	src = _BLOCK_SOURCE + '\n// cargo-deps: serde={version="1.0.100", features=["std"]}, rand="0.8"\n'
	deps = parse_dependencies_from_source(src)
	assert [d.name for d in deps] == ["ndarray", "rand", "serde"]
	serde = deps[2]
	assert serde.version == "1.0.100"
	assert serde.features == frozenset({"derive", "std"})


def test_malformed_pragma_does_not_hide_block() -> None:
	src = _BLOCK_SOURCE + "\n// cargo-deps: ???\n"
	assert [d.name for d in parse_dependencies_from_source(src)] == ["ndarray", "serde"]


def test_strip_dependency_comments() -> None:
	src = _BLOCK_SOURCE + '\n\n\n// cargo-deps: rand="0.8"\nfn g() {}\n'
	out = strip_dependency_comments(src)
	assert "cargo" not in out
	assert "\n\n\n" not in out
	assert out.startswith("#[python]")
	assert out.endswith("fn g() {}")


def test_strip_dependency_comments_line_map() -> None:
	src = _BLOCK_SOURCE + '\n\n\n// cargo-deps: rand="0.8"\nfn g() {}\n'
	text, line_map = strip_dependency_comments_mapped(src)
	assert text == strip_dependency_comments(src)
	assert text.split("\n") == ["#[python]", "fn f() -> i32 { 1 }", "", "fn g() {}"]
	assert line_map == [7, 8, 9, 13]
	original = src.split("\n")
	assert all(original[n - 1] == line for n, line in zip(line_map, text.split("\n")))


def test_strip_dependency_comments_empty_result() -> None:
	assert strip_dependency_comments_mapped('// cargo-deps: rand="0.8"\n\n') == ("", [])
