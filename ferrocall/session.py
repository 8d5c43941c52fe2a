# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
The context object tying the pipeline together.

    source -> signatures -> cache lookup -> (miss) compile -> store
           -> load -> dispatch

A `Session` owns its cache manager, compiler driver, library registry and
dispatcher. Nothing is process-global: two sessions are fully independent,
apart from sharing the on-disk cache directory when given the same root.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ferrocall.build.compiler import BuildUnit, CompileOutput, CompilerDriver
from ferrocall.build.ir import exported_functions
from ferrocall.build.project import cleanup, create_project, write_manifest, write_source
from ferrocall.build.source import specialize
from ferrocall.cache.keys import cache_key, code_hash, project_cache_key, project_config_string
from ferrocall.cache.metadata_v0 import CacheMetadata
from ferrocall.cache.store import CacheManager
from ferrocall.config import BuildConfig, ToolchainConfig, default_target_triple
from ferrocall.deps.pragma import has_dependencies, parse_dependencies_from_source
from ferrocall.deps.resolve import check_dependency_availability, merge_dependencies, validate_dependencies
from ferrocall.deps.spec import DependencySpec
from ferrocall.errors import ARITY_MISMATCH, SYMBOL_NOT_FOUND, UNKNOWN_FUNCTION, FerroError, wrap_internal
from ferrocall.ffi.dispatch import Dispatcher
from ferrocall.ffi.registry import LibraryRegistry, LoadedLibrary
from ferrocall.parser.signatures import FunctionSignature, extract_functions
from ferrocall.typemap.translate import UNKNOWN, infer_native_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledLibrary:
	key: str
	artifact_path: Path
	library: LoadedLibrary
	signatures: tuple[FunctionSignature, ...]
	source: str
	from_cache: bool
	config: BuildConfig | None = None
	dependencies: tuple[DependencySpec, ...] = ()

	def function(self, name: str) -> FunctionSignature | None:
		for sig in self.signatures:
			if sig.name == name:
				return sig
		return None


@dataclass(frozen=True)
class BuildReport:
	ok: bool
	key: str | None = None
	artifact_path: str | None = None
	from_cache: bool = False
	functions: list[str] = field(default_factory=list)
	errors: list[FerroError] = field(default_factory=list)

	def to_dict(self) -> dict[str, Any]:
		return {
			"ok": self.ok,
			"key": self.key,
			"artifact_path": self.artifact_path,
			"from_cache": self.from_cache,
			"functions": list(self.functions),
			"errors": [e.to_dict() for e in self.errors],
		}


def _exported_names(signatures: tuple[FunctionSignature, ...] | list[FunctionSignature]) -> list[str]:
	return sorted(s.name for s in signatures if not s.is_generic)


class Session:
	def __init__(
		self,
		cache_root: Path | None = None,
		*,
		config: BuildConfig | None = None,
		toolchain: ToolchainConfig | None = None,
		emit_ir: bool = False,
		recover: bool = False,
		keep_failed: bool = False,
	) -> None:
		self.config = config or BuildConfig()
		self.toolchain = toolchain or ToolchainConfig()
		self.cache = CacheManager(cache_root)
		self.driver = CompilerDriver(self.toolchain, keep_failed=keep_failed)
		self.registry = LibraryRegistry()
		self.dispatcher = Dispatcher(self.registry)
		self.emit_ir = emit_ir
		self.recover = recover
		self.current: CompiledLibrary | None = None
		self._libraries: dict[str, CompiledLibrary] = {}
		self._specializations: dict[tuple[str, str], CompiledLibrary] = {}

	def __enter__(self) -> "Session":
		return self

	def __exit__(self, *exc: object) -> None:
		self.close()

	# --- building ---

	def compile(self, source: str, config: BuildConfig | None = None) -> CompiledLibrary:
		"""
		Compile through the cache and load the result.

		Sources that declare dependencies are routed to `compile_project`; an
		optimization level of 0 selects a debug build, anything else release.
		"""
		cfg = config or self.config
		if has_dependencies(source):
			if cfg.target_triple != default_target_triple():
				raise ValueError(f"dependency builds target the host only, got target {cfg.target_triple}")
			if cfg.debug_info:
				logger.warning("debug_info is ignored for dependency builds; use optimization_level=0 for a debug build")
			return self.compile_project(source, release=cfg.optimization_level > 0)
		sigs = tuple(extract_functions(source))
		key = cache_key(source, cfg)
		with self.cache.build_lock(key):
			artifact = self.cache.lookup(key)
			hit = artifact is not None
			if artifact is None:
				logger.debug("cache miss %s", key)
				key, artifact, cfg = self._build_single(source, cfg, key, sigs)
		return self._load(key, artifact, source, sigs, from_cache=hit, config=cfg)

	def _compile_output(self, source: str, cfg: BuildConfig) -> CompileOutput:
		unit = BuildUnit(source=source, config=cfg)
		if self.recover:
			return self.driver.compile_with_recovery(unit, emit_ir=self.emit_ir)
		return self.driver.compile_single_file(unit, emit_ir=self.emit_ir)

	def _build_single(
		self, source: str, cfg: BuildConfig, key: str, sigs: tuple[FunctionSignature, ...]
	) -> tuple[str, Path, BuildConfig]:
		"""
		Build and store. A recovered build is stored under the key of the
		config it was actually built with, never under the requested one.
		"""
		out = self._compile_output(source, cfg)
		built_cfg = out.config or cfg
		if built_cfg != cfg:
			logger.warning("built with %s instead of %s", built_cfg.config_string(), cfg.config_string())
			key = cache_key(source, built_cfg)
		try:
			functions: list[str] | None = None
			ir_text = out.read_ir()
			if ir_text is not None:
				self.cache.store_ir(key, ir_text)
				functions = exported_functions(ir_text)
			if functions is None:
				functions = _exported_names(sigs)
			meta = CacheMetadata(
				cache_key=key,
				code_hash=code_hash(source),
				compiler_config=built_cfg.config_string(),
				target_triple=built_cfg.target_triple,
				functions=tuple(functions),
			)
			return key, self.cache.store(key, out.artifact_path, meta).artifact_path, built_cfg
		finally:
			out.cleanup()

	def compile_project(
		self,
		source: str,
		dependencies: list[DependencySpec] | None = None,
		*,
		release: bool = True,
	) -> CompiledLibrary:
		deps = merge_dependencies(parse_dependencies_from_source(source) + list(dependencies or []))
		validate_dependencies(deps)
		for problem in check_dependency_availability(deps):
			logger.warning("dependency check: %s", problem)
		sigs = tuple(extract_functions(source))
		projects = self.cache.projects()
		key = project_cache_key(source, deps, release=release)
		with projects.build_lock(key):
			artifact = projects.lookup(key)
			hit = artifact is not None
			if artifact is None:
				project = create_project(f"ferrocall_{key[:12]}", deps, edition=self.toolchain.edition)
				try:
					write_manifest(project)
					write_source(project, source)
					built = self.driver.compile_project(project, source=source, release=release)
					meta = CacheMetadata(
						cache_key=key,
						code_hash=code_hash(source),
						compiler_config=project_config_string(deps, release=release),
						target_triple=default_target_triple(),
						functions=tuple(_exported_names(sigs)),
					)
					artifact = projects.store(key, built, meta).artifact_path
				finally:
					cleanup(project)
		return self._load(key, artifact, source, sigs, from_cache=hit, dependencies=tuple(deps))

	def _load(
		self,
		key: str,
		artifact: Path,
		source: str,
		sigs: tuple[FunctionSignature, ...],
		*,
		from_cache: bool,
		config: BuildConfig | None = None,
		dependencies: tuple[DependencySpec, ...] = (),
	) -> CompiledLibrary:
		lib = self.registry.load(artifact)
		for sig in sigs:
			if sig.is_generic:
				continue
			try:
				self.dispatcher.register(lib, sig)
			except FerroError as err:
				if err.reason_code != SYMBOL_NOT_FOUND:
					raise
				logger.debug("declared function %s is not exported by %s", sig.name, artifact.name)
		compiled = CompiledLibrary(
			key=key,
			artifact_path=artifact,
			library=lib,
			signatures=sigs,
			source=source,
			from_cache=from_cache,
			config=config,
			dependencies=dependencies,
		)
		self._libraries[key] = compiled
		self.current = compiled
		return compiled

	def build_report(self, source: str, config: BuildConfig | None = None) -> BuildReport:
		try:
			lib = self.compile(source, config)
		except Exception as err:
			return BuildReport(ok=False, errors=[wrap_internal(err)])
		return BuildReport(
			ok=True,
			key=lib.key,
			artifact_path=str(lib.artifact_path),
			from_cache=lib.from_cache,
			functions=_exported_names(lib.signatures),
		)

	# --- calling ---

	def call(self, name: str, *args: Any, library: CompiledLibrary | None = None) -> Any:
		lib = library or self.current
		if lib is None:
			raise FerroError(reason_code=UNKNOWN_FUNCTION, message=f"no library compiled; cannot call {name}", symbol=name)
		sig = lib.function(name)
		if sig is not None and sig.is_generic:
			return self._call_generic(lib, sig, args)
		return self.dispatcher.call(lib.library, name, *args)

	def _call_generic(self, lib: CompiledLibrary, sig: FunctionSignature, args: tuple[Any, ...]) -> Any:
		if len(args) != sig.arity:
			raise FerroError(
				reason_code=ARITY_MISMATCH,
				message=f"{sig.name} takes {sig.arity} argument(s), got {len(args)}",
				symbol=sig.name,
			)
		bindings: dict[str, str] = {}
		for (_, ptype), value in zip(sig.params, args):
			if ptype in sig.generic_params and ptype not in bindings:
				native = infer_native_type(value)
				if native is UNKNOWN:
					raise FerroError(
						reason_code=UNKNOWN_FUNCTION,
						message=f"cannot infer a Rust type for {type(value).__name__} argument of {sig.name}",
						symbol=sig.name,
					)
				bindings[ptype] = str(native)
		try:
			spec = specialize(sig, bindings)
		except ValueError as err:
			raise FerroError(reason_code=UNKNOWN_FUNCTION, message=str(err), symbol=sig.name) from err
		compiled = self._specializations.get((lib.key, spec.symbol))
		if compiled is None:
			prev = self.current
			compiled = self.compile(lib.source + "\n\n" + spec.shim + "\n", lib.config)
			self.current = prev
			self.dispatcher.register(compiled.library, spec.signature)
			self._specializations[(lib.key, spec.symbol)] = compiled
		return self.dispatcher.call(compiled.library, spec.symbol, *args)

	# --- introspection / teardown ---

	def libraries(self) -> list[CompiledLibrary]:
		return list(self._libraries.values())

	def signatures(self, library: CompiledLibrary | None = None) -> list[FunctionSignature]:
		lib = library or self.current
		return list(lib.signatures) if lib is not None else []

	def unload(self, lib: CompiledLibrary) -> None:
		self.dispatcher.forget(lib.library)
		self.registry.unload(lib.library)
		self._libraries.pop(lib.key, None)
		self._specializations = {k: v for k, v in self._specializations.items() if v.key != lib.key and k[0] != lib.key}
		if self.current is not None and self.current.key == lib.key:
			self.current = None

	def close(self) -> None:
		for lib in list(self._libraries.values()):
			self.unload(lib)
		self.registry.unload_all()
		self.current = None
