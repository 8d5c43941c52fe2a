# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from ferrocall.cache.store import CacheManager
from ferrocall.config import ENV_LOG, BuildConfig, ToolchainConfig, default_cache_root
from ferrocall.core.diagnostics import format_compile_failure
from ferrocall.doctor import DoctorOptions, doctor_exit_code, doctor_v0
from ferrocall.errors import COMPILE_FAILURE, FerroError
from ferrocall.parser.signatures import extract_functions
from ferrocall.session import Session


def _dump(obj: Any) -> str:
	return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="ferrocall", description="Compile, cache and call Rust code from Python")
	p.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v info, -vv debug)")
	p.add_argument(
		"--cache-dir",
		type=Path,
		default=None,
		help="Cache directory (default: $FERROCALL_CACHE_DIR or ~/.cache/ferrocall/<version>)",
	)
	p.add_argument("--timeout", type=float, default=None, help="Abort toolchain runs after this many seconds")
	sub = p.add_subparsers(dest="cmd", required=True)

	build = sub.add_parser("build", help="Compile a Rust file through the cache and print the artifact path")
	build.add_argument("file", type=Path, help="Rust source file")
	build.add_argument("-O", "--opt-level", type=int, choices=[0, 1, 2, 3], default=2, help="Optimization level (default: 2)")
	build.add_argument("-g", "--debug-info", action="store_true", help="Emit debug info")
	build.add_argument("--target", type=str, default=None, help="Target triple (default: host)")
	build.add_argument("--emit-ir", action="store_true", help="Also cache the LLVM IR")
	build.add_argument("--json", action="store_true", help="Emit machine-readable JSON report")

	sigs = sub.add_parser("signatures", help="List #[python] function signatures in a Rust file")
	sigs.add_argument("file", type=Path, help="Rust source file")
	sigs.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

	call = sub.add_parser("call", help="Compile a Rust file and call one of its functions")
	call.add_argument("file", type=Path, help="Rust source file")
	call.add_argument("function", type=str, help="Function name")
	call.add_argument("args", nargs="*", help="Arguments (integers, floats, true/false, or strings)")

	cache = sub.add_parser("cache", help="Inspect or maintain the artifact cache")
	cache_sub = cache.add_subparsers(dest="cache_cmd", required=True)
	cache_list = cache_sub.add_parser("list", help="List complete cache entries")
	cache_list.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
	cache_sub.add_parser("size", help="Print total cache size in bytes")
	cache_prune = cache_sub.add_parser("prune", help="Remove entries older than a threshold")
	cache_prune.add_argument("--max-age-days", type=float, default=30.0, help="Age threshold in days (default: 30)")
	cache_sub.add_parser("clear", help="Remove the whole cache")
	cache_show = cache_sub.add_parser("show", help="Print the metadata of one entry")
	cache_show.add_argument("key", type=str, help="Cache key")

	doctor = sub.add_parser("doctor", help="Check toolchain availability and cache consistency")
	doctor.add_argument("--deep", action="store_true", help="Also validate every cache entry")
	doctor.add_argument("--json", action="store_true", help="Emit machine-readable JSON report")
	doctor.add_argument(
		"--fail-on",
		choices=["fatal", "degraded"],
		default="fatal",
		help="Exit non-zero on this severity (fatal always exits 2; degraded exits 1 when selected)",
	)
	return p


def _configure_logging(verbose: int) -> None:
	level_name = os.environ.get(ENV_LOG)
	if verbose >= 2:
		level = logging.DEBUG
	elif verbose == 1:
		level = logging.INFO
	elif level_name:
		level = getattr(logging, level_name.upper(), logging.WARNING)
	else:
		level = logging.WARNING
	logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_arg(text: str) -> Any:
	if text in ("true", "false"):
		return text == "true"
	for conv in (int, float):
		try:
			return conv(text)
		except ValueError:
			continue
	return text


def _print_error(err: FerroError) -> None:
	if err.reason_code == COMPILE_FAILURE:
		print(format_compile_failure(err), file=sys.stderr)
	else:
		print(err.format_human(), file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	_configure_logging(args.verbose)
	cache_dir: Path = args.cache_dir if args.cache_dir is not None else default_cache_root()
	toolchain = ToolchainConfig(timeout=args.timeout)

	if args.cmd == "signatures":
		try:
			source = args.file.read_text(encoding="utf-8")
		except OSError as err:
			p.error(str(err))
			return 2
		found = extract_functions(source)
		if args.json:
			print(_dump([s.to_dict() for s in found]))
			return 0
		for s in found:
			params = ", ".join(f"{n}: {t}" for n, t in s.params)
			generics = f"<{', '.join(s.generic_params)}>" if s.generic_params else ""
			print(f"{s.name}{generics}({params}) -> {s.return_type}")
		return 0

	if args.cmd == "build":
		try:
			source = args.file.read_text(encoding="utf-8")
			extra = {"target_triple": args.target} if args.target else {}
			cfg = BuildConfig(optimization_level=args.opt_level, debug_info=bool(args.debug_info), **extra)
		except (OSError, ValueError) as err:
			p.error(str(err))
			return 2
		with Session(cache_dir, toolchain=toolchain, emit_ir=bool(args.emit_ir)) as session:
			report = session.build_report(source, cfg)
		if args.json:
			print(_dump(report.to_dict()))
			return 0 if report.ok else 2
		if report.ok:
			print(report.artifact_path)
			return 0
		for err in report.errors:
			_print_error(err)
		return 2

	if args.cmd == "call":
		try:
			source = args.file.read_text(encoding="utf-8")
		except OSError as err:
			p.error(str(err))
			return 2
		try:
			with Session(cache_dir, toolchain=toolchain) as session:
				session.compile(source)
				result = session.call(args.function, *[_parse_arg(a) for a in args.args])
		except FerroError as err:
			_print_error(err)
			return 2
		print(result)
		return 0

	if args.cmd == "cache":
		mgr = CacheManager(cache_dir)
		if args.cache_cmd == "list":
			entries = list(mgr.entries()) + list(mgr.projects().entries())
			if args.json:
				print(_dump([{"key": e.key, "artifact_path": str(e.artifact_path), **e.metadata.to_dict()} for e in entries]))
				return 0
			for e in entries:
				print(f"{e.key}  {e.metadata.created_at}  {','.join(e.metadata.functions)}")
			return 0
		if args.cache_cmd == "size":
			print(mgr.size_bytes())
			return 0
		if args.cache_cmd == "prune":
			removed = mgr.prune(args.max_age_days * 86400.0)
			print(f"removed {removed} entr{'y' if removed == 1 else 'ies'}")
			return 0
		if args.cache_cmd == "clear":
			mgr.clear()
			return 0
		if args.cache_cmd == "show":
			meta = mgr.load_metadata(args.key) or mgr.projects().load_metadata(args.key)
			if meta is None:
				print(f"no cache entry {args.key}", file=sys.stderr)
				return 2
			print(json.dumps(meta.to_dict(), indent=2, sort_keys=True))
			return 0
		raise AssertionError("unreachable")

	if args.cmd == "doctor":
		opts = DoctorOptions(cache_dir=cache_dir, toolchain=toolchain, deep=bool(args.deep), fail_on=args.fail_on)
		report = doctor_v0(opts)
		code = doctor_exit_code(report, fail_on=args.fail_on)
		if args.json:
			print(_dump(report.to_dict()))
			return code
		print(
			f"doctor: fatal={report.fatal_count} degraded={report.degraded_count} info={report.info_count} ok={report.ok}",
			file=sys.stderr if code != 0 else sys.stdout,
		)
		for check in sorted(report.checks, key=lambda c: c.check_id):
			if check.status == "ok":
				continue
			stream = sys.stderr if check.status in ("fatal", "degraded") else sys.stdout
			print(f"- {check.check_id}: {check.status} ({check.summary})", file=stream)
			for finding in check.findings:
				print(f"  - {finding.format_human()}", file=stream)
		return code

	raise AssertionError("unreachable")
