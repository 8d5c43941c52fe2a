# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ferrocall: compile Rust source on demand and call it from Python.

Layers, leaves first:
  parser:  signature extraction from annotated Rust source
  typemap: Rust <-> ctypes translation and the Result/Option wire layout
  deps:    dependency descriptors embedded in source
  build:   source preparation, Cargo projects, toolchain driver
  cache:   content-addressed artifact store
  ffi:     library registry and typed dispatch
  session: the context object tying the layers together
"""

__version__ = "0.3.0"

__all__ = ["__version__", "Session"]


def __getattr__(name: str):
	if name == "Session":
		from ferrocall.session import Session

		return Session
	raise AttributeError(name)
