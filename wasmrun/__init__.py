"""Execution core of a WebAssembly interpreter: values, arithmetic, tables, stacks and the run loop."""

__version__ = "0.1.0"