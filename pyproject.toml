[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wasmrun"
version = "0.1.0"
description = "A stack-based interpreter core for WebAssembly functions: values, arithmetic, tables, stacks and execution."
requires-python = ">=3.10"
dependencies = []
keywords = ["webassembly", "wasm", "interpreter", "virtual-machine", "bytecode"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Interpreters",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[tool.hatch.build.targets.wheel]
packages = ["wasmrun"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
