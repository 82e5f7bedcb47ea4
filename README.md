# wasmrun

`wasmrun` is the execution core of a WebAssembly interpreter in pure Python.
It models the four WebAssembly value types, implements their arithmetic with
the wrapping, trapping and NaN rules of the specification, and runs function
bodies, given as sequences of instructions, on a value stack and a call stack
with configurable limits.

It has no runtime dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `wasmrun.types` — `ValueType` (`I32`, `I64`, `F32`, `F64`), function
  `Signature`s, and `GlobalDescriptor`, `TableDescriptor` and
  `MemoryDescriptor` for describing imported entities.
- `wasmrun.values` — `RuntimeValue` (a value type plus its bit pattern, so
  NaN payloads survive) with `try_into`; the constructors `i32`, `i64`,
  `f32`, `f64`, `default_value`, `decode_f32` and `decode_f64`;
  little-endian encoding with `to_little_endian` and `from_little_endian`
  (a too short buffer raises `LittleEndianError`); and the `Trap` exception
  with its `TrapKind`.
- `wasmrun.arith` — integer and floating-point operations on Python numbers:
  wrapping `int_add`, `int_sub`, `int_mul`; trapping `int_div` and
  `int_rem`; `leading_zeros`, `trailing_zeros`, `count_ones`, `rotl`,
  `rotr`; `float_nearest` (ties to even), NaN-propagating `float_min` and
  `float_max`, `float_copysign`, `f32_round`; `truncate_to_int`, which traps
  on NaN, infinities and out-of-range values; and `float_to_bits` /
  `bits_to_float`.
- `wasmrun.table` — `TableInstance`, a growable table of function
  references with an optional maximum size, raising `TableError` on
  out-of-range access or growth past the limit.
- `wasmrun.stack` — `ValueStack`, `CallStack` and `StackRecycler`, the
  `DropKeep` / `Keep` stack adjustment made by branches and returns, and
  the helpers `to_raw`, `from_raw`, `effective_address`,
  `check_function_args` and `prepare_function_args`.
- `wasmrun.ops` — the instruction set (`Op`, `Instruction`, `Target`) and
  `execute_numeric`, which runs any numeric instruction (`is_numeric`) on a
  value stack.
- `wasmrun.interpreter` — `Interpreter`, which runs a `Function` bound to an
  `Instance` (functions, globals, linear memory, table, signatures), calls
  `HostFunction`s through the `invoke_index(index, args)` method of an
  externals object, and can be resumed with `resume_execution` after a host
  function fails.

## Examples

```python
from wasmrun.arith import int_add, leading_zeros, float_nearest, float_min

int_add(0xFFFFFFFF, 1, 32)   # 0: 32-bit addition wraps
leading_zeros(1, 32)         # 31
float_nearest(2.5)           # 2.0: ties round to even
float_min(-0.0, 0.0)         # -0.0
```

Running a function that adds its two `i32` parameters. Locals are addressed
by their depth from the top of the value stack, and the return drops the two
parameters while keeping the result:

```python
from wasmrun.interpreter import Function, Instance, Interpreter
from wasmrun.ops import Instruction, Op
from wasmrun.stack import DropKeep, Keep
from wasmrun.types import Signature, ValueType
from wasmrun.values import i32

add = Function(
    Signature([ValueType.I32, ValueType.I32], ValueType.I32),
    [
        Instruction(Op.GET_LOCAL, 2),
        Instruction(Op.GET_LOCAL, 2),
        Instruction(Op.I32_ADD),
        Instruction(Op.RETURN, DropKeep(2, Keep.SINGLE)),
    ],
)
Instance(functions=[add])  # binds the function to its instance

result = Interpreter(add, [i32(2), i32(3)]).start_execution(externals=None)
result.value  # 5
```

Constants take the bit pattern of their value as argument, for example
`Instruction(Op.I32_CONST, 7)`.

## Traps

Operations that WebAssembly defines as trapping — `unreachable`, integer
division by zero, signed division overflow, truncating NaN or an
out-of-range float to an integer, out-of-bounds memory access, out-of-bounds
or uninitialised table elements in indirect calls, signature mismatches and
stack overflow — raise `wasmrun.values.Trap`, whose `kind` tells which
`TrapKind` occurred. An exception other than `Trap` raised by a host
function becomes a `Trap` of kind `HOST`; the interpreter is then in the
`RESUMABLE` state and `resume_execution` continues it with the value the
host call should have returned.

## Limits

By default the value stack holds 1 MiB worth of 8-byte values (131,072
values) and the call stack is limited to 65,536 levels. A `StackRecycler`
can be created with other limits and passed to `Interpreter` so that stacks
are reused between calls; its `clear` zeroes recycled storage. Linear memory
grows in 64 KiB pages up to the instance's `memory_maximum`, at most 65,536
pages; `grow_memory` pushes `0xFFFFFFFF` when it cannot grow.

## What it does not do

`wasmrun` does not read `.wasm` binaries or text, and does not validate
modules or compile function bodies into instructions: code is handed to it
as ready `Instruction` sequences with branch targets, local depths and
drop/keep counts already worked out. It has no command-line tool.