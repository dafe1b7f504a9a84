from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from lexer import InVMError
from market import RandomSource, initial_sensors, make_random_source, simulate
from memory import (
    STACK_CAPACITY,
    Heap,
    InVMRuntimeError,
    Stack,
    clamp_i32,
    trunc_div,
    wrap_i32,
)
from parser import (
    Add,
    Buy,
    Crash,
    DeclareLabel,
    Div,
    GoIf,
    Goto,
    Immediate,
    Indirect,
    Instruction,
    Mult,
    Operand,
    Pop,
    Print,
    Push,
    RegisterRef,
    Sell,
    SensorRef,
    Set,
    SourceLocation,
    Sub,
    parse_source,
)


class LoadError(InVMError):
    """Raised when a parsed program cannot be loaded into the machine."""

    def __init__(self, message: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location


class DuplicateLabel(LoadError):
    pass


class UninitializedRegister(InVMRuntimeError):
    pass


class UnknownLabel(InVMRuntimeError):
    pass


class DivisionByZero(InVMRuntimeError):
    pass


class InsufficientFunds(InVMRuntimeError):
    pass


class InsufficientStock(InVMRuntimeError):
    pass


class ReadOnlyOperand(InVMRuntimeError):
    pass


class InvalidCharacter(InVMRuntimeError):
    pass


class StepLimitExceeded(InVMRuntimeError):
    pass


# ("register", name) or ("heap", address)
Target = Tuple[str, Union[str, int]]

CONDITION_TESTS: Dict[str, Callable[[int], bool]] = {
    "Equals": lambda v: v == 0,
    "Different": lambda v: v != 0,
    "Greater": lambda v: v > 0,
    "Lesser": lambda v: v < 0,
    "GreaterOrEqual": lambda v: v >= 0,
    "LesserOrEqual": lambda v: v <= 0,
}


def opcode_name(instruction: Instruction) -> str:
    return instruction.__class__.__name__.upper()


def resolve_labels(program: Sequence[Instruction]) -> Dict[str, int]:
    """Map every declared label to the index of its declaration."""
    labels: Dict[str, int] = {}
    for index, instruction in enumerate(program):
        if not isinstance(instruction, DeclareLabel):
            continue
        if instruction.name in labels:
            raise DuplicateLabel(
                f"Duplicate label {instruction.name} (first declared at instruction {labels[instruction.name]})",
                location=instruction.location,
            )
        labels[instruction.name] = index
    return labels


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    pc: Optional[int]
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    snapshot: Optional[Dict[str, str]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0

    def record(
        self,
        *,
        pc: Optional[int],
        rule: str,
        location: Optional[SourceLocation],
        snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            pc=pc,
            rule=rule,
            source_location=location,
            statement=location.statement if location else None,
            snapshot=snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    def entry_at(self, step_index: Optional[int]) -> Optional[StateEntry]:
        if step_index is None or not 0 <= step_index < len(self.entries):
            return None
        return self.entries[step_index]


class Interpreter:
    """Register/stack/heap machine running an InVM program.

    Each call to ``step`` executes one instruction and then one market tick.
    A runtime error halts the machine; it is kept on ``error`` and re-raised
    to the caller.
    """

    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        program: Optional[Sequence[Instruction]] = None,
        verbose: bool = False,
        rng: Optional[RandomSource] = None,
        seed: Optional[int] = None,
        sensors: Optional[Mapping[str, int]] = None,
        stack_capacity: int = STACK_CAPACITY,
        max_steps: Optional[int] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self.filename = filename
        self.verbose = verbose
        self.rng: RandomSource = rng if rng is not None else make_random_source(seed)
        self.output_sink = output_sink or (lambda text: print(text))
        self.max_steps = max_steps

        if program is None:
            program = parse_source(source, filename)
        self.program: Tuple[Instruction, ...] = tuple(program)
        self.labels: Dict[str, int] = resolve_labels(self.program)

        self.registers: Dict[str, int] = {}
        self.sensors: Dict[str, int] = initial_sensors(sensors)
        self.heap = Heap()
        self.stack = Stack(stack_capacity)
        self.pc = 0
        self.halted = False
        self.error: Optional[InVMRuntimeError] = None
        self.steps = 0
        self.ticks = 0

        self.logger = StateLogger(verbose=verbose)
        self.logger.record(pc=None, rule="SEED", location=None)

    def run(self) -> None:
        while self.step():
            pass

    def step(self) -> bool:
        """Execute one instruction plus a market tick; return False once halted."""
        if self.halted:
            return False
        if not 0 <= self.pc < len(self.program):
            self.halted = True
            return False

        instruction = self.program[self.pc]
        entry = self._log_step(instruction)
        try:
            if self.max_steps is not None and self.steps >= self.max_steps:
                raise StepLimitExceeded(f"Step limit of {self.max_steps} instructions exceeded")
            next_pc = self._execute(instruction)
        except InVMRuntimeError as error:
            self._fail(error, instruction, entry)
            raise
        except Exception as exc:
            # Interpreter and output-sink failures halt the machine like program faults.
            wrapped = InVMRuntimeError(f"Internal interpreter error: {exc}", opcode="internal")
            self._fail(wrapped, instruction, entry)
            raise wrapped from exc

        self.steps += 1
        self.pc = next_pc
        self.tick()
        return not self.halted

    def _fail(self, error: InVMRuntimeError, instruction: Instruction, entry: StateEntry) -> None:
        self.halted = True
        if error.location is None:
            error.location = instruction.location
        if error.opcode is None:
            error.opcode = opcode_name(instruction)
        error.step_index = entry.step_index
        self.error = error

    def tick(self) -> None:
        self.sensors = simulate(self.sensors, self.rng)
        self.ticks += 1

    def _execute(self, instruction: Instruction) -> int:
        next_pc = self.pc + 1
        if isinstance(instruction, Set):
            value = self._read(instruction.src)
            self._store(self._resolve_target(instruction.dst), value)
            return next_pc
        if isinstance(instruction, (Add, Sub, Mult, Div)):
            operand = self._read(instruction.src)
            target = self._resolve_target(instruction.dst)
            current = self._read(instruction.dst)
            self._store(target, self._arithmetic(instruction, current, operand))
            return next_pc
        if isinstance(instruction, Goto):
            return self._label_index(instruction.label)
        if isinstance(instruction, GoIf):
            value = self._read(instruction.src)
            if CONDITION_TESTS[instruction.condition](value):
                return self._label_index(instruction.label)
            return next_pc
        if isinstance(instruction, Print):
            value = self._read(instruction.src)
            self.output_sink(self._render(value, instruction.type_tag))
            return next_pc
        if isinstance(instruction, Push):
            self.stack.push(self._read(instruction.src))
            return next_pc
        if isinstance(instruction, Pop):
            target = self._resolve_target(instruction.dst)
            self._store(target, self.stack.pop())
            return next_pc
        if isinstance(instruction, Crash):
            self.halted = True
            return next_pc
        if isinstance(instruction, Buy):
            self._buy(instruction.amount)
            return next_pc
        if isinstance(instruction, Sell):
            self._sell(instruction.amount)
            return next_pc
        if isinstance(instruction, DeclareLabel):
            return next_pc
        raise InVMRuntimeError(f"Unsupported instruction {instruction!r}")

    def _arithmetic(self, instruction: Instruction, current: int, operand: int) -> int:
        if isinstance(instruction, Add):
            return wrap_i32(current + operand)
        if isinstance(instruction, Sub):
            return wrap_i32(current - operand)
        if isinstance(instruction, Mult):
            return wrap_i32(current * operand)
        if operand == 0:
            raise DivisionByZero(f"Division by zero ({current} / 0)")
        return wrap_i32(trunc_div(current, operand))

    def _read(self, operand: Operand) -> int:
        if isinstance(operand, RegisterRef):
            if operand.name not in self.registers:
                raise UninitializedRegister(f"Use of uninitialized register {operand.name}")
            return self.registers[operand.name]
        if isinstance(operand, SensorRef):
            return self.sensors[operand.name]
        if isinstance(operand, Immediate):
            return operand.value
        if isinstance(operand, Indirect):
            return self.heap.read_int32(self._read(operand.source))
        raise InVMRuntimeError(f"Unsupported operand {operand!r}")

    def _resolve_target(self, operand: Operand) -> Target:
        """Resolve a destination to a register name or a checked heap address."""
        if isinstance(operand, RegisterRef):
            return ("register", operand.name)
        if isinstance(operand, Indirect):
            addr = self._read(operand.source)
            self.heap.check(addr, 4)
            return ("heap", addr)
        if isinstance(operand, SensorRef):
            raise ReadOnlyOperand(f"Cannot write to read-only operand: sensor {operand.name}")
        if isinstance(operand, Immediate):
            raise ReadOnlyOperand(f"Cannot write to read-only operand: value {operand.value}")
        raise ReadOnlyOperand(f"Cannot write to read-only operand {operand!r}")

    def _store(self, target: Target, value: int) -> None:
        kind, where = target
        if kind == "register":
            self.registers[str(where)] = wrap_i32(value)
        else:
            self.heap.write_int32(int(where), value)

    def _label_index(self, label: str) -> int:
        try:
            return self.labels[label]
        except KeyError:
            raise UnknownLabel(f"Use of unknown label {label}") from None

    def _render(self, value: int, type_tag: str) -> str:
        if type_tag == "bool":
            return "true" if value != 0 else "false"
        if type_tag == "char":
            # Unicode scalar values only: no negatives, no surrogates.
            if not 0 <= value <= 0x10FFFF or 0xD800 <= value <= 0xDFFF:
                raise InvalidCharacter(f"Invalid conversion of {value} to a character")
            return chr(value)
        return str(value)

    def _buy(self, amount: int) -> None:
        balance = self.sensors["BALANCE"]
        stockprice = self.sensors["STOCKPRICE"]
        total_price = amount * stockprice
        if balance < total_price:
            raise InsufficientFunds(
                f"Insufficient balance ({balance}) to buy {amount} stocks at price {stockprice} "
                f"(total price: {total_price})"
            )
        self.sensors["BALANCE"] = balance - total_price
        self.sensors["OWNED"] = clamp_i32(self.sensors["OWNED"] + amount)

    def _sell(self, amount: int) -> None:
        owned = self.sensors["OWNED"]
        if amount > owned:
            raise InsufficientStock(f"Insufficient stocks to sell (owned: {owned}, sell: {amount})")
        total_price = amount * self.sensors["STOCKPRICE"]
        self.sensors["BALANCE"] = clamp_i32(self.sensors["BALANCE"] + total_price)
        self.sensors["OWNED"] = owned - amount

    def snapshot(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for name, value in self.registers.items():
            values[name] = str(value)
        for name, value in self.sensors.items():
            values[name] = str(value)
        values["SP"] = str(self.stack.sp)
        top = self.stack.peek()
        if top is not None:
            values["TOP"] = str(top)
        return values

    def _log_step(self, instruction: Instruction) -> StateEntry:
        return self.logger.record(
            pc=self.pc,
            rule=opcode_name(instruction),
            location=instruction.location,
            snapshot=self.snapshot() if self.verbose else None,
        )


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _failing_entry(self, error: InVMRuntimeError) -> Optional[StateEntry]:
        entry = self.interpreter.logger.entry_at(error.step_index)
        if entry is None and self.interpreter.logger.entries:
            entry = self.interpreter.logger.entries[-1]
        return entry

    def format_text(self, error: InVMRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        entry = self._failing_entry(error)
        location = error.location or (entry.source_location if entry else None)
        if location:
            lines.append(f"  File \"{location.file}\", line {location.line}, in <program>")
            if location.statement:
                lines.append(f"    {location.statement}")
        else:
            lines.append("  <unknown location> in <program>")
        if entry:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}  pc: {entry.pc}")
            if verbose and entry.snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.snapshot.items())
                lines.append(f"    Machine snapshot: {snapshot}")
        opcode = error.opcode or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (opcode: {opcode})")
        return "\n".join(lines)

    def to_json(self, error: InVMRuntimeError) -> str:
        entry = self._failing_entry(error)
        frame: Dict[str, Any] = {"frame_index": 0, "name": "<program>"}
        location = error.location or (entry.source_location if entry else None)
        if location:
            frame["source_location"] = {
                "file": location.file,
                "line": location.line,
                "statement": location.statement,
            }
        if entry:
            frame["state_id"] = entry.state_id
            frame["step_index"] = entry.step_index
            frame["pc"] = entry.pc
            if entry.snapshot is not None:
                frame["snapshot"] = entry.snapshot
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "opcode": error.opcode,
                "failing_step_index": error.step_index,
            },
            "traceback": [frame],
        }
        return json.dumps(data, indent=2)
