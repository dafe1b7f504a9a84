from __future__ import annotations
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from lexer import I32_MAX, InVMError
from parser import SourceLocation


HEAP_SIZE = 65536
STACK_CAPACITY = 65536

I32_MIN = -(2**31)


def wrap_i32(value: int) -> int:
    """Two's-complement wrap into the signed 32-bit range."""
    return ((value - I32_MIN) & 0xFFFFFFFF) + I32_MIN


def clamp_i32(value: int) -> int:
    return max(I32_MIN, min(I32_MAX, value))


def trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero (Python's // floors)."""
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


class InVMRuntimeError(InVMError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        opcode: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.opcode = opcode
        self.step_index: Optional[int] = None


class SegmentationFault(InVMRuntimeError):
    pass


class StackOverflow(InVMRuntimeError):
    pass


class StackUnderflow(InVMRuntimeError):
    pass


class Heap:
    """Byte-addressable memory with little-endian int32 access."""

    def __init__(self, size: int = HEAP_SIZE) -> None:
        self.size = size
        self.data: NDArray[Any] = np.zeros(size, dtype=np.uint8)

    def read_byte(self, addr: int) -> int:
        self.check(addr)
        return int(self.data[addr])

    def write_byte(self, addr: int, value: int) -> None:
        self.check(addr)
        self.data[addr] = value & 0xFF

    def read_int32(self, addr: int) -> int:
        self.check(addr, 4)
        raw = 0
        for offset in range(4):
            raw |= self.read_byte(addr + offset) << (8 * offset)
        return wrap_i32(raw)

    def write_int32(self, addr: int, value: int) -> None:
        # A faulting write leaves the heap untouched.
        self.check(addr, 4)
        raw = value & 0xFFFFFFFF
        for offset in range(4):
            self.write_byte(addr + offset, (raw >> (8 * offset)) & 0xFF)

    def check(self, addr: int, width: int = 1) -> None:
        if not (0 <= addr and addr + width <= self.size):
            raise SegmentationFault(
                f"Segmentation fault: {width}-byte access at address {addr} outside [0, {self.size - 1}]"
            )


class Stack:
    """Fixed-capacity LIFO of signed 32-bit cells."""

    def __init__(self, capacity: int = STACK_CAPACITY) -> None:
        self.capacity = capacity
        self.cells: NDArray[Any] = np.zeros(capacity, dtype=np.int32)
        self.sp = 0

    def __len__(self) -> int:
        return self.sp

    def push(self, value: int) -> None:
        if self.sp >= self.capacity:
            raise StackOverflow(f"Stack overflow: capacity of {self.capacity} cells exhausted")
        self.cells[self.sp] = wrap_i32(value)
        self.sp += 1

    def pop(self) -> int:
        if self.sp == 0:
            raise StackUnderflow("Pop used on an empty stack")
        self.sp -= 1
        return int(self.cells[self.sp])

    def peek(self) -> Optional[int]:
        if self.sp == 0:
            return None
        return int(self.cells[self.sp - 1])
