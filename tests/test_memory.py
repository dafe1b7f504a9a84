import pytest

from memory import (
    HEAP_SIZE,
    I32_MAX,
    I32_MIN,
    Heap,
    SegmentationFault,
    Stack,
    StackOverflow,
    StackUnderflow,
    clamp_i32,
    trunc_div,
    wrap_i32,
)


@pytest.mark.parametrize("addr", [0, 1000, HEAP_SIZE - 4])
@pytest.mark.parametrize("value", [0, 1, -1, 123456789, I32_MAX, I32_MIN])
def test_int32_round_trip(addr, value):
    heap = Heap()
    heap.write_int32(addr, value)
    assert heap.read_int32(addr) == value


def test_int32_is_little_endian():
    heap = Heap()
    heap.write_int32(10, 0x01020304)
    assert [heap.read_byte(a) for a in range(10, 14)] == [4, 3, 2, 1]
    heap.write_int32(20, -1)
    assert [heap.read_byte(a) for a in range(20, 24)] == [0xFF] * 4


def test_int32_built_from_bytes():
    heap = Heap()
    for addr, byte in zip(range(4), [0x00, 0x00, 0x00, 0x80]):
        heap.write_byte(addr, byte)
    assert heap.read_int32(0) == I32_MIN


def test_byte_write_keeps_low_byte():
    heap = Heap()
    heap.write_byte(5, 256 + 7)
    assert heap.read_byte(5) == 7


@pytest.mark.parametrize("addr", [-1, HEAP_SIZE])
def test_byte_access_out_of_range_faults(addr):
    heap = Heap()
    with pytest.raises(SegmentationFault):
        heap.read_byte(addr)
    with pytest.raises(SegmentationFault):
        heap.write_byte(addr, 1)


def test_int32_past_end_faults_without_partial_write():
    heap = Heap()
    with pytest.raises(SegmentationFault):
        heap.write_int32(HEAP_SIZE - 3, -1)
    assert [heap.read_byte(a) for a in range(HEAP_SIZE - 3, HEAP_SIZE)] == [0, 0, 0]
    with pytest.raises(SegmentationFault):
        heap.read_int32(HEAP_SIZE - 3)


def test_push_then_pop_restores_pointer():
    stack = Stack()
    stack.push(1)
    before = stack.sp
    stack.push(42)
    assert stack.pop() == 42
    assert stack.sp == before
    assert len(stack) == 1


def test_stack_is_lifo():
    stack = Stack()
    for value in (1, 2, 3):
        stack.push(value)
    assert [stack.pop(), stack.pop(), stack.pop()] == [3, 2, 1]


def test_pop_on_empty_stack():
    with pytest.raises(StackUnderflow):
        Stack().pop()


def test_push_past_capacity():
    stack = Stack(capacity=2)
    stack.push(1)
    stack.push(2)
    with pytest.raises(StackOverflow):
        stack.push(3)
    assert stack.sp == 2


def test_stack_cells_are_32_bit():
    stack = Stack()
    stack.push(I32_MAX + 1)
    assert stack.pop() == I32_MIN


def test_peek():
    stack = Stack()
    assert stack.peek() is None
    stack.push(9)
    assert stack.peek() == 9
    assert stack.sp == 1


def test_trunc_div_rounds_toward_zero():
    assert trunc_div(7, 2) == 3
    assert trunc_div(-7, 2) == -3
    assert trunc_div(7, -2) == -3
    assert trunc_div(-7, -2) == 3
    assert trunc_div(-33, 10) == -3


def test_i32_helpers():
    assert wrap_i32(I32_MAX + 1) == I32_MIN
    assert wrap_i32(I32_MIN - 1) == I32_MAX
    assert wrap_i32(-5) == -5
    assert clamp_i32(I32_MAX + 10) == I32_MAX
    assert clamp_i32(I32_MIN - 10) == I32_MIN
    assert clamp_i32(3) == 3
