from __future__ import annotations
from typing import Callable, Iterable, List, Tuple

import pytest

from interpreter import Interpreter


class ScriptedRandom:
    """Randomness provider returning queued draws, then zeros."""

    def __init__(self, draws: Iterable[int] = ()) -> None:
        self.draws = list(draws)
        self.calls: List[Tuple[int, int]] = []

    def randint(self, a: int, b: int) -> int:
        self.calls.append((a, b))
        if self.draws:
            return self.draws.pop(0)
        return 0


@pytest.fixture
def scripted_random() -> Callable[..., ScriptedRandom]:
    return ScriptedRandom


@pytest.fixture
def make_vm() -> Callable[..., Tuple[Interpreter, List[str]]]:
    """Build an interpreter over a market with no drift, capturing PRINT output."""

    def _make(source: str, **kwargs) -> Tuple[Interpreter, List[str]]:
        output: List[str] = []
        kwargs.setdefault("rng", ScriptedRandom())
        vm = Interpreter(source=source, output_sink=output.append, **kwargs)
        return vm, output

    return _make
