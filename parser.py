from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from lexer import Lexer, ParseError, Token


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class Operand:
    pass


class AddressSource(Operand):
    """Operand kinds that may name a heap address."""


@dataclass(frozen=True)
class RegisterRef(AddressSource):
    name: str


@dataclass(frozen=True)
class SensorRef(AddressSource):
    name: str


@dataclass(frozen=True)
class Immediate(AddressSource):
    value: int


@dataclass(frozen=True)
class Indirect(Operand):
    source: AddressSource

    def __post_init__(self) -> None:
        # *(*R) has no syntax and no meaning
        if not isinstance(self.source, AddressSource):
            raise TypeError(f"Indirect operand cannot wrap {self.source!r}")


@dataclass(frozen=True)
class Instruction:
    location: SourceLocation


@dataclass(frozen=True)
class Set(Instruction):
    dst: Operand
    src: Operand


@dataclass(frozen=True)
class Add(Instruction):
    src: Operand
    dst: Operand


@dataclass(frozen=True)
class Sub(Instruction):
    src: Operand
    dst: Operand


@dataclass(frozen=True)
class Mult(Instruction):
    src: Operand
    dst: Operand


@dataclass(frozen=True)
class Div(Instruction):
    src: Operand
    dst: Operand


@dataclass(frozen=True)
class Goto(Instruction):
    label: str


@dataclass(frozen=True)
class GoIf(Instruction):
    condition: str
    src: Operand
    label: str


@dataclass(frozen=True)
class Print(Instruction):
    src: Operand
    type_tag: str = "int"


@dataclass(frozen=True)
class Push(Instruction):
    src: Operand


@dataclass(frozen=True)
class Pop(Instruction):
    dst: Operand


@dataclass(frozen=True)
class Crash(Instruction):
    pass


@dataclass(frozen=True)
class Buy(Instruction):
    amount: int


@dataclass(frozen=True)
class Sell(Instruction):
    amount: int


@dataclass(frozen=True)
class DeclareLabel(Instruction):
    name: str


def parse_source(text: str, filename: str = "<string>") -> List[Instruction]:
    return Parser(Lexer(text, filename), text.splitlines()).parse()


class Parser:
    """Recursive-descent parser, one statement per line.

    Tokens are pulled from the lexer on demand; a single token of lookahead
    is kept for the optional PRINT type tag.
    """

    def __init__(self, lexer: Lexer, source_lines: Optional[List[str]] = None) -> None:
        self.lexer = lexer
        self.filename = lexer.filename
        self.source_lines = source_lines if source_lines is not None else lexer.text.splitlines()
        self._lookahead: Optional[Token] = None
        self._handlers: Dict[str, Callable[[Token], Instruction]] = {
            "SET": self._parse_set,
            "ADD": self._parse_arithmetic,
            "SUB": self._parse_arithmetic,
            "MULT": self._parse_arithmetic,
            "DIV": self._parse_arithmetic,
            "GOTO": self._parse_goto,
            "GOIF": self._parse_goif,
            "GOTOZ": self._parse_gotoz,
            "PRINT": self._parse_print,
            "PUSH": self._parse_push,
            "POP": self._parse_pop,
            "CRASH": self._parse_crash,
            "BUY": self._parse_trade,
            "SELL": self._parse_trade,
        }

    def parse(self) -> List[Instruction]:
        instructions: List[Instruction] = []
        while True:
            instruction = self._parse_statement()
            if instruction is None:
                return instructions
            instructions.append(instruction)

    def _parse_statement(self) -> Optional[Instruction]:
        token = self._next()
        while token is not None and token.type == "ENDLINE":
            token = self._next()
        if token is None:
            return None
        if token.type == "LABEL_DECLARE":
            # Another statement may follow on the same line.
            return DeclareLabel(location=self._location_from_token(token), name=str(token.value))
        if token.type == "LABEL":
            raise ParseError(f"Incorrect use of label {token.value} at line {token.line}")
        handler = self._handlers.get(token.type)
        if handler is None:
            raise ParseError(f"Unknown instruction {token.value} at line {token.line}")
        instruction = handler(token)
        self._expect_endline(token)
        return instruction

    def _parse_set(self, keyword: Token) -> Set:
        usage = "SET *R *R/n"
        dst = self._expect_write(keyword, usage)
        src = self._expect_read_only(keyword, usage)
        return Set(location=self._location_from_token(keyword), dst=dst, src=src)

    def _parse_arithmetic(self, keyword: Token) -> Instruction:
        usage = f"{keyword.value} *R/n *R"
        src = self._expect_read_only(keyword, usage)
        dst = self._expect_write(keyword, usage)
        node = {"ADD": Add, "SUB": Sub, "MULT": Mult, "DIV": Div}[str(keyword.value)]
        return node(location=self._location_from_token(keyword), src=src, dst=dst)

    def _parse_goto(self, keyword: Token) -> Goto:
        label = self._expect_label(keyword, "GOTO label")
        return Goto(location=self._location_from_token(keyword), label=label)

    def _parse_goif(self, keyword: Token) -> GoIf:
        usage = "GOIF COND *R/n label"
        cond = self._next()
        if cond is None or cond.type != "CONDITION":
            found = "end of input" if cond is None else repr(cond.value)
            raise ParseError(
                f"Expected a condition in GOIF instruction ({usage}), got {found} at line {keyword.line}"
            )
        src = self._expect_read_only(keyword, usage)
        label = self._expect_label(keyword, usage)
        return GoIf(location=self._location_from_token(keyword), condition=str(cond.value), src=src, label=label)

    def _parse_gotoz(self, keyword: Token) -> GoIf:
        usage = "GOTOZ *R/n label"
        src = self._expect_read_only(keyword, usage)
        label = self._expect_label(keyword, usage)
        return GoIf(location=self._location_from_token(keyword), condition="Equals", src=src, label=label)

    def _parse_print(self, keyword: Token) -> Print:
        src = self._expect_read_only(keyword, "PRINT *R/n [type]")
        type_tag = "int"
        following = self._peek()
        if following is not None and following.type == "TYPE":
            self._next()
            type_tag = str(following.value)
        return Print(location=self._location_from_token(keyword), src=src, type_tag=type_tag)

    def _parse_push(self, keyword: Token) -> Push:
        src = self._expect_read_only(keyword, "PUSH *R/n")
        return Push(location=self._location_from_token(keyword), src=src)

    def _parse_pop(self, keyword: Token) -> Pop:
        dst = self._expect_write(keyword, "POP *R")
        return Pop(location=self._location_from_token(keyword), dst=dst)

    def _parse_crash(self, keyword: Token) -> Crash:
        return Crash(location=self._location_from_token(keyword))

    def _parse_trade(self, keyword: Token) -> Instruction:
        token = self._next()
        if token is None or token.type != "VALUE":
            raise ParseError(
                f"Expected a positive value in {keyword.value} instruction: {keyword.value} n at line {keyword.line}"
            )
        node = Buy if keyword.value == "BUY" else Sell
        return node(location=self._location_from_token(keyword), amount=int(token.value))

    def _expect_read_only(self, keyword: Token, usage: str) -> Operand:
        token = self._next()
        if token is not None and token.type == "REFERENCE":
            return Indirect(self._expect_address_source(keyword, usage))
        operand = self._direct_operand(token)
        if operand is None:
            raise ParseError(
                f"Expected a register or number in {keyword.value} instruction: {usage} at line {keyword.line}"
            )
        return operand

    def _expect_write(self, keyword: Token, usage: str) -> Operand:
        token = self._next()
        if token is not None and token.type == "REFERENCE":
            return Indirect(self._expect_address_source(keyword, usage))
        if token is not None and token.type == "REGISTER":
            return RegisterRef(str(token.value))
        raise ParseError(
            f"Expected a register in {keyword.value} instruction: {usage} at line {keyword.line}"
        )

    def _expect_address_source(self, keyword: Token, usage: str) -> AddressSource:
        operand = self._direct_operand(self._next())
        if operand is None:
            raise ParseError(
                f"Expected a register or number after '*' in {keyword.value} instruction: {usage} at line {keyword.line}"
            )
        return operand

    def _direct_operand(self, token: Optional[Token]) -> Optional[AddressSource]:
        if token is None:
            return None
        if token.type == "REGISTER":
            return RegisterRef(str(token.value))
        if token.type == "SENSOR":
            return SensorRef(str(token.value))
        if token.type == "VALUE":
            return Immediate(int(token.value))
        return None

    def _expect_label(self, keyword: Token, usage: str) -> str:
        token = self._next(label=True)
        if token is None or token.type != "LABEL":
            raise ParseError(
                f"Expected a label in {keyword.value} instruction: {usage} at line {keyword.line}"
            )
        return str(token.value)

    def _expect_endline(self, keyword: Token) -> None:
        token = self._next()
        if token is None or token.type == "ENDLINE":
            return
        raise ParseError(
            f"Expected endline after {keyword.value} instruction, got {token.value!r} at line {token.line}"
        )

    def _next(self, *, label: bool = False) -> Optional[Token]:
        if self._lookahead is not None:
            token = self._lookahead
            self._lookahead = None
            return token
        return self.lexer.next_token(label=label)

    def _peek(self) -> Optional[Token]:
        if self._lookahead is None:
            self._lookahead = self.lexer.next_token()
        return self._lookahead

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)
