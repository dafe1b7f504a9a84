from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union


class InVMError(Exception):
    """Base class for interpreter errors."""


class LexicalError(InVMError):
    """Raised when the source cannot be split into tokens."""


class ParseError(InVMError):
    """Raised when parsing fails."""


@dataclass
class Token:
    type: str
    value: Union[int, str]
    line: int
    column: int


I32_MAX = 2**31 - 1

OPCODES = {
    "SET",
    "ADD",
    "SUB",
    "MULT",
    "DIV",
    "GOTO",
    "GOIF",
    "GOTOZ",
    "PRINT",
    "PUSH",
    "POP",
    "CRASH",
    "BUY",
    "SELL",
}

REGISTERS = ("FUND1", "FUND2")

SENSORS = (
    "SHARES",
    "STOCKPRICE",
    "REPUTATION",
    "MARKETVAL",
    "EQUITY",
    "OWNED",
    "BALANCE",
)

CONDITIONS = {
    "Equals": "Equals",
    "Different": "Different",
    "Greater": "Greater",
    "Lesser": "Lesser",
    "GreaterOrEqual": "GreaterOrEqual",
    "LesserOrEqual": "LesserOrEqual",
}

# Comparison spellings emitted by the MEN compiler.
CONDITION_SYMBOLS = {
    "==": "Equals",
    "!=": "Different",
    ">": "Greater",
    "<": "Lesser",
    ">=": "GreaterOrEqual",
    "<=": "LesserOrEqual",
}

PRINT_TYPES = {
    "int": "int",
    "bool": "bool",
    "char": "char",
    "INT": "int",
    "BOOL": "bool",
    "CHAR": "char",
}


# identifier -> (token type, token value)
def _keyword_table() -> Dict[str, Tuple[str, str]]:
    table: Dict[str, Tuple[str, str]] = {}
    for name in OPCODES:
        table[name] = (name, name)
    for name in REGISTERS:
        table[name] = ("REGISTER", name)
    for name in SENSORS:
        table[name] = ("SENSOR", name)
    for name, condition in CONDITIONS.items():
        table[name] = ("CONDITION", condition)
    for name, type_tag in PRINT_TYPES.items():
        table[name] = ("TYPE", type_tag)
    return table


KEYWORDS = _keyword_table()


class Lexer:
    """Pull-based tokenizer.

    Tokens are produced one at a time by ``next_token``; iterating the lexer
    yields every remaining token. The sequence ends at end of input and cannot
    be restarted.
    """

    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def __iter__(self) -> Iterator[Token]:
        return self

    def __next__(self) -> Token:
        token = self.next_token()
        if token is None:
            raise StopIteration
        return token

    def tokenize(self) -> List[Token]:
        return list(self)

    def next_token(self, *, label: bool = False) -> Optional[Token]:
        """Return the next token, or None at end of input.

        With ``label`` set, a bare identifier is read as a label reference
        instead of being looked up in the keyword table.
        """
        text = self.text
        n = len(text)
        _advance = self._advance

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t" or ch == "\r":
                _advance()
                continue
            if ch == "\n":
                token = Token("ENDLINE", "\n", self.line, self.column)
                _advance()
                return token
            if ch == "$":
                line, col = self.line, self.column
                _advance()
                name = self._consume_word()
                if name == "":
                    raise LexicalError(
                        f"Empty label reference at {self.filename}:{line}:{col}"
                    )
                return Token("LABEL", name, line, col)
            if ch == ":":
                raise LexicalError(
                    f"Empty label identifier at {self.filename}:{self.line}:{self.column}"
                )
            if ch == "*":
                token = Token("REFERENCE", "*", self.line, self.column)
                _advance()
                return token
            if ch in "=!<>":
                return self._consume_condition_symbol()
            if ch.isascii() and ch.isdigit():
                return self._consume_number()
            if ch.isascii() and ch.isalpha():
                return self._consume_identifier(label)
            raise LexicalError(
                f"Invalid symbol '{ch}' at {self.filename}:{self.line}:{self.column}"
            )
        return None

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        digits: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and text[self.index].isascii() and text[self.index].isdigit():
            digits.append(text[self.index])
            self._advance()
        literal = "".join(digits)
        value = int(literal)
        if value > I32_MAX:
            raise LexicalError(
                f"Numeric literal {literal} does not fit in 32 bits at {self.filename}:{line}:{col}"
            )
        return Token("VALUE", value, line, col)

    def _consume_identifier(self, label: bool) -> Token:
        line, col = self.line, self.column
        name = self._consume_word()
        if not self._eof and self._peek() == ":":
            self._advance()  # the colon is not part of the name
            return Token("LABEL_DECLARE", name, line, col)
        if label:
            return Token("LABEL", name, line, col)
        keyword = KEYWORDS.get(name)
        if keyword is None:
            raise LexicalError(
                f"Unknown instruction or register '{name}' at {self.filename}:{line}:{col}"
            )
        token_type, value = keyword
        return Token(token_type, value, line, col)

    def _consume_condition_symbol(self) -> Token:
        line, col = self.line, self.column
        first = self._peek()
        self._advance()
        symbol = first
        if not self._eof and self._peek() == "=":
            symbol += "="
            self._advance()
        condition = CONDITION_SYMBOLS.get(symbol)
        if condition is None:
            raise LexicalError(
                f"Invalid symbol '{symbol}' at {self.filename}:{line}:{col}"
            )
        return Token("CONDITION", condition, line, col)

    def _consume_word(self) -> str:
        chars: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and self._is_identifier_part(text[self.index]):
            chars.append(text[self.index])
            self._advance()
        return "".join(chars)

    def _is_identifier_part(self, ch: str) -> bool:
        return ch.isascii() and (ch.isalnum() or ch == "_")

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
