import pytest

from lexer import Lexer, LexicalError


def _types(text):
    return [token.type for token in Lexer(text)]


def test_statement_tokens():
    tokens = Lexer("SET FUND1 5\n").tokenize()
    assert [t.type for t in tokens] == ["SET", "REGISTER", "VALUE", "ENDLINE"]
    assert [t.value for t in tokens[:3]] == ["SET", "FUND1", 5]


def test_sensor_and_opcode_keywords():
    assert _types("ADD STOCKPRICE FUND2") == ["ADD", "SENSOR", "REGISTER"]
    assert _types("MULT DIV GOTOZ CRASH") == ["MULT", "DIV", "GOTOZ", "CRASH"]


def test_positions_are_tracked():
    tokens = list(Lexer("SET FUND1 5\n\tPRINT FUND1"))
    print_token = tokens[4]
    assert print_token.type == "PRINT"
    assert (print_token.line, print_token.column) == (2, 2)


def test_whitespace_and_carriage_returns_are_skipped():
    assert _types("  CRASH\t\r\n") == ["CRASH", "ENDLINE"]


def test_label_declaration_drops_colon():
    tokens = list(Lexer("loop: ADD 1 FUND1"))
    assert tokens[0].type == "LABEL_DECLARE"
    assert tokens[0].value == "loop"
    assert tokens[1].type == "ADD"


def test_keyword_followed_by_colon_is_a_label():
    token = Lexer("SET:").next_token()
    assert token.type == "LABEL_DECLARE"
    assert token.value == "SET"


def test_dollar_label_reference():
    token = Lexer("$end_2").next_token()
    assert token.type == "LABEL"
    assert token.value == "end_2"


def test_label_mode_reads_bare_identifier_as_reference():
    lexer = Lexer("loop")
    token = lexer.next_token(label=True)
    assert token.type == "LABEL"
    assert token.value == "loop"


def test_unknown_identifier_is_lexical_error():
    with pytest.raises(LexicalError, match="Unknown instruction or register"):
        list(Lexer("FOO 1"))


def test_keywords_are_case_sensitive():
    with pytest.raises(LexicalError):
        list(Lexer("set FUND1 1"))


def test_literal_range():
    assert Lexer("2147483647").next_token().value == 2147483647
    with pytest.raises(LexicalError, match="32 bits"):
        Lexer("2147483648").next_token()


def test_digits_end_at_first_non_digit():
    tokens = list(Lexer("12CRASH"))
    assert [t.type for t in tokens] == ["VALUE", "CRASH"]
    assert tokens[0].value == 12


def test_empty_label_is_lexical_error():
    with pytest.raises(LexicalError, match="Empty label"):
        Lexer(": CRASH").next_token()


def test_invalid_symbol():
    with pytest.raises(LexicalError, match="Invalid symbol"):
        Lexer("#").next_token()
    with pytest.raises(LexicalError, match="Invalid symbol"):
        Lexer("! 1").next_token()


def test_reference_marker():
    tokens = list(Lexer("*100"))
    assert [t.type for t in tokens] == ["REFERENCE", "VALUE"]


def test_condition_symbols_and_names():
    values = [t.value for t in Lexer("== != < > <= >= Lesser GreaterOrEqual")]
    assert values == [
        "Equals",
        "Different",
        "Lesser",
        "Greater",
        "LesserOrEqual",
        "GreaterOrEqual",
        "Lesser",
        "GreaterOrEqual",
    ]


def test_print_type_tags():
    values = [t.value for t in Lexer("int bool char CHAR")]
    assert values == ["int", "bool", "char", "char"]


def test_sequence_is_finite_and_not_restartable():
    lexer = Lexer("CRASH")
    assert [t.type for t in lexer] == ["CRASH"]
    assert lexer.next_token() is None
    assert list(lexer) == []


def test_empty_input_has_no_tokens():
    assert Lexer("").next_token() is None
