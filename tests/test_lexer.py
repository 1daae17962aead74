"""Unit tests for the line scanner."""

import pytest

from lexer import DeckshParseError, Lexer, is_quoted, scan_line


class TestScanLine:
    """Token boundaries follow the shorthand's scanner rules."""

    def test_identifiers_and_numbers(self):
        assert scan_line("circle x1 10 2.5") == ["circle", "x1", "10", "2.5"]

    def test_minus_is_its_own_token(self):
        assert scan_line("x = -5") == ["x", "=", "-", "5"]

    def test_compound_operator_splits(self):
        assert scan_line("x += 3") == ["x", "+", "=", "3"]

    def test_literals_keep_delimiters(self):
        assert scan_line('text "Hello, world" 10 20 3') == ["text", '"Hello, world"', "10", "20", "3"]

    def test_raw_and_char_literals(self):
        assert scan_line("t `a \\n b` 'c'") == ["t", "`a \\n b`", "'c'"]

    def test_escaped_quote_stays_inside_literal(self):
        assert scan_line(r'text "say \"hi\"" 1 2 3')[1] == r'"say \"hi\""'

    def test_line_comment_is_dropped(self):
        assert scan_line("rect 1 2 3 4 // a box") == ["rect", "1", "2", "3", "4"]

    def test_block_comment_is_dropped(self):
        assert scan_line("rect 1 /* w */ 3") == ["rect", "1", "3"]

    def test_exponent_and_fraction(self):
        assert scan_line("v = 1.5e3 .25") == ["v", "=", "1.5e3", ".25"]

    def test_hex_number(self):
        assert scan_line("v = 0xFF") == ["v", "=", "0xFF"]

    def test_brackets_are_punctuation(self):
        assert scan_line('for v = ["a" "b"]') == ["for", "v", "=", "[", '"a"', '"b"', "]"]

    def test_empty_line(self):
        assert scan_line("   ") == []


class TestScanErrors:
    def test_unterminated_literal(self):
        with pytest.raises(DeckshParseError, match="Literal not terminated at deck.dsh:4:6"):
            Lexer('text "open', "deck.dsh", 4).tokenize()

    def test_unterminated_block_comment(self):
        with pytest.raises(DeckshParseError, match="Comment not terminated"):
            scan_line("rect /* open")


class TestIsQuoted:
    @pytest.mark.parametrize("text", ['"a"', "`a`", "'a'", '""'])
    def test_quoted(self, text):
        assert is_quoted(text)

    @pytest.mark.parametrize("text", ['"', "abc", '"a`', "12"])
    def test_not_quoted(self, text):
        assert not is_quoted(text)
