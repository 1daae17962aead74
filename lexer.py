from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class DeckshError(Exception):
    """Base class for compiler errors."""


class DeckshParseError(DeckshError):
    """Raised when a line cannot be scanned."""


class DeckshRuntimeError(DeckshError):
    """Raised when a directive fails; collected rather than fatal."""

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        directive: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.directive = directive


class DeckshStreamError(DeckshError):
    """Raised when the script itself cannot be read. Aborts compilation."""


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


QUOTES = {
    '"': "STRING",
    "`": "RAWSTRING",
    "'": "CHAR",
}

DIGITS = "0123456789"
HEX_DIGITS = "0123456789abcdefABCDEF"


class Lexer:
    """Scans one logical line into identifiers, numbers, literals and punctuation.

    String literals keep their delimiters. A minus sign is never folded into
    a number, so ``-5`` scans as two tokens.
    """

    def __init__(self, text: str, filename: str, line: int = 1) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = line
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in " \t\r\n":
                _advance()
                continue
            if ch == "/" and self.index + 1 < n and text[self.index + 1] in "/*":
                self._consume_comment()
                continue
            if ch in QUOTES:
                tokens_append(self._consume_literal())
                continue
            if ch in DIGITS or (ch == "." and self.index + 1 < n and text[self.index + 1] in DIGITS):
                tokens_append(self._consume_number())
                continue
            if self._is_identifier_start(ch):
                tokens_append(self._consume_identifier())
                continue
            tokens_append(Token("PUNCT", ch, self.line, self.column))
            _advance()
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        line, col = self.line, self.column
        self._advance()
        if self._peek() == "/":
            while self.index < n and text[self.index] != "\n":
                self._advance()
            return
        self._advance()
        while self.index < n:
            if text[self.index] == "*" and self.index + 1 < n and text[self.index + 1] == "/":
                self._advance()
                self._advance()
                return
            self._advance()
        raise DeckshParseError(f"Comment not terminated at {self.filename}:{line}:{col}")

    def _consume_literal(self) -> Token:
        line, col = self.line, self.column
        opening = self._peek()
        start = self.index
        self._advance()
        while not self._eof:
            ch = self._peek()
            if ch == "\\" and opening != "`":
                # keep the escape sequence verbatim
                self._advance()
                if self._eof:
                    break
                self._advance()
                continue
            if ch == "\n" and opening != "`":
                break
            self._advance()
            if ch == opening:
                return Token(QUOTES[opening], self.text[start:self.index], line, col)
        raise DeckshParseError(f"Literal not terminated at {self.filename}:{line}:{col}")

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        if self._peek() == "0" and self.index + 1 < len(self.text) and self.text[self.index + 1] in "xX":
            self._advance()
            self._advance()
            self._consume_digits(HEX_DIGITS)
            return Token("INT", self.text[start:self.index], line, col)
        kind = "INT"
        self._consume_digits(DIGITS)
        if not self._eof and self._peek() == ".":
            kind = "FLOAT"
            self._advance()
            self._consume_digits(DIGITS)
        if not self._eof and self._peek() in "eE":
            # only an exponent when digits follow, optionally signed
            j = self.index + 1
            if j < len(self.text) and self.text[j] in "+-":
                j += 1
            if j < len(self.text) and self.text[j] in DIGITS:
                kind = "FLOAT"
                while self.index < j:
                    self._advance()
                self._consume_digits(DIGITS)
        return Token(kind, self.text[start:self.index], line, col)

    def _consume_digits(self, alphabet: str) -> None:
        text = self.text
        n = len(text)
        while self.index < n and (text[self.index] in alphabet or text[self.index] == "_"):
            self._advance()

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and self._is_identifier_part(text[self.index]):
            self._advance()
        return Token("IDENT", text[start:self.index], line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ch.isalpha()

    def _is_identifier_part(self, ch: str) -> bool:
        return ch == "_" or ch.isalpha() or ch.isdigit()

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


def scan_line(text: str, filename: str = "<stdin>", line: int = 1) -> List[str]:
    """Return the token texts of a single source line."""
    return [token.value for token in Lexer(text, filename, line).tokenize()]


def is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in QUOTES
