"""
Recursive-descent parser for ClickHouse type names.

Grammar (whitespace between tokens is insignificant)::

    type      := [identifier] identifier [ "(" [ arg_list ] ")" ]   # leading identifier = tuple field
               | number
               | string [ "=" number ]                            # enum entry
    arg_list  := type ( "," type )*

Literal arguments (``16`` in ``FixedString(16)``, ``'UTC'`` in
``DateTime64(3, 'UTC')``, ``'a' = 1`` in ``Enum8('a' = 1)``) become leaf
nodes whose name is the literal text.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from clickhouse_http.errors import TypeSyntaxError

IDENT = "ident"
NUMBER = "number"
STRING = "string"
PUNCT = "punct"
END = "end"

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass(frozen=True)
class TypeNode:
    """One node of a parsed type expression."""

    name: str
    args: Tuple["TypeNode", ...] = ()
    field: Optional[str] = None

    @property
    def is_literal(self) -> bool:
        return bool(self.name) and (self.name[0] in "'-" or self.name[0].isdigit())

    @property
    def literal_value(self) -> str:
        """Literal text with surrounding quotes removed and escapes resolved."""
        if len(self.name) >= 2 and self.name[0] == "'" and self.name[-1] == "'":
            return unescape_quoted(self.name[1:-1])
        return self.name

    def __str__(self) -> str:
        text = self.name
        if self.args:
            text += "(" + ", ".join(str(arg) for arg in self.args) + ")"
        if self.field:
            text = f"{self.field} {text}"
        return text


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


def unescape_quoted(text: str) -> str:
    out = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            i += 1
            out.append(text[i])
        else:
            out.append(char)
        i += 1
    return "".join(out)


class TypeParser:
    """Turns a type string into a TypeNode tree."""

    def parse(self, text: str) -> TypeNode:
        if text is None:
            raise TypeSyntaxError("Type string cannot be None")
        self._text = text
        self._tokens = self._tokenize(text)
        self._index = 0

        if self._peek().kind == END:
            raise TypeSyntaxError("Type string cannot be empty", text=text)

        try:
            node = self._parse_type()
        except RecursionError:
            raise TypeSyntaxError("Type nesting is too deep", text=text) from None

        token = self._peek()
        if token.kind != END:
            raise TypeSyntaxError(f"Unexpected '{token.text}'", position=token.position, text=text)
        return node

    # Lexing

    def _tokenize(self, text: str) -> List[Token]:
        tokens = []
        pos = 0
        length = len(text)
        while pos < length:
            char = text[pos]
            if char.isspace():
                pos += 1
                continue
            if char in "(),=":
                tokens.append(Token(PUNCT, char, pos))
                pos += 1
                continue
            if char == "'":
                end = pos + 1
                while end < length and text[end] != "'":
                    end += 2 if text[end] == "\\" else 1
                if end >= length:
                    raise TypeSyntaxError("Unterminated string literal", position=pos, text=text)
                tokens.append(Token(STRING, text[pos:end + 1], pos))
                pos = end + 1
                continue
            match = _NUMBER_RE.match(text, pos)
            if match:
                tokens.append(Token(NUMBER, match.group(), pos))
                pos = match.end()
                continue
            match = _IDENT_RE.match(text, pos)
            if match:
                tokens.append(Token(IDENT, match.group(), pos))
                pos = match.end()
                continue
            raise TypeSyntaxError(f"Unexpected character '{char}'", position=pos, text=text)
        tokens.append(Token(END, "end of input", length))
        return tokens

    # Parsing

    def _peek(self, offset: int = 0) -> Token:
        index = min(self._index + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        if token.kind != END:
            self._index += 1
        return token

    def _expect(self, punct: str) -> Token:
        token = self._advance()
        if token.kind != PUNCT or token.text != punct:
            raise TypeSyntaxError(f"Expected '{punct}', got '{token.text}'", position=token.position, text=self._text)
        return token

    def _parse_type(self) -> TypeNode:
        token = self._peek()

        if token.kind == NUMBER:
            self._advance()
            return TypeNode(token.text)

        if token.kind == STRING:
            self._advance()
            if self._peek().kind == PUNCT and self._peek().text == "=":
                self._advance()
                value = self._advance()
                if value.kind != NUMBER:
                    raise TypeSyntaxError("Expected enum value", position=value.position, text=self._text)
                return TypeNode(f"{token.text} = {value.text}")
            return TypeNode(token.text)

        if token.kind != IDENT:
            raise TypeSyntaxError(f"Expected type name, got '{token.text}'", position=token.position, text=self._text)

        self._advance()
        field = None
        if self._peek().kind == IDENT:
            field = token.text
            token = self._advance()

        if self._peek().kind == PUNCT and self._peek().text == "(":
            self._advance()
            args = self._parse_arg_list()
            self._expect(")")
            return TypeNode(token.text, tuple(args), field)
        return TypeNode(token.text, (), field)

    def _parse_arg_list(self) -> List[TypeNode]:
        if self._peek().kind == PUNCT and self._peek().text == ")":
            return []

        args = [self._parse_type()]
        while self._peek().kind == PUNCT and self._peek().text == ",":
            self._advance()
            args.append(self._parse_type())
        return args


@lru_cache(maxsize=1024)
def parse_type(text: str) -> TypeNode:
    """Parse a type string, caching the immutable result."""
    return TypeParser().parse(text)
