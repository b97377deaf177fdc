"""
Helpers for ClickHouse text literals such as ``[1, 2]``, ``{'a': 1}`` and ``(1, 'x')``.
"""

from typing import List, Optional

from clickhouse_http.types.parser import unescape_quoted

OPEN_BRACKETS = "[({"
CLOSE_BRACKETS = "])}"


def split_top_level(text: str, separator: str = ",") -> List[str]:
    """Split on a separator that is not inside quotes or brackets."""
    parts = []
    current = []
    depth = 0
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            current.append(char)
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            current.append(char)
        elif char == "'":
            in_string = not in_string
            current.append(char)
        elif char in OPEN_BRACKETS and not in_string:
            depth += 1
            current.append(char)
        elif char in CLOSE_BRACKETS and not in_string:
            depth -= 1
            current.append(char)
        elif char == separator and depth == 0 and not in_string:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def find_top_level(text: str, separator: str) -> Optional[int]:
    """Index of the first separator outside quotes and brackets."""
    depth = 0
    in_string = False
    escape_next = False
    for index, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
        elif char == "'":
            in_string = not in_string
        elif char in OPEN_BRACKETS and not in_string:
            depth += 1
        elif char in CLOSE_BRACKETS and not in_string:
            depth -= 1
        elif char == separator and depth == 0 and not in_string:
            return index
    return None


def unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
        return unescape_quoted(text[1:-1])
    return text


def strip_brackets(text: str, opening: str, closing: str) -> Optional[str]:
    """Inner text of a bracketed literal, or None if not bracketed."""
    text = text.strip()
    if len(text) >= 2 and text[0] == opening and text[-1] == closing:
        return text[1:-1]
    return None


def parse_element(text: str):
    """Unquote quoted scalars; ``NULL`` becomes None; nested literals stay as text."""
    if text == "NULL":
        return None
    if text.startswith("'"):
        return unquote(text)
    return text
