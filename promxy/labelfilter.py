"""Filtering of label matchers and query selectors against a fixed label set."""

from __future__ import annotations

import re
import string
from typing import Dict, List, Optional, Sequence, Tuple

from .model import METRIC_NAME_LABEL, MatchType, Matcher


class ParseError(ValueError):
    """A query or selector could not be parsed."""


_IDENT_START = frozenset(string.ascii_letters + "_:")
_IDENT_CHARS = _IDENT_START | frozenset(string.digits)
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?[a-zA-Z0-9]*")
_QUOTES = "\"'`"
_OPERATORS = ("=~", "!~", "!=", "=")
_OPERATOR_TYPES = {op.value: op for op in MatchType}

_AGGREGATORS = frozenset(
    {
        "sum", "avg", "count", "min", "max", "group", "stddev", "stdvar",
        "topk", "bottomk", "count_values", "quantile",
    }
)
_KEYWORDS = frozenset({"and", "or", "unless", "atan2", "bool", "offset", "inf", "nan"})
_GROUPING = frozenset({"by", "without", "on", "ignoring", "group_left", "group_right"})

_SIMPLE_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r",
    "t": "\t", "v": "\v", "\\": "\\", "'": "'", '"': '"',
}
_HEX_WIDTHS = {"x": 2, "u": 4, "U": 8}

_MATCH_ALL = Matcher(MatchType.REGEX, METRIC_NAME_LABEL, ".+")


def filter_matchers(labelset: Dict[str, str], matchers: Sequence[Matcher]) -> Optional[List[Matcher]]:
    """Apply matchers on labels present in ``labelset`` and return the rest.

    Returns None when a matcher on a label of ``labelset`` does not match.
    If nothing remains, a matcher selecting every metric name is returned,
    as empty selectors are not allowed downstream.
    """
    remaining: List[Matcher] = []
    for matcher in matchers:
        if matcher.name in labelset:
            if not matcher.matches(labelset[matcher.name]):
                return None
        else:
            remaining.append(matcher)
    return remaining or [_MATCH_ALL]


def _peek(text: str, pos: int) -> str:
    return text[pos] if pos < len(text) else ""


def _skip_space(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _string_end(text: str, pos: int) -> int:
    quote = text[pos]
    index = pos + 1
    while index < len(text):
        char = text[index]
        if char == "\\" and quote != "`":
            index += 2
            continue
        if char == quote:
            return index + 1
        index += 1
    raise ParseError("unterminated quoted string")


def _brace_end(text: str, pos: int) -> int:
    index = pos + 1
    while index < len(text):
        char = text[index]
        if char in _QUOTES:
            index = _string_end(text, index)
            continue
        if char == "}":
            return index + 1
        index += 1
    raise ParseError("unclosed left brace")


def _unquote(token: str) -> str:
    quote, body = token[0], token[1:-1]
    if quote == "`":
        return body
    out: List[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char != "\\":
            out.append(char)
            index += 1
            continue
        index += 1
        escape = _peek(body, index)
        if escape in _SIMPLE_ESCAPES and escape:
            if escape in "'\"" and escape != quote:
                raise ParseError(f"invalid escape sequence \\{escape}")
            out.append(_SIMPLE_ESCAPES[escape])
            index += 1
        elif escape in _HEX_WIDTHS and escape:
            width = _HEX_WIDTHS[escape]
            digits = body[index + 1 : index + 1 + width]
            if len(digits) != width or any(d not in string.hexdigits for d in digits):
                raise ParseError(f"invalid escape sequence \\{escape}{digits}")
            try:
                out.append(chr(int(digits, 16)))
            except ValueError as exc:
                raise ParseError(f"invalid code point \\{escape}{digits}") from exc
            index += 1 + width
        elif escape and escape in string.octdigits:
            digits = body[index : index + 3]
            if len(digits) != 3 or any(d not in string.octdigits for d in digits):
                raise ParseError(f"invalid escape sequence \\{digits}")
            value = int(digits, 8)
            if value > 255:
                raise ParseError(f"invalid escape sequence \\{digits}")
            out.append(chr(value))
            index += 3
        else:
            raise ParseError(f"invalid escape sequence \\{escape}")
    return "".join(out)


def _make_matcher(match_type: MatchType, name: str, value: str) -> Matcher:
    try:
        return Matcher(match_type, name, value)
    except re.error as exc:
        raise ParseError(f"invalid regular expression {value!r}: {exc}") from exc


def _parse_label_matchers(text: str, pos: int) -> Tuple[List[Matcher], int]:
    """Parse ``{...}`` starting at ``pos``; return the matchers and the end offset."""
    matchers: List[Matcher] = []
    pos += 1
    while True:
        pos = _skip_space(text, pos)
        if _peek(text, pos) == "}":
            return matchers, pos + 1
        name_match = _LABEL_NAME_RE.match(text, pos)
        if name_match is None:
            raise ParseError(f"unexpected character in label matching expression at {pos}")
        name = name_match.group()
        pos = _skip_space(text, name_match.end())
        operator = next((op for op in _OPERATORS if text.startswith(op, pos)), None)
        if operator is None:
            raise ParseError(f"expected label matching operator after {name!r}")
        pos = _skip_space(text, pos + len(operator))
        if _peek(text, pos) not in _QUOTES or not _peek(text, pos):
            raise ParseError(f"expected quoted label value for {name!r}")
        end = _string_end(text, pos)
        matchers.append(_make_matcher(_OPERATOR_TYPES[operator], name, _unquote(text[pos:end])))
        pos = _skip_space(text, end)
        separator = _peek(text, pos)
        if separator == ",":
            pos += 1
        elif separator == "}":
            return matchers, pos + 1
        else:
            raise ParseError("unexpected character in label matching expression")


def _parse_selector(text: str) -> Tuple[str, List[Matcher]]:
    text = text.strip()
    pos = 0
    name = ""
    name_match = _METRIC_NAME_RE.match(text)
    if name_match is not None:
        name = name_match.group()
        pos = name_match.end()
    pos = _skip_space(text, pos)
    matchers: List[Matcher] = []
    if _peek(text, pos) == "{":
        matchers, pos = _parse_label_matchers(text, pos)
    elif not name:
        raise ParseError(f"invalid selector {text!r}")
    if _skip_space(text, pos) != len(text):
        raise ParseError(f"unexpected trailing text in selector {text!r}")

    if name:
        if any(m.name == METRIC_NAME_LABEL for m in matchers):
            raise ParseError(f"metric name must not be set twice: {name!r}")
        matchers.append(Matcher(MatchType.EQUAL, METRIC_NAME_LABEL, name))

    if all(m.matches("") for m in matchers):
        raise ParseError("vector selector must contain at least one non-empty matcher")
    return name, matchers


def parse_matchers(text: str) -> List[Matcher]:
    """Parse a selector such as ``up{job="x"}`` into its matchers.

    A metric name becomes an equality matcher on ``__name__``, placed last.
    """
    return _parse_selector(text)[1]


def _render_selector(name: str, matchers: Sequence[Matcher]) -> str:
    parts = sorted(
        str(m)
        for m in matchers
        if not (m.name == METRIC_NAME_LABEL and m.type is MatchType.EQUAL and m.value == name)
    )
    if not parts:
        return name
    return f"{name}{{{','.join(parts)}}}"


def _filter_selector(labelset: Dict[str, str], text: str) -> Optional[str]:
    name, matchers = _parse_selector(text)
    for matcher in matchers:
        if matcher.name == METRIC_NAME_LABEL and matcher.type is MatchType.EQUAL:
            name = matcher.value
    filtered = filter_matchers(labelset, matchers)
    if filtered is None:
        return None
    return _render_selector(name, filtered)


def filter_query(labelset: Dict[str, str], query: str) -> Optional[str]:
    """Rewrite every selector of ``query`` with matchers on ``labelset`` applied.

    Returns None if any selector cannot match ``labelset``; otherwise the query
    with those selectors replaced and the rest of the text left as it was.
    """
    pieces: List[str] = []
    copied = 0
    pos = 0
    expect_label_list = False
    length = len(query)

    def replace(start: int, end: int) -> bool:
        nonlocal copied
        rewritten = _filter_selector(labelset, query[start:end])
        if rewritten is None:
            return False
        pieces.append(query[copied:start])
        pieces.append(rewritten)
        copied = end
        return True

    while pos < length:
        char = query[pos]
        if char.isspace():
            pos += 1
            continue
        if char == "(" and expect_label_list:
            close = query.find(")", pos)
            if close == -1:
                raise ParseError("unclosed left parenthesis")
            pos = close + 1
            expect_label_list = False
            continue
        expect_label_list = False
        if char in _QUOTES:
            pos = _string_end(query, pos)
        elif char == "#":
            newline = query.find("\n", pos)
            pos = length if newline == -1 else newline + 1
        elif char == "[":
            close = query.find("]", pos)
            if close == -1:
                raise ParseError("unclosed left bracket")
            pos = close + 1
        elif char.isdigit() or (char == "." and _peek(query, pos + 1).isdigit()):
            pos = _NUMBER_RE.match(query, pos).end()
        elif char == "{":
            end = _brace_end(query, pos)
            if not replace(pos, end):
                return None
            pos = end
        elif char in _IDENT_START:
            end = pos
            while end < length and query[end] in _IDENT_CHARS:
                end += 1
            word = query[pos:end].lower()
            following = _skip_space(query, end)
            if word in _GROUPING:
                expect_label_list = True
                pos = end
            elif word in _KEYWORDS or word in _AGGREGATORS or _peek(query, following) == "(":
                pos = end
            else:
                if _peek(query, following) == "{":
                    end = _brace_end(query, following)
                if not replace(pos, end):
                    return None
                pos = end
        else:
            pos += 1

    pieces.append(query[copied:])
    return "".join(pieces)