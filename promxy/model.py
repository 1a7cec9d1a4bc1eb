"""Core data model: label matchers, sample values, the API protocol and errors."""

from __future__ import annotations

import functools
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

METRIC_NAME_LABEL = "__name__"

LabelSet = Dict[str, str]

_FNV_OFFSET64 = 14695981039346656037
_FNV_PRIME64 = 1099511628211
_MASK64 = (1 << 64) - 1
_SEPARATOR_BYTE = 255

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class MatchType(Enum):
    """The kind of comparison a label matcher performs."""

    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX = "=~"
    NOT_REGEX = "!~"

    def __str__(self) -> str:
        return self.value


_QUOTE_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


def _quote(text: str) -> str:
    """Quote a string with backslash escapes for non-printable characters."""
    parts = []
    for ch in text:
        if ch in _QUOTE_ESCAPES:
            parts.append(_QUOTE_ESCAPES[ch])
        elif ch.isprintable():
            parts.append(ch)
        elif ord(ch) < 0x80:
            parts.append(f"\\x{ord(ch):02x}")
        elif ord(ch) < 0x10000:
            parts.append(f"\\u{ord(ch):04x}")
        else:
            parts.append(f"\\U{ord(ch):08x}")
    return '"' + "".join(parts) + '"'


def _format_float(value: float) -> str:
    """Shortest decimal form of a float, without exponent."""
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _format_time(timestamp: int) -> str:
    return _format_float(timestamp / 1000)


@dataclass(frozen=True)
class Matcher:
    """A label matcher such as ``job="prometheus"``."""

    type: MatchType
    name: str
    value: str
    _regex: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.type in (MatchType.REGEX, MatchType.NOT_REGEX):
            object.__setattr__(self, "_regex", re.compile(self.value))

    def matches(self, value: str) -> bool:
        """Return whether the given label value satisfies this matcher."""
        if self.type is MatchType.EQUAL:
            return value == self.value
        if self.type is MatchType.NOT_EQUAL:
            return value != self.value
        matched = self._regex.fullmatch(value) is not None
        return matched if self.type is MatchType.REGEX else not matched

    def __str__(self) -> str:
        return f"{self.name}{self.type.value}{_quote(self.value)}"


def fingerprint(labelset: Optional[LabelSet]) -> int:
    """Order-independent 64-bit FNV-1a fingerprint of a label set."""
    h = _FNV_OFFSET64
    for name in sorted(labelset or {}):
        for chunk in (name, labelset[name]):
            for byte in chunk.encode("utf-8"):
                h = ((h ^ byte) * _FNV_PRIME64) & _MASK64
            h = ((h ^ _SEPARATOR_BYTE) * _FNV_PRIME64) & _MASK64
    return h


def format_labelset(labelset: Optional[LabelSet]) -> str:
    """Render a metric as ``name{label="value", ...}``."""
    labelset = labelset or {}
    name = labelset.get(METRIC_NAME_LABEL)
    pairs = sorted(
        f"{key}={_quote(val)}" for key, val in labelset.items() if key != METRIC_NAME_LABEL
    )
    if not pairs:
        return name if name is not None else "{}"
    return f"{name or ''}{{{', '.join(pairs)}}}"


def _labelset_compare(a: Optional[LabelSet], b: Optional[LabelSet]) -> int:
    a = a or {}
    b = b or {}
    if len(a) != len(b):
        return -1 if len(a) < len(b) else 1
    for name in sorted(list(a) + list(b)):
        if name not in a:
            return -1
        if name not in b:
            return 1
        if a[name] != b[name]:
            return -1 if a[name] < b[name] else 1
    return 0


@dataclass
class SamplePair:
    """A timestamp (milliseconds) and value."""

    timestamp: int = 0
    value: float = 0.0

    def __str__(self) -> str:
        return f"{_format_float(self.value)} @[{_format_time(self.timestamp)}]"


@dataclass
class Sample:
    """A single sample of one series."""

    metric: LabelSet = field(default_factory=dict)
    value: float = 0.0
    timestamp: int = 0

    def __str__(self) -> str:
        return f"{format_labelset(self.metric)} => {SamplePair(self.timestamp, self.value)}"


@dataclass
class SampleStream:
    """A series with a list of samples."""

    metric: Optional[LabelSet] = field(default_factory=dict)
    values: List[SamplePair] = field(default_factory=list)

    def __str__(self) -> str:
        points = "\n".join(str(pair) for pair in self.values)
        return f"{format_labelset(self.metric)} =>\n{points}"


@dataclass
class Scalar:
    """A scalar query result."""

    value: float = 0.0
    timestamp: int = 0

    def __str__(self) -> str:
        return f"scalar: {_format_float(self.value)} @[{_format_time(self.timestamp)}]"


@dataclass
class String:
    """A string query result."""

    value: str = ""
    timestamp: int = 0

    def __str__(self) -> str:
        return f"string: {self.value} @[{_format_time(self.timestamp)}]"


class Vector(list):
    """A list of samples sharing one evaluation time."""

    def __str__(self) -> str:
        return "\n".join(str(sample) for sample in self)


class Matrix(list):
    """A list of sample streams."""

    def __str__(self) -> str:
        ordered = sorted(
            self,
            key=functools.cmp_to_key(lambda x, y: _labelset_compare(x.metric, y.metric)),
        )
        return "\n".join(str(stream) for stream in ordered)


@dataclass
class Range:
    """A query range with a resolution step."""

    start: datetime = _ZERO_TIME
    end: datetime = _ZERO_TIME
    step: timedelta = timedelta(0)


class API(ABC):
    """A queryable Prometheus-like backend.

    Every method returns a ``(result, warnings)`` tuple and raises on error.
    """

    @abstractmethod
    def label_names(self, matchers):
        """Return all unique label names, sorted."""

    @abstractmethod
    def label_values(self, label, matchers):
        """Return the values of the given label."""

    @abstractmethod
    def query(self, query, ts):
        """Evaluate an instant query at ``ts``."""

    @abstractmethod
    def query_range(self, query, r):
        """Evaluate a query over a ``Range``."""

    @abstractmethod
    def series(self, matches, start, end):
        """Return label sets of series matching the selectors."""

    @abstractmethod
    def get_value(self, start, end, matchers):
        """Return raw data for the matchers in the time range."""


class APILabels(API):
    """An API with a key identifying which APIs are "the same"."""

    @abstractmethod
    def key(self):
        """Return the label set that identifies this API, or None."""


class Status(str, Enum):
    """Response status of the HTTP API."""

    SUCCESS = "success"
    ERROR = "error"


class ErrorType(str, Enum):
    """Error type reported by the HTTP API."""

    NONE = ""
    TIMEOUT = "timeout"
    CANCELED = "canceled"
    EXEC = "execution"
    BAD_DATA = "bad_data"
    INTERNAL = "internal"


class PromAPIError(Exception):
    """An error returned by a downstream HTTP API; ``detail`` holds the response body."""

    def __init__(self, error_type: str, message: str, detail: str = "") -> None:
        super().__init__(f"{error_type}: {message}")
        self.error_type = error_type
        self.message = message
        self.detail = detail


class QueryTimeoutError(Exception):
    """A query timed out."""

    PREFIX = "query timed out in "

    def __init__(self, where: str) -> None:
        super().__init__(self.PREFIX + where)
        self.where = where


class QueryCanceledError(Exception):
    """A query was canceled."""

    PREFIX = "query was canceled in "

    def __init__(self, where: str) -> None:
        super().__init__(self.PREFIX + where)
        self.where = where