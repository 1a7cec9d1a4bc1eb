"""API wrappers: time filters, time truncation, error swallowing, debug logging, recovery."""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .model import API, APILabels, Range

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LOG = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_ms(moment: datetime) -> datetime:
    """Truncate a datetime to whole milliseconds."""
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


def _outside(start: Optional[datetime], end: Optional[datetime], lo: datetime, hi: datetime) -> bool:
    """Whether ``[lo, hi]`` lies entirely outside the window ``[start, end]``."""
    return (start is not None and hi < start) or (end is not None and lo > end)


def _clamp(
    start: Optional[datetime], end: Optional[datetime], lo: datetime, hi: datetime
) -> Tuple[datetime, datetime]:
    if start is not None and lo < start:
        lo = start
    if end is not None and hi > end:
        hi = end
    return lo, hi


@dataclass
class PassthroughAPI(API):
    """Delegates every call to the wrapped API."""

    api: API

    def label_names(self, matchers):
        return self.api.label_names(matchers)

    def label_values(self, label, matchers):
        return self.api.label_values(label, matchers)

    def query(self, query, ts):
        return self.api.query(query, ts)

    def query_range(self, query, r):
        return self.api.query_range(query, r)

    def series(self, matches, start, end):
        return self.api.series(matches, start, end)

    def get_value(self, start, end, matchers):
        return self.api.get_value(start, end, matchers)


class _WindowFilter(PassthroughAPI):
    """Skips calls outside a time window; optionally clamps ranges to it."""

    truncate: bool = False

    def _window(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        raise NotImplementedError

    def query(self, query, ts):
        start, end = self._window()
        if _outside(start, end, ts, ts):
            return None, None
        return self.api.query(query, ts)

    def query_range(self, query, r):
        start, end = self._window()
        if _outside(start, end, r.start, r.end):
            return None, None
        if self.truncate:
            lo, hi = _clamp(start, end, r.start, r.end)
            r = dataclasses.replace(r, start=lo, end=hi)
        return self.api.query_range(query, r)

    def series(self, matches, start, end):
        window_start, window_end = self._window()
        if _outside(window_start, window_end, start, end):
            return None, None
        if self.truncate:
            start, end = _clamp(window_start, window_end, start, end)
        return self.api.series(matches, start, end)

    def get_value(self, start, end, matchers):
        window_start, window_end = self._window()
        if _outside(window_start, window_end, start, end):
            return None, None
        if self.truncate:
            start, end = _clamp(window_start, window_end, start, end)
        return self.api.get_value(start, end, matchers)


@dataclass
class AbsoluteTimeFilter(_WindowFilter):
    """Answers ``(None, None)`` for calls entirely outside ``[start, end]``.

    A bound of None is open. With ``truncate`` ranges are clamped to the window.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    truncate: bool = False

    def _window(self):
        return self.start, self.end

    def query(self, query, ts):
        return super().query(query, ts)

    def query_range(self, query, r):
        return super().query_range(query, r)

    def series(self, matches, start, end):
        return super().series(matches, start, end)

    def get_value(self, start, end, matchers):
        return super().get_value(start, end, matchers)


@dataclass
class RelativeTimeFilter(_WindowFilter):
    """Like ``AbsoluteTimeFilter`` with bounds given as offsets from the current time."""

    start: Optional[timedelta] = None
    end: Optional[timedelta] = None
    truncate: bool = False

    def _window(self):
        now = _now()
        start = now + self.start if self.start is not None else None
        end = now + self.end if self.end is not None else None
        return start, end

    def query(self, query, ts):
        return super().query(query, ts)

    def query_range(self, query, r):
        return super().query_range(query, r)

    def series(self, matches, start, end):
        return super().series(matches, start, end)

    def get_value(self, start, end, matchers):
        return super().get_value(start, end, matchers)


@dataclass
class TimeTruncate(PassthroughAPI):
    """Truncates all times to whole milliseconds so downstreams do not round them up."""

    def query(self, query, ts):
        return self.api.query(query, _truncate_ms(ts))

    def query_range(self, query, r):
        return self.api.query_range(
            query, Range(start=_truncate_ms(r.start), end=_truncate_ms(r.end), step=r.step)
        )

    def series(self, matches, start, end):
        return self.api.series(matches, _truncate_ms(start), _truncate_ms(end))

    def get_value(self, start, end, matchers):
        return self.api.get_value(_truncate_ms(start), _truncate_ms(end), matchers)


@dataclass
class IgnoreErrorAPI(APILabels):
    """Swallows every error of the wrapped API, answering ``(None, None)`` instead."""

    api: API

    @staticmethod
    def _swallow(call: Callable[[], Tuple[Any, Any]]):
        try:
            return call()
        except Exception:  # errors of this API are deliberately not considered
            return None, None

    def label_names(self, matchers):
        return self._swallow(lambda: self.api.label_names(matchers))

    def label_values(self, label, matchers):
        return self._swallow(lambda: self.api.label_values(label, matchers))

    def query(self, query, ts):
        return self._swallow(lambda: self.api.query(query, ts))

    def query_range(self, query, r):
        return self._swallow(lambda: self.api.query_range(query, r))

    def series(self, matches, start, end):
        return self._swallow(lambda: self.api.series(matches, start, end))

    def get_value(self, start, end, matchers):
        return self._swallow(lambda: self.api.get_value(start, end, matchers))

    def key(self):
        """The wrapped API's key, or None if it has none."""
        if isinstance(self.api, APILabels):
            return self.api.key()
        return None


@dataclass
class DebugAPI(API):
    """Logs every call to the wrapped API, with ``prefix_message`` as the message.

    The call is logged at DEBUG before and after; when TRACE is enabled the
    result, warnings and error are logged at TRACE afterwards instead.
    """

    api: API
    prefix_message: str = ""

    def _traced(self, fields: Dict[str, Any], call: Callable[[], Tuple[Any, Any]]):
        _LOG.debug("%s", self.prefix_message, extra={"fields": dict(fields)})
        started = time.monotonic()
        try:
            value, warnings = call()
        except Exception as exc:
            self._finish(fields, started, None, None, exc)
            raise
        self._finish(fields, started, value, warnings, None)
        return value, warnings

    def _finish(self, fields, started, value, warnings, error) -> None:
        fields["took"] = time.monotonic() - started
        if _LOG.isEnabledFor(TRACE):
            fields.update(value=value, warnings=warnings, error=error)
            _LOG.log(TRACE, "%s", self.prefix_message, extra={"fields": dict(fields)})
        else:
            _LOG.debug("%s", self.prefix_message, extra={"fields": dict(fields)})

    def label_names(self, matchers):
        return self._traced({"api": "LabelNames"}, lambda: self.api.label_names(matchers))

    def label_values(self, label, matchers):
        return self._traced(
            {"api": "LabelValues", "label": label},
            lambda: self.api.label_values(label, matchers),
        )

    def query(self, query, ts):
        return self._traced(
            {"api": "Query", "query": query, "ts": ts}, lambda: self.api.query(query, ts)
        )

    def query_range(self, query, r):
        return self._traced(
            {"api": "QueryRange", "query": query, "r": r},
            lambda: self.api.query_range(query, r),
        )

    def series(self, matches, start, end):
        return self._traced(
            {"api": "Series", "matches": matches, "startTime": start, "endTime": end},
            lambda: self.api.series(matches, start, end),
        )

    def get_value(self, start, end, matchers):
        return self._traced(
            {"api": "GetValue", "start": start, "end": end, "matchers": matchers},
            lambda: self.api.get_value(start, end, matchers),
        )


class RecoveredError(Exception):
    """An exception raised inside a wrapped API, caught by ``RecoverAPI``."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.cause = cause


@dataclass
class RecoverAPI(API):
    """Turns any exception raised by the wrapped API into a ``RecoveredError``."""

    api: Optional[API] = None

    @staticmethod
    def _recover(call: Callable[[], Tuple[Any, Any]]):
        try:
            return call()
        except RecoveredError:
            raise
        except Exception as exc:
            raise RecoveredError(exc) from exc

    def label_names(self, matchers):
        return self._recover(lambda: self.api.label_names(matchers))

    def label_values(self, label, matchers):
        return self._recover(lambda: self.api.label_values(label, matchers))

    def query(self, query, ts):
        return self._recover(lambda: self.api.query(query, ts))

    def query_range(self, query, r):
        return self._recover(lambda: self.api.query_range(query, r))

    def series(self, matches, start, end):
        return self._recover(lambda: self.api.series(matches, start, end))

    def get_value(self, start, end, matchers):
        return self._recover(lambda: self.api.get_value(start, end, matchers))