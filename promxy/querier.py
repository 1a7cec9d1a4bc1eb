"""A querier that answers storage selections by calling a downstream API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .iterators import SeriesIterator, iterators_for_value
from .model import API, Sample, Vector
from .promhttputil import matcher_to_string

_LOG = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _from_millis(ms: int) -> datetime:
    """Convert a millisecond timestamp into an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=ms)


def _cause(err: BaseException) -> BaseException:
    """Follow ``cause`` links down to the error that started it all."""
    seen = set()
    while id(err) not in seen:
        seen.add(id(err))
        inner = getattr(err, "cause", None)
        if not isinstance(inner, BaseException):
            break
        err = inner
    return err


def _warning_list(warnings) -> List[str]:
    return list(warnings or ())


@dataclass
class SelectHints:
    """Hints about a selection: its time range in milliseconds and the calling function."""

    start: int = 0
    end: int = 0
    step: int = 0
    func: str = ""


@dataclass
class Series:
    """One series of a selection, read through its iterator."""

    it: SeriesIterator

    def labels(self) -> List[Tuple[str, str]]:
        """The series' labels as sorted ``(name, value)`` pairs."""
        return self.it.labels()

    def iterator(self) -> SeriesIterator:
        """The iterator over the series' points."""
        return self.it


class SeriesSet:
    """A cursor over the series of a selection, with its warnings and error."""

    def __init__(
        self,
        series: Optional[Sequence[Series]] = None,
        warnings: Optional[Sequence[str]] = None,
        err: Optional[BaseException] = None,
    ) -> None:
        self._series: List[Series] = list(series or ())
        self._warnings: List[str] = list(warnings or ())
        self._err = err
        self._offset = 0

    def next(self) -> bool:
        """Move to the next series; return whether there was one."""
        if self._offset < len(self._series):
            self._offset += 1
            return True
        return False

    def at(self) -> Series:
        """The current series."""
        if self._offset == 0:
            raise IndexError("series set is not positioned on a series")
        return self._series[self._offset - 1]

    def err(self) -> Optional[BaseException]:
        """The error met while selecting, if any."""
        return self._err

    def warnings(self) -> List[str]:
        """Warnings for the whole set."""
        return list(self._warnings)

    def __iter__(self) -> Iterator[Series]:
        while self.next():
            yield self.at()


@dataclass
class ProxyQuerier:
    """Answers selections, label names and label values from ``client`` over ``[start, end]``."""

    client: API
    start: datetime
    end: datetime
    cfg: Any = None
    _closed: bool = field(default=False, init=False, repr=False)

    def select(self, sort_series: bool, hints: Optional[SelectHints], *args) -> SeriesSet:
        """Return the series matching the matchers in ``args``.

        Without hints, or for the ``series`` function, only label sets are
        fetched; otherwise the raw data in the hinted time range.
        """
        matchers = list(args)
        started = time.monotonic()
        try:
            warnings: List[str] = []
            if hints is None or hints.func == "series":
                matcher_string = matcher_to_string(matchers)
                try:
                    labelsets, raw_warnings = self.client.series(
                        [matcher_string], self.start, self.end
                    )
                except Exception as exc:
                    return SeriesSet(None, None, _cause(exc))
                warnings = _warning_list(raw_warnings)
                result = Vector(Sample(metric=labelset) for labelset in labelsets or ())
            else:
                try:
                    result, raw_warnings = self.client.get_value(
                        _from_millis(hints.start), _from_millis(hints.end), matchers
                    )
                except Exception as exc:
                    return SeriesSet(None, None, _cause(exc))
                warnings = _warning_list(raw_warnings)

            series = [Series(iterator) for iterator in iterators_for_value(result)]
            return SeriesSet(series, warnings, None)
        finally:
            _LOG.debug(
                "Select",
                extra={
                    "fields": {
                        "selectHints": hints,
                        "matchers": matchers,
                        "took": time.monotonic() - started,
                    }
                },
            )

    def _matcher_strings(self, matchers) -> Optional[List[str]]:
        if not matchers:
            return None
        return [matcher_to_string(list(matchers))]

    def label_values(self, name: str, *args) -> Tuple[List[str], List[str]]:
        """Return all values of label ``name`` and the warnings."""
        started = time.monotonic()
        try:
            try:
                result, raw_warnings = self.client.label_values(
                    name, self._matcher_strings(args)
                )
            except Exception as exc:
                raise _cause(exc) from exc
            return [str(value) for value in result or ()], _warning_list(raw_warnings)
        finally:
            _LOG.debug(
                "LabelValues",
                extra={
                    "fields": {
                        "name": name,
                        "matchers": list(args),
                        "took": time.monotonic() - started,
                    }
                },
            )

    def label_names(self, *args) -> Tuple[List[str], List[str]]:
        """Return all unique label names, sorted, and the warnings."""
        started = time.monotonic()
        try:
            names, raw_warnings = self.client.label_names(self._matcher_strings(args))
            return list(names or ()), _warning_list(raw_warnings)
        finally:
            _LOG.debug("LabelNames", extra={"fields": {"took": time.monotonic() - started}})

    def close(self) -> None:
        """Close the querier."""
        self._closed = True