"""Iterators over the series contained in a query result."""

from __future__ import annotations

from typing import Iterator, List, Tuple

from .model import Matrix, Sample, SampleStream, Scalar, String, Vector


def iterators_for_value(value) -> List["SeriesIterator"]:
    """Return one iterator per series of ``value``."""
    if value is None:
        return []
    if isinstance(value, Scalar):
        return [SeriesIterator(value)]
    if isinstance(value, String):
        raise TypeError("string values cannot be iterated as series")
    if isinstance(value, (Vector, Matrix)):
        return [SeriesIterator(item) for item in value]
    raise TypeError(f"Unknown type {type(value).__name__}")


class SeriesIterator:
    """Steps through the points of a scalar, a sample or a sample stream."""

    def __init__(self, value) -> None:
        self.value = value
        self._offset = -1

    def _unknown(self) -> TypeError:
        return TypeError(f"Unknown data type {type(self.value).__name__}")

    def seek(self, t: int) -> bool:
        """Advance to the point at or after timestamp ``t``; return whether one exists."""
        value = self.value
        if isinstance(value, (Scalar, Sample)):
            return value.timestamp >= t
        if isinstance(value, SampleStream):
            if not value.values:
                return False
            start = max(self._offset, 0)
            for index, pair in enumerate(value.values[start:], start):
                self._offset = index
                if pair.timestamp >= t:
                    return True
            return False
        raise self._unknown()

    def at(self) -> Tuple[int, float]:
        """Return the current ``(timestamp, value)``."""
        value = self.value
        if isinstance(value, (Scalar, Sample)):
            return value.timestamp, float(value.value)
        if isinstance(value, SampleStream):
            if self._offset < 0:
                raise IndexError("iterator is not positioned on a point")
            pair = value.values[self._offset]
            return pair.timestamp, float(pair.value)
        raise self._unknown()

    def next(self) -> bool:
        """Advance by one point; return whether there was one."""
        value = self.value
        if isinstance(value, (Scalar, Sample)):
            if self._offset < 0:
                self._offset = 0
                return True
            return False
        if isinstance(value, SampleStream):
            if self._offset < len(value.values) - 1:
                self._offset += 1
                return True
            return False
        raise self._unknown()

    def labels(self) -> List[Tuple[str, str]]:
        """Return the series' labels as sorted ``(name, value)`` pairs."""
        value = self.value
        if isinstance(value, Scalar):
            raise TypeError("a scalar has no labels")
        if isinstance(value, (Sample, SampleStream)):
            return sorted((value.metric or {}).items())
        raise self._unknown()

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        while self.next():
            yield self.at()