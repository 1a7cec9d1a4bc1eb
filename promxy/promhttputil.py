"""Helpers for matcher rendering, warning sets and merging query results."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .model import (
    Matrix,
    Sample,
    SampleStream,
    Scalar,
    String,
    Vector,
    fingerprint,
)


class WarningSet:
    """A de-duplicated, insertion-ordered set of warning strings."""

    def __init__(self) -> None:
        self._items: dict = {}

    def add_warnings(self, warnings: Optional[Iterable[str]]) -> None:
        """Add every warning in ``warnings`` (None is accepted)."""
        for warning in warnings or ():
            self.add_warning(warning)

    def add_warning(self, warning: str) -> None:
        """Add a single warning."""
        self._items[warning] = None

    def warnings(self) -> List[str]:
        """Return all contained warnings."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, warning: object) -> bool:
        return warning in self._items


def matcher_to_string(matchers) -> str:
    """Render matchers as a selector such as ``{__name__="up",job="x"}``."""
    return "{" + ",".join(str(matcher) for matcher in matchers) + "}"


def value_add_label_set(value, labelset) -> None:
    """Add the labels of ``labelset`` to every series of ``value`` in place."""
    if isinstance(value, Vector):
        for sample in value:
            sample.metric.update(labelset)
    elif isinstance(value, Matrix):
        for stream in value:
            if stream.metric is None:
                stream.metric = {}
            stream.metric.update(labelset)


def merge_values(anti_affinity: int, a, b):
    """Merge two query results of the same type, de-duplicating series."""
    if a is None:
        return b
    if b is None:
        return a
    if type(a) is not type(b):
        raise ValueError(f"mismatch type {type(a).__name__}!={type(b).__name__}")

    if isinstance(a, Scalar):
        return a if a.value != 0 and a.timestamp != 0 else b

    if isinstance(a, String):
        return a if a.value != "" and a.timestamp != 0 else b

    if isinstance(a, Vector):
        merged = Vector()
        positions: dict = {}

        def add_sample(sample: Sample) -> None:
            finger = fingerprint(sample.metric)
            if finger in positions:
                existing = merged[positions[finger]]
                if existing.value == 0:
                    existing.value = sample.value
            else:
                positions[finger] = len(merged)
                merged.append(sample)

        for sample in (*a, *b):
            add_sample(sample)
        return merged

    if isinstance(a, Matrix):
        merged = Matrix()
        positions = {}

        def add_stream(stream: SampleStream) -> None:
            finger = fingerprint(stream.metric)
            if finger in positions:
                index = positions[finger]
                merged[index] = merge_sample_stream(anti_affinity, merged[index], stream)
            else:
                positions[finger] = len(merged)
                merged.append(stream)

        for stream in (*a, *b):
            add_stream(stream)
        return merged

    raise ValueError(f"unknown type! {type(a).__name__}")


def merge_sample_stream(anti_affinity: int, a: SampleStream, b: SampleStream) -> SampleStream:
    """Merge two streams of one series, filling holes from the other.

    Points from the secondary stream are only taken if they are more than
    ``anti_affinity`` away from points already kept, to tolerate clock skew.
    """
    if fingerprint(a.metric) != fingerprint(b.metric):
        raise ValueError("cannot merge mismatch fingerprints")

    if not a.values:
        return b
    if not b.values:
        return a

    # Use the stream with more points as the base.
    if len(b.values) > len(a.values):
        a, b = b, a

    b_values = b.values
    merged: List = []
    b_offset = 0
    a_start_buffered = a.values[0].timestamp - anti_affinity

    if b_values[0].timestamp < a_start_buffered:
        for index, b_value in enumerate(b_values):
            b_offset = index
            if b_value.timestamp < a_start_buffered:
                merged.append(b_value)
            else:
                break

    for a_value in a.values:
        if not merged:
            merged.append(a_value)
            continue

        last_time = merged[-1].timestamp
        if a_value.timestamp - last_time > anti_affinity * 2:
            while b_offset < len(b_values):
                b_value = b_values[b_offset]
                if b_value.timestamp >= a_value.timestamp:
                    break
                if last_time + anti_affinity < b_value.timestamp < a_value.timestamp - anti_affinity:
                    merged.append(b_value)
                b_offset += 1
        merged.append(a_value)

    last_time = merged[-1].timestamp
    merged.extend(
        b_value for b_value in b_values[b_offset:] if b_value.timestamp > last_time + anti_affinity
    )

    return SampleStream(metric=a.metric, values=merged)