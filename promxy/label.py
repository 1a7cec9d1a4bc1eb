"""Merging of label results and a client that adds fixed labels to results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .labelfilter import filter_matchers, filter_query
from .model import API, APILabels, fingerprint
from .promhttputil import value_add_label_set


def merge_label_values(a: Optional[List[str]], b: Optional[List[str]]) -> List[str]:
    """Return ``a`` followed by the values of ``b`` not already present."""
    merged = list(a or [])
    seen = set(merged)
    for item in b or ():
        if item not in seen:
            merged.append(item)
            seen.add(item)
    return merged


def merge_label_sets(a: Optional[List[Dict[str, str]]], b: Optional[List[Dict[str, str]]]) -> List[Dict[str, str]]:
    """Return the label sets of ``a`` followed by those of ``b`` not already present."""
    merged = list(a or [])
    seen = {fingerprint(item) for item in merged}
    for item in b or ():
        finger = fingerprint(item)
        if finger not in seen:
            seen.add(finger)
            merged.append(item)
    return merged


@dataclass
class AddLabelClient(APILabels):
    """Proxies an API, applying ``labels`` as filters and adding them to every result."""

    api: API
    labels: Dict[str, str] = field(default_factory=dict)

    def key(self) -> Dict[str, str]:
        """The label set identifying this client."""
        return self.labels

    def label_names(self, matchers):
        names, warnings = self.api.label_names(matchers)
        names = list(names or [])
        names.extend(name for name in self.labels if name not in names)
        return names, warnings

    def label_values(self, label, matchers):
        values, warnings = self.api.label_values(label, matchers)
        if label in self.labels:
            return merge_label_values(values, [self.labels[label]]), warnings
        return values, warnings

    def query(self, query, ts):
        filtered = filter_query(self.labels, query)
        if filtered is None:
            return None, None
        value, warnings = self.api.query(filtered, ts)
        value_add_label_set(value, self.labels)
        return value, warnings

    def query_range(self, query, r):
        filtered = filter_query(self.labels, query)
        if filtered is None:
            return None, None
        value, warnings = self.api.query_range(filtered, r)
        value_add_label_set(value, self.labels)
        return value, warnings

    def series(self, matches, start, end):
        filtered = [
            rewritten
            for rewritten in (filter_query(self.labels, match) for match in matches)
            if rewritten is not None
        ]
        if not filtered:
            return None, None
        labelsets, warnings = self.api.series(filtered, start, end)
        for labelset in labelsets or ():
            labelset.update(self.labels)
        return labelsets, warnings

    def get_value(self, start, end, matchers):
        filtered = filter_matchers(self.labels, matchers)
        if filtered is None:
            return None, None
        value, warnings = self.api.get_value(start, end, filtered)
        value_add_label_set(value, self.labels)
        return value, warnings