"""Fan-out of API calls to several downstream APIs and merging of their results."""

from __future__ import annotations

import json
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .label import merge_label_sets, merge_label_values
from .model import (
    API,
    APILabels,
    ErrorType,
    PromAPIError,
    QueryCanceledError,
    QueryTimeoutError,
    fingerprint,
)
from .promhttputil import WarningSet, merge_values

MultiAPIMetricFunc = Callable[[int, str, str, float], None]


class DownstreamError(Exception):
    """Not enough downstream APIs of some group answered successfully."""

    def __init__(self, cause: Optional[BaseException]) -> None:
        message = "Unable to fetch from downstream servers"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.cause = cause


def normalize_prom_error(err: Optional[BaseException]) -> Optional[BaseException]:
    """Turn a downstream API error into a timeout or cancel error where it is one.

    The response body kept in ``PromAPIError.detail`` is decoded; if it reports
    a timeout or a cancelation, the matching query error is returned. Anything
    else is returned unchanged.
    """
    if isinstance(err, PromAPIError):
        try:
            body = json.loads(err.detail)
        except (TypeError, ValueError):
            return err
        if not isinstance(body, dict):
            return err
        error_type = body.get("errorType", "")
        message = body.get("error", "")
        if not isinstance(message, str):
            message = str(message)
        if error_type == ErrorType.TIMEOUT.value:
            return QueryTimeoutError(message.removeprefix(QueryTimeoutError.PREFIX))
        if error_type == ErrorType.CANCELED.value:
            return QueryCanceledError(message.removeprefix(QueryCanceledError.PREFIX))
    return err


def _api_fingerprint(api: API) -> int:
    if isinstance(api, APILabels):
        key = api.key()
        if key is not None:
            return fingerprint(key)
    return 0


class MultiAPI(API):
    """Calls every wrapped API concurrently and merges the results.

    APIs are grouped by their ``key()``; each group needs at least
    ``required_count`` successful answers, otherwise the call fails.
    """

    def __init__(
        self,
        apis: Sequence[API],
        anti_affinity: int = 0,
        metric_func: Optional[MultiAPIMetricFunc] = None,
        required_count: int = 1,
    ) -> None:
        self.apis: List[API] = list(apis)
        self.anti_affinity = anti_affinity
        self.metric_func = metric_func
        self.required_count = required_count
        self._fingerprints = [_api_fingerprint(api) for api in self.apis]
        for count in Counter(self._fingerprints).values():
            if count < required_count:
                raise ValueError(
                    f"a group of downstream APIs has {count} members, "
                    f"fewer than the required {required_count}"
                )

    def _record_metric(self, index: int, api_name: str, status: str, took: float) -> None:
        if self.metric_func is not None:
            self.metric_func(index, api_name, status, took)

    def _call(self, index: int, api: API, api_name: str, call: Callable[[API], Tuple[Any, Any]]):
        started = time.monotonic()
        try:
            value, warnings = call(api)
        except Exception as exc:  # downstream failures are counted per group
            self._record_metric(index, api_name, "error", time.monotonic() - started)
            return None, None, normalize_prom_error(exc)
        self._record_metric(index, api_name, "success", time.monotonic() - started)
        return value, warnings, None

    def _collect(
        self,
        api_name: str,
        call: Callable[[API], Tuple[Any, Any]],
        merge: Callable[[Any, Any], Any],
    ) -> Tuple[Any, List[str]]:
        outstanding = Counter(self._fingerprints)
        successes: Counter = Counter()
        warnings = WarningSet()
        result = None
        last_error: Optional[BaseException] = None

        if self.apis:
            executor = ThreadPoolExecutor(max_workers=len(self.apis))
            try:
                futures = [
                    executor.submit(self._call, index, api, api_name, call)
                    for index, api in enumerate(self.apis)
                ]
                for future, finger in zip(futures, self._fingerprints):
                    value, warns, err = future.result()
                    warnings.add_warnings(warns)
                    outstanding[finger] -= 1
                    if err is not None:
                        # Not enough requests left to possibly succeed: stop waiting.
                        if outstanding[finger] + successes[finger] < self.required_count:
                            raise err
                        last_error = err
                    else:
                        successes[finger] += 1
                        result = merge(result, value)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        for finger in set(self._fingerprints):
            if successes[finger] < self.required_count:
                raise DownstreamError(last_error)

        return result, warnings.warnings()

    def label_values(self, label, matchers):
        def merge(acc, value):
            return value if acc is None else merge_label_values(acc, value)

        result, warnings = self._collect(
            "label_values", lambda api: api.label_values(label, matchers), merge
        )
        return (sorted(result) if result is not None else None), warnings

    def label_names(self, matchers):
        def merge(acc, value):
            return (acc or set()) | set(value or ())

        result, warnings = self._collect(
            "label_names", lambda api: api.label_names(matchers), merge
        )
        return sorted(result or ()), warnings

    def _merge_values(self, acc, value):
        return value if acc is None else merge_values(self.anti_affinity, acc, value)

    def query(self, query, ts):
        return self._collect("query", lambda api: api.query(query, ts), self._merge_values)

    def query_range(self, query, r):
        return self._collect(
            "query_range", lambda api: api.query_range(query, r), self._merge_values
        )

    def series(self, matches, start, end):
        def merge(acc, value):
            return value if acc is None else merge_label_sets(acc, value)

        return self._collect("series", lambda api: api.series(matches, start, end), merge)

    def get_value(self, start, end, matchers):
        return self._collect(
            "get_value", lambda api: api.get_value(start, end, matchers), self._merge_values
        )