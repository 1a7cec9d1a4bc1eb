from datetime import datetime, timezone

import pytest

from promxy.label import AddLabelClient, merge_label_sets, merge_label_values
from promxy.model import API, MatchType, Matcher, Range, Sample, Vector

NOW = datetime(2021, 1, 1, tzinfo=timezone.utc)


def _sample(labels):
    return Sample(metric=dict(labels), value=1.0, timestamp=100)


class StubAPI(API):
    def __init__(self):
        self.calls = []

    def label_names(self, matchers):
        self.calls.append(("label_names", matchers))
        return ["a"], None

    def label_values(self, label, matchers):
        self.calls.append(("label_values", label))
        return [], None

    def query(self, query, ts):
        self.calls.append(("query", query))
        return Vector([_sample({"__name__": "testmetric"})]), None

    def query_range(self, query, r):
        self.calls.append(("query_range", query))
        return Vector([_sample({"__name__": "testmetric"})]), None

    def series(self, matches, start, end):
        self.calls.append(("series", matches))
        return [{"__name__": "testmetric"}], None

    def get_value(self, start, end, matchers):
        self.calls.append(("get_value", matchers))
        return Vector([_sample({"__name__": "testmetric"})]), None


class FailingAPI(StubAPI):
    def query(self, query, ts):
        raise RuntimeError("boom")

    def label_names(self, matchers):
        raise RuntimeError("boom")


def test_merge_label_values():
    assert merge_label_values(["a"], ["b"]) == ["a", "b"]


@pytest.mark.parametrize(
    "a, b, merged",
    [
        (
            [{"__name__": "hosta"}],
            [{"__name__": "hostb"}],
            [{"__name__": "hosta"}, {"__name__": "hostb"}],
        ),
        ([{"__name__": "hosta"}], [], [{"__name__": "hosta"}]),
        ([{"__name__": "hosta"}], [{"__name__": "hosta"}], [{"__name__": "hosta"}]),
    ],
)
def test_merge_label_sets(a, b, merged):
    assert merge_label_sets(a, b) == merged


def test_key_is_labels():
    client = AddLabelClient(StubAPI(), {"a": "b"})
    assert client.key() == {"a": "b"}


def test_label_names_existing_label_not_duplicated():
    names, _ = AddLabelClient(StubAPI(), {"a": "b"}).label_names(None)
    assert names == ["a"]


def test_label_names_adds_missing_label():
    names, _ = AddLabelClient(StubAPI(), {"b": "1"}).label_names(None)
    assert names == ["a", "b"]


def test_label_values_adds_own_value():
    values, _ = AddLabelClient(StubAPI(), {"a": "b"}).label_values("a", None)
    assert values == ["b"]


def test_label_values_other_label_untouched():
    values, _ = AddLabelClient(StubAPI(), {"a": "b"}).label_values("other", None)
    assert values == []


def test_query_adds_labels():
    stub = StubAPI()
    value, _ = AddLabelClient(stub, {"a": "b"}).query("testmetric", NOW)
    assert value == Vector([_sample({"__name__": "testmetric", "a": "b"})])
    assert stub.calls == [("query", "testmetric")]


def test_query_strips_matching_matcher():
    stub = StubAPI()
    AddLabelClient(stub, {"a": "b"}).query('testmetric{a="b"}', NOW)
    assert stub.calls == [("query", "testmetric")]


def test_query_filtered_out_skips_downstream():
    stub = StubAPI()
    result = AddLabelClient(stub, {"a": "b"}).query('testmetric{a="c"}', NOW)
    assert result == (None, None)
    assert stub.calls == []


def test_query_range_adds_labels():
    value, _ = AddLabelClient(StubAPI(), {"a": "1"}).query_range("testmetric", Range())
    assert value == Vector([_sample({"__name__": "testmetric", "a": "1"})])


def test_series_adds_labels():
    labelsets, _ = AddLabelClient(StubAPI(), {"a": "b"}).series(["testmetric"], NOW, NOW)
    assert labelsets == [{"__name__": "testmetric", "a": "b"}]


def test_series_all_filtered_out():
    stub = StubAPI()
    result = AddLabelClient(stub, {"a": "b"}).series(['testmetric{a="x"}'], NOW, NOW)
    assert result == (None, None)
    assert stub.calls == []


def test_get_value_filters_matchers():
    stub = StubAPI()
    name = Matcher(MatchType.EQUAL, "__name__", "testmetric")
    value, _ = AddLabelClient(stub, {"a": "b"}).get_value(
        NOW, NOW, [Matcher(MatchType.EQUAL, "a", "b"), name]
    )
    assert stub.calls == [("get_value", [name])]
    assert value == Vector([_sample({"__name__": "testmetric", "a": "b"})])


def test_get_value_mismatch_returns_nothing():
    stub = StubAPI()
    result = AddLabelClient(stub, {"a": "b"}).get_value(
        NOW, NOW, [Matcher(MatchType.EQUAL, "a", "c")]
    )
    assert result == (None, None)
    assert stub.calls == []


def test_errors_propagate():
    client = AddLabelClient(FailingAPI(), {"a": "b"})
    with pytest.raises(RuntimeError):
        client.query("testmetric", NOW)
    with pytest.raises(RuntimeError):
        client.label_names(None)