import re
from datetime import timedelta

import pytest

from promxy.model import (
    API,
    APILabels,
    ErrorType,
    Matcher,
    MatchType,
    Matrix,
    PromAPIError,
    QueryCanceledError,
    QueryTimeoutError,
    Range,
    Sample,
    SamplePair,
    SampleStream,
    Scalar,
    Status,
    String,
    Vector,
    fingerprint,
    format_labelset,
)


def test_matcher_str_equal():
    assert str(Matcher(MatchType.EQUAL, "job", "prometheus")) == 'job="prometheus"'


def test_matcher_str_regex():
    assert str(Matcher(MatchType.REGEX, "__name__", ".+")) == '__name__=~".+"'


def test_matcher_str_escapes_quote():
    assert str(Matcher(MatchType.EQUAL, "a", 'x"y')) == 'a="x\\"y"'


@pytest.mark.parametrize(
    "mtype, pattern, value, expected",
    [
        (MatchType.EQUAL, "a", "a", True),
        (MatchType.EQUAL, "a", "b", False),
        (MatchType.NOT_EQUAL, "a", "b", True),
        (MatchType.NOT_EQUAL, "a", "a", False),
        (MatchType.REGEX, "a.*", "abc", True),
        (MatchType.REGEX, "a.*", "bab", False),
        (MatchType.NOT_REGEX, "a.*", "bab", True),
        (MatchType.NOT_REGEX, "a.*", "abc", False),
    ],
)
def test_matcher_matches(mtype, pattern, value, expected):
    assert Matcher(mtype, "l", pattern).matches(value) is expected


def test_matcher_invalid_regex():
    with pytest.raises(re.error):
        Matcher(MatchType.REGEX, "l", "(")


def test_fingerprint_order_independent():
    a = {"a": "1", "b": "2"}
    b = {"b": "2", "a": "1"}
    assert fingerprint(a) == fingerprint(b)


def test_fingerprint_distinguishes_boundaries():
    assert fingerprint({"a": "bc"}) != fingerprint({"ab": "c"})


def test_fingerprint_none_is_empty():
    assert fingerprint(None) == fingerprint({})


def test_fingerprint_differs_by_value():
    assert fingerprint({"a": "1"}) != fingerprint({"a": "2"})


def test_format_labelset_name_only():
    assert format_labelset({"__name__": "up"}) == "up"


def test_format_labelset_empty():
    assert format_labelset({}) == "{}"


def test_format_labelset_sorted():
    assert format_labelset({"__name__": "up", "b": "2", "a": "1"}) == 'up{a="1", b="2"}'


def test_sample_str_consistent_with_pair():
    metric = {"__name__": "testmetric"}
    sample = Sample(metric, 10.0, 100)
    assert str(sample) == f"{format_labelset(metric)} => {SamplePair(100, 10.0)}"


def test_integer_values_have_no_fraction():
    assert ".0" not in str(SamplePair(100, 10.0)).split(" ")[0]


def test_scalar_str_matches_pair():
    assert str(Scalar(10.0, 100)).removeprefix("scalar: ") == str(SamplePair(100, 10.0))


def test_string_str_prefix():
    assert str(String("a", 100)).startswith("string: a @[")


def test_vector_str_joins_lines():
    s1 = Sample({"__name__": "a"}, 1.0, 100)
    s2 = Sample({"__name__": "b"}, 2.0, 100)
    assert str(Vector([s1, s2])) == f"{s1}\n{s2}"


def test_matrix_str_is_order_independent():
    sa = SampleStream({"__name__": "a"}, [SamplePair(1, 1.0)])
    sb = SampleStream({"__name__": "b"}, [SamplePair(1, 1.0)])
    assert str(Matrix([sb, sa])) == str(Matrix([sa, sb]))


def test_range_defaults():
    r = Range()
    assert r.start == r.end
    assert r.step == timedelta(0)


def test_enums_from_wire_values():
    assert ErrorType("timeout") is ErrorType.TIMEOUT
    assert ErrorType("canceled") is ErrorType.CANCELED
    assert Status("success") is Status.SUCCESS


def test_query_errors_prefix():
    assert str(QueryTimeoutError("eval")) == QueryTimeoutError.PREFIX + "eval"
    assert str(QueryCanceledError("eval")) == QueryCanceledError.PREFIX + "eval"


def test_prom_api_error_fields():
    err = PromAPIError("bad_data", "broken", detail="{}")
    assert err.message == "broken"
    assert err.detail == "{}"
    assert "broken" in str(err)


def test_api_is_abstract():
    with pytest.raises(TypeError):
        API()


def test_api_labels_subclass_key():
    class _Stub(APILabels):
        def label_names(self, matchers):
            return ["a"], None

        def label_values(self, label, matchers):
            return [], None

        def query(self, query, ts):
            return None, None

        def query_range(self, query, r):
            return None, None

        def series(self, matches, start, end):
            return [], None

        def get_value(self, start, end, matchers):
            return None, None

        def key(self):
            return {"a": "b"}

    stub = _Stub()
    assert isinstance(stub, API)
    assert fingerprint(stub.key()) == fingerprint({"a": "b"})
    assert fingerprint(stub.key()) != fingerprint({"a": "c"})
    assert stub.label_names(None) == (["a"], None)