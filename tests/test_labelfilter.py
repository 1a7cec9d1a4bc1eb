import pytest

from promxy.labelfilter import ParseError, filter_matchers, filter_query, parse_matchers
from promxy.model import MatchType, Matcher
from promxy.promhttputil import matcher_to_string


def test_filter_matchers_strips_matching_labels():
    name = Matcher(MatchType.EQUAL, "__name__", "testmetric")
    result = filter_matchers({"a": "1"}, [Matcher(MatchType.EQUAL, "a", "1"), name])
    assert result == [name]


def test_filter_matchers_mismatch_returns_none():
    matchers = [Matcher(MatchType.EQUAL, "a", "2")]
    assert filter_matchers({"a": "1"}, matchers) is None


def test_filter_matchers_regex_on_local_label():
    assert filter_matchers({"a": "1"}, [Matcher(MatchType.REGEX, "a", "[0-9]")]) is not None
    assert filter_matchers({"a": "x"}, [Matcher(MatchType.REGEX, "a", "[0-9]")]) is None


def test_filter_matchers_all_removed_gives_match_all():
    result = filter_matchers({"a": "1"}, [Matcher(MatchType.EQUAL, "a", "1")])
    assert matcher_to_string(result) == '{__name__=~".+"}'


def test_filter_matchers_without_labels_keeps_everything():
    matchers = [Matcher(MatchType.EQUAL, "job", "x"), Matcher(MatchType.NOT_EQUAL, "b", "y")]
    assert filter_matchers({}, matchers) == matchers


def test_parse_matchers_bare_name():
    assert parse_matchers("testmetric") == [Matcher(MatchType.EQUAL, "__name__", "testmetric")]


def test_parse_matchers_name_is_appended_last():
    result = parse_matchers('testmetric{job="prometheus", a!~"b"}')
    assert result == [
        Matcher(MatchType.EQUAL, "job", "prometheus"),
        Matcher(MatchType.NOT_REGEX, "a", "b"),
        Matcher(MatchType.EQUAL, "__name__", "testmetric"),
    ]


def test_parse_matchers_round_trip_through_string():
    text = '{__name__="scrape_duration_seconds",job="prometheus"}'
    assert matcher_to_string(parse_matchers(text)) == text


def test_parse_matchers_unescapes_values():
    result = parse_matchers('{job="a\\"b"}')
    assert result[0].value == 'a"b'


@pytest.mark.parametrize(
    "text",
    [
        "{}",
        '{a=""}',
        'foo{__name__="bar"}',
        '{a="b"',
        '{a~"b"}',
        '{a="b" c="d"}',
        '{a=~"("}',
    ],
)
def test_parse_matchers_errors(text):
    with pytest.raises(ParseError):
        parse_matchers(text)


def test_filter_query_plain_metric_unchanged():
    assert filter_query({"a": "b"}, "testmetric") == "testmetric"


def test_filter_query_removes_matching_label():
    assert filter_query({"a": "b"}, 'testmetric{a="b"}') == "testmetric"


def test_filter_query_mismatch_returns_none():
    assert filter_query({"a": "b"}, 'testmetric{a="c"}') is None


def test_filter_query_any_mismatch_drops_whole_query():
    assert filter_query({"a": "b"}, 'foo{a="b"} or bar{a="c"}') is None


def test_filter_query_only_local_label_becomes_match_all():
    assert filter_query({"a": "b"}, '{a="b"}') == '{__name__=~".+"}'


def test_filter_query_keeps_structure_around_selectors():
    query = 'sum by (a) (rate(foo{a="b",job="x"}[5m]))'
    assert filter_query({"a": "b"}, query) == query.replace('a="b",', "")


def test_filter_query_does_not_touch_functions_or_keywords():
    query = "sum without (job) (rate(foo[5m] offset 1h)) > bool 1e3"
    assert filter_query({"job": "x"}, query) == query


def test_filter_query_matrix_selector():
    query = 'foo{a="b"}[5m]'
    assert filter_query({"a": "b"}, query) == query.replace('{a="b"}', "")


def test_filter_query_unterminated_string_raises():
    with pytest.raises(ParseError):
        filter_query({}, 'foo{a="b}')