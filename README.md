# promxy

Building blocks for a Prometheus aggregating proxy. With them one query
interface can stand in front of many Prometheus servers. Each request
goes to all of them, their answers are merged, and servers that are down
or have gaps in their data are tolerated.

## Installation

```
pip install .
```

To run the test suite, install the test extra and run pytest:

```
pip install ".[test]"
pytest
```

## The client interface

Every client implements `promxy.model.API`. Its methods are
`label_names(matchers)`, `label_values(label, matchers)`,
`query(query, ts)`, `query_range(query, r)`, `series(matches, start, end)`
and `get_value(start, end, matchers)`. Each returns a
`(result, warnings)` tuple and raises on error. `APILabels` adds
`key()`, a label set that tells which clients are "the same" server
group.

## What is inside

- `promxy.model`: the data types.
  - Label matchers: `Matcher` and `MatchType`.
  - Value types: `Scalar`, `String`, `Vector` and `Matrix`, built from
    `Sample`, `SamplePair` and `SampleStream`.
  - Query ranges: `Range`.
  - The `Status` and `ErrorType` enums.
  - The errors `PromAPIError`, `QueryTimeoutError` and
    `QueryCanceledError`.
  - `fingerprint`, a 64-bit FNV-1a hash of a label set.
  - `format_labelset`.
- `promxy.promhttputil`:
  - `matcher_to_string` renders matchers as `{__name__="up",job="x"}`.
  - `merge_values` and `merge_sample_stream` merge results from several
    servers. An anti-affinity buffer keeps points that are too close
    together from being mixed.
  - `value_add_label_set`.
  - `WarningSet`.
- `promxy.labelfilter`:
  - `filter_matchers` applies matchers to a fixed label set.
  - `parse_matchers` parses a selector such as `up{job="x"}`.
  - `filter_query` rewrites the selectors inside a query. It returns
    `None` when a selector cannot match the label set.
- `promxy.label`:
  - `AddLabelClient` filters requests against a fixed set of labels and
    adds those labels to every result.
  - `merge_label_values` and `merge_label_sets`.
- `promxy.multi_api`:
  - `MultiAPI(apis, anti_affinity=0, metric_func=None, required_count=1)`
    calls all clients concurrently and merges what they return. Clients
    are grouped by `key()`. Each group needs at least `required_count`
    successes, otherwise `DownstreamError` is raised.
  - `normalize_prom_error` turns timeout or cancel responses into
    `QueryTimeoutError` or `QueryCanceledError`.
- `promxy.wrappers`: client decorators built on `PassthroughAPI`.
  - `AbsoluteTimeFilter` and `RelativeTimeFilter` skip requests that fall
    outside a time window.
  - `TimeTruncate` truncates times to milliseconds.
  - `IgnoreErrorAPI` swallows errors.
  - `DebugAPI` logs every call to the `promxy.wrappers` logger at DEBUG
    level, or at the extra `TRACE` level when that is enabled.
  - `RecoverAPI` wraps any exception in `RecoveredError`.
- `promxy.iterators`: `SeriesIterator` and `iterators_for_value`.
- `promxy.querier`: `ProxyQuerier`, `Series`, `SeriesSet` and
  `SelectHints`. Together they give a storage-querier view over any
  client.
- `promxy.config`:
  - `config_from_file` loads a YAML file into `Config`.
  - In `Config`, `prom_config` holds the Prometheus keys as plain data,
    `promxy` is a `PromxyConfig` and `web_config` is a `TLSConfig`.
  - Errors raise `ConfigError`.
  - `wrap_prom_reloadable`, `PromReloadableWrap` and `ApplyConfigFunc`
    apply a configuration to components when it is reloaded.
- `promxy.accesslog`:
  - `ApacheLoggingMiddleware` is a WSGI middleware that records each
    request as an `ApacheLogRecord`.
  - `log_to_writer` writes records as Apache-style lines and
    `log_json_to_writer` writes them as JSON lines.
  - `form_prefix` and `set_max_form_prefix` shorten the form values
    written to the log.
  - `KeyValueLogger` logs key/value pairs through `logging`.

## Examples

Merge two partial series:

```python
from promxy.model import Matrix, SampleStream, SamplePair
from promxy.promhttputil import merge_values

a = Matrix([SampleStream({"__name__": "up"}, [SamplePair(200, 1.0), SamplePair(400, 1.0)])])
b = Matrix([SampleStream({"__name__": "up"}, [SamplePair(100, 1.0), SamplePair(300, 1.0), SamplePair(500, 1.0)])])

merged = merge_values(20, a, b)
# one stream holding points at 100, 200, 300, 400 and 500
```

Fan out to two groups of servers and merge their answers. Here
`dc1_client` and `dc2_client` are your own `API` implementations:

```python
from promxy.label import AddLabelClient
from promxy.multi_api import MultiAPI

client = MultiAPI(
    [AddLabelClient(dc1_client, {"dc": "1"}), AddLabelClient(dc2_client, {"dc": "2"})],
    anti_affinity=0,
    required_count=1,
)
names, warnings = client.label_names(None)
```

## What this package does not do

- It has no command-line program and no HTTP server of its own.
  `ApacheLoggingMiddleware` wraps a WSGI application that you supply.
- It has no HTTP client for talking to Prometheus servers. Downstream
  clients are `API` implementations that you provide.
- It does not evaluate PromQL. `filter_query` only finds and rewrites
  the selectors in a query.
- `config_from_file` does not interpret the Prometheus settings or the
  `server_groups` entries. They are kept as the parsed YAML data.