# promexpo

Tools for writing Prometheus metrics in their exposition formats and for
reading them back from the length-delimited protocol-buffer format. The
package has no third-party dependencies.

## Modules

- `promexpo.formats`: the `Format` content-type strings, `FormatType`,
  `EscapingScheme`, `new_format`, `new_openmetrics_format` and
  `escaping_scheme_from_string`.
- `promexpo.dto`: the metric data model (`MetricFamily`, `Metric`,
  `Counter`, `Gauge`, `Untyped`, `Summary`, `Quantile`, `Histogram`,
  `Bucket`, `Exemplar`, `LabelPair`, `MetricType`), its protobuf binary
  encoding (`MetricFamily.to_bytes`, `MetricFamily.from_bytes`,
  `write_delimited`, `read_delimited`), protobuf text rendering
  (`MetricFamily.to_text_proto`) and name checks (`is_valid_legacy_name`,
  `is_valid_metric_name`, `is_valid_label_name`). Malformed binary input
  raises `WireFormatError`.
- `promexpo.text_create`: `metric_family_to_text`, plus the helpers
  `format_float`, `escape_string` and `format_name`.
- `promexpo.openmetrics_create`: `metric_family_to_openmetrics`,
  `finalize_openmetrics` and `format_openmetrics_float`.
- `promexpo.encode`: `negotiate`, `negotiate_including_openmetrics`,
  `Encoder` and `new_encoder`.
- `promexpo.decode`: `response_format`, `ProtoDecoder`, `new_decoder`,
  `SampleDecoder`, `Sample` and `extract_samples`.

## Writing metrics

```python
import io

from promexpo.dto import Counter, LabelPair, Metric, MetricFamily, MetricType
from promexpo.text_create import metric_family_to_text

family = MetricFamily(
    name="http_requests_total",
    help="Requests served.",
    type=MetricType.COUNTER,
    metric=[Metric(label=[LabelPair("code", "200")], counter=Counter(value=42))],
)

out = io.StringIO()
metric_family_to_text(out, family)
print(out.getvalue())
# # HELP http_requests_total Requests served.
# # TYPE http_requests_total counter
# http_requests_total{code="200"} 42
```

`metric_family_to_text` and `metric_family_to_openmetrics` accept a text or a
binary stream and return the number of UTF-8 bytes written. They raise
`ValueError` for a family with no name, an unknown type, or a metric that does
not match the family's type; the text writer also rejects a family with no
metrics. A family whose `type` is unset is treated as a counter.

In OpenMetrics output a counter's `_total` suffix is dropped from the `# HELP`,
`# TYPE` and `# UNIT` lines, and a counter without that suffix is typed
`unknown`. Timestamps on the data model are milliseconds (`Metric.timestamp_ms`)
or nanoseconds (`created_timestamp_ns`, `Exemplar.timestamp_ns`).

## Negotiating a format

Choose the format from the request's `Accept` header. `new_encoder` returns an
`Encoder` that works as a context manager, so the closing `# EOF` line that
OpenMetrics needs is written when the block ends:

```python
from promexpo.encode import negotiate_including_openmetrics, new_encoder

fmt = negotiate_including_openmetrics({"Accept": "application/openmetrics-text; version=1.0.0"})
with new_encoder(out, fmt, with_created_lines=True) as encoder:
    encoder.encode(family)
```

`negotiate` never picks OpenMetrics. Both fall back to the text format and add
an `escaping=` term: the one from the header if it names a known scheme,
otherwise `default_escaping` (`EscapingScheme.VALUE_ENCODING_ESCAPING` unless
given). `new_encoder` raises `ValueError` for a format it does not recognise.

Pass `with_unit=True` to write `# UNIT` lines and to add the unit to the metric
name as a suffix. `with_created_lines=True` adds `_created` lines where a
created timestamp is set. Both options only affect OpenMetrics output.

## Reading metrics

```python
from promexpo.decode import SampleDecoder, new_decoder, response_format

fmt = response_format({"Content-Type": content_type})
decoder = new_decoder(stream, fmt, utf8=False)
for samples in SampleDecoder(decoder, timestamp=now_ms):
    for sample in samples:
        print(sample.metric, sample.value, sample.timestamp)
```

Iterating a `ProtoDecoder` yields `MetricFamily` objects; iterating a
`SampleDecoder` yields one list of `Sample` objects per family. Samples that
carry no timestamp of their own get the one passed to `SampleDecoder`. With
`utf8=False` metric and label names must match the legacy pattern, otherwise
`decode` raises `ValueError`.

`extract_samples(families, timestamp)` returns a pair: the samples of every
family it could handle, and the last error met (or `None`).

## Names

Names that fit the legacy pattern `[a-zA-Z_:][a-zA-Z0-9_:]*` are written as they
are. Other names are written quoted, inside the braces. Whether names get
escaped first, and how, depends on the format's `escaping=` term; see
`EscapingScheme` and `Format.to_escaping_scheme`.

## What it does not do

There is no parser for the Prometheus text format or for OpenMetrics:
`new_decoder` only reads the length-delimited protobuf format and raises
`ValueError` for any other format. The package does not serve or scrape
metrics over HTTP; it works on header mappings and streams you supply.

## Running the tests

```
pip install -e ".[test]"
pytest
```