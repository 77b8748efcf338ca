"""Rendering of metric families in the OpenMetrics text format."""

from __future__ import annotations

import io
import math
from typing import IO, Iterator, Optional, Sequence, Union

from promexpo.dto import Exemplar, LabelPair, Metric, MetricFamily, MetricType, is_valid_legacy_name
from promexpo.text_create import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    escape_string,
    format_float,
    format_name,
)

_MIN_VALID_SECONDS = -62135596800
_MAX_VALID_SECONDS = 253402300800

_TYPE_NAMES = {
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "unknown",
    MetricType.HISTOGRAM: "histogram",
}


def format_openmetrics_float(value: float) -> str:
    """Format a float like format_float, but always with a '.' or an 'e'."""
    if value == 1:
        return "1.0"
    if value == 0:
        return "0.0"
    if value == -1:
        return "-1.0"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format_float(value)
    if "e" not in text and "." not in text:
        text += ".0"
    return text


def _name_and_label_pairs(
    name: str,
    labels: Sequence[LabelPair],
    extra_name: Optional[str] = None,
    extra_value: float = 0.0,
) -> str:
    head = ""
    parts: list[str] = []
    inside_braces = False
    if name:
        if is_valid_legacy_name(name):
            head = name
        else:
            inside_braces = True
            parts.append(format_name(name))

    if not labels and not extra_name:
        return f"{{{parts[0]}}}" if inside_braces else head

    parts.extend(
        f'{format_name(pair.name)}="{escape_string(pair.value, True)}"' for pair in labels
    )
    if extra_name:
        parts.append(f'{extra_name}="{format_openmetrics_float(extra_value)}"')
    return f"{head}{{{','.join(parts)}}}"


def _exemplar(exemplar: Exemplar) -> str:
    text = f" # {_name_and_label_pairs('', exemplar.label)} {format_openmetrics_float(exemplar.value)}"
    if exemplar.timestamp_ns is not None:
        seconds = exemplar.timestamp_ns // 1_000_000_000
        if not _MIN_VALID_SECONDS <= seconds < _MAX_VALID_SECONDS:
            raise ValueError(f"invalid exemplar timestamp {exemplar.timestamp_ns}ns")
        text += f" {format_openmetrics_float(exemplar.timestamp_ns / 1e9)}"
    return text


def _sample(
    name: str,
    suffix: str,
    metric: Metric,
    value: Union[float, int],
    *,
    as_int: bool = False,
    extra_name: Optional[str] = None,
    extra_value: float = 0.0,
    exemplar: Optional[Exemplar] = None,
) -> str:
    rendered = str(int(value)) if as_int else format_openmetrics_float(value)
    line = f"{_name_and_label_pairs(name + suffix, metric.label, extra_name, extra_value)} {rendered}"
    if metric.timestamp_ms is not None:
        line += f" {format_openmetrics_float(metric.timestamp_ms / 1000)}"
    if exemplar is not None and exemplar.label:
        line += _exemplar(exemplar)
    return line + "\n"


def _created(name: str, suffix_to_trim: str, metric: Metric, created_ns: int) -> str:
    if suffix_to_trim and name.endswith(suffix_to_trim):
        name = name[: -len(suffix_to_trim)]
    labels = _name_and_label_pairs(name + "_created", metric.label)
    return f"{labels} {format_openmetrics_float(created_ns / 1e9)}\n"


def _metric_lines(
    name: str, metric_type: MetricType, metric: Metric, with_created_lines: bool
) -> Iterator[str]:
    if metric_type == MetricType.COUNTER:
        counter = metric.counter
        if counter is None:
            raise ValueError(f"expected counter in metric {name} {metric}")
        yield _sample(name, "", metric, counter.value, exemplar=counter.exemplar)
        if with_created_lines and counter.created_timestamp_ns is not None:
            yield _created(name, "_total", metric, counter.created_timestamp_ns)
    elif metric_type == MetricType.GAUGE:
        if metric.gauge is None:
            raise ValueError(f"expected gauge in metric {name} {metric}")
        yield _sample(name, "", metric, metric.gauge.value)
    elif metric_type == MetricType.UNTYPED:
        if metric.untyped is None:
            raise ValueError(f"expected untyped in metric {name} {metric}")
        yield _sample(name, "", metric, metric.untyped.value)
    elif metric_type == MetricType.SUMMARY:
        summary = metric.summary
        if summary is None:
            raise ValueError(f"expected summary in metric {name} {metric}")
        for q in summary.quantile:
            yield _sample(
                name, "", metric, q.value, extra_name=QUANTILE_LABEL, extra_value=q.quantile
            )
        yield _sample(name, "_sum", metric, summary.sample_sum)
        yield _sample(name, "_count", metric, summary.sample_count, as_int=True)
        if with_created_lines and summary.created_timestamp_ns is not None:
            yield _created(name, "", metric, summary.created_timestamp_ns)
    elif metric_type == MetricType.HISTOGRAM:
        histogram = metric.histogram
        if histogram is None:
            raise ValueError(f"expected histogram in metric {name} {metric}")
        inf_seen = False
        for bucket in histogram.bucket:
            yield _sample(
                name, "_bucket", metric, bucket.cumulative_count, as_int=True,
                extra_name=BUCKET_LABEL, extra_value=bucket.upper_bound,
                exemplar=bucket.exemplar,
            )
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                inf_seen = True
        if not inf_seen:
            yield _sample(
                name, "_bucket", metric, histogram.sample_count, as_int=True,
                extra_name=BUCKET_LABEL, extra_value=math.inf,
            )
        yield _sample(name, "_sum", metric, histogram.sample_sum)
        yield _sample(name, "_count", metric, histogram.sample_count, as_int=True)
        if with_created_lines and histogram.created_timestamp_ns is not None:
            yield _created(name, "", metric, histogram.created_timestamp_ns)
    else:
        raise ValueError(f"unexpected type in metric {name} {metric}")


def _write(out: Union[IO[str], IO[bytes]], text: str) -> int:
    data = text.encode("utf-8", "surrogateescape")
    if isinstance(out, io.TextIOBase):
        out.write(text)
    else:
        out.write(data)
    return len(data)


def metric_family_to_openmetrics(
    out: Union[IO[str], IO[bytes]],
    family: MetricFamily,
    *,
    with_created_lines: bool = False,
    with_unit: bool = False,
) -> int:
    """Write ``family`` in OpenMetrics format to ``out``; return the bytes written.

    Counters lose their ``_total`` suffix in the comment lines; a counter
    without that suffix is typed ``unknown``. With ``with_unit`` a declared
    unit is written and appended to the name; with ``with_created_lines``
    ``_created`` lines are added where a created timestamp is set.
    The final ``# EOF`` line is written by finalize_openmetrics.
    """
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family}")

    metric_type = family.metric_type
    compliant = name
    if metric_type == MetricType.COUNTER and name.endswith("_total"):
        compliant = name[:-6]
    if with_unit and family.unit is not None and not compliant.endswith(f"_{family.unit}"):
        compliant = f"{compliant}_{family.unit}"

    if metric_type == MetricType.COUNTER:
        type_name: Optional[str] = "counter" if name.endswith("_total") else "unknown"
    else:
        type_name = _TYPE_NAMES.get(metric_type)
    if type_name is None:
        label = metric_type.name if isinstance(metric_type, MetricType) else str(metric_type)
        raise ValueError(f"unknown metric type {label}")
    metric_type = MetricType(metric_type)

    lines: list[str] = []
    if family.help is not None:
        lines.append(f"# HELP {format_name(compliant)} {escape_string(family.help, True)}\n")
    lines.append(f"# TYPE {format_name(compliant)} {type_name}\n")
    if with_unit and family.unit is not None:
        lines.append(f"# UNIT {format_name(compliant)} {escape_string(family.unit, True)}\n")

    if metric_type == MetricType.COUNTER and name.endswith("_total"):
        compliant += "_total"
    for metric in family.metric:
        lines.extend(_metric_lines(compliant, metric_type, metric, with_created_lines))
    return _write(out, "".join(lines))


def finalize_openmetrics(out: Union[IO[str], IO[bytes]]) -> int:
    """Write the closing ``# EOF`` line; return the bytes written."""
    return _write(out, "# EOF\n")