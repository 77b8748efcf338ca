"""Rendering of metric families in the classic Prometheus text format."""

from __future__ import annotations

import decimal
import io
import math
from typing import IO, Iterator, Optional, Sequence, Union

from promexpo.dto import LabelPair, Metric, MetricFamily, MetricType, is_valid_legacy_name

QUANTILE_LABEL = "quantile"
BUCKET_LABEL = "le"

_TYPE_NAMES = {
    MetricType.COUNTER: "counter",
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "untyped",
    MetricType.HISTOGRAM: "histogram",
}

_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n"})
_QUOTED_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n", '"': '\\"'})


def escape_string(value: str, include_double_quote: bool = False) -> str:
    """Escape backslashes and new lines, and double quotes if asked to."""
    return value.translate(_QUOTED_ESCAPES if include_double_quote else _ESCAPES)


def format_float(value: float) -> str:
    """Format a float as the shortest representation in %g style."""
    if value == 1:
        return "1"
    if value == 0:
        return "0"
    if value == -1:
        return "-1"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"

    sign, digits, exponent = decimal.Decimal(repr(float(value))).as_tuple()
    all_digits = "".join(map(str, digits))
    point = len(all_digits) + exponent
    significant = all_digits.lstrip("0")
    point -= len(all_digits) - len(significant)
    significant = significant.rstrip("0") or "0"
    prefix = "-" if sign else ""

    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = significant[0]
        if len(significant) > 1:
            mantissa += "." + significant[1:]
        exp_sign = "-" if exp < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{significant}"
    if point >= len(significant):
        return f"{prefix}{significant}{'0' * (point - len(significant))}"
    return f"{prefix}{significant[:point]}.{significant[point:]}"


def format_name(name: str) -> str:
    """Return ``name`` as-is if legacy-valid, otherwise quoted and escaped."""
    if is_valid_legacy_name(name):
        return name
    return f'"{escape_string(name, True)}"'


def _name_and_label_pairs(
    name: str,
    labels: Sequence[LabelPair],
    extra_name: Optional[str],
    extra_value: float,
) -> str:
    parts: list[str] = []
    inside_braces = False
    head = ""
    if name:
        if not is_valid_legacy_name(name):
            inside_braces = True
            parts.append(format_name(name))
        else:
            head = format_name(name)

    if not labels and not extra_name:
        return f"{{{parts[0]}}}" if inside_braces else head

    parts.extend(
        f'{format_name(pair.name)}="{escape_string(pair.value, True)}"' for pair in labels
    )
    if extra_name:
        parts.append(f'{extra_name}="{format_float(extra_value)}"')
    return f"{head}{{{','.join(parts)}}}"


def _sample(
    name: str,
    suffix: str,
    metric: Metric,
    value: float,
    extra_name: Optional[str] = None,
    extra_value: float = 0.0,
) -> str:
    line = f"{_name_and_label_pairs(name + suffix, metric.label, extra_name, extra_value)} {format_float(value)}"
    if metric.timestamp_ms is not None:
        line += f" {int(metric.timestamp_ms)}"
    return line + "\n"


def _metric_lines(name: str, metric_type: MetricType, metric: Metric) -> Iterator[str]:
    if metric_type == MetricType.COUNTER:
        if metric.counter is None:
            raise ValueError(f"expected counter in metric {name} {metric}")
        yield _sample(name, "", metric, metric.counter.value)
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
            yield _sample(name, "", metric, q.value, QUANTILE_LABEL, q.quantile)
        yield _sample(name, "_sum", metric, summary.sample_sum)
        yield _sample(name, "_count", metric, float(summary.sample_count))
    elif metric_type == MetricType.HISTOGRAM:
        histogram = metric.histogram
        if histogram is None:
            raise ValueError(f"expected histogram in metric {name} {metric}")
        inf_seen = False
        for bucket in histogram.bucket:
            yield _sample(
                name, "_bucket", metric, float(bucket.cumulative_count),
                BUCKET_LABEL, bucket.upper_bound,
            )
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                inf_seen = True
        if not inf_seen:
            yield _sample(
                name, "_bucket", metric, float(histogram.sample_count),
                BUCKET_LABEL, math.inf,
            )
        yield _sample(name, "_sum", metric, histogram.sample_sum)
        yield _sample(name, "_count", metric, float(histogram.sample_count))
    else:
        raise ValueError(f"unexpected type in metric {name} {metric}")


def _write(out: Union[IO[str], IO[bytes]], text: str) -> int:
    data = text.encode("utf-8", "surrogateescape")
    if isinstance(out, io.TextIOBase):
        out.write(text)
    else:
        out.write(data)
    return len(data)


def metric_family_to_text(out: Union[IO[str], IO[bytes]], family: MetricFamily) -> int:
    """Write ``family`` in text format to ``out``; return the bytes written.

    The input is assumed to be sanitized; samples keep their input order.
    Raises ValueError when the family is empty, unnamed, of an unknown type,
    or holds a metric that does not match its type.
    """
    if not family.metric:
        raise ValueError(f"MetricFamily has no metrics: {family}")
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family}")

    metric_type = family.metric_type
    type_name = _TYPE_NAMES.get(metric_type)
    if type_name is None:
        label = metric_type.name if isinstance(metric_type, MetricType) else str(metric_type)
        raise ValueError(f"unknown metric type {label}")
    metric_type = MetricType(metric_type)

    lines: list[str] = []
    if family.help is not None:
        lines.append(f"# HELP {format_name(name)} {escape_string(family.help, False)}\n")
    lines.append(f"# TYPE {format_name(name)} {type_name}\n")
    for metric in family.metric:
        lines.extend(_metric_lines(name, metric_type, metric))
    return _write(out, "".join(lines))