"""Decoding of metric families from the wire and extraction of samples."""

from __future__ import annotations

import decimal
import math
from dataclasses import dataclass, field
from typing import IO, Iterable, Iterator, Mapping, Optional

from promexpo.dto import (
    MetricFamily,
    MetricType,
    _valid_utf8,
    is_valid_label_name,
    is_valid_metric_name,
    read_delimited,
)
from promexpo.formats import (
    FMT_PROTO_DELIM,
    FMT_TEXT,
    FMT_UNKNOWN,
    PROTO_PROTOCOL,
    PROTO_TYPE,
    TEXT_VERSION,
    Format,
    FormatType,
)

METRIC_NAME_LABEL = "__name__"
QUANTILE_LABEL = "quantile"
BUCKET_LABEL = "le"


@dataclass
class Sample:
    """One value of one series, timestamp in milliseconds."""

    metric: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: int = 0


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    parts = value.split(";")
    media = parts[0].strip().lower()
    if not media or "/" not in media:
        raise ValueError(f"invalid media type {value!r}")
    params: dict[str, str] = {}
    for part in parts[1:]:
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise ValueError(f"invalid media parameter {part!r}")
        key, val = part.split("=", 1)
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] == '"':
            val = val[1:-1]
        params[key.strip().lower()] = val
    return media, params


def response_format(headers: Optional[Mapping[str, str]]) -> Format:
    """Deduce the Format from a response's Content-Type header."""
    try:
        media, params = _parse_media_type(_header(headers, "Content-Type"))
    except ValueError:
        return FMT_UNKNOWN
    if media == PROTO_TYPE:
        if params.get("proto", PROTO_PROTOCOL) != PROTO_PROTOCOL:
            return FMT_UNKNOWN
        if params.get("encoding", "delimited") != "delimited":
            return FMT_UNKNOWN
        return FMT_PROTO_DELIM
    if media == "text/plain":
        if params.get("version", TEXT_VERSION) != TEXT_VERSION:
            return FMT_UNKNOWN
        return FMT_TEXT
    return FMT_UNKNOWN


class ProtoDecoder:
    """Reads length-delimited protocol buffer metric families from a stream."""

    def __init__(self, stream: IO[bytes], utf8: bool = False) -> None:
        self._stream = stream
        self._utf8 = utf8

    def decode(self) -> MetricFamily:
        """Return the next family; raise EOFError at the end of the stream."""
        family = read_delimited(self._stream)
        if family is None:
            raise EOFError("end of metric family stream")
        if not is_valid_metric_name(family.name, self._utf8):
            raise ValueError(f"invalid metric name {family.name!r}")
        for metric in family.metric:
            for pair in metric.label:
                if not _valid_utf8(pair.value):
                    raise ValueError(f"invalid label value {pair.value!r}")
                if not is_valid_label_name(pair.name, self._utf8):
                    raise ValueError(f"invalid label name {pair.name!r}")
        return family

    def __iter__(self) -> Iterator[MetricFamily]:
        while True:
            try:
                yield self.decode()
            except EOFError:
                return


def new_decoder(stream: IO[bytes], format: Format, utf8: bool = False) -> ProtoDecoder:
    """Return a decoder for ``format``; only the delimited protobuf format is supported."""
    if Format(format).format_type() == FormatType.PROTO_DELIM:
        return ProtoDecoder(stream, utf8)
    raise ValueError(f"no decoder available for format {format!r}")


def _go_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"
    sign, digits, exponent = decimal.Decimal(repr(float(value))).as_tuple()
    all_digits = "".join(map(str, digits))
    point = len(all_digits) + exponent
    significant = all_digits.lstrip("0")
    point -= len(all_digits) - len(significant)
    significant = significant.rstrip("0") or "0"
    prefix = "-" if sign else ""
    exp = point - 1
    if exp < -4 or exp >= 21:
        mantissa = significant[0]
        if len(significant) > 1:
            mantissa += "." + significant[1:]
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{significant}"
    if point >= len(significant):
        return f"{prefix}{significant}{'0' * (point - len(significant))}"
    return f"{prefix}{significant[:point]}.{significant[point:]}"


def _family_samples(family: MetricFamily, timestamp: int) -> list[Sample]:
    metric_type = family.metric_type
    if metric_type not in (
        MetricType.COUNTER, MetricType.GAUGE, MetricType.SUMMARY,
        MetricType.UNTYPED, MetricType.HISTOGRAM,
    ):
        raise ValueError(f"unknown metric family type {metric_type}")
    name = family.name
    samples: list[Sample] = []

    for metric in family.metric:
        base = {pair.name: pair.value for pair in metric.label}
        ts = timestamp if metric.timestamp_ms is None else metric.timestamp_ms

        def labels(metric_name: str, **extra: str) -> dict[str, str]:
            return {**base, **extra, METRIC_NAME_LABEL: metric_name}

        if metric_type in (MetricType.COUNTER, MetricType.GAUGE, MetricType.UNTYPED):
            holder = {
                MetricType.COUNTER: metric.counter,
                MetricType.GAUGE: metric.gauge,
                MetricType.UNTYPED: metric.untyped,
            }[MetricType(metric_type)]
            if holder is not None:
                samples.append(Sample(labels(name), holder.value, ts))
        elif metric_type == MetricType.SUMMARY:
            summary = metric.summary
            if summary is None:
                continue
            for q in summary.quantile:
                samples.append(
                    Sample(labels(name, **{QUANTILE_LABEL: _go_float(q.quantile)}), q.value, ts)
                )
            samples.append(Sample(labels(name + "_sum"), summary.sample_sum, ts))
            samples.append(Sample(labels(name + "_count"), float(summary.sample_count), ts))
        else:
            histogram = metric.histogram
            if histogram is None:
                continue
            inf_seen = False
            for bucket in histogram.bucket:
                if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                    inf_seen = True
                samples.append(Sample(
                    labels(name + "_bucket", **{BUCKET_LABEL: _go_float(bucket.upper_bound)}),
                    float(bucket.cumulative_count), ts,
                ))
            samples.append(Sample(labels(name + "_sum"), histogram.sample_sum, ts))
            count = float(histogram.sample_count)
            samples.append(Sample(labels(name + "_count"), count, ts))
            if not inf_seen:
                samples.append(
                    Sample(labels(name + "_bucket", **{BUCKET_LABEL: "+Inf"}), count, ts)
                )
    return samples


def extract_samples(
    families: Iterable[MetricFamily], timestamp: int = 0
) -> tuple[list[Sample], Optional[Exception]]:
    """Extract samples from all families; return them with the last error, if any.

    A family that fails is skipped and extraction continues with the rest.
    """
    result: list[Sample] = []
    last_error: Optional[Exception] = None
    for family in families:
        try:
            result.extend(_family_samples(family, timestamp))
        except ValueError as exc:
            last_error = exc
    return result, last_error


class SampleDecoder:
    """Wraps a family decoder and yields the samples of each family."""

    def __init__(self, decoder: ProtoDecoder, timestamp: int = 0) -> None:
        self.decoder = decoder
        self.timestamp = timestamp

    def decode(self) -> list[Sample]:
        """Return the samples of the next family; raise EOFError at the end."""
        return _family_samples(self.decoder.decode(), self.timestamp)

    def __iter__(self) -> Iterator[list[Sample]]:
        while True:
            try:
                yield self.decode()
            except EOFError:
                return