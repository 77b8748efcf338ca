import io
import math

import pytest

from promexpo.dto import (
    Bucket,
    Counter,
    Gauge,
    Histogram,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    Quantile,
    Summary,
    Untyped,
)
from promexpo.text_create import (
    escape_string,
    format_float,
    format_name,
    metric_family_to_text,
)


def _labels(*pairs):
    return [LabelPair(name=n, value=v) for n, v in pairs]


def _histogram_buckets(with_inf):
    buckets = [
        Bucket(upper_bound=100, cumulative_count=123),
        Bucket(upper_bound=120, cumulative_count=412),
        Bucket(upper_bound=144, cumulative_count=592),
        Bucket(upper_bound=172.8, cumulative_count=1524),
    ]
    if with_inf:
        buckets.append(Bucket(upper_bound=math.inf, cumulative_count=2693))
    return buckets


HISTOGRAM_OUT = (
    "# HELP request_duration_microseconds The response latency.\n"
    "# TYPE request_duration_microseconds histogram\n"
    'request_duration_microseconds_bucket{le="100"} 123\n'
    'request_duration_microseconds_bucket{le="120"} 412\n'
    'request_duration_microseconds_bucket{le="144"} 592\n'
    'request_duration_microseconds_bucket{le="172.8"} 1524\n'
    'request_duration_microseconds_bucket{le="+Inf"} 2693\n'
    "request_duration_microseconds_sum 1.7560473e+06\n"
    "request_duration_microseconds_count 2693\n"
)

SCENARIOS = [
    (
        MetricFamily(
            name="name",
            help="two-line\n doc  str\\ing",
            type=MetricType.COUNTER,
            metric=[
                Metric(
                    label=_labels(("labelname", "val1"), ("basename", "basevalue")),
                    counter=Counter(value=math.nan),
                ),
                Metric(
                    label=_labels(("labelname", "val2"), ("basename", "basevalue")),
                    counter=Counter(value=0.23),
                    timestamp_ms=1234567890,
                ),
            ],
        ),
        "# HELP name two-line\\n doc  str\\\\ing\n"
        "# TYPE name counter\n"
        'name{labelname="val1",basename="basevalue"} NaN\n'
        'name{labelname="val2",basename="basevalue"} 0.23 1234567890\n',
    ),
    (
        MetricFamily(
            name="gauge_name",
            help='gauge\ndoc\nstr"ing',
            type=MetricType.GAUGE,
            metric=[
                Metric(
                    label=_labels(
                        ("name_1", "val with\nnew line"),
                        ("name_2", 'val with \\backslash and "quotes"'),
                    ),
                    gauge=Gauge(value=math.inf),
                ),
                Metric(
                    label=_labels(("name_1", "Björn"), ("name_2", "佖佥")),
                    gauge=Gauge(value=3.14e42),
                ),
            ],
        ),
        '# HELP gauge_name gauge\\ndoc\\nstr"ing\n'
        "# TYPE gauge_name gauge\n"
        'gauge_name{name_1="val with\\nnew line",name_2="val with \\\\backslash and \\"quotes\\""} +Inf\n'
        'gauge_name{name_1="Björn",name_2="佖佥"} 3.14e+42\n',
    ),
    (
        MetricFamily(
            name="gauge.name",
            help='gauge\ndoc\nstr"ing',
            type=MetricType.GAUGE,
            metric=[
                Metric(
                    label=_labels(
                        ("name.1", "val with\nnew line"),
                        ("name*2", 'val with \\backslash and "quotes"'),
                    ),
                    gauge=Gauge(value=math.inf),
                ),
                Metric(
                    label=_labels(("name.1", "Björn"), ("name*2", "佖佥")),
                    gauge=Gauge(value=3.14e42),
                ),
            ],
        ),
        '# HELP "gauge.name" gauge\\ndoc\\nstr"ing\n'
        '# TYPE "gauge.name" gauge\n'
        '{"gauge.name","name.1"="val with\\nnew line","name*2"="val with \\\\backslash and \\"quotes\\""} +Inf\n'
        '{"gauge.name","name.1"="Björn","name*2"="佖佥"} 3.14e+42\n',
    ),
    (
        MetricFamily(
            name="untyped_name",
            type=MetricType.UNTYPED,
            metric=[
                Metric(untyped=Untyped(value=-math.inf)),
                Metric(
                    label=_labels(("name_1", "value 1")),
                    untyped=Untyped(value=-1.23e-45),
                ),
            ],
        ),
        "# TYPE untyped_name untyped\n"
        "untyped_name -Inf\n"
        'untyped_name{name_1="value 1"} -1.23e-45\n',
    ),
    (
        MetricFamily(
            name="summary_name",
            help="summary docstring",
            type=MetricType.SUMMARY,
            metric=[
                Metric(
                    summary=Summary(
                        sample_count=42,
                        sample_sum=-3.4567,
                        quantile=[
                            Quantile(quantile=0.5, value=-1.23),
                            Quantile(quantile=0.9, value=0.2342354),
                            Quantile(quantile=0.99, value=0),
                        ],
                    )
                ),
                Metric(
                    label=_labels(("name_1", "value 1"), ("name_2", "value 2")),
                    summary=Summary(
                        sample_count=4711,
                        sample_sum=2010.1971,
                        quantile=[
                            Quantile(quantile=0.5, value=1),
                            Quantile(quantile=0.9, value=2),
                            Quantile(quantile=0.99, value=3),
                        ],
                    ),
                ),
            ],
        ),
        "# HELP summary_name summary docstring\n"
        "# TYPE summary_name summary\n"
        'summary_name{quantile="0.5"} -1.23\n'
        'summary_name{quantile="0.9"} 0.2342354\n'
        'summary_name{quantile="0.99"} 0\n'
        "summary_name_sum -3.4567\n"
        "summary_name_count 42\n"
        'summary_name{name_1="value 1",name_2="value 2",quantile="0.5"} 1\n'
        'summary_name{name_1="value 1",name_2="value 2",quantile="0.9"} 2\n'
        'summary_name{name_1="value 1",name_2="value 2",quantile="0.99"} 3\n'
        'summary_name_sum{name_1="value 1",name_2="value 2"} 2010.1971\n'
        'summary_name_count{name_1="value 1",name_2="value 2"} 4711\n',
    ),
    (
        MetricFamily(
            name="request_duration_microseconds",
            help="The response latency.",
            type=MetricType.HISTOGRAM,
            metric=[
                Metric(
                    histogram=Histogram(
                        sample_count=2693,
                        sample_sum=1756047.3,
                        bucket=_histogram_buckets(True),
                    )
                )
            ],
        ),
        HISTOGRAM_OUT,
    ),
    (
        MetricFamily(
            name="request_duration_microseconds",
            help="The response latency.",
            type=MetricType.HISTOGRAM,
            metric=[
                Metric(
                    histogram=Histogram(
                        sample_count=2693,
                        sample_sum=1756047.3,
                        bucket=_histogram_buckets(False),
                    )
                )
            ],
        ),
        HISTOGRAM_OUT,
    ),
    (
        MetricFamily(
            name="name",
            help="doc string",
            metric=[Metric(counter=Counter(value=-math.inf))],
        ),
        "# HELP name doc string\n"
        "# TYPE name counter\n"
        "name -Inf\n",
    ),
]


@pytest.mark.parametrize("family, expected", SCENARIOS)
def test_create(family, expected):
    out = io.StringIO()
    written = metric_family_to_text(out, family)
    assert out.getvalue() == expected
    assert written == len(expected.encode("utf-8"))


@pytest.mark.parametrize("family, expected", SCENARIOS)
def test_create_to_binary_stream(family, expected):
    out = io.BytesIO()
    written = metric_family_to_text(out, family)
    assert out.getvalue() == expected.encode("utf-8")
    assert written == len(out.getvalue())


@pytest.mark.parametrize(
    "family, message",
    [
        (
            MetricFamily(name="name", help="doc string", type=MetricType.COUNTER, metric=[]),
            "MetricFamily has no metrics",
        ),
        (
            MetricFamily(
                help="doc string",
                type=MetricType.UNTYPED,
                metric=[Metric(untyped=Untyped(value=-math.inf))],
            ),
            "MetricFamily has no name",
        ),
        (
            MetricFamily(
                name="name",
                help="doc string",
                type=MetricType.COUNTER,
                metric=[Metric(untyped=Untyped(value=-math.inf))],
            ),
            "expected counter in metric",
        ),
    ],
)
def test_create_error(family, message):
    with pytest.raises(ValueError) as info:
        metric_family_to_text(io.StringIO(), family)
    assert str(info.value).startswith(message)


def test_unknown_metric_type_is_rejected():
    family = MetricFamily(name="bad", type=42, metric=[Metric(gauge=Gauge(value=2.7))])
    with pytest.raises(ValueError, match="unknown metric type 42"):
        metric_family_to_text(io.StringIO(), family)


@pytest.mark.parametrize(
    "value, expected",
    [
        (1.0, "1"),
        (0.0, "0"),
        (-1.0, "-1"),
        (math.nan, "NaN"),
        (math.inf, "+Inf"),
        (-math.inf, "-Inf"),
        (0.23, "0.23"),
        (100.0, "100"),
        (172.8, "172.8"),
        (1756047.3, "1.7560473e+06"),
        (3.14e42, "3.14e+42"),
        (-1.23e-45, "-1.23e-45"),
        (0.0001, "0.0001"),
        (0.00001, "1e-05"),
        (123456.0, "123456"),
        (1234567890.0, "1.23456789e+09"),
    ],
)
def test_format_float(value, expected):
    assert format_float(value) == expected


def test_escape_string():
    value = 'a\\b\nc"d'
    assert escape_string(value, False) == 'a\\\\b\\nc"d'
    assert escape_string(value, True) == 'a\\\\b\\nc\\"d'


@pytest.mark.parametrize(
    "name, expected",
    [
        ("valid_name:x", "valid_name:x"),
        ("gauge.name", '"gauge.name"'),
        ('gauge.name"', '"gauge.name\\""'),
        ("1abc", '"1abc"'),
    ],
)
def test_format_name(name, expected):
    assert format_name(name) == expected