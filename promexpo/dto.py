"""Metric family data model and its protocol buffer wire encoding."""

from __future__ import annotations

import enum
import re
import struct
from dataclasses import dataclass, field
from typing import IO, Any, ClassVar, NamedTuple, Optional, Union

_MASK64 = (1 << 64) - 1
_LEGACY_METRIC_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LEGACY_LABEL_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class WireFormatError(ValueError):
    """Raised for malformed protocol buffer input."""


class MetricType(enum.IntEnum):
    COUNTER = 0
    GAUGE = 1
    SUMMARY = 2
    UNTYPED = 3
    HISTOGRAM = 4
    GAUGE_HISTOGRAM = 5


def _valid_utf8(value: str) -> bool:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def is_valid_legacy_name(name: str) -> bool:
    """True if ``name`` matches the legacy metric name pattern."""
    return bool(name) and _LEGACY_METRIC_RE.fullmatch(name) is not None


def is_valid_metric_name(name: str, utf8: bool = False) -> bool:
    """Check a metric name under legacy or UTF-8 validation."""
    if utf8:
        return bool(name) and _valid_utf8(name)
    return is_valid_legacy_name(name)


def is_valid_label_name(name: str, utf8: bool = False) -> bool:
    """Check a label name under legacy or UTF-8 validation."""
    if utf8:
        return bool(name) and _valid_utf8(name)
    return bool(name) and _LEGACY_LABEL_RE.fullmatch(name) is not None


# --- wire primitives -------------------------------------------------------

def _varint(value: int) -> bytes:
    value &= _MASK64
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = shift = 0
    while True:
        if pos >= len(data):
            raise WireFormatError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _MASK64, pos
        shift += 7
        if shift >= 70:
            raise WireFormatError("varint too long")


def _signed(value: int, bits: int = 64) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _iter_fields(data: bytes):
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire = key >> 3, key & 7
        if number == 0:
            raise WireFormatError("invalid field number 0")
        if wire == 0:
            value, pos = _read_varint(data, pos)
        elif wire == 1:
            if pos + 8 > len(data):
                raise WireFormatError("truncated fixed64")
            value, pos = data[pos:pos + 8], pos + 8
        elif wire == 2:
            length, pos = _read_varint(data, pos)
            if pos + length > len(data):
                raise WireFormatError("truncated length-delimited field")
            value, pos = data[pos:pos + length], pos + length
        elif wire == 5:
            if pos + 4 > len(data):
                raise WireFormatError("truncated fixed32")
            value, pos = data[pos:pos + 4], pos + 4
        else:
            raise WireFormatError(f"unsupported wire type {wire}")
        yield number, wire, value


def _encode_timestamp(ns: int) -> bytes:
    seconds, nanos = divmod(ns, 1_000_000_000)
    out = b""
    if seconds:
        out += b"\x08" + _varint(seconds)
    if nanos:
        out += b"\x10" + _varint(nanos)
    return out


def _decode_timestamp(data: bytes) -> int:
    seconds = nanos = 0
    for number, wire, value in _iter_fields(data):
        if number == 1 and wire == 0:
            seconds = _signed(value)
        elif number == 2 and wire == 0:
            nanos = _signed(value, 32)
    return seconds * 1_000_000_000 + nanos


def _text_string(value: str) -> str:
    out = ['"']
    for b in value.encode("utf-8", "surrogateescape").decode("utf-8", "surrogateescape"):
        code = ord(b)
        if b == '"':
            out.append('\\"')
        elif b == "\\":
            out.append("\\\\")
        elif b == "\n":
            out.append("\\n")
        elif b == "\r":
            out.append("\\r")
        elif b == "\t":
            out.append("\\t")
        elif code < 0x20 or code == 0x7F:
            out.append(f"\\{code:03o}")
        elif 0xDC80 <= code <= 0xDCFF:
            out.append(f"\\{code - 0xDC00:03o}")
        else:
            out.append(b)
    out.append('"')
    return "".join(out)


def _text_double(value: float) -> str:
    if value != value:
        return "nan"
    if value in (float("inf"), float("-inf")):
        return "inf" if value > 0 else "-inf"
    text = repr(value)
    return text[:-2] if text.endswith(".0") else text


class _Field(NamedTuple):
    number: int
    attr: str
    kind: str
    message: Any = None
    repeated: bool = False


class _Message:
    """Generic protocol buffer encoding driven by a field table."""

    _FIELDS: ClassVar[tuple[_Field, ...]] = ()

    def to_bytes(self) -> bytes:
        """Serialize to the protocol buffer binary format."""
        out = bytearray()
        for f in self._FIELDS:
            value = getattr(self, f.attr)
            values = value if f.repeated else ([] if value is None else [value])
            for item in values:
                out += self._encode_one(f, item)
        return bytes(out)

    @staticmethod
    def _encode_one(f: _Field, item: Any) -> bytes:
        if f.kind == "string":
            raw = item.encode("utf-8", "surrogateescape")
            return _varint(f.number << 3 | 2) + _varint(len(raw)) + raw
        if f.kind == "double":
            return _varint(f.number << 3 | 1) + struct.pack("<d", item)
        if f.kind in ("uint64", "int64", "enum"):
            return _varint(f.number << 3) + _varint(int(item))
        raw = _encode_timestamp(item) if f.kind == "timestamp" else item.to_bytes()
        return _varint(f.number << 3 | 2) + _varint(len(raw)) + raw

    @classmethod
    def from_bytes(cls, data: bytes):
        """Parse the protocol buffer binary format; unknown fields are skipped."""
        msg = cls()
        by_number = {f.number: f for f in cls._FIELDS}
        for number, wire, value in _iter_fields(bytes(data)):
            f = by_number.get(number)
            if f is None:
                continue
            expected = {"double": 1, "uint64": 0, "int64": 0, "enum": 0}.get(f.kind, 2)
            if wire != expected:
                raise WireFormatError(f"field {f.attr} has wire type {wire}, expected {expected}")
            if f.kind == "string":
                parsed: Any = value.decode("utf-8", "surrogateescape")
            elif f.kind == "double":
                parsed = struct.unpack("<d", value)[0]
            elif f.kind == "uint64":
                parsed = value
            elif f.kind == "int64":
                parsed = _signed(value)
            elif f.kind == "enum":
                number_value = _signed(value, 32)
                try:
                    parsed = MetricType(number_value)
                except ValueError:
                    parsed = number_value
            elif f.kind == "timestamp":
                parsed = _decode_timestamp(value)
            else:
                parsed = f.message.from_bytes(value)
            if f.repeated:
                getattr(msg, f.attr).append(parsed)
            else:
                setattr(msg, f.attr, parsed)
        return msg

    def _text_items(self) -> list[tuple[str, Any]]:
        items: list[tuple[str, Any]] = []
        for f in self._FIELDS:
            value = getattr(self, f.attr)
            values = value if f.repeated else ([] if value is None else [value])
            for item in values:
                if f.kind == "string":
                    items.append((f.attr, _text_string(item)))
                elif f.kind == "double":
                    items.append((f.attr, _text_double(item)))
                elif f.kind in ("uint64", "int64"):
                    items.append((f.attr, str(item)))
                elif f.kind == "enum":
                    items.append((f.attr, item.name if isinstance(item, MetricType) else str(item)))
                elif f.kind == "timestamp":
                    seconds, nanos = divmod(item, 1_000_000_000)
                    sub = [(k, str(v)) for k, v in (("seconds", seconds), ("nanos", nanos)) if v]
                    items.append((f.attr, sub))
                else:
                    items.append((f.attr, item._text_items()))
        return items

    def to_text_proto(self, compact: bool = False) -> str:
        """Render in protocol buffer text format, multi-line or compact."""
        if compact:
            return _render_compact(self._text_items())
        return "\n".join(_render_lines(self._text_items(), 0))


def _render_compact(items: list[tuple[str, Any]]) -> str:
    parts = []
    for name, value in items:
        if isinstance(value, list):
            parts.append(f"{name}:{{{_render_compact(value)}}}")
        else:
            parts.append(f"{name}:{value}")
    return " ".join(parts)


def _render_lines(items: list[tuple[str, Any]], depth: int) -> list[str]:
    pad = "  " * depth
    lines = []
    for name, value in items:
        if isinstance(value, list):
            lines.append(f"{pad}{name}: {{")
            lines.extend(_render_lines(value, depth + 1))
            lines.append(f"{pad}}}")
        else:
            lines.append(f"{pad}{name}: {value}")
    return lines


@dataclass
class LabelPair(_Message):
    name: str = ""
    value: str = ""


@dataclass
class Exemplar(_Message):
    label: list[LabelPair] = field(default_factory=list)
    value: float = 0.0
    timestamp_ns: Optional[int] = None


@dataclass
class Counter(_Message):
    value: float = 0.0
    exemplar: Optional[Exemplar] = None
    created_timestamp_ns: Optional[int] = None


@dataclass
class Gauge(_Message):
    value: float = 0.0


@dataclass
class Untyped(_Message):
    value: float = 0.0


@dataclass
class Quantile(_Message):
    quantile: float = 0.0
    value: float = 0.0


@dataclass
class Summary(_Message):
    sample_count: int = 0
    sample_sum: float = 0.0
    quantile: list[Quantile] = field(default_factory=list)
    created_timestamp_ns: Optional[int] = None


@dataclass
class Bucket(_Message):
    cumulative_count: int = 0
    upper_bound: float = 0.0
    exemplar: Optional[Exemplar] = None


@dataclass
class Histogram(_Message):
    sample_count: int = 0
    sample_sum: float = 0.0
    bucket: list[Bucket] = field(default_factory=list)
    created_timestamp_ns: Optional[int] = None


@dataclass
class Metric(_Message):
    label: list[LabelPair] = field(default_factory=list)
    gauge: Optional[Gauge] = None
    counter: Optional[Counter] = None
    summary: Optional[Summary] = None
    untyped: Optional[Untyped] = None
    histogram: Optional[Histogram] = None
    timestamp_ms: Optional[int] = None


@dataclass
class MetricFamily(_Message):
    name: str = ""
    help: Optional[str] = None
    type: Union[MetricType, int, None] = None
    metric: list[Metric] = field(default_factory=list)
    unit: Optional[str] = None

    @property
    def metric_type(self) -> Union[MetricType, int]:
        """The declared type, defaulting to COUNTER when unset."""
        return MetricType.COUNTER if self.type is None else self.type

    def to_bytes(self) -> bytes:
        """Serialize the family to the protocol buffer binary format."""
        return super().to_bytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> "MetricFamily":
        """Parse a family from the protocol buffer binary format."""
        return super().from_bytes(data)

    def to_text_proto(self, compact: bool = False) -> str:
        """Render the family in protocol buffer text format."""
        return super().to_text_proto(compact)


LabelPair._FIELDS = (_Field(1, "name", "string"), _Field(2, "value", "string"))
Exemplar._FIELDS = (
    _Field(1, "label", "message", LabelPair, True),
    _Field(2, "value", "double"),
    _Field(3, "timestamp_ns", "timestamp"),
)
Counter._FIELDS = (
    _Field(1, "value", "double"),
    _Field(2, "exemplar", "message", Exemplar),
    _Field(3, "created_timestamp_ns", "timestamp"),
)
Gauge._FIELDS = (_Field(1, "value", "double"),)
Untyped._FIELDS = (_Field(1, "value", "double"),)
Quantile._FIELDS = (_Field(1, "quantile", "double"), _Field(2, "value", "double"))
Summary._FIELDS = (
    _Field(1, "sample_count", "uint64"),
    _Field(2, "sample_sum", "double"),
    _Field(3, "quantile", "message", Quantile, True),
    _Field(4, "created_timestamp_ns", "timestamp"),
)
Bucket._FIELDS = (
    _Field(1, "cumulative_count", "uint64"),
    _Field(2, "upper_bound", "double"),
    _Field(3, "exemplar", "message", Exemplar),
)
Histogram._FIELDS = (
    _Field(1, "sample_count", "uint64"),
    _Field(2, "sample_sum", "double"),
    _Field(3, "bucket", "message", Bucket, True),
    _Field(15, "created_timestamp_ns", "timestamp"),
)
Metric._FIELDS = (
    _Field(1, "label", "message", LabelPair, True),
    _Field(2, "gauge", "message", Gauge),
    _Field(3, "counter", "message", Counter),
    _Field(4, "summary", "message", Summary),
    _Field(5, "untyped", "message", Untyped),
    _Field(6, "timestamp_ms", "int64"),
    _Field(7, "histogram", "message", Histogram),
)
MetricFamily._FIELDS = (
    _Field(1, "name", "string"),
    _Field(2, "help", "string"),
    _Field(3, "type", "enum"),
    _Field(4, "metric", "message", Metric, True),
    _Field(5, "unit", "string"),
)


def write_delimited(stream: IO[bytes], family: MetricFamily) -> int:
    """Write ``family`` with a varint length prefix; return bytes written."""
    body = family.to_bytes()
    data = _varint(len(body)) + body
    stream.write(data)
    return len(data)


def read_delimited(stream: IO[bytes]) -> Optional[MetricFamily]:
    """Read one length-prefixed family; return None at a clean end of stream."""
    length = shift = 0
    first = True
    while True:
        byte = stream.read(1)
        if not byte:
            if first:
                return None
            raise WireFormatError("truncated length prefix")
        first = False
        length |= (byte[0] & 0x7F) << shift
        if not byte[0] & 0x80:
            break
        shift += 7
        if shift >= 70:
            raise WireFormatError("length prefix too long")
    body = stream.read(length) if length else b""
    if len(body) != length:
        raise WireFormatError("truncated message")
    return MetricFamily.from_bytes(body)