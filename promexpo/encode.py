"""Content negotiation and encoding of metric families."""

from __future__ import annotations

import dataclasses
import io
from typing import IO, Mapping, Optional, Union

from promexpo.dto import LabelPair, MetricFamily, is_valid_legacy_name, write_delimited
from promexpo.formats import (
    DEFAULT_ESCAPING_SCHEME,
    ESCAPING_KEY,
    FMT_OPENMETRICS_0_0_1,
    FMT_OPENMETRICS_1_0_0,
    FMT_PROTO_COMPACT,
    FMT_PROTO_DELIM,
    FMT_PROTO_TEXT,
    FMT_TEXT,
    OPENMETRICS_TYPE,
    OPENMETRICS_VERSION_0_0_1,
    OPENMETRICS_VERSION_1_0_0,
    PROTO_PROTOCOL,
    PROTO_TYPE,
    TEXT_VERSION,
    EscapingScheme,
    Format,
    FormatType,
)
from promexpo.openmetrics_create import finalize_openmetrics, metric_family_to_openmetrics
from promexpo.text_create import metric_family_to_text

_NAME_LABEL = "__name__"
_KNOWN_SCHEMES = {scheme.value for scheme in EscapingScheme}


def _accept_header(headers: Optional[Mapping[str, str]]) -> str:
    if not headers:
        return ""
    for key, value in headers.items():
        if key.lower() == "accept":
            return value
    return ""


def _parse_accept(header: str) -> list[tuple[str, str, dict[str, str]]]:
    entries = []
    for part in header.split(","):
        fields = [f.strip() for f in part.split(";")]
        media = fields[0]
        if not media:
            continue
        main, _, sub = media.partition("/")
        if not sub:
            main, sub = (main, "*") if main == "*" else (main, "")
        params: dict[str, str] = {}
        q = 1.0
        for f in fields[1:]:
            if not f or "=" not in f:
                continue
            key, value = (s.strip() for s in f.split("=", 1))
            if key == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0
            else:
                params[key] = value
        entries.append((q, main, sub, params))
    entries.sort(key=lambda e: (-e[0], e[1] == "*", e[2] == "*", -len(e[3])))
    return [(main, sub, params) for _, main, sub, params in entries]


def _negotiate(headers, default_escaping: EscapingScheme, openmetrics: bool) -> Format:
    escaping = f"; escaping={default_escaping}"
    for main, sub, params in _parse_accept(_accept_header(headers)):
        scheme = params.get(ESCAPING_KEY, "")
        if scheme in _KNOWN_SCHEMES:
            escaping = f"; escaping={scheme}"
        version = params.get("version", "")
        media = f"{main}/{sub}"
        if media == PROTO_TYPE and params.get("proto") == PROTO_PROTOCOL:
            chosen = {
                "delimited": FMT_PROTO_DELIM,
                "text": FMT_PROTO_TEXT,
                "compact-text": FMT_PROTO_COMPACT,
            }.get(params.get("encoding", ""))
            if chosen is not None:
                return Format(chosen + escaping)
        if main == "text" and sub == "plain" and version in (TEXT_VERSION, ""):
            return Format(FMT_TEXT + escaping)
        if openmetrics and media == OPENMETRICS_TYPE and version in (
            OPENMETRICS_VERSION_0_0_1, OPENMETRICS_VERSION_1_0_0, ""
        ):
            base = FMT_OPENMETRICS_1_0_0 if version == OPENMETRICS_VERSION_1_0_0 else FMT_OPENMETRICS_0_0_1
            return Format(base + escaping)
    return Format(FMT_TEXT + escaping)


def negotiate(
    headers: Optional[Mapping[str, str]],
    default_escaping: EscapingScheme = DEFAULT_ESCAPING_SCHEME,
) -> Format:
    """Pick a Format from the Accept header, never OpenMetrics; text by default."""
    return _negotiate(headers, default_escaping, False)


def negotiate_including_openmetrics(
    headers: Optional[Mapping[str, str]],
    default_escaping: EscapingScheme = DEFAULT_ESCAPING_SCHEME,
) -> Format:
    """Like negotiate, but OpenMetrics may be chosen too."""
    return _negotiate(headers, default_escaping, True)


def _legacy_rune(ch: str, first: bool) -> bool:
    return ("a" <= ch <= "z") or ("A" <= ch <= "Z") or ch in "_:" or (not first and "0" <= ch <= "9")


def _escape_name(name: str, scheme: EscapingScheme) -> str:
    if not name or scheme == EscapingScheme.NO_ESCAPING:
        return name
    if scheme == EscapingScheme.UNDERSCORE_ESCAPING:
        return "".join(c if _legacy_rune(c, i == 0) else "_" for i, c in enumerate(name))
    if scheme == EscapingScheme.DOTS_ESCAPING:
        out = []
        for i, c in enumerate(name):
            if c == "_":
                out.append("__")
            elif c == ".":
                out.append("_dot_")
            elif _legacy_rune(c, i == 0):
                out.append(c)
            else:
                out.append("__")
        return "".join(out)
    out = ["U__"]
    for i, c in enumerate(name):
        if c == "_":
            out.append("__")
        elif _legacy_rune(c, i == 0):
            out.append(c)
        else:
            out.append(f"_{ord(c):x}_")
    return "".join(out)


def _escape_labels(labels: list[LabelPair], scheme: EscapingScheme) -> list[LabelPair]:
    result = []
    for pair in labels:
        if pair.name == _NAME_LABEL:
            value = pair.value if is_valid_legacy_name(pair.value) else _escape_name(pair.value, scheme)
            result.append(LabelPair(pair.name, value))
        elif is_valid_legacy_name(pair.name):
            result.append(pair)
        else:
            result.append(LabelPair(_escape_name(pair.name, scheme), pair.value))
    return result


def _escape_family(family: MetricFamily, scheme: EscapingScheme) -> MetricFamily:
    if scheme == EscapingScheme.NO_ESCAPING:
        return family
    name = family.name if is_valid_legacy_name(family.name) else _escape_name(family.name, scheme)
    metrics = [
        dataclasses.replace(metric, label=_escape_labels(metric.label, scheme))
        for metric in family.metric
    ]
    return dataclasses.replace(family, name=name, metric=metrics)


def _write_text(out: Union[IO[str], IO[bytes]], text: str) -> None:
    if isinstance(out, io.TextIOBase):
        out.write(text)
    else:
        out.write(text.encode("utf-8", "surrogateescape"))


class Encoder:
    """Writes metric families to ``out`` in the given Format."""

    def __init__(
        self,
        out: Union[IO[str], IO[bytes]],
        format: Format,
        with_created_lines: bool = False,
        with_unit: bool = False,
    ) -> None:
        self.format = Format(format)
        self._type = self.format.format_type()
        if self._type == FormatType.UNKNOWN:
            raise ValueError(f"unknown format {str(format)!r}")
        self._out = out
        self._escaping = self.format.to_escaping_scheme()
        self._with_created_lines = with_created_lines
        self._with_unit = with_unit

    def encode(self, family: MetricFamily) -> None:
        """Encode one metric family."""
        if self._type == FormatType.PROTO_DELIM:
            write_delimited(self._out, family)  # type: ignore[arg-type]
            return
        escaped = _escape_family(family, self._escaping)
        if self._type == FormatType.PROTO_COMPACT:
            _write_text(self._out, escaped.to_text_proto(compact=True) + "\n")
        elif self._type == FormatType.PROTO_TEXT:
            _write_text(self._out, escaped.to_text_proto() + "\n")
        elif self._type == FormatType.TEXT_PLAIN:
            metric_family_to_text(self._out, escaped)
        else:
            metric_family_to_openmetrics(
                self._out, escaped,
                with_created_lines=self._with_created_lines, with_unit=self._with_unit,
            )

    def close(self) -> None:
        """Finish the output; writes the ``# EOF`` line for OpenMetrics."""
        if self._type == FormatType.OPENMETRICS:
            finalize_openmetrics(self._out)

    def __enter__(self) -> "Encoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def new_encoder(
    out: Union[IO[str], IO[bytes]],
    format: Format,
    *,
    with_created_lines: bool = False,
    with_unit: bool = False,
) -> Encoder:
    """Return an Encoder for ``format``; raise ValueError if it is unknown."""
    return Encoder(out, format, with_created_lines, with_unit)