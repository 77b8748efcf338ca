"""Content types of the exposition formats and their classification."""

from __future__ import annotations

import enum

TEXT_VERSION = "0.0.4"
PROTO_TYPE = "application/vnd.google.protobuf"
PROTO_PROTOCOL = "io.prometheus.client.MetricFamily"
OPENMETRICS_TYPE = "application/openmetrics-text"
OPENMETRICS_VERSION_0_0_1 = "0.0.1"
OPENMETRICS_VERSION_1_0_0 = "1.0.0"
ESCAPING_KEY = "escaping"

_PROTO_FMT = f"{PROTO_TYPE}; proto={PROTO_PROTOCOL};"


class FormatType(enum.IntEnum):
    """Overall category of a Format."""

    UNKNOWN = 0
    PROTO_COMPACT = 1
    PROTO_DELIM = 2
    PROTO_TEXT = 3
    TEXT_PLAIN = 4
    OPENMETRICS = 5


class EscapingScheme(enum.Enum):
    """How names that are not legacy-valid get escaped on the wire."""

    NO_ESCAPING = "allow-utf-8"
    UNDERSCORE_ESCAPING = "underscores"
    DOTS_ESCAPING = "dots"
    VALUE_ENCODING_ESCAPING = "values"

    def __str__(self) -> str:
        return self.value


DEFAULT_ESCAPING_SCHEME = EscapingScheme.VALUE_ENCODING_ESCAPING


def escaping_scheme_from_string(value: str) -> EscapingScheme:
    """Return the scheme named by ``value``; raise ValueError if unknown."""
    if not value:
        raise ValueError("got empty string instead of escaping scheme")
    try:
        return EscapingScheme(value)
    except ValueError:
        raise ValueError(f"unknown format scheme {value}") from None


class Format(str):
    """An HTTP content type naming one of the wire protocols."""

    def format_type(self) -> FormatType:
        """Deduce the overall FormatType of this format."""
        tokens = self.split(";")
        params: dict[str, str] = {}
        for token in tokens[1:]:
            args = token.split("=")
            if len(args) != 2:
                continue
            params[args[0].strip()] = args[1].strip()

        media = tokens[0].strip()
        if media == PROTO_TYPE:
            if params.get("proto") != PROTO_PROTOCOL:
                return FormatType.UNKNOWN
            return {
                "delimited": FormatType.PROTO_DELIM,
                "text": FormatType.PROTO_TEXT,
                "compact-text": FormatType.PROTO_COMPACT,
            }.get(params.get("encoding", ""), FormatType.UNKNOWN)
        if media == OPENMETRICS_TYPE:
            if params.get("charset") != "utf-8":
                return FormatType.UNKNOWN
            return FormatType.OPENMETRICS
        if media == "text/plain":
            version = params.get("version")
            if version is None or version == TEXT_VERSION:
                return FormatType.TEXT_PLAIN
            return FormatType.UNKNOWN
        return FormatType.UNKNOWN

    def to_escaping_scheme(self, default: EscapingScheme = DEFAULT_ESCAPING_SCHEME) -> EscapingScheme:
        """Return the scheme of the ``escaping`` term, or ``default``."""
        for part in self.split(";"):
            tokens = part.split("=")
            if len(tokens) != 2:
                continue
            key, value = tokens[0].strip(), tokens[1].strip()
            if key == ESCAPING_KEY:
                try:
                    return escaping_scheme_from_string(value)
                except ValueError:
                    return default
        return default


FMT_UNKNOWN = Format("<unknown>")
FMT_TEXT = Format(f"text/plain; version={TEXT_VERSION}; charset=utf-8")
FMT_PROTO_DELIM = Format(f"{_PROTO_FMT} encoding=delimited")
FMT_PROTO_TEXT = Format(f"{_PROTO_FMT} encoding=text")
FMT_PROTO_COMPACT = Format(f"{_PROTO_FMT} encoding=compact-text")
FMT_OPENMETRICS_1_0_0 = Format(
    f"{OPENMETRICS_TYPE}; version={OPENMETRICS_VERSION_1_0_0}; charset=utf-8"
)
FMT_OPENMETRICS_0_0_1 = Format(
    f"{OPENMETRICS_TYPE}; version={OPENMETRICS_VERSION_0_0_1}; charset=utf-8"
)

_BY_TYPE = {
    FormatType.PROTO_COMPACT: FMT_PROTO_COMPACT,
    FormatType.PROTO_DELIM: FMT_PROTO_DELIM,
    FormatType.PROTO_TEXT: FMT_PROTO_TEXT,
    FormatType.TEXT_PLAIN: FMT_TEXT,
    FormatType.OPENMETRICS: FMT_OPENMETRICS_1_0_0,
}


def new_format(format_type: FormatType) -> Format:
    """Return the latest Format of the given type."""
    return _BY_TYPE.get(format_type, FMT_UNKNOWN)


def new_openmetrics_format(version: str) -> Format:
    """Return the OpenMetrics format of ``version``; raise ValueError if unknown."""
    if version == OPENMETRICS_VERSION_0_0_1:
        return FMT_OPENMETRICS_0_0_1
    if version == OPENMETRICS_VERSION_1_0_0:
        return FMT_OPENMETRICS_1_0_0
    raise ValueError("unknown open metrics version string")