"""Write Prometheus text, OpenMetrics and protobuf exposition formats; read protobuf."""

__version__ = "0.1.0"

__all__ = ["decode", "dto", "encode", "formats", "openmetrics_create", "text_create"]