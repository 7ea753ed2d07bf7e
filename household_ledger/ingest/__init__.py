"""Statement and screenshot ingestion: format adapters and the routing engine."""

from .engine import detect_source_type, parse_file

__all__ = ["detect_source_type", "parse_file"]
