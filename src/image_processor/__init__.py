"""Image processor: upload ingestion with queued background resizing."""

__version__ = "0.1.0"
