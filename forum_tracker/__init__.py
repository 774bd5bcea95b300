"""forum-tracker: scheduled multi-forum ingestion with multi-tier caching."""

__version__ = "0.1.0"
