"""Mail capture store: raw MIME persistence and query API."""

__version__ = "0.1.0"
