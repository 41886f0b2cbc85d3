"""SichrPlace backend: Redis caching and query-performance layer."""

__version__ = "1.0.0"
