"""DORA lead time for changes from pull request and deployment events."""

__version__ = "0.1.0"
