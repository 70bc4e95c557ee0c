"""Plugin-driven DNS forwarder core: matchers, caches, rate limiting and DNS helpers."""

__version__ = "5.0.0"