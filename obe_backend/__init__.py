"""OBE admin backend: data access, response caching and observability."""

__version__ = "1.0.0"
