"""Exports for API routers."""

from . import metrics, system  # noqa: F401

__all__ = ["metrics", "system"]
