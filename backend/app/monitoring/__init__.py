"""Metrics registry and metric definitions for the backend."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
