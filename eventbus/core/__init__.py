"""Core components for log storage."""

from eventbus.core import log

__all__ = ["log"]
