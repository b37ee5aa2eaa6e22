"""Shared utilities: logging, configuration and file helpers."""
