"""Shared test configuration."""

from eventbus.utils.logging import configure_logging

# Route structlog through stdlib logging so pytest captures it.
configure_logging(log_level="DEBUG", log_format="console", log_output="stderr")
