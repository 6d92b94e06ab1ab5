"""
Centralized Logging Configuration

Configures the root logger from the ``logging`` section of
sandbox_config.yaml and wires the dedicated ``sse_events`` logger that
traces every emitted SSE frame.

Usage:
    from terragon_server.config.logging_config import configure_logging

    # Call once at application startup
    configure_logging()
"""

import logging

from terragon_server.config.settings import (
    get_log_format,
    get_log_level,
    get_sse_event_log_level,
    is_sse_event_log_enabled,
)

SSE_EVENTS_LOGGER = "sse_events"

# Flag to ensure configuration is only applied once
_logging_configured = False


def configure_logging(force: bool = False) -> None:
    """
    Configure logging from sandbox_config.yaml.

    Args:
        force: If True, reconfigure logging even if already configured.
               Useful for testing. Default: False
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    log_level = get_log_level()
    log_format = get_log_format()

    logging.basicConfig(
        level=getattr(logging, log_level),
        format=log_format,
        force=True
    )

    # SSE frames get their own handler, independent of the root level
    if is_sse_event_log_enabled():
        sse_level = getattr(logging, get_sse_event_log_level().upper(), logging.DEBUG)
        sse_logger = logging.getLogger(SSE_EVENTS_LOGGER)
        sse_logger.setLevel(sse_level)
        if not sse_logger.handlers:
            sse_handler = logging.StreamHandler()
            sse_handler.setLevel(sse_level)
            sse_handler.setFormatter(logging.Formatter("%(message)s"))
            sse_logger.addHandler(sse_handler)
        sse_logger.propagate = False

    _logging_configured = True

    logging.getLogger().debug(f"Logging configured: root_level={log_level}")


def reset_logging_config() -> None:
    """Reset the configured flag so configure_logging() runs again."""
    global _logging_configured
    _logging_configured = False
