"""Server configuration: settings getters and logging setup."""

from terragon_server.config.logging_config import configure_logging
from terragon_server.config.settings import (
    get_allowed_origins,
    get_analysis_rate_limit_per_hour,
    get_sse_keepalive_interval,
    load_app_config,
)

__all__ = [
    "configure_logging",
    "get_allowed_origins",
    "get_analysis_rate_limit_per_hour",
    "get_sse_keepalive_interval",
    "load_app_config",
]
