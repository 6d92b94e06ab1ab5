"""
Centralized server configuration access.

Credentials come from environment variables (.env); server settings come
from the ``server`` and ``logging`` sections of sandbox_config.yaml, located
the same way the sandbox library locates it.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from terragon_sandbox.config.files import (
    CONFIG_FILE_ENV_VAR,
    SANDBOX_CONFIG_FILE,
    find_config_file,
    load_yaml_config,
)

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_ALLOWED_ORIGINS = ["http://localhost:3000"]


@lru_cache(maxsize=1)
def load_app_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load sandbox_config.yaml.

    This function is cached to avoid repeated file reads.

    Args:
        config_path: Path to configuration file (defaults to the usual search)

    Returns:
        Configuration dictionary, empty if no file was found
    """
    if config_path is None:
        config_path = find_config_file(SANDBOX_CONFIG_FILE, env_var=CONFIG_FILE_ENV_VAR)
        if config_path is None:
            logger.warning(f"{SANDBOX_CONFIG_FILE} not found, using server defaults")
            return {}

    return load_yaml_config(str(config_path))


def get_nested_config(
    key_path: str,
    default: Any = None,
    config_path: Optional[Path] = None
) -> Any:
    """
    Get a nested configuration value using dot notation.

    Example:
        get_nested_config('server.sse_keepalive_interval') -> config['server']['sse_keepalive_interval']
    """
    config = load_app_config(config_path)

    value = config
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


# =============================================================================
# Logging Settings
# =============================================================================

def get_log_level() -> str:
    """Get the root log level, falling back to INFO when invalid."""
    level = str(get_nested_config('logging.level', 'INFO')).upper()
    if level not in VALID_LOG_LEVELS:
        logger.warning(
            f"Invalid log level '{level}'. "
            f"Valid levels: {sorted(VALID_LOG_LEVELS)}. Using INFO."
        )
        return 'INFO'
    return level


def get_log_format() -> str:
    return get_nested_config('logging.format', DEFAULT_LOG_FORMAT) or DEFAULT_LOG_FORMAT


def is_sse_event_log_enabled() -> bool:
    return bool(get_nested_config('logging.sse_events.enabled', True))


def get_sse_event_log_level() -> str:
    """Get the level for the dedicated sse_events logger (lowercase)."""
    level = str(get_nested_config('logging.sse_events.level', 'debug')).lower()
    if level.upper() not in VALID_LOG_LEVELS:
        logger.warning(f"Invalid SSE event log level '{level}'. Using debug.")
        return 'debug'
    return level


# =============================================================================
# Server Settings
# =============================================================================

def get_allowed_origins() -> List[str]:
    """
    Get CORS allowed origins.

    Accepts a YAML list or a comma-separated string.
    """
    origins = get_nested_config('server.allowed_origins')
    if isinstance(origins, list) and origins:
        return [str(origin) for origin in origins]
    if isinstance(origins, str) and origins.strip():
        return [origin.strip() for origin in origins.split(',') if origin.strip()]
    return list(DEFAULT_ALLOWED_ORIGINS)


def get_sse_keepalive_interval(default: float = 15.0) -> float:
    """
    Get SSE keepalive interval in seconds.

    Args:
        default: Default interval in seconds

    Returns:
        Configured keepalive interval in seconds
    """
    try:
        interval = float(get_nested_config('server.sse_keepalive_interval', default))
        if interval > 0:
            return interval
        logger.warning(
            f"sse_keepalive_interval value {interval} is not positive. "
            f"Using default value {default}."
        )
        return default
    except (ValueError, TypeError) as e:
        logger.warning(
            f"Invalid sse_keepalive_interval value: {e}. "
            f"Using default value {default}."
        )
        return default


def get_analysis_rate_limit_per_hour(default: int = 5) -> int:
    """Get how many codebase analyses a user may start per hour."""
    try:
        limit = int(get_nested_config('server.rate_limit_per_hour', default))
        if limit > 0:
            return limit
        logger.warning(
            f"rate_limit_per_hour value {limit} is not positive. "
            f"Using default value {default}."
        )
        return default
    except (ValueError, TypeError) as e:
        logger.warning(
            f"Invalid rate_limit_per_hour value: {e}. "
            f"Using default value {default}."
        )
        return default
