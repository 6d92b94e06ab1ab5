"""Shared configuration utilities.

This module provides common helpers for env loading, config validation and
the factory functions that turn YAML sections into config objects.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from dotenv import load_dotenv

if TYPE_CHECKING:
    from terragon_sandbox.config.core import (
        DaemonConfig,
        DaytonaConfig,
        E2BConfig,
        LoggingConfig,
        SandboxConfig,
    )


async def load_dotenv_async(env_file: Path | None = None) -> None:
    """Load environment variables from .env file asynchronously.

    Args:
        env_file: Optional path to .env file. If None, searches default locations.
    """
    if env_file:
        await asyncio.to_thread(load_dotenv, env_file)
    else:
        await asyncio.to_thread(load_dotenv)


def validate_required_sections(
    config_data: dict[str, Any],
    required_sections: list[str],
    config_name: str = "sandbox_config.yaml",
) -> None:
    """Validate that all required sections exist in config data.

    Raises:
        ValueError: If any required sections are missing
    """
    missing = [s for s in required_sections if s not in config_data]
    if missing:
        raise ValueError(
            f"Missing required sections in {config_name}: {', '.join(missing)}\n"
            f"Please add these sections to your {config_name} file."
        )


def validate_section_fields(
    section_data: dict[str, Any],
    required_fields: list[str],
    section_name: str,
) -> None:
    """Validate that all required fields exist in a config section.

    Raises:
        ValueError: If any required fields are missing
    """
    missing = [f for f in required_fields if f not in section_data]
    if missing:
        raise ValueError(
            f"Missing required fields in {section_name} section: {', '.join(missing)}"
        )


SANDBOX_REQUIRED_FIELDS = ["default_provider"]

LOGGING_REQUIRED_FIELDS = ["level"]


# Factory functions for creating config objects from dictionaries


def create_sandbox_config(data: dict[str, Any]) -> SandboxConfig:
    """Create SandboxConfig from the ``sandbox`` section."""
    from terragon_sandbox.config.core import SandboxConfig

    validate_section_fields(data, SANDBOX_REQUIRED_FIELDS, "sandbox")
    return SandboxConfig(**data)


def create_daemon_config(data: dict[str, Any] | None) -> DaemonConfig:
    """Create DaemonConfig from the optional ``daemon`` section."""
    from terragon_sandbox.config.core import DaemonConfig

    return DaemonConfig(**(data or {}))


def create_daytona_config(data: dict[str, Any] | None) -> DaytonaConfig:
    """Create DaytonaConfig from the optional ``daytona`` section.

    The API key always comes from the DAYTONA_API_KEY environment variable.
    """
    from terragon_sandbox.config.core import DaytonaConfig

    data = dict(data or {})
    data.pop("api_key", None)
    return DaytonaConfig(api_key=os.getenv("DAYTONA_API_KEY", ""), **data)


def create_e2b_config(data: dict[str, Any] | None) -> E2BConfig:
    """Create E2BConfig from the optional ``e2b`` section.

    The API key always comes from the E2B_API_KEY environment variable.
    """
    from terragon_sandbox.config.core import E2BConfig

    data = dict(data or {})
    data.pop("api_key", None)
    return E2BConfig(api_key=os.getenv("E2B_API_KEY", ""), **data)


def create_logging_config(data: dict[str, Any]) -> LoggingConfig:
    """Create LoggingConfig from the ``logging`` section."""
    from terragon_sandbox.config.core import LoggingConfig

    validate_section_fields(data, LOGGING_REQUIRED_FIELDS, "logging")
    return LoggingConfig(level=data["level"], format=data.get("format"))


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog to respect log level from config.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
