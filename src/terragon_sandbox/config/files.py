"""
Config file discovery and YAML loading.

This module provides:
- Support for both $VAR and ${VAR} environment variable formats
- Config file search paths: CWD → project root → ~/.terragon/
- YAML parsing with environment variable substitution
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

SANDBOX_CONFIG_FILE = "sandbox_config.yaml"
CONFIG_FILE_ENV_VAR = "TERRAGON_CONFIG_FILE"


# =============================================================================
# Environment Variable Substitution
# =============================================================================


def substitute_env_vars(value: str) -> str:
    """
    Replace environment variables in string values.

    Supports both formats:
    - $VAR - Simple format (only when the whole value is the reference)
    - ${VAR} - Bash-style format with braces

    Unknown variables are left untouched.
    """
    if not isinstance(value, str):
        return value

    result = re.sub(
        r"\$\{([^}]+)\}",
        lambda m: os.getenv(m.group(1), m.group(0)),
        value,
    )

    if result.startswith("$") and not result.startswith("${"):
        env_var = result[1:]
        if env_var.isidentifier():
            return os.getenv(env_var, result)

    return result


def _process_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _process_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_process_value(item) for item in value]
    if isinstance(value, str):
        return substitute_env_vars(value)
    return value


# =============================================================================
# Config File Search
# =============================================================================


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find git repository root by walking up from start_path."""
    current = start_path or Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    return None


def get_default_config_dir() -> Path:
    """Get the default config directory (~/.terragon/)."""
    return Path.home() / ".terragon"


def get_config_search_paths(start_path: Optional[Path] = None) -> List[Path]:
    """
    Get ordered list of config search paths.

    Search order: CWD → project root → ~/.terragon/
    """
    cwd = start_path or Path.cwd()
    paths = [cwd]
    project_root = find_project_root(cwd)
    if project_root and project_root != cwd:
        paths.append(project_root)
    paths.append(get_default_config_dir())
    return paths


def find_config_file(
    filename: str,
    search_paths: Optional[List[Path]] = None,
    env_var: Optional[str] = None,
) -> Optional[Path]:
    """
    Find first existing config file in search paths.

    Args:
        filename: Name of the file to find
        search_paths: Paths to search (default: get_config_search_paths())
        env_var: Environment variable to check for an explicit override

    Returns:
        Path to the first existing file, or None if not found
    """
    if env_var:
        env_path = os.getenv(env_var)
        if env_path:
            path = Path(env_path)
            if path.exists():
                return path

    if search_paths is None:
        search_paths = get_config_search_paths()

    for search_path in search_paths:
        candidate = search_path / filename
        if candidate.exists():
            return candidate

    return None


# =============================================================================
# YAML Loading
# =============================================================================


def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """
    Load and process a YAML configuration file.

    Args:
        file_path: Path to the YAML configuration file

    Returns:
        Processed configuration dictionary with environment variables replaced
    """
    if not os.path.exists(file_path):
        logger.warning(f"Configuration file not found: {file_path}")
        return {}

    with open(file_path, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if not raw_config:
        logger.warning(f"Empty configuration file: {file_path}")
        return {}

    processed_config = _process_value(raw_config)
    logger.debug(f"Loaded configuration from {file_path} (settings: {len(processed_config)})")
    return processed_config
