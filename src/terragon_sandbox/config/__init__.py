"""Configuration package for terragon-sandbox.

- core.py: Provider, sandbox, daemon and logging configs
- files.py: Config file discovery and YAML loading
- loaders.py: File-based configuration loading
- utils.py: Shared utilities for config parsing

Usage:
    # Programmatic configuration
    from terragon_sandbox.config import CoreConfig
    config = CoreConfig()

    # File-based configuration
    from terragon_sandbox.config import load_core_from_files
    config = await load_core_from_files()
"""

from terragon_sandbox.config.core import (
    CoreConfig,
    DaemonConfig,
    DaytonaConfig,
    E2BConfig,
    LoggingConfig,
    SandboxConfig,
)
from terragon_sandbox.config.files import (
    find_config_file,
    find_project_root,
    get_config_search_paths,
    get_default_config_dir,
    load_yaml_config,
)
from terragon_sandbox.config.loaders import (
    generate_config_template,
    load_core_from_dict,
    load_core_from_files,
)
from terragon_sandbox.config.utils import configure_logging

__all__ = [
    "CoreConfig",
    "DaemonConfig",
    "DaytonaConfig",
    "E2BConfig",
    "LoggingConfig",
    "SandboxConfig",
    "configure_logging",
    "find_config_file",
    "find_project_root",
    "generate_config_template",
    "get_config_search_paths",
    "get_default_config_dir",
    "load_core_from_dict",
    "load_core_from_files",
    "load_yaml_config",
]
