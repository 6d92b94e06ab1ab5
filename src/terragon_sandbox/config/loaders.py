"""Configuration loaders for file-based config.

Usage:
    from terragon_sandbox.config import load_core_from_files
    config = await load_core_from_files()

Config Search Paths:
    When no explicit path is provided, sandbox_config.yaml is searched in:
    1. Current working directory
    2. Project root (git repository root)
    3. ~/.terragon/ (user config directory)

    Environment variable overrides:
    - TERRAGON_CONFIG_FILE: explicit path to sandbox_config.yaml
"""

import asyncio
from pathlib import Path
from typing import Any

from terragon_sandbox.config.core import CoreConfig
from terragon_sandbox.config.files import (
    CONFIG_FILE_ENV_VAR,
    SANDBOX_CONFIG_FILE,
    find_config_file,
    get_config_search_paths,
    load_yaml_config,
)
from terragon_sandbox.config.utils import (
    configure_logging,
    create_daemon_config,
    create_daytona_config,
    create_e2b_config,
    create_logging_config,
    create_sandbox_config,
    load_dotenv_async,
    validate_required_sections,
)

REQUIRED_SECTIONS = ["sandbox", "logging"]


async def load_core_from_files(
    config_file: Path | None = None,
    env_file: Path | None = None,
    *,
    search_paths: bool = True,
) -> CoreConfig:
    """Load CoreConfig from config files (sandbox_config.yaml, .env).

    Args:
        config_file: Optional path to sandbox_config.yaml file
        env_file: Optional path to .env file
        search_paths: If True, search multiple paths for config files

    Returns:
        Configured CoreConfig instance

    Raises:
        FileNotFoundError: If sandbox_config.yaml is not found
        ValueError: If required configuration is missing or invalid
    """
    cwd = await asyncio.to_thread(Path.cwd)

    if config_file is None:
        if search_paths:
            config_file = await asyncio.to_thread(
                find_config_file,
                SANDBOX_CONFIG_FILE,
                None,
                CONFIG_FILE_ENV_VAR,
            )
        else:
            config_file = cwd / SANDBOX_CONFIG_FILE

    if config_file is None or not config_file.exists():
        searched = (
            await asyncio.to_thread(get_config_search_paths)
            if search_paths
            else [cwd]
        )
        raise FileNotFoundError(
            f"{SANDBOX_CONFIG_FILE} not found in search paths:\n"
            f"  {chr(10).join(str(p) for p in searched)}\n"
            f"Create one or set {CONFIG_FILE_ENV_VAR} environment variable."
        )

    # Credentials come from the environment
    await load_dotenv_async(env_file)

    config_data = await asyncio.to_thread(load_yaml_config, str(config_file))
    core_config = load_core_from_dict(config_data)
    core_config.config_file_dir = config_file.parent
    return core_config


def load_core_from_dict(config_data: dict[str, Any]) -> CoreConfig:
    """Create CoreConfig from a dictionary (e.g., parsed YAML).

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    validate_required_sections(config_data, REQUIRED_SECTIONS)

    logging_config = create_logging_config(config_data["logging"])
    configure_logging(logging_config.level)

    # YAML sections with only comments parse as None, not {}
    return CoreConfig(
        sandbox=create_sandbox_config(config_data["sandbox"]),
        daemon=create_daemon_config(config_data.get("daemon")),
        daytona=create_daytona_config(config_data.get("daytona")),
        e2b=create_e2b_config(config_data.get("e2b")),
        logging=logging_config,
    )


# =============================================================================
# Config Template Generation
# =============================================================================


CONFIG_TEMPLATE = """# Terragon Sandbox Configuration
# Place this file in ~/.terragon/sandbox_config.yaml or your project root

# Sandbox lifecycle
# -----------------
sandbox:
  default_provider: "e2b"  # e2b, daytona
  enabled_providers: ["e2b", "daytona"]
  repo_dir: "/root/repo"
  home_dir: "/root"
  readiness_timeout_ms: 60000
  setup_script_path: "terragon-setup.sh"  # relative to the repository root
  setup_script_timeout_ms: 900000

# Daemon bootstrap
# ----------------
daemon:
  # Local directory with terragon-daemon.mjs and terry-mcp-server.mjs
  bundle_dir: "./bundle"
  bash_max_timeout_ms: 60000
  ready_timeout_ms: 15000

# E2B
# ---
e2b:
  # api_key: set E2B_API_KEY in environment or .env file
  timeout_seconds: 900
  templates:
    small: "terragon-small"
    large: "terragon-large"

# Daytona
# -------
daytona:
  base_url: "https://app.daytona.io/api"
  # api_key: set DAYTONA_API_KEY in environment or .env file
  auto_stop_interval: 15  # minutes
  snapshots:
    small: "terragon-small"
    large: "terragon-large"

# Logging
# -------
logging:
  level: "INFO"
"""


def generate_config_template(
    output_dir: Path,
    *,
    overwrite: bool = False,
) -> dict[str, Path]:
    """Generate a sandbox_config.yaml template.

    Args:
        output_dir: Directory to write config files
        overwrite: Whether to overwrite existing files

    Returns:
        Dict mapping filename to path of created file

    Raises:
        FileExistsError: If file exists and overwrite is False
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    config_path = output_dir / SANDBOX_CONFIG_FILE
    if config_path.exists() and not overwrite:
        msg = f"Config file already exists: {config_path}"
        raise FileExistsError(msg)
    config_path.write_text(CONFIG_TEMPLATE)
    return {SANDBOX_CONFIG_FILE: config_path}
