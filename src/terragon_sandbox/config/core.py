"""Core configuration classes for sandbox orchestration.

This module defines pure data classes for:
- E2B and Daytona provider settings
- Sandbox lifecycle settings (provider selection, readiness, setup script)
- Daemon bootstrap settings (remote file paths, timeouts)
- Logging settings

Use terragon_sandbox.config.loaders for file-based loading.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from terragon_sandbox.core.types import SandboxProviderName, SandboxSize


class DaytonaConfig(BaseModel):
    """Daytona sandbox configuration.

    Only api_key needs to be set (via DAYTONA_API_KEY environment variable).
    """

    api_key: str = ""  # Set via DAYTONA_API_KEY env var, validated later
    base_url: str = "https://app.daytona.io/api"
    target: str | None = None
    auto_stop_interval: int = 15  # minutes
    create_timeout: float = 120  # seconds
    snapshots: dict[SandboxSize, str] = Field(default_factory=lambda: {
        "small": "terragon-small",
        "large": "terragon-large",
    })


class E2BConfig(BaseModel):
    """E2B sandbox configuration.

    Only api_key needs to be set (via E2B_API_KEY environment variable).
    """

    api_key: str = ""  # Set via E2B_API_KEY env var, validated later
    domain: str | None = None
    timeout_seconds: int = 900  # 15 minutes
    extend_seconds: int = 900
    templates: dict[SandboxSize, str] = Field(default_factory=lambda: {
        "small": "terragon-small",
        "large": "terragon-large",
    })


class SandboxConfig(BaseModel):
    """Sandbox lifecycle configuration."""

    default_provider: SandboxProviderName = "e2b"
    enabled_providers: list[SandboxProviderName] = Field(
        default_factory=lambda: ["e2b", "daytona"]
    )
    repo_dir: str = "/root/repo"
    home_dir: str = "/root"
    readiness_timeout_ms: int = 60000
    readiness_poll_interval_ms: int = 1000
    setup_script_path: str = "terragon-setup.sh"  # Relative to the repository root
    setup_script_timeout_ms: int = 900000  # 15 minutes
    git_clone_timeout_ms: int = 300000


class DaemonConfig(BaseModel):
    """Daemon bootstrap configuration.

    The remote paths are a contract with the daemon binary and should only
    change together with it.
    """

    daemon_path: str = "/tmp/terragon-daemon.mjs"
    mcp_server_path: str = "/tmp/terry-mcp-server.mjs"
    mcp_config_path: str = "/tmp/mcp-server.json"
    log_path: str = "/tmp/terragon-daemon.log"
    pipe_path: str = "/tmp/terragon-daemon.pipe"
    bundle_dir: str | None = None  # Local directory holding the daemon payloads
    bash_max_timeout_ms: int = 60000
    ready_timeout_ms: int = 15000
    ready_poll_interval_ms: int = 500


class LoggingConfig(BaseModel):
    """Logging configuration with sensible defaults."""

    level: str = "INFO"
    format: str | None = None  # stdlib format string used by the server


class CoreConfig(BaseModel):
    """Core orchestration configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    daytona: DaytonaConfig = Field(default_factory=DaytonaConfig)
    e2b: E2BConfig = Field(default_factory=E2BConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_dir: Path | None = Field(default=None, exclude=True)

    def validate_api_keys(self) -> None:
        """Validate that API keys exist for every enabled provider.

        Raises:
            ValueError: If required API keys are missing
        """
        missing_keys = []
        enabled = self.sandbox.enabled_providers

        if "daytona" in enabled and not self.daytona.api_key:
            missing_keys.append("DAYTONA_API_KEY")
        if "e2b" in enabled and not self.e2b.api_key:
            missing_keys.append("E2B_API_KEY")

        if missing_keys:
            formatted = "\n".join(f"  - {key}" for key in missing_keys)
            raise ValueError(
                f"Missing required credentials in .env file:\n{formatted}\n"
                f"Please add these credentials to your .env file."
            )

    def resolve_bundle_dir(self) -> Path | None:
        """Resolve the daemon bundle directory relative to the config file."""
        if not self.daemon.bundle_dir:
            return None
        path = Path(self.daemon.bundle_dir).expanduser()
        if not path.is_absolute() and self.config_file_dir is not None:
            path = self.config_file_dir / path
        return path
