"""Shared types for sandbox orchestration.

Defines the ``SandboxSession`` capability every provider implements, the
options accepted when acquiring a sandbox, and the credential/environment
records injected into the daemon.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Protocol, TypedDict, Union, runtime_checkable

from pydantic import BaseModel, Field

from terragon_sandbox.core.skills_config import SkillsConfig

SandboxProviderName = Literal["e2b", "daytona", "docker"]
SandboxSize = Literal["small", "large"]
AgentName = Literal["gatewayz", "claudeCode", "gemini", "amp", "codex", "opencode"]

SANDBOX_SIZES: tuple[SandboxSize, ...] = ("small", "large")

SandboxStatus = Literal[
    "provisioning",
    "booting",
    "cloning-repo",
    "running-setup-script",
    "installing-daemon",
    "ready",
]


class EnvironmentVariable(BaseModel):
    """A user-defined environment variable passed to the daemon."""

    key: str
    value: str


class EnvVarCredentials(BaseModel):
    """Agent API key injected as an environment variable."""

    type: Literal["env-var"] = "env-var"
    key: str
    value: str


class JsonFileCredentials(BaseModel):
    """Agent credential file written into the sandbox home directory."""

    type: Literal["json-file"] = "json-file"
    contents: str


class BuiltInCreditsCredentials(BaseModel):
    """Agent runs on platform-provided credits; nothing is injected."""

    type: Literal["built-in-credits"] = "built-in-credits"


AgentCredentials = Annotated[
    Union[EnvVarCredentials, JsonFileCredentials, BuiltInCreditsCredentials],
    Field(discriminator="type"),
]


class StatusUpdate(TypedDict):
    sandbox_id: str
    sandbox_status: SandboxStatus


@runtime_checkable
class SandboxSession(Protocol):
    """Capability interface for a live remote sandbox.

    A session is owned by exactly one operation at a time. Relative paths
    passed to the file operations resolve against ``repo_dir``.
    """

    sandbox_id: str
    sandbox_provider: SandboxProviderName
    repo_dir: str
    home_dir: str

    async def run_command(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_ms: int | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """Run a command to completion and return its stdout.

        Raises:
            SandboxCommandError: If the command exits non-zero.
            SandboxTimeoutError: If the command exceeds ``timeout_ms``.
        """
        ...

    async def run_background_command(
        self,
        command: str,
        *,
        env: dict[str, str] | None = None,
    ) -> None:
        """Start a detached command and return immediately."""
        ...

    async def read_text_file(self, path: str) -> str: ...

    async def write_text_file(self, path: str, content: str) -> None: ...

    async def shutdown(self) -> None:
        """Destroy the sandbox. Calling it again is a no-op."""
        ...

    async def hibernate(self) -> None:
        """Pause the sandbox so it can be resumed later."""
        ...


@dataclass
class CreateSandboxOptions:
    """Everything needed to acquire and bootstrap a sandbox for one task."""

    thread_name: str
    user_id: str
    user_name: str
    user_email: str
    github_access_token: str
    github_repo_full_name: str
    repo_base_branch_name: str
    sandbox_provider: SandboxProviderName
    sandbox_size: SandboxSize = "small"
    agent: AgentName | None = None
    create_new_branch: bool = False
    environment_variables: list[EnvironmentVariable] = field(default_factory=list)
    agent_credentials: EnvVarCredentials | JsonFileCredentials | BuiltInCreditsCredentials | None = None
    skip_setup_script: bool = False
    auto_update_daemon: bool = False
    public_url: str = ""
    feature_flags: dict[str, Any] = field(default_factory=dict)
    user_mcp_config: dict[str, Any] | None = None
    skills_config: SkillsConfig | None = None
    generate_branch_name: Callable[[], Awaitable[str | None]] | None = None
    on_status_update: Callable[[StatusUpdate], Awaitable[None]] | None = None
