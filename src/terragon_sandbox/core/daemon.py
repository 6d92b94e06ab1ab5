"""Daemon installation into a sandbox.

The daemon is a node script that mediates command execution and tool calls
for the agent. Installing it means writing the daemon and MCP bridge
payloads, the MCP manifest, any agent credential files and user skills,
then (re)starting the daemon in the background and waiting for its control
pipe to appear.
"""

import asyncio
import json
import posixpath
import shlex
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from terragon_sandbox.config.core import DaemonConfig
from terragon_sandbox.core.errors import DaemonInstallError, SandboxError
from terragon_sandbox.core.mcp_config import (
    McpConfig,
    build_gemini_settings,
    build_mcp_manifest,
    build_opencode_config,
)
from terragon_sandbox.core.skill_frontmatter import render_skill_markdown, skill_file_path
from terragon_sandbox.core.skills_config import SkillsConfig
from terragon_sandbox.core.types import (
    AgentName,
    BuiltInCreditsCredentials,
    EnvironmentVariable,
    EnvVarCredentials,
    JsonFileCredentials,
    SandboxSession,
)

logger = structlog.get_logger(__name__)

DAEMON_FILE_NAME = "terragon-daemon.mjs"
MCP_SERVER_FILE_NAME = "terry-mcp-server.mjs"

DAEMON_LOGS_TIMEOUT_MS = 5000
DEFAULT_DAEMON_LOG_LINES = 1000

# Credential file locations, relative to the sandbox home directory
AGENT_CREDENTIAL_FILES: dict[str, str] = {
    "claudeCode": ".claude/.credentials.json",
    "codex": ".codex/auth.json",
    "gemini": ".gemini/oauth_creds.json",
    "opencode": ".local/share/opencode/auth.json",
    "amp": ".local/share/amp/secrets.json",
}

GEMINI_SETTINGS_FILE = ".gemini/settings.json"
OPENCODE_CONFIG_FILE = ".config/opencode/opencode.json"


@dataclass(frozen=True)
class DaemonBundle:
    """The two executable payloads shipped into every sandbox."""

    daemon_script: str
    mcp_server_script: str

    @classmethod
    async def from_directory(cls, bundle_dir: Path) -> "DaemonBundle":
        """Load the payloads from a local build directory.

        Raises:
            FileNotFoundError: If either payload is missing
        """
        daemon_path = bundle_dir / DAEMON_FILE_NAME
        mcp_server_path = bundle_dir / MCP_SERVER_FILE_NAME

        async with aiofiles.open(daemon_path) as f:
            daemon_script = await f.read()
        async with aiofiles.open(mcp_server_path) as f:
            mcp_server_script = await f.read()

        logger.debug(
            "Loaded daemon bundle",
            bundle_dir=str(bundle_dir),
            daemon_bytes=len(daemon_script),
            mcp_server_bytes=len(mcp_server_script),
        )
        return cls(daemon_script=daemon_script, mcp_server_script=mcp_server_script)


def serialize_feature_flags(feature_flags: dict[str, Any] | None) -> str:
    return json.dumps(feature_flags or {}, separators=(",", ":"))


def build_daemon_env(
    *,
    environment_variables: Sequence[EnvironmentVariable],
    agent_credentials: EnvVarCredentials | JsonFileCredentials | BuiltInCreditsCredentials | None,
    github_access_token: str,
    feature_flags: dict[str, Any] | None,
    bash_max_timeout_ms: int = 60000,
) -> dict[str, str]:
    """Compose the daemon's environment.

    Later entries win on key collision. User variables and env-var agent
    credentials may replace ``BASH_MAX_TIMEOUT_MS``, but ``TERRAGON``,
    ``GH_TOKEN`` and ``TERRAGON_FEATURE_FLAGS`` are always the platform's.
    """
    env: dict[str, str] = {"BASH_MAX_TIMEOUT_MS": str(bash_max_timeout_ms)}

    for variable in environment_variables:
        env[variable.key] = variable.value

    if isinstance(agent_credentials, EnvVarCredentials):
        env[agent_credentials.key] = agent_credentials.value

    env["TERRAGON"] = "true"
    env["GH_TOKEN"] = github_access_token
    env["TERRAGON_FEATURE_FLAGS"] = serialize_feature_flags(feature_flags)
    return env


def build_daemon_command(public_url: str, config: DaemonConfig) -> str:
    parts = ["node", config.daemon_path, "--mcp-config-path", config.mcp_config_path]
    if public_url:
        parts[2:2] = ["--url", public_url]
    return " ".join(shlex.quote(part) for part in parts)


def build_daemon_kill_command(config: DaemonConfig) -> str:
    """Kill any running daemon without matching the invoking shell.

    The pattern brackets the first character of the path so the shell whose
    own command line carries the pattern is not itself a match.
    """
    path = config.daemon_path
    pattern = f"[{path[0]}]{path[1:]}" if path else path
    return f"pkill -f {shlex.quote(pattern)} || true"


async def _write_agent_files(
    session: SandboxSession,
    *,
    agent: AgentName | None,
    agent_credentials: EnvVarCredentials | JsonFileCredentials | BuiltInCreditsCredentials | None,
    user_mcp_config: McpConfig | dict[str, Any] | None,
    manifest: dict[str, Any],
    public_url: str,
) -> None:
    if agent is None:
        return

    if isinstance(agent_credentials, JsonFileCredentials):
        relative_path = AGENT_CREDENTIAL_FILES.get(agent)
        if relative_path is None:
            logger.warning("Agent does not use credential files", agent=agent)
        else:
            path = posixpath.join(session.home_dir, relative_path)
            await session.write_text_file(path, agent_credentials.contents)
            logger.debug("Wrote agent credentials", agent=agent, path=path)

    if agent == "gemini":
        await session.write_text_file(
            posixpath.join(session.home_dir, GEMINI_SETTINGS_FILE),
            build_gemini_settings(user_mcp_config),
        )
    elif agent == "opencode":
        await session.write_text_file(
            posixpath.join(session.home_dir, OPENCODE_CONFIG_FILE),
            build_opencode_config(public_url, manifest),
        )


async def write_user_skills(session: SandboxSession, skills_config: SkillsConfig) -> list[str]:
    """Write each skill to ``.claude/skills/<name>/SKILL.md`` in the repository.

    Returns:
        Paths written, in config order
    """
    written = []
    for skill in skills_config.skills.values():
        path = posixpath.join(session.repo_dir, skill_file_path(skill.name))
        await session.write_text_file(path, render_skill_markdown(skill))
        written.append(path)
    if written:
        logger.info("Wrote user skills", sandbox_id=session.sandbox_id, count=len(written))
    return written


async def wait_for_daemon_ready(session: SandboxSession, config: DaemonConfig) -> None:
    """Poll until the daemon's control pipe exists.

    Raises:
        DaemonInstallError: If the pipe does not appear within ``ready_timeout_ms``
    """
    probe = f"test -p {shlex.quote(config.pipe_path)} && echo ready || echo pending"
    deadline = time.monotonic() + config.ready_timeout_ms / 1000

    while True:
        output = await session.run_command(probe, cwd="/", timeout_ms=5000)
        if output.strip() == "ready":
            return
        if time.monotonic() >= deadline:
            raise DaemonInstallError(
                f"Daemon did not become ready within {config.ready_timeout_ms}ms"
            )
        await asyncio.sleep(config.ready_poll_interval_ms / 1000)


async def install_daemon(
    session: SandboxSession,
    *,
    environment_variables: Sequence[EnvironmentVariable],
    agent_credentials: EnvVarCredentials | JsonFileCredentials | BuiltInCreditsCredentials | None,
    github_access_token: str,
    public_url: str,
    feature_flags: dict[str, Any] | None,
    bundle: DaemonBundle,
    user_mcp_config: McpConfig | dict[str, Any] | None = None,
    skills_config: SkillsConfig | None = None,
    agent: AgentName | None = None,
    config: DaemonConfig | None = None,
) -> None:
    """Install (or reinstall) and start the daemon.

    Every call overwrites the payloads and the manifest and restarts the
    daemon; nothing here checks for an existing installation.

    Raises:
        DaemonInstallError: If any step fails or the daemon never becomes ready
    """
    config = config or DaemonConfig()
    log = logger.bind(sandbox_id=session.sandbox_id, provider=session.sandbox_provider)
    log.info("Installing daemon")

    manifest = build_mcp_manifest(user_mcp_config, config.mcp_server_path)
    env = build_daemon_env(
        environment_variables=environment_variables,
        agent_credentials=agent_credentials,
        github_access_token=github_access_token,
        feature_flags=feature_flags,
        bash_max_timeout_ms=config.bash_max_timeout_ms,
    )

    try:
        await session.write_text_file(config.daemon_path, bundle.daemon_script)
        await session.write_text_file(config.mcp_server_path, bundle.mcp_server_script)
        await session.write_text_file(config.mcp_config_path, json.dumps(manifest, indent=2))

        await _write_agent_files(
            session,
            agent=agent,
            agent_credentials=agent_credentials,
            user_mcp_config=user_mcp_config,
            manifest=manifest,
            public_url=public_url,
        )
        if skills_config is not None:
            await write_user_skills(session, skills_config)

        await session.run_command(f"chmod +x {shlex.quote(config.daemon_path)}")
        await session.run_command(build_daemon_kill_command(config))
        await session.run_background_command(build_daemon_command(public_url, config), env=env)
    except SandboxError as e:
        raise DaemonInstallError(f"Failed to install daemon: {e}") from e

    await wait_for_daemon_ready(session, config)
    log.info("Daemon ready", mcp_servers=list(manifest["mcpServers"]))


async def get_daemon_logs(
    session: SandboxSession,
    *,
    max_lines: int = DEFAULT_DAEMON_LOG_LINES,
    parse_json: bool = True,
    config: DaemonConfig | None = None,
) -> list[Any]:
    """Fetch the tail of the daemon log.

    Lines that are not valid JSON are returned as raw strings.
    """
    config = config or DaemonConfig()
    output = await session.run_command(
        f"tail -n {max_lines} {config.log_path}",
        cwd="/",
        timeout_ms=DAEMON_LOGS_TIMEOUT_MS,
    )

    lines = [line for line in output.split("\n") if line.strip()]
    if not parse_json:
        return lines

    entries: list[Any] = []
    for line in lines:
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            entries.append(line)
    return entries
