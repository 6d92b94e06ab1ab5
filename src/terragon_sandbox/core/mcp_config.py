"""MCP server configuration: validation and manifest construction.

The daemon reads a single manifest listing every MCP server the agent may
talk to. The built-in ``terry`` server is always present and always points
at the bundled bridge script; user entries are layered around it.
"""

import copy
import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from terragon_sandbox.core.skills_config import (
    ValidationResult,
    format_validation_error,
    json_type_name,
)

BUILT_IN_MCP_SERVER_KEY = "terry"

INVALID_MCP_CONFIG = "Invalid MCP configuration"


class McpStdioServer(BaseModel):
    """Server launched as a local process speaking MCP over stdio."""

    model_config = ConfigDict(extra="forbid")

    command: str
    args: list[str] | None = None
    env: dict[str, str] | None = None


class McpRemoteServer(BaseModel):
    """Server reached over HTTP or SSE."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["http", "sse"] | None = None
    url: str
    headers: dict[str, str] | None = None
    env: dict[str, str] | None = None


McpServer = McpStdioServer | McpRemoteServer


class McpConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: dict[str, McpServer] = Field(alias="mcpServers")

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "mcpServers": {
                key: server.model_dump(exclude_none=True)
                for key, server in self.mcp_servers.items()
            }
        }


def built_in_mcp_server(mcp_server_path: str) -> dict[str, Any]:
    """Descriptor of the built-in bridge server."""
    return {"command": "node", "args": [mcp_server_path]}


def _validate_server(key: str, raw: Any) -> ValidationResult[McpServer]:
    path = f"mcpServers.{key}"
    if not isinstance(raw, dict):
        return ValidationResult.fail(f"{path}: Expected object, received {json_type_name(raw)}")

    if "command" in raw:
        model: type[BaseModel] = McpStdioServer
    elif "url" in raw:
        model = McpRemoteServer
    else:
        return ValidationResult.fail(f"{path}: Server must define either 'command' or 'url'")

    try:
        server = model.model_validate(raw)
    except ValidationError as exc:
        detail = format_validation_error(exc, fallback=INVALID_MCP_CONFIG)
        return ValidationResult.fail(f"{path}.{detail}")
    return ValidationResult.ok(server)


def validate_mcp_config(raw: Any) -> ValidationResult[McpConfig]:
    """Validate a user-supplied MCP config document.

    Entries are either stdio servers (``command``) or remote servers
    (``url``). The built-in server key may not be used.
    """
    if not isinstance(raw, dict):
        return ValidationResult.fail(f"Expected object, received {json_type_name(raw)}")

    servers = raw.get("mcpServers")
    if servers is None:
        return ValidationResult.fail("mcpServers: Required")
    if not isinstance(servers, dict):
        return ValidationResult.fail(
            f"mcpServers: Expected object, received {json_type_name(servers)}"
        )

    parsed: dict[str, McpServer] = {}
    for key, value in servers.items():
        if key == BUILT_IN_MCP_SERVER_KEY:
            return ValidationResult.fail(
                f"Cannot use '{key}' as an MCP server name (reserved for built-in server)"
            )
        result = _validate_server(key, value)
        if not result.success:
            return ValidationResult.fail(result.error or INVALID_MCP_CONFIG)
        parsed[key] = result.data

    return ValidationResult.ok(McpConfig(mcp_servers=parsed))


def _user_servers(user_mcp_config: McpConfig | dict[str, Any] | None) -> dict[str, Any]:
    if user_mcp_config is None:
        return {}
    if isinstance(user_mcp_config, McpConfig):
        return user_mcp_config.to_json_dict()["mcpServers"]
    servers = user_mcp_config.get("mcpServers") or {}
    return servers if isinstance(servers, dict) else {}


def build_mcp_manifest(
    user_mcp_config: McpConfig | dict[str, Any] | None,
    mcp_server_path: str,
) -> dict[str, Any]:
    """Merge user servers with the built-in server.

    The built-in entry is inserted first, user entries are copied in except
    any that use the built-in key, and the built-in entry is written again
    last so no user input can replace it.
    """
    servers: dict[str, Any] = {BUILT_IN_MCP_SERVER_KEY: built_in_mcp_server(mcp_server_path)}

    for key, server in _user_servers(user_mcp_config).items():
        if str(key) == BUILT_IN_MCP_SERVER_KEY:
            continue
        servers[str(key)] = copy.deepcopy(server)

    servers[BUILT_IN_MCP_SERVER_KEY] = built_in_mcp_server(mcp_server_path)
    return {"mcpServers": servers}


def build_gemini_settings(
    user_mcp_config: McpConfig | dict[str, Any] | None,
    auth_type: Literal["gemini-api-key", "google-cloud-oauth"] = "gemini-api-key",
) -> str:
    """Render ``~/.gemini/settings.json`` with the user's MCP servers.

    Gemini distinguishes streamable HTTP servers (``httpUrl``) from SSE
    servers (``url``).
    """
    mcp_servers: dict[str, dict[str, Any]] = {}
    for name, server in _user_servers(user_mcp_config).items():
        if not isinstance(server, dict):
            continue
        if "command" in server:
            entry = {"command": server["command"], "args": server.get("args"), "env": server.get("env")}
        elif server.get("type") == "http":
            entry = {"httpUrl": server.get("url"), "headers": server.get("headers"), "env": server.get("env")}
        elif server.get("type") == "sse":
            entry = {"url": server.get("url"), "headers": server.get("headers"), "env": server.get("env")}
        else:
            continue
        mcp_servers[name] = {k: v for k, v in entry.items() if v is not None}

    settings = {
        "security": {"auth": {"selectedType": auth_type}},
        "ui": {"theme": "Default"},
        "general": {"previewFeatures": True},
        "mcpServers": mcp_servers,
    }
    return json.dumps(settings, indent=2)


OPENCODE_GATEWAY_MODELS: dict[str, dict[str, str]] = {
    "glm-4.7": {"id": "glm-4.7", "name": "GLM 4.7"},
    "glm-4.7-flash": {"id": "glm-4.7-flash", "name": "GLM 4.7 Flash"},
    "glm-4.7-lite": {"id": "glm-4.7-lite", "name": "GLM 4.7 Lite"},
    "glm-4.6": {"id": "glm-4.6", "name": "GLM 4.6"},
    "kimi-k2": {"id": "kimi-k2", "name": "Kimi K2"},
    "grok-code": {"id": "grok-code-fast-1", "name": "Grok Code Fast 1"},
    "qwen3-coder": {"id": "qwen3-coder", "name": "Qwen3 Coder 480B"},
    "gemini-2.5-pro": {"id": "gemini-2.5-pro", "name": "Gemini 2.5 Pro"},
    "gemini-3-pro": {"id": "gemini-3-pro", "name": "Gemini 3 Pro"},
    "gpt-5": {"id": "gpt-5", "name": "GPT-5"},
    "gpt-5-codex": {"id": "gpt-5-codex", "name": "GPT-5 Codex"},
    "sonnet": {"id": "claude-sonnet-4-5", "name": "Sonnet 4.5"},
}

DAEMON_TOKEN_HEADERS = {"X-Daemon-Token": "{env:DAEMON_TOKEN}"}


def _opencode_provider(
    npm: str,
    name: str,
    base_url: str,
    models: dict[str, dict[str, str]],
    *,
    api_key: str | None = "unused",
) -> dict[str, Any]:
    options: dict[str, Any] = {"baseURL": base_url}
    if api_key is not None:
        options["apiKey"] = api_key
    options["headers"] = dict(DAEMON_TOKEN_HEADERS)
    return {"npm": npm, "name": name, "options": options, "models": copy.deepcopy(models)}


def build_opencode_config(
    public_url: str,
    user_mcp_config: McpConfig | dict[str, Any] | None,
) -> str:
    """Render OpenCode's ``opencode.json``.

    Stdio servers become ``local`` entries with the command and its args in
    one list; URL servers become ``remote`` entries. Model traffic goes
    through the platform's proxy endpoints under ``public_url``.
    """
    mcp: dict[str, dict[str, Any]] = {}
    for name, server in _user_servers(user_mcp_config).items():
        if not isinstance(server, dict):
            continue
        if "command" in server:
            entry = {
                "type": "local",
                "command": [server["command"], *(server.get("args") or [])],
                "enabled": True,
                "environment": server.get("env"),
            }
        elif "url" in server:
            entry = {
                "type": "remote",
                "url": server["url"],
                "enabled": True,
                "headers": server.get("headers"),
            }
        else:
            continue
        mcp[str(name)] = {k: v for k, v in entry.items() if v is not None}

    config = {
        "$schema": "https://opencode.ai/config.json",
        "autoupdate": False,
        "mcp": mcp,
        "provider": {
            "terry": _opencode_provider(
                "@ai-sdk/openai-compatible",
                "Terragon",
                f"{public_url}/api/proxy/gatewayz/v1",
                OPENCODE_GATEWAY_MODELS,
                api_key=None,
            ),
            "terry-google": _opencode_provider(
                "@ai-sdk/google",
                "Terragon Google",
                f"{public_url}/api/proxy/google/v1",
                {
                    "gemini-2.5-pro": {"id": "gemini-2.5-pro", "name": "Gemini 2.5 Pro"},
                    "gemini-3-pro": {"id": "gemini-3-pro-preview", "name": "Gemini 3 Pro"},
                },
            ),
            "terry-ant": _opencode_provider(
                "@ai-sdk/anthropic",
                "Terragon Anthropic",
                f"{public_url}/api/proxy/anthropic/v1",
                {"sonnet": {"id": "claude-sonnet-4-5", "name": "Claude Sonnet 4.5"}},
            ),
            "terry-oai": _opencode_provider(
                "@ai-sdk/openai",
                "Terragon OpenAI",
                f"{public_url}/api/proxy/openai/v1",
                {
                    "gpt-5": {"id": "gpt-5", "name": "GPT-5"},
                    "gpt-5-codex": {"id": "gpt-5-codex", "name": "GPT-5-Codex"},
                },
            ),
        },
    }
    return json.dumps(config, indent=2)
