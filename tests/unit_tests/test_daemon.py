"""Tests for daemon installation and log retrieval."""

import json
import shutil
import subprocess

import pytest

from terragon_sandbox.config.core import DaemonConfig
from terragon_sandbox.core.daemon import (
    DaemonBundle,
    build_daemon_command,
    build_daemon_env,
    build_daemon_kill_command,
    get_daemon_logs,
    install_daemon,
    serialize_feature_flags,
    write_user_skills,
)
from terragon_sandbox.core.errors import DaemonInstallError, SandboxCommandError
from terragon_sandbox.core.skills_config import SkillsConfig, UserSkill
from terragon_sandbox.core.types import (
    BuiltInCreditsCredentials,
    EnvironmentVariable,
    EnvVarCredentials,
    JsonFileCredentials,
)

PIPE_PROBE = "test -p /tmp/terragon-daemon.pipe && echo ready || echo pending"


@pytest.fixture
def daemon_config():
    return DaemonConfig(ready_timeout_ms=50, ready_poll_interval_ms=1)


async def install(session, bundle, config, **overrides):
    kwargs = dict(
        environment_variables=[],
        agent_credentials=None,
        github_access_token="ghp_token",
        public_url="https://app.example.com",
        feature_flags={"fast": True},
        bundle=bundle,
        config=config,
    )
    kwargs.update(overrides)
    await install_daemon(session, **kwargs)


class TestBuildDaemonEnv:
    """Tests for build_daemon_env."""

    def test_platform_keys_always_win(self):
        """Test user variables cannot replace TERRAGON, GH_TOKEN or the feature flags."""
        env = build_daemon_env(
            environment_variables=[
                EnvironmentVariable(key="GH_TOKEN", value="stolen"),
                EnvironmentVariable(key="TERRAGON", value="false"),
                EnvironmentVariable(key="TERRAGON_FEATURE_FLAGS", value="{}"),
            ],
            agent_credentials=EnvVarCredentials(key="GH_TOKEN", value="also-stolen"),
            github_access_token="ghp_real",
            feature_flags={"a": 1},
        )

        assert env["GH_TOKEN"] == "ghp_real"
        assert env["TERRAGON"] == "true"
        assert env["TERRAGON_FEATURE_FLAGS"] == '{"a":1}'

    def test_user_values_override_bash_timeout(self):
        """Test user variables and env-var credentials may replace BASH_MAX_TIMEOUT_MS."""
        env = build_daemon_env(
            environment_variables=[EnvironmentVariable(key="BASH_MAX_TIMEOUT_MS", value="5")],
            agent_credentials=None,
            github_access_token="t",
            feature_flags=None,
        )
        assert env["BASH_MAX_TIMEOUT_MS"] == "5"

        env = build_daemon_env(
            environment_variables=[EnvironmentVariable(key="BASH_MAX_TIMEOUT_MS", value="5")],
            agent_credentials=EnvVarCredentials(key="BASH_MAX_TIMEOUT_MS", value="9"),
            github_access_token="t",
            feature_flags=None,
        )
        assert env["BASH_MAX_TIMEOUT_MS"] == "9"

    def test_env_var_credentials_are_injected(self):
        """Test an env-var credential becomes a daemon variable."""
        env = build_daemon_env(
            environment_variables=[EnvironmentVariable(key="FOO", value="bar")],
            agent_credentials=EnvVarCredentials(key="ANTHROPIC_API_KEY", value="sk-1"),
            github_access_token="t",
            feature_flags=None,
        )

        assert env["FOO"] == "bar"
        assert env["ANTHROPIC_API_KEY"] == "sk-1"
        assert env["BASH_MAX_TIMEOUT_MS"] == "60000"

    def test_other_credentials_add_nothing(self):
        """Test json-file and built-in credentials do not touch the environment."""
        for credentials in (JsonFileCredentials(contents="{}"), BuiltInCreditsCredentials()):
            env = build_daemon_env(
                environment_variables=[],
                agent_credentials=credentials,
                github_access_token="t",
                feature_flags=None,
            )
            assert set(env) == {"BASH_MAX_TIMEOUT_MS", "TERRAGON", "GH_TOKEN", "TERRAGON_FEATURE_FLAGS"}

    def test_empty_feature_flags_serialize_to_empty_object(self):
        """Test missing feature flags still produce valid JSON."""
        assert serialize_feature_flags(None) == "{}"
        assert serialize_feature_flags({}) == "{}"


class TestBuildDaemonCommand:
    """Tests for build_daemon_command."""

    def test_with_public_url(self):
        """Test the callback URL is passed when present."""
        command = build_daemon_command("https://app.example.com", DaemonConfig())

        assert command == (
            "node /tmp/terragon-daemon.mjs --url https://app.example.com "
            "--mcp-config-path /tmp/mcp-server.json"
        )

    def test_without_public_url(self):
        """Test --url is omitted for an empty URL."""
        command = build_daemon_command("", DaemonConfig())

        assert command == "node /tmp/terragon-daemon.mjs --mcp-config-path /tmp/mcp-server.json"


class TestBuildDaemonKillCommand:
    """Tests for build_daemon_kill_command."""

    def test_pattern_does_not_match_itself(self):
        """Test the bracketed pattern still names the daemon path."""
        command = build_daemon_kill_command(DaemonConfig())

        assert command == "pkill -f '[/]tmp/terragon-daemon.mjs' || true"
        assert "/tmp/terragon-daemon.mjs" not in command

    @pytest.mark.skipif(
        shutil.which("pkill") is None or shutil.which("bash") is None,
        reason="requires bash and pkill",
    )
    def test_invoking_shell_survives(self, tmp_path):
        """Test the command exits cleanly when run through bash -c."""
        config = DaemonConfig(daemon_path=str(tmp_path / "terragon-daemon.mjs"))

        result = subprocess.run(
            ["bash", "-c", build_daemon_kill_command(config)],
            capture_output=True,
            timeout=10,
        )

        assert result.returncode == 0


class TestInstallDaemon:
    """Tests for install_daemon."""

    @pytest.mark.asyncio
    async def test_writes_payloads_and_manifest(self, fake_session, daemon_bundle, daemon_config):
        """Test the three bootstrap files are written."""
        await install(fake_session, daemon_bundle, daemon_config)

        assert fake_session.files["/tmp/terragon-daemon.mjs"] == "// daemon"
        assert fake_session.files["/tmp/terry-mcp-server.mjs"] == "// mcp server"
        manifest = json.loads(fake_session.files["/tmp/mcp-server.json"])
        assert manifest["mcpServers"]["terry"] == {
            "command": "node",
            "args": ["/tmp/terry-mcp-server.mjs"],
        }

    @pytest.mark.asyncio
    async def test_manifest_protects_built_in_server(self, fake_session, daemon_bundle, daemon_config):
        """Test a user entry under the built-in key does not reach the manifest."""
        await install(
            fake_session,
            daemon_bundle,
            daemon_config,
            user_mcp_config={"mcpServers": {"terry": {"command": "evil"}, "docs": {"url": "https://d"}}},
        )

        manifest = json.loads(fake_session.files["/tmp/mcp-server.json"])
        assert manifest["mcpServers"]["terry"]["command"] == "node"
        assert manifest["mcpServers"]["docs"] == {"url": "https://d"}

    @pytest.mark.asyncio
    async def test_starts_daemon_in_background_with_env(self, fake_session, daemon_bundle, daemon_config):
        """Test the daemon is restarted and launched with the composed environment."""
        await install(fake_session, daemon_bundle, daemon_config)

        commands = fake_session.command_strings
        chmod = commands.index("chmod +x /tmp/terragon-daemon.mjs")
        pkill = commands.index("pkill -f '[/]tmp/terragon-daemon.mjs' || true")
        assert chmod < pkill
        assert PIPE_PROBE in commands[pkill:]

        assert len(fake_session.background_commands) == 1
        background = fake_session.background_commands[0]
        assert background["command"].startswith("node /tmp/terragon-daemon.mjs --url https://app.example.com")
        assert background["env"]["GH_TOKEN"] == "ghp_token"
        assert background["env"]["TERRAGON_FEATURE_FLAGS"] == '{"fast":true}'

    @pytest.mark.asyncio
    async def test_writes_json_file_credentials(self, fake_session, daemon_bundle, daemon_config):
        """Test json-file credentials land in the agent's credential path."""
        await install(
            fake_session,
            daemon_bundle,
            daemon_config,
            agent="claudeCode",
            agent_credentials=JsonFileCredentials(contents='{"token": "x"}'),
        )

        assert fake_session.files["/root/.claude/.credentials.json"] == '{"token": "x"}'

    @pytest.mark.asyncio
    async def test_gemini_agent_gets_settings(self, fake_session, daemon_bundle, daemon_config):
        """Test the gemini agent receives a settings.json with user servers."""
        await install(
            fake_session,
            daemon_bundle,
            daemon_config,
            agent="gemini",
            user_mcp_config={"mcpServers": {"local": {"command": "run"}}},
        )

        settings = json.loads(fake_session.files["/root/.gemini/settings.json"])
        assert settings["mcpServers"] == {"local": {"command": "run"}}

    @pytest.mark.asyncio
    async def test_opencode_agent_gets_config(self, fake_session, daemon_bundle, daemon_config):
        """Test the opencode agent receives opencode.json with the gateway providers."""
        await install(
            fake_session,
            daemon_bundle,
            daemon_config,
            agent="opencode",
            user_mcp_config={"mcpServers": {"docs": {"url": "https://docs.example.com/mcp"}}},
        )

        config = json.loads(fake_session.files["/root/.config/opencode/opencode.json"])
        assert config["mcp"]["terry"]["command"] == ["node", "/tmp/terry-mcp-server.mjs"]
        assert config["mcp"]["docs"] == {
            "type": "remote",
            "url": "https://docs.example.com/mcp",
            "enabled": True,
        }
        assert config["provider"]["terry"]["options"]["baseURL"] == (
            "https://app.example.com/api/proxy/gatewayz/v1"
        )
        assert "/root/.gemini/settings.json" not in fake_session.files

    @pytest.mark.asyncio
    async def test_quotes_daemon_path(self, fake_session, daemon_bundle):
        """Test a daemon path with spaces is quoted in shell commands."""
        config = DaemonConfig(
            daemon_path="/tmp/terragon dir/daemon.mjs",
            ready_timeout_ms=50,
            ready_poll_interval_ms=1,
        )

        await install(fake_session, daemon_bundle, config)

        commands = fake_session.command_strings
        assert "chmod +x '/tmp/terragon dir/daemon.mjs'" in commands
        assert "pkill -f '[/]tmp/terragon dir/daemon.mjs' || true" in commands

    @pytest.mark.asyncio
    async def test_writes_user_skills(self, fake_session, daemon_bundle, daemon_config):
        """Test configured skills are written into the repository."""
        skills = SkillsConfig(skills={
            "deploy": UserSkill(name="deploy", description="Deploy", content="Ship it"),
        })

        await install(fake_session, daemon_bundle, daemon_config, skills_config=skills)

        content = fake_session.files["/root/repo/.claude/skills/deploy/SKILL.md"]
        assert content.startswith("---\nname: deploy\n")
        assert content.endswith("Ship it\n")

    @pytest.mark.asyncio
    async def test_wraps_sandbox_errors(self, fake_session, daemon_bundle, daemon_config):
        """Test a failing install step raises DaemonInstallError."""
        fake_session.responses["chmod +x /tmp/terragon-daemon.mjs"] = SandboxCommandError(
            "chmod +x /tmp/terragon-daemon.mjs", 1, stderr="denied"
        )

        with pytest.raises(DaemonInstallError) as exc_info:
            await install(fake_session, daemon_bundle, daemon_config)

        assert isinstance(exc_info.value.__cause__, SandboxCommandError)
        assert fake_session.background_commands == []

    @pytest.mark.asyncio
    async def test_times_out_when_pipe_never_appears(self, fake_session, daemon_bundle, daemon_config):
        """Test a daemon that never opens its pipe fails the install."""
        fake_session.responses[PIPE_PROBE] = "pending\n"

        with pytest.raises(DaemonInstallError, match="did not become ready"):
            await install(fake_session, daemon_bundle, daemon_config)


class TestWriteUserSkills:
    """Tests for write_user_skills."""

    @pytest.mark.asyncio
    async def test_returns_paths_in_order(self, fake_session):
        """Test every skill path is returned in config order."""
        skills = SkillsConfig(skills={
            "a": UserSkill(name="a", description="A", content="a"),
            "b": UserSkill(name="b", description="B", content="b"),
        })

        paths = await write_user_skills(fake_session, skills)

        assert paths == [
            "/root/repo/.claude/skills/a/SKILL.md",
            "/root/repo/.claude/skills/b/SKILL.md",
        ]


class TestGetDaemonLogs:
    """Tests for get_daemon_logs."""

    @pytest.mark.asyncio
    async def test_parses_json_lines_and_keeps_raw(self, fake_session):
        """Test JSON lines are decoded, others kept as strings, blanks dropped."""
        fake_session.daemon_log = '{"level": "info", "msg": "started"}\n\nnot json\n'

        logs = await get_daemon_logs(fake_session)

        assert logs == [{"level": "info", "msg": "started"}, "not json"]
        command = fake_session.commands[-1]
        assert command["command"] == "tail -n 1000 /tmp/terragon-daemon.log"
        assert command["cwd"] == "/"
        assert command["timeout_ms"] == 5000

    @pytest.mark.asyncio
    async def test_raw_mode(self, fake_session):
        """Test parse_json=False returns the raw lines."""
        fake_session.daemon_log = '{"a": 1}\nplain\n'

        logs = await get_daemon_logs(fake_session, max_lines=10, parse_json=False)

        assert logs == ['{"a": 1}', "plain"]
        assert fake_session.commands[-1]["command"] == "tail -n 10 /tmp/terragon-daemon.log"


class TestDaemonBundle:
    """Tests for DaemonBundle.from_directory."""

    @pytest.mark.asyncio
    async def test_loads_payloads(self, tmp_path):
        """Test both payloads are read from the bundle directory."""
        (tmp_path / "terragon-daemon.mjs").write_text("daemon")
        (tmp_path / "terry-mcp-server.mjs").write_text("mcp")

        bundle = await DaemonBundle.from_directory(tmp_path)

        assert bundle == DaemonBundle(daemon_script="daemon", mcp_server_script="mcp")

    @pytest.mark.asyncio
    async def test_missing_payload_raises(self, tmp_path):
        """Test a missing payload surfaces as FileNotFoundError."""
        (tmp_path / "terragon-daemon.mjs").write_text("daemon")

        with pytest.raises(FileNotFoundError):
            await DaemonBundle.from_directory(tmp_path)
