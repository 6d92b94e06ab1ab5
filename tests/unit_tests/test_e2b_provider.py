"""Tests for the E2B provider with the SDK mocked out."""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from e2b.exceptions import NotFoundException, TimeoutException

from terragon_sandbox.core.errors import (
    SandboxError,
    SandboxFileNotFoundError,
    SandboxProviderError,
    SandboxTimeoutError,
)
from terragon_sandbox.core.providers.e2b import E2BProvider, E2BSandboxSession


def make_sdk_sandbox(sandbox_id="e2b-123"):
    sandbox = MagicMock()
    sandbox.sandbox_id = sandbox_id
    sandbox.commands.run = AsyncMock(return_value=MagicMock(stdout="ok\n"))
    sandbox.files.read = AsyncMock(return_value="content")
    sandbox.files.write = AsyncMock()
    sandbox.kill = AsyncMock()
    sandbox.beta_pause = AsyncMock()
    sandbox.set_timeout = AsyncMock()
    return sandbox


@pytest.fixture
def sdk_sandbox():
    return make_sdk_sandbox()


@pytest.fixture
def session(sdk_sandbox, core_config):
    return E2BSandboxSession(sdk_sandbox, config=core_config)


class TestE2BSandboxSession:

    @pytest.mark.asyncio
    async def test_run_command_as_root_in_repo(self, session, sdk_sandbox):
        """Test commands run as root with cwd and timeout converted to seconds."""
        output = await session.run_command("ls", timeout_ms=1500, env={"A": "1"})

        assert output == "ok\n"
        sdk_sandbox.commands.run.assert_awaited_once_with(
            "ls", cwd="/root/repo", envs={"A": "1"}, timeout=2, user="root"
        )

    @pytest.mark.asyncio
    async def test_command_timeout_maps_to_sandbox_error(self, session, sdk_sandbox):
        sdk_sandbox.commands.run.side_effect = TimeoutException("deadline exceeded")

        with pytest.raises(SandboxTimeoutError, match="timed out after 60s"):
            await session.run_command("sleep 100")

    @pytest.mark.asyncio
    async def test_sdk_failure_maps_to_sandbox_error(self, session, sdk_sandbox):
        """Test an unrecognised SDK failure surfaces as SandboxError."""
        sdk_sandbox.commands.run.side_effect = RuntimeError("sandbox is not running")

        with pytest.raises(SandboxError, match="sandbox is not running") as exc_info:
            await session.run_command("ls")

        assert isinstance(exc_info.value, SandboxProviderError)
        assert sdk_sandbox.commands.run.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, session, sdk_sandbox):
        """Test a missing file becomes SandboxFileNotFoundError with the resolved path."""
        sdk_sandbox.files.read.side_effect = NotFoundException("no such file")

        with pytest.raises(SandboxFileNotFoundError, match="/root/repo/README.md"):
            await session.read_text_file("README.md")

    @pytest.mark.asyncio
    async def test_background_command(self, session, sdk_sandbox):
        await session.run_background_command("node daemon.mjs", env={"TERRAGON": "true"})

        sdk_sandbox.commands.run.assert_awaited_once_with(
            "node daemon.mjs", background=True, envs={"TERRAGON": "true"}, timeout=0, user="root"
        )

    @pytest.mark.asyncio
    async def test_lifecycle_calls(self, session, sdk_sandbox, core_config):
        """Test hibernate pauses, extend resets the timeout and shutdown kills once."""
        await session.hibernate()
        await session.extend_life()
        await session.shutdown()
        await session.shutdown()

        sdk_sandbox.beta_pause.assert_awaited_once()
        sdk_sandbox.set_timeout.assert_awaited_once_with(core_config.e2b.extend_seconds)
        sdk_sandbox.kill.assert_awaited_once()


class TestE2BProvider:

    @pytest.mark.asyncio
    async def test_create_uses_size_template(self, core_config, sandbox_options):
        sdk_sandbox = make_sdk_sandbox("e2b-new")
        core_config.e2b.api_key = "e2b-key"
        provider = E2BProvider(core_config)

        with patch("terragon_sandbox.core.providers.e2b.AsyncSandbox") as mock_sandbox_cls:
            mock_sandbox_cls.create = AsyncMock(return_value=sdk_sandbox)
            session = await provider.create(sandbox_options)

        assert session.sandbox_id == "e2b-new"
        kwargs = mock_sandbox_cls.create.await_args.kwargs
        assert kwargs["template"] == "terragon-small"
        assert kwargs["api_key"] == "e2b-key"
        assert kwargs["timeout"] == core_config.e2b.timeout_seconds

    @pytest.mark.asyncio
    async def test_create_unknown_size(self, core_config, sandbox_options):
        """Test a size without a template is a provider error."""
        core_config.e2b.templates = {"small": "terragon-small"}
        provider = E2BProvider(core_config)

        assert provider.supports_size("large") is False
        with pytest.raises(SandboxProviderError, match="large"):
            await provider.create(replace(sandbox_options, sandbox_size="large"))

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, core_config):
        provider = E2BProvider(core_config)

        with patch("terragon_sandbox.core.providers.e2b.AsyncSandbox") as mock_sandbox_cls:
            mock_sandbox_cls.connect = AsyncMock(side_effect=NotFoundException("gone"))
            assert await provider.get("e2b-old") is None
