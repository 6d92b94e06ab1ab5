"""Pytest configuration and shared fixtures for terragon-sandbox tests."""

import pytest

from terragon_sandbox.config.core import CoreConfig, DaemonConfig, SandboxConfig
from terragon_sandbox.core.daemon import DaemonBundle
from terragon_sandbox.core.providers.base import ProviderRegistry
from terragon_sandbox.core.sandbox import SandboxManager
from terragon_sandbox.core.types import CreateSandboxOptions

from fakes import FakeProvider, FakeSandboxSession


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def core_config():
    """CoreConfig with timeouts short enough for unit tests."""
    return CoreConfig(
        sandbox=SandboxConfig(
            default_provider="e2b",
            enabled_providers=["e2b", "daytona"],
            readiness_timeout_ms=50,
            readiness_poll_interval_ms=1,
        ),
        daemon=DaemonConfig(ready_timeout_ms=50, ready_poll_interval_ms=1),
    )


@pytest.fixture
def daemon_bundle():
    return DaemonBundle(daemon_script="// daemon", mcp_server_script="// mcp server")


# ============================================================================
# Sandbox Fixtures
# ============================================================================


@pytest.fixture
def fake_session():
    return FakeSandboxSession()


@pytest.fixture
def fake_provider():
    return FakeProvider("e2b")


@pytest.fixture
def registry(core_config, fake_provider):
    registry = ProviderRegistry(core_config)
    registry.register(fake_provider)
    return registry


@pytest.fixture
def sandbox_manager(core_config, registry, daemon_bundle):
    return SandboxManager(core_config, registry, daemon_bundle)


@pytest.fixture
def sandbox_options():
    """Options for a plain sandbox on the fake provider."""
    return CreateSandboxOptions(
        thread_name="Fix the bug",
        user_id="user-1",
        user_name="Ada Lovelace",
        user_email="ada@example.com",
        github_access_token="ghp_token",
        github_repo_full_name="acme/widgets",
        repo_base_branch_name="main",
        sandbox_provider="e2b",
        public_url="https://app.example.com",
    )
