"""Remote sandbox lifecycle orchestration for coding agents."""

from terragon_sandbox.config import CoreConfig, load_core_from_files
from terragon_sandbox.core import CreateSandboxOptions, SandboxError, SandboxSession
from terragon_sandbox.core.daemon import DaemonBundle, get_daemon_logs, install_daemon
from terragon_sandbox.core.providers import ProviderRegistry, build_default_registry
from terragon_sandbox.core.sandbox import SandboxManager

__version__ = "0.1.0"

__all__ = [
    "CoreConfig",
    "CreateSandboxOptions",
    "DaemonBundle",
    "ProviderRegistry",
    "SandboxError",
    "SandboxManager",
    "SandboxSession",
    "build_default_registry",
    "get_daemon_logs",
    "install_daemon",
    "load_core_from_files",
]
