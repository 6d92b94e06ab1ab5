"""Core sandbox orchestration types and errors."""

from terragon_sandbox.core.errors import (
    DaemonInstallError,
    SandboxAbortedError,
    SandboxCommandError,
    SandboxError,
    SandboxFileNotFoundError,
    SandboxNotReadyError,
    SandboxProviderError,
    SandboxTimeoutError,
    SandboxTransientError,
)
from terragon_sandbox.core.types import (
    CreateSandboxOptions,
    SandboxProviderName,
    SandboxSession,
    SandboxSize,
    SandboxStatus,
    StatusUpdate,
)

__all__ = [
    "CreateSandboxOptions",
    "DaemonInstallError",
    "SandboxAbortedError",
    "SandboxCommandError",
    "SandboxError",
    "SandboxFileNotFoundError",
    "SandboxNotReadyError",
    "SandboxProviderError",
    "SandboxProviderName",
    "SandboxSession",
    "SandboxSize",
    "SandboxStatus",
    "SandboxTimeoutError",
    "SandboxTransientError",
    "StatusUpdate",
]
