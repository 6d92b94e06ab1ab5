"""Exception hierarchy for sandbox orchestration."""


class SandboxError(RuntimeError):
    """Base class for sandbox orchestration failures."""


class SandboxCommandError(SandboxError):
    """A command executed inside the sandbox exited with a non-zero status."""

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip()
        message = f"Command failed with exit code {exit_code}: {command[:200]}"
        if detail:
            message = f"{message}\n{detail[:1000]}"
        super().__init__(message)


class SandboxFileNotFoundError(SandboxError):
    """A file read from the sandbox does not exist."""


class SandboxTimeoutError(SandboxError):
    """A sandbox operation did not finish within its deadline."""


class SandboxTransientError(SandboxError):
    """Transient sandbox transport error.

    Raised when an operation keeps failing on transport issues after the
    retry budget is spent.
    """


class SandboxNotReadyError(SandboxError):
    """The sandbox never answered the readiness probe."""


class SandboxProviderError(SandboxError):
    """Unknown, disabled or misbehaving sandbox provider."""


class DaemonInstallError(SandboxError):
    """The daemon could not be installed or did not come up."""


class SandboxAbortedError(SandboxError):
    """A status callback asked the manager to stop bootstrapping."""
