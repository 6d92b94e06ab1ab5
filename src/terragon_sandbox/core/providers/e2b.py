"""E2B sandbox provider."""

import math
from typing import Any

import structlog
from e2b import AsyncSandbox, CommandExitException
from e2b.exceptions import NotFoundException, TimeoutException

from terragon_sandbox.config.core import CoreConfig
from terragon_sandbox.core.errors import (
    SandboxCommandError,
    SandboxFileNotFoundError,
    SandboxProviderError,
    SandboxTimeoutError,
)
from terragon_sandbox.core.providers.base import BaseSandboxSession, RetryPolicy, call_with_retry
from terragon_sandbox.core.types import CreateSandboxOptions, SandboxSize

logger = structlog.get_logger(__name__)

# Default per-command timeout when the caller does not set one
DEFAULT_COMMAND_TIMEOUT_S = 60


class E2BSandboxSession(BaseSandboxSession):
    """Session backed by an E2B sandbox. Commands run as root."""

    sandbox_provider = "e2b"

    def __init__(self, sandbox: Any, *, config: CoreConfig) -> None:
        super().__init__(
            sandbox.sandbox_id,
            repo_dir=config.sandbox.repo_dir,
            home_dir=config.sandbox.home_dir,
        )
        self.sandbox = sandbox
        self.config = config

    async def _run_command(
        self,
        command: str,
        *,
        cwd: str,
        timeout_ms: int | None,
        env: dict[str, str] | None,
    ) -> str:
        timeout_s = math.ceil(timeout_ms / 1000) if timeout_ms else DEFAULT_COMMAND_TIMEOUT_S
        try:
            result = await call_with_retry(
                self.sandbox.commands.run,
                command,
                cwd=cwd,
                envs=env,
                timeout=timeout_s,
                user="root",
                retry_policy=RetryPolicy.UNSAFE,
                passthrough=(CommandExitException, TimeoutException),
            )
        except CommandExitException as e:
            raise SandboxCommandError(command, e.exit_code, stdout=e.stdout, stderr=e.stderr) from e
        except TimeoutException as e:
            raise SandboxTimeoutError(f"Command timed out after {timeout_s}s: {command[:200]}") from e
        return result.stdout

    async def _run_background_command(self, command: str, *, env: dict[str, str]) -> None:
        await call_with_retry(
            self.sandbox.commands.run,
            command,
            background=True,
            envs=env,
            timeout=0,
            user="root",
            retry_policy=RetryPolicy.UNSAFE,
        )

    async def _read_file(self, path: str) -> str:
        try:
            return await call_with_retry(
                self.sandbox.files.read,
                path,
                user="root",
                retry_policy=RetryPolicy.SAFE,
                passthrough=(NotFoundException,),
            )
        except NotFoundException as e:
            raise SandboxFileNotFoundError(f"File not found: {path}") from e

    async def _write_file(self, path: str, content: str) -> None:
        # Parent directories are created by E2B
        await call_with_retry(
            self.sandbox.files.write,
            path,
            content,
            user="root",
            retry_policy=RetryPolicy.SAFE,
        )

    async def _shutdown(self) -> None:
        await call_with_retry(self.sandbox.kill, retry_policy=RetryPolicy.SAFE)
        logger.info("Sandbox killed", sandbox_id=self.sandbox_id)

    async def _hibernate(self) -> None:
        await call_with_retry(self.sandbox.beta_pause, retry_policy=RetryPolicy.SAFE)

    async def _extend_life(self) -> None:
        await call_with_retry(
            self.sandbox.set_timeout,
            self.config.e2b.extend_seconds,
            retry_policy=RetryPolicy.SAFE,
        )


class E2BProvider:
    """Creates and resumes E2B sandboxes from per-size templates."""

    name = "e2b"

    def __init__(self, config: CoreConfig) -> None:
        self.config = config

    def _connection_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"api_key": self.config.e2b.api_key}
        if self.config.e2b.domain:
            kwargs["domain"] = self.config.e2b.domain
        return kwargs

    def supports_size(self, size: SandboxSize) -> bool:
        return size in self.config.e2b.templates

    async def create(self, options: CreateSandboxOptions) -> E2BSandboxSession:
        template = self.config.e2b.templates.get(options.sandbox_size)
        if template is None:
            raise SandboxProviderError(
                f"No E2B template configured for size '{options.sandbox_size}'"
            )

        logger.info("Creating sandbox from template", provider=self.name, template=template)
        sandbox = await call_with_retry(
            AsyncSandbox.create,
            template=template,
            timeout=self.config.e2b.timeout_seconds,
            metadata={"user_id": options.user_id, "thread_name": options.thread_name},
            retry_policy=RetryPolicy.SAFE,
            **self._connection_kwargs(),
        )
        logger.info("E2B sandbox created", sandbox_id=sandbox.sandbox_id)
        return E2BSandboxSession(sandbox, config=self.config)

    async def get(self, sandbox_id: str) -> E2BSandboxSession | None:
        """Connect to a sandbox, resuming it if it was paused."""
        try:
            sandbox = await call_with_retry(
                AsyncSandbox.connect,
                sandbox_id,
                retry_policy=RetryPolicy.SAFE,
                passthrough=(NotFoundException,),
                **self._connection_kwargs(),
            )
        except NotFoundException:
            logger.info("E2B sandbox not found", sandbox_id=sandbox_id)
            return None
        return E2BSandboxSession(sandbox, config=self.config)
