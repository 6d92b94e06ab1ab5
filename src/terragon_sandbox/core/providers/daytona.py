"""Daytona sandbox provider."""

import math
import posixpath
import shlex
import uuid
from typing import Any

import structlog
from daytona_sdk import AsyncDaytona, DaytonaConfig as DaytonaClientConfig, DaytonaError, SessionExecuteRequest
from daytona_sdk.common.daytona import CreateSandboxFromSnapshotParams

from terragon_sandbox.config.core import CoreConfig
from terragon_sandbox.core.errors import SandboxCommandError, SandboxFileNotFoundError, SandboxProviderError
from terragon_sandbox.core.providers.base import BaseSandboxSession, RetryPolicy, call_with_retry
from terragon_sandbox.core.types import CreateSandboxOptions, SandboxSize

logger = structlog.get_logger(__name__)


def _state_value(sandbox: Any) -> str | None:
    state = getattr(sandbox, "state", None)
    if state is None:
        return None
    return state.value if hasattr(state, "value") else str(state)


class DaytonaSandboxSession(BaseSandboxSession):
    """Session backed by a Daytona sandbox."""

    sandbox_provider = "daytona"

    def __init__(self, sandbox: Any, *, config: CoreConfig) -> None:
        super().__init__(
            sandbox.id,
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
        timeout_s = math.ceil(timeout_ms / 1000) if timeout_ms else None
        response = await call_with_retry(
            self.sandbox.process.exec,
            command,
            cwd=cwd,
            env=env,
            timeout=timeout_s,
            retry_policy=RetryPolicy.UNSAFE,
        )
        output = response.result or ""
        if response.exit_code != 0:
            raise SandboxCommandError(command, response.exit_code, stdout=output)
        return output

    async def _run_background_command(self, command: str, *, env: dict[str, str]) -> None:
        # Session commands do not take an env mapping
        if env:
            exports = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
            command = f"env {exports} {command}"

        session_id = f"bg-{uuid.uuid4().hex[:12]}"
        await call_with_retry(
            self.sandbox.process.create_session,
            session_id,
            retry_policy=RetryPolicy.SAFE,
        )
        await call_with_retry(
            self.sandbox.process.execute_session_command,
            session_id,
            SessionExecuteRequest(command=command, run_async=True),
            retry_policy=RetryPolicy.UNSAFE,
        )

    async def _read_file(self, path: str) -> str:
        try:
            content = await call_with_retry(
                self.sandbox.fs.download_file,
                path,
                retry_policy=RetryPolicy.SAFE,
                passthrough=(DaytonaError,),
            )
        except DaytonaError as e:
            raise SandboxFileNotFoundError(f"Failed to read {path}: {e}") from e
        return content.decode("utf-8")

    async def _write_file(self, path: str, content: str) -> None:
        parent = posixpath.dirname(path)
        if parent:
            await self._run_command(f"mkdir -p {shlex.quote(parent)}", cwd="/", timeout_ms=None, env=None)
        await call_with_retry(
            self.sandbox.fs.upload_file,
            content.encode("utf-8"),
            path,
            retry_policy=RetryPolicy.SAFE,
        )

    async def _shutdown(self) -> None:
        await call_with_retry(self.sandbox.delete, retry_policy=RetryPolicy.SAFE)
        logger.info("Sandbox deleted", sandbox_id=self.sandbox_id)

    async def _hibernate(self) -> None:
        if _state_value(self.sandbox) == "stopped":
            logger.info("Sandbox already stopped", sandbox_id=self.sandbox_id)
            return
        await call_with_retry(self.sandbox.stop, timeout=60, retry_policy=RetryPolicy.SAFE)

    async def _extend_life(self) -> None:
        await call_with_retry(
            self.sandbox.set_autostop_interval,
            self.config.daytona.auto_stop_interval,
            retry_policy=RetryPolicy.SAFE,
        )


class DaytonaProvider:
    """Creates and resumes Daytona sandboxes from per-size snapshots."""

    name = "daytona"

    def __init__(self, config: CoreConfig, client: AsyncDaytona | None = None) -> None:
        self.config = config
        self.client = client or AsyncDaytona(
            DaytonaClientConfig(
                api_key=config.daytona.api_key,
                api_url=config.daytona.base_url,
                target=config.daytona.target,
            )
        )

    def supports_size(self, size: SandboxSize) -> bool:
        return size in self.config.daytona.snapshots

    async def create(self, options: CreateSandboxOptions) -> DaytonaSandboxSession:
        snapshot = self.config.daytona.snapshots.get(options.sandbox_size)
        if snapshot is None:
            raise SandboxProviderError(
                f"No Daytona snapshot configured for size '{options.sandbox_size}'"
            )

        logger.info("Creating sandbox from snapshot", provider=self.name, snapshot=snapshot)
        sandbox = await call_with_retry(
            self.client.create,
            CreateSandboxFromSnapshotParams(
                snapshot=snapshot,
                auto_stop_interval=self.config.daytona.auto_stop_interval,
                labels={"user_id": options.user_id, "thread_name": options.thread_name[:63]},
            ),
            timeout=self.config.daytona.create_timeout,
            retry_policy=RetryPolicy.SAFE,
        )
        logger.info("Daytona sandbox created", sandbox_id=sandbox.id)
        return DaytonaSandboxSession(sandbox, config=self.config)

    async def get(self, sandbox_id: str) -> DaytonaSandboxSession | None:
        try:
            sandbox = await call_with_retry(
                self.client.get,
                sandbox_id,
                retry_policy=RetryPolicy.SAFE,
                passthrough=(DaytonaError,),
            )
        except DaytonaError as e:
            logger.info("Daytona sandbox not found", sandbox_id=sandbox_id, error=str(e))
            return None

        state = _state_value(sandbox)
        if state in ("destroyed", "destroying", "error", "build_failed"):
            logger.info("Daytona sandbox is not resumable", sandbox_id=sandbox_id, state=state)
            return None
        if state != "started":
            logger.info("Starting stopped sandbox", sandbox_id=sandbox_id, state=state)
            await call_with_retry(sandbox.start, timeout=60, retry_policy=RetryPolicy.SAFE)

        return DaytonaSandboxSession(sandbox, config=self.config)

    async def close(self) -> None:
        await self.client.close()
