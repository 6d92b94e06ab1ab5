"""Provider abstraction shared by every sandbox backend.

``BaseSandboxSession`` implements the ``SandboxSession`` capability on top
of a handful of provider hooks. ``SandboxProvider`` creates and looks up
sessions; ``ProviderRegistry`` maps provider names to instances and picks
one per request.
"""

import asyncio
import posixpath
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol, TypeVar

import structlog

from terragon_sandbox.config.core import CoreConfig
from terragon_sandbox.core.errors import SandboxError, SandboxProviderError, SandboxTransientError
from terragon_sandbox.core.types import (
    CreateSandboxOptions,
    SandboxProviderName,
    SandboxSession,
    SandboxSize,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "remote end closed connection",
    "remotedisconnected",
    "connection aborted",
    "connection reset",
    "broken pipe",
    "timed out",
    "timeout",
    "service unavailable",
    "502",
    "503",
    "504",
)


class RetryPolicy(Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"


def is_transient_error(e: Exception) -> bool:
    message = str(e).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    retry_policy: RetryPolicy,
    passthrough: tuple[type[Exception], ...] = (),
    retries: int = 5,
    initial_delay_s: float = 0.25,
    **kwargs: Any,
) -> T:
    """Call a provider SDK coroutine, retrying transient transport errors.

    Only ``SAFE`` operations (idempotent reads, overwriting uploads,
    lifecycle calls) are retried. ``UNSAFE`` operations such as command
    execution fail fast with ``SandboxTransientError``. Exceptions of the
    ``passthrough`` types and existing ``SandboxError``s are re-raised
    untouched; any other SDK failure becomes ``SandboxProviderError``.
    """
    delay_s = initial_delay_s

    for attempt in range(1, retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if isinstance(e, passthrough) or isinstance(e, SandboxError):
                raise
            if not is_transient_error(e):
                raise SandboxProviderError(
                    f"Sandbox provider call failed: {type(e).__name__}: {e}"
                ) from e

            if retry_policy == RetryPolicy.UNSAFE:
                logger.warning(
                    "Sandbox disconnected during unsafe operation; not retrying automatically",
                    func=getattr(func, "__name__", str(func)),
                    attempt=attempt,
                    error=str(e),
                )
                raise SandboxTransientError(
                    "Sandbox disconnected during command execution; please retry after recovery."
                ) from e

            if attempt == retries:
                raise SandboxTransientError(
                    "Transient sandbox transport error; operation failed after retries"
                ) from e

            logger.debug(
                "Retrying sandbox SDK call after transient error",
                func=getattr(func, "__name__", str(func)),
                attempt=attempt,
                error=str(e),
            )
            await asyncio.sleep(delay_s)
            delay_s *= 2

    raise SandboxTransientError("Transient sandbox transport error")


class BaseSandboxSession:
    """Common ``SandboxSession`` behaviour.

    Subclasses implement the underscore hooks against their SDK. Relative
    paths and a missing ``cwd`` resolve against ``repo_dir``. Shutdown runs
    the provider hook at most once.
    """

    sandbox_provider: SandboxProviderName

    def __init__(self, sandbox_id: str, *, repo_dir: str, home_dir: str) -> None:
        self.sandbox_id = sandbox_id
        self.repo_dir = repo_dir
        self.home_dir = home_dir
        self._shut_down = False

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def resolve_path(self, path: str) -> str:
        if posixpath.isabs(path):
            return path
        return posixpath.join(self.repo_dir, path)

    async def run_command(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_ms: int | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        resolved_cwd = self.resolve_path(cwd) if cwd else self.repo_dir
        logger.debug(
            "Running sandbox command",
            sandbox_id=self.sandbox_id,
            command=command[:100],
            cwd=resolved_cwd,
        )
        return await self._run_command(command, cwd=resolved_cwd, timeout_ms=timeout_ms, env=env)

    async def run_background_command(
        self,
        command: str,
        *,
        env: dict[str, str] | None = None,
    ) -> None:
        logger.debug(
            "Starting background command",
            sandbox_id=self.sandbox_id,
            command=command[:100],
        )
        await self._run_background_command(command, env=env or {})

    async def read_text_file(self, path: str) -> str:
        return await self._read_file(self.resolve_path(path))

    async def write_text_file(self, path: str, content: str) -> None:
        await self._write_file(self.resolve_path(path), content)

    async def shutdown(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down sandbox", sandbox_id=self.sandbox_id, provider=self.sandbox_provider)
        await self._shutdown()

    async def hibernate(self) -> None:
        logger.info("Hibernating sandbox", sandbox_id=self.sandbox_id, provider=self.sandbox_provider)
        await self._hibernate()

    async def extend_life(self) -> None:
        await self._extend_life()

    # Provider hooks

    async def _run_command(
        self,
        command: str,
        *,
        cwd: str,
        timeout_ms: int | None,
        env: dict[str, str] | None,
    ) -> str:
        raise NotImplementedError

    async def _run_background_command(self, command: str, *, env: dict[str, str]) -> None:
        raise NotImplementedError

    async def _read_file(self, path: str) -> str:
        raise NotImplementedError

    async def _write_file(self, path: str, content: str) -> None:
        raise NotImplementedError

    async def _shutdown(self) -> None:
        raise NotImplementedError

    async def _hibernate(self) -> None:
        raise NotImplementedError

    async def _extend_life(self) -> None:
        return None


class SandboxProvider(Protocol):
    """A sandbox backend."""

    name: SandboxProviderName

    def supports_size(self, size: SandboxSize) -> bool: ...

    async def create(self, options: CreateSandboxOptions) -> SandboxSession:
        """Provision a new sandbox and return a session for it."""
        ...

    async def get(self, sandbox_id: str) -> SandboxSession | None:
        """Resume a sandbox by id, or return None if it no longer exists."""
        ...


class ProviderRegistry:
    """Provider instances keyed by name, plus the provider chooser."""

    def __init__(self, config: CoreConfig) -> None:
        self.config = config
        self._providers: dict[str, SandboxProvider] = {}

    def register(self, provider: SandboxProvider) -> None:
        self._providers[provider.name] = provider
        logger.debug("Registered sandbox provider", provider=provider.name)

    def get(self, name: SandboxProviderName) -> SandboxProvider:
        """Return a registered, enabled provider.

        Raises:
            SandboxProviderError: If the provider is unknown or disabled
        """
        if name not in self.config.sandbox.enabled_providers:
            raise SandboxProviderError(f"Sandbox provider '{name}' is not enabled")
        provider = self._providers.get(name)
        if provider is None:
            raise SandboxProviderError(f"Sandbox provider '{name}' is not registered")
        return provider

    async def close(self) -> None:
        """Release SDK clients held by registered providers."""
        for name, provider in self._providers.items():
            close = getattr(provider, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning("Error closing sandbox provider", provider=name, error=str(e))

    def _usable(self, name: str | None, size: SandboxSize) -> bool:
        if not name or name not in self.config.sandbox.enabled_providers:
            return False
        provider = self._providers.get(name)
        return provider is not None and provider.supports_size(size)

    def choose(
        self,
        *,
        user_setting: SandboxProviderName | None,
        sandbox_size: SandboxSize,
        user_id: str,
    ) -> SandboxProviderName:
        """Resolve which backend serves a request.

        The user's setting wins when it is enabled and can serve the size;
        then the configured default; then the first enabled provider that
        can serve the size.

        Raises:
            SandboxProviderError: If no enabled provider can serve the size
        """
        candidates = [user_setting, self.config.sandbox.default_provider]
        candidates.extend(self.config.sandbox.enabled_providers)

        for candidate in candidates:
            if self._usable(candidate, sandbox_size):
                if user_setting and candidate != user_setting:
                    logger.info(
                        "User sandbox provider unavailable, using fallback",
                        user_id=user_id,
                        requested=user_setting,
                        provider=candidate,
                        sandbox_size=sandbox_size,
                    )
                return candidate

        raise SandboxProviderError(
            f"No enabled sandbox provider supports size '{sandbox_size}'"
        )


def choose_sandbox_provider(
    registry: ProviderRegistry,
    *,
    user_setting: SandboxProviderName | None,
    sandbox_size: SandboxSize,
    user_id: str,
) -> SandboxProviderName:
    return registry.choose(user_setting=user_setting, sandbox_size=sandbox_size, user_id=user_id)
