"""Sandbox lifecycle management.

``SandboxManager`` acquires sandboxes through the provider registry and
bootstraps new ones: readiness probe, repository checkout, setup script and
daemon install. Callers own the returned session and must release it with
``shutdown_sandbox`` on every exit path.
"""

import asyncio
import time

import structlog

from terragon_sandbox.config.core import CoreConfig
from terragon_sandbox.core.daemon import DaemonBundle, install_daemon
from terragon_sandbox.core.errors import SandboxAbortedError, SandboxError, SandboxNotReadyError
from terragon_sandbox.core.providers.base import BaseSandboxSession, ProviderRegistry
from terragon_sandbox.core.setup import (
    clone_repository,
    configure_git_identity,
    create_branch,
    run_setup_script,
)
from terragon_sandbox.core.types import (
    CreateSandboxOptions,
    SandboxProviderName,
    SandboxSession,
    SandboxStatus,
)

logger = structlog.get_logger(__name__)

READINESS_PROBE_TIMEOUT_MS = 10000


class SandboxManager:
    """Provision, reuse, hibernate, extend and shut down sandboxes."""

    def __init__(
        self,
        config: CoreConfig,
        registry: ProviderRegistry,
        bundle: DaemonBundle,
    ) -> None:
        self.config = config
        self.registry = registry
        self.bundle = bundle

    async def _send_status(
        self,
        options: CreateSandboxOptions,
        session: SandboxSession,
        status: SandboxStatus,
    ) -> None:
        logger.debug("Sandbox status", sandbox_id=session.sandbox_id, status=status)
        if options.on_status_update is None:
            return
        try:
            await options.on_status_update(
                {"sandbox_id": session.sandbox_id, "sandbox_status": status}
            )
        except SandboxAbortedError:
            logger.info("Sandbox bootstrap aborted", sandbox_id=session.sandbox_id, status=status)
            raise
        except Exception as e:
            logger.warning(
                "Status update callback failed",
                sandbox_id=session.sandbox_id,
                status=status,
                error=str(e),
            )

    async def wait_until_ready(self, session: SandboxSession) -> None:
        """Run a trivial command until it succeeds.

        Raises:
            SandboxNotReadyError: If the sandbox does not answer within
                ``readiness_timeout_ms``
        """
        sandbox_config = self.config.sandbox
        deadline = time.monotonic() + sandbox_config.readiness_timeout_ms / 1000
        last_error: SandboxError | None = None

        while True:
            try:
                output = await session.run_command(
                    "echo ready", cwd="/", timeout_ms=READINESS_PROBE_TIMEOUT_MS
                )
                if output.strip() == "ready":
                    return
            except SandboxError as e:
                last_error = e
                logger.debug("Sandbox not ready yet", sandbox_id=session.sandbox_id, error=str(e))

            if time.monotonic() >= deadline:
                message = f"Sandbox {session.sandbox_id} not ready after {sandbox_config.readiness_timeout_ms}ms"
                raise SandboxNotReadyError(message) from last_error
            await asyncio.sleep(sandbox_config.readiness_poll_interval_ms / 1000)

    async def _install_daemon(self, session: SandboxSession, options: CreateSandboxOptions) -> None:
        await install_daemon(
            session,
            environment_variables=options.environment_variables,
            agent_credentials=options.agent_credentials,
            github_access_token=options.github_access_token,
            public_url=options.public_url,
            feature_flags=options.feature_flags,
            bundle=self.bundle,
            user_mcp_config=options.user_mcp_config,
            skills_config=options.skills_config,
            agent=options.agent,
            config=self.config.daemon,
        )

    async def _bootstrap(self, session: SandboxSession, options: CreateSandboxOptions) -> None:
        await self._send_status(options, session, "booting")
        await self.wait_until_ready(session)

        await self._send_status(options, session, "cloning-repo")
        await configure_git_identity(session, user_name=options.user_name, user_email=options.user_email)
        await clone_repository(
            session,
            repo_full_name=options.github_repo_full_name,
            github_access_token=options.github_access_token,
            base_branch_name=options.repo_base_branch_name,
            config=self.config.sandbox,
        )
        if options.create_new_branch and options.generate_branch_name is not None:
            branch_name = await options.generate_branch_name()
            if branch_name:
                await create_branch(session, branch_name)

        if not options.skip_setup_script:
            await self._send_status(options, session, "running-setup-script")
            await run_setup_script(session, config=self.config.sandbox)

        await self._send_status(options, session, "installing-daemon")
        await self._install_daemon(session, options)

    async def get_or_create_sandbox(
        self,
        existing_sandbox_id: str | None,
        options: CreateSandboxOptions,
    ) -> SandboxSession:
        """Return a live session, reusing ``existing_sandbox_id`` when possible.

        A reused sandbox only gets a readiness check (and a daemon reinstall
        when ``auto_update_daemon`` is set). A new sandbox is fully
        bootstrapped; if bootstrapping fails it is shut down before the
        error propagates.
        """
        provider = self.registry.get(options.sandbox_provider)
        log = logger.bind(provider=options.sandbox_provider, user_id=options.user_id)

        if existing_sandbox_id:
            session = await provider.get(existing_sandbox_id)
            if session is not None:
                log.info("Reusing sandbox", sandbox_id=session.sandbox_id)
                await self._send_status(options, session, "booting")
                await self.wait_until_ready(session)
                if options.auto_update_daemon:
                    await self._send_status(options, session, "installing-daemon")
                    await self._install_daemon(session, options)
                await self._send_status(options, session, "ready")
                return session
            log.info("Existing sandbox unavailable, creating a new one", sandbox_id=existing_sandbox_id)

        session = await provider.create(options)
        log.info("Sandbox created", sandbox_id=session.sandbox_id)
        try:
            await self._send_status(options, session, "provisioning")
            await self._bootstrap(session, options)
            await self._send_status(options, session, "ready")
        except BaseException:
            await self.shutdown_sandbox(session)
            raise

        log.info("Sandbox ready", sandbox_id=session.sandbox_id)
        return session

    async def get_sandbox_or_null(
        self,
        sandbox_provider: SandboxProviderName,
        sandbox_id: str,
    ) -> SandboxSession | None:
        """Look up a sandbox without creating or bootstrapping anything."""
        provider = self.registry.get(sandbox_provider)
        return await provider.get(sandbox_id)

    async def hibernate_sandbox(self, session: SandboxSession) -> None:
        await session.hibernate()

    async def extend_sandbox_life(self, session: SandboxSession) -> None:
        """Push back the provider's idle shutdown for ``session``."""
        if isinstance(session, BaseSandboxSession):
            await session.extend_life()
            logger.debug("Extended sandbox life", sandbox_id=session.sandbox_id)
        else:
            logger.debug("Session does not support extending its life", sandbox_id=session.sandbox_id)

    async def shutdown_sandbox(self, session: SandboxSession | None) -> None:
        """Shut down ``session``; failures are logged, never raised."""
        if session is None:
            return
        try:
            await session.shutdown()
        except Exception as e:
            logger.error(
                "Error shutting down sandbox",
                sandbox_id=session.sandbox_id,
                error=str(e),
            )
