"""
Codebase Analysis Service

The body of the streamed "analyze codebase" operation: resolve the user's
credentials and settings, acquire a fresh sandbox, run the analyzer inside
it, persist the generated smart context and tear the sandbox down. Progress
and the terminal event go through the operation's ``ProgressStream``.

Persistence and identity lookups are delegated to an ``AnalysisDependencies``
implementation; ``InMemoryAnalysisStore`` serves local development and tests.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from langchain_core.language_models import BaseChatModel

from terragon_sandbox.analysis import analyze_codebase
from terragon_sandbox.core.errors import SandboxAbortedError
from terragon_sandbox.core.providers import ProviderRegistry, choose_sandbox_provider
from terragon_sandbox.core.sandbox import SandboxManager
from terragon_sandbox.core.types import CreateSandboxOptions, SandboxProviderName, SandboxSize, StatusUpdate
from terragon_server.handlers.streaming_handler import ProgressStream, StreamAborted
from terragon_server.models.analysis import AnalysisCompleteData, Environment, UserProfile

logger = logging.getLogger(__name__)

ANALYSIS_MODEL = "claude-3-5-sonnet-latest"
ANALYSIS_MAX_TOKENS = 1024
VERIFY_TIMEOUT_MS = 10000
DEFAULT_ERROR_MESSAGE = "Failed to analyze codebase"


class AnalysisDependencies(Protocol):
    """Lookups and persistence the analysis operation relies on."""

    async def get_environment(self, user_id: str, environment_id: str) -> Optional[Environment]: ...

    async def get_sandbox_provider_setting(self, user_id: str) -> Optional[SandboxProviderName]: ...

    async def get_github_access_token(self, user_id: str) -> Optional[str]: ...

    async def get_sandbox_size(self, user_id: str) -> SandboxSize: ...

    async def get_feature_flags(self, user_id: str) -> Dict[str, Any]: ...

    async def get_default_branch(self, user_id: str, repo_full_name: str) -> str: ...

    async def get_agent_access_token(self, user_id: str, agent: str) -> Optional[str]: ...

    async def save_smart_context(
        self,
        user_id: str,
        environment_id: str,
        content: str,
        generated_at: datetime,
    ) -> None: ...


class InMemoryAnalysisStore:
    """Process-local ``AnalysisDependencies`` implementation."""

    def __init__(
        self,
        github_access_token: Optional[str] = None,
        default_branch: str = "main",
        sandbox_size: SandboxSize = "small",
    ):
        self.environments: Dict[str, Environment] = {}
        self.github_tokens: Dict[str, str] = {}
        self.agent_tokens: Dict[tuple, str] = {}
        self.provider_settings: Dict[str, SandboxProviderName] = {}
        self.feature_flags: Dict[str, Dict[str, Any]] = {}
        self.fallback_github_token = github_access_token
        self.default_branch = default_branch
        self.sandbox_size = sandbox_size

    def add_environment(self, environment: Environment) -> None:
        self.environments[environment.id] = environment

    async def get_environment(self, user_id: str, environment_id: str) -> Optional[Environment]:
        environment = self.environments.get(environment_id)
        if environment is None or environment.user_id != user_id:
            return None
        return environment

    async def get_sandbox_provider_setting(self, user_id: str) -> Optional[SandboxProviderName]:
        return self.provider_settings.get(user_id)

    async def get_github_access_token(self, user_id: str) -> Optional[str]:
        return self.github_tokens.get(user_id, self.fallback_github_token)

    async def get_sandbox_size(self, user_id: str) -> SandboxSize:
        return self.sandbox_size

    async def get_feature_flags(self, user_id: str) -> Dict[str, Any]:
        return dict(self.feature_flags.get(user_id, {}))

    async def get_default_branch(self, user_id: str, repo_full_name: str) -> str:
        return self.default_branch

    async def get_agent_access_token(self, user_id: str, agent: str) -> Optional[str]:
        return self.agent_tokens.get((user_id, agent))

    async def save_smart_context(
        self,
        user_id: str,
        environment_id: str,
        content: str,
        generated_at: datetime,
    ) -> None:
        environment = self.environments[environment_id]
        self.environments[environment_id] = environment.model_copy(
            update={"smart_context": content, "smart_context_generated_at": generated_at}
        )


def create_analysis_llm(api_key: str) -> BaseChatModel:
    """Build the chat model used for convention analysis."""
    from langchain_anthropic import ChatAnthropic

    return ChatAnthropic(
        model=ANALYSIS_MODEL,
        api_key=api_key,
        max_tokens=ANALYSIS_MAX_TOKENS,
        max_retries=5,
        timeout=600.0,
    )


class AnalysisService:
    """Runs streamed codebase analyses."""

    def __init__(
        self,
        sandbox_manager: SandboxManager,
        registry: ProviderRegistry,
        dependencies: AnalysisDependencies,
        public_url: str = "",
        llm_factory: Callable[[str], BaseChatModel] = create_analysis_llm,
        fallback_api_key: Optional[str] = None,
    ):
        self.sandbox_manager = sandbox_manager
        self.registry = registry
        self.dependencies = dependencies
        self.public_url = public_url
        self.llm_factory = llm_factory
        self.fallback_api_key = fallback_api_key if fallback_api_key is not None else os.getenv("ANTHROPIC_API_KEY")

    def create_stream(self, operation: str) -> ProgressStream:
        """Create a progress stream whose sandbox cleanup goes through the manager."""
        return ProgressStream(operation=operation, shutdown=self.sandbox_manager.shutdown_sandbox)

    async def run_analysis(
        self,
        stream: ProgressStream,
        user: UserProfile,
        environment: Environment,
    ) -> None:
        """
        Run one analysis end to end.

        Never raises: failures become a single ``error`` event, a client
        disconnect ends the operation quietly. The sandbox is shut down
        exactly once on every path.
        """
        repo = environment.repo_full_name
        try:
            await self._run(stream, user, environment)
        except (StreamAborted, SandboxAbortedError):
            logger.info(f"[{stream.operation}] Analysis of {repo} aborted by client")
        except asyncio.CancelledError:
            await stream.send_error("Analysis cancelled")
            raise
        except Exception as e:
            logger.error(f"[{stream.operation}] Error in codebase analysis stream: {e}", exc_info=True)
            await stream.send_error(str(e) or DEFAULT_ERROR_MESSAGE)
        finally:
            await stream.release_sandbox()
            await stream.wait_for_cleanup()

    async def _run(self, stream: ProgressStream, user: UserProfile, environment: Environment) -> None:
        deps = self.dependencies
        user_id = user.id
        repo = environment.repo_full_name

        await stream.send_progress("preparing", "Preparing analysis environment...")

        (
            provider_setting,
            github_access_token,
            sandbox_size,
            feature_flags,
            default_branch,
            claude_access_token,
        ) = await asyncio.gather(
            deps.get_sandbox_provider_setting(user_id),
            deps.get_github_access_token(user_id),
            deps.get_sandbox_size(user_id),
            deps.get_feature_flags(user_id),
            deps.get_default_branch(user_id, repo),
            deps.get_agent_access_token(user_id, "claudeCode"),
        )
        stream.raise_if_aborted()

        if not github_access_token:
            await stream.send_error("GitHub access token not found")
            return

        async def no_branch_name() -> None:
            return None

        async def stop_if_aborted(update: StatusUpdate) -> None:
            if stream.aborted:
                raise SandboxAbortedError(
                    f"{stream.operation} aborted by client during {update['sandbox_status']}"
                )

        options = CreateSandboxOptions(
            thread_name=f"Smart Context Analysis - {repo}",
            user_id=user_id,
            user_name=user.name,
            user_email=user.email,
            github_access_token=github_access_token,
            github_repo_full_name=repo,
            repo_base_branch_name=default_branch,
            sandbox_provider=choose_sandbox_provider(
                self.registry,
                user_setting=provider_setting,
                sandbox_size=sandbox_size,
                user_id=user_id,
            ),
            sandbox_size=sandbox_size,
            agent=None,
            create_new_branch=False,
            environment_variables=[],
            agent_credentials=None,
            skip_setup_script=True,
            auto_update_daemon=False,
            public_url=self.public_url,
            feature_flags=feature_flags,
            generate_branch_name=no_branch_name,
            on_status_update=stop_if_aborted,
        )

        await stream.send_progress("creating", f"Creating sandbox for {repo}...")
        sandbox = await self.sandbox_manager.get_or_create_sandbox(None, options)
        stream.track_sandbox(sandbox)
        stream.raise_if_aborted()

        await stream.send_progress("created", f"Sandbox created: {sandbox.sandbox_id}")

        await stream.send_progress("verifying", "Verifying sandbox is ready...")
        await sandbox.run_command("echo ready", timeout_ms=VERIFY_TIMEOUT_MS)
        stream.raise_if_aborted()

        api_key = claude_access_token or self.fallback_api_key
        llm = self.llm_factory(api_key) if api_key else None

        generated_context = await analyze_codebase(
            sandbox,
            repo,
            on_progress=stream.send_progress,
            llm=llm,
        )
        stream.raise_if_aborted()

        await stream.send_progress("saving", "Saving generated context...")
        generated_at = datetime.now(timezone.utc)
        await deps.save_smart_context(user_id, environment.id, generated_context, generated_at)
        logger.info(
            f"[{stream.operation}] Smart context generated for {repo} "
            f"(length={len(generated_context)}, ai_insights={llm is not None})"
        )

        await stream.send_progress("cleanup", "Shutting down sandbox...")
        await stream.release_sandbox()

        complete = AnalysisCompleteData(content=generated_context, generated_at=generated_at.isoformat())
        await stream.send_complete(complete.model_dump(by_alias=True))
