"""
FastAPI application setup, initialization, and middleware configuration.

This module contains:
- Application lifespan management (startup/shutdown)
- Global state initialization (sandbox config, provider registry, analysis service)
- Middleware setup (CORS, request ID)
- Router registration
"""

# ============================================================================
# Imports and Global Variables
# ============================================================================
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from terragon_server.config.logging_config import configure_logging
from terragon_server.config.settings import (
    get_allowed_origins,
    get_analysis_rate_limit_per_hour,
)
from terragon_server.services.analysis_service import AnalysisService, InMemoryAnalysisStore
from terragon_server.services.background_task_manager import BackgroundTaskManager
from terragon_server.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Global variables
core_config = None  # Sandbox orchestration configuration (sandbox_config.yaml)
provider_registry = None  # Registered sandbox providers
analysis_service: Optional[AnalysisService] = None  # None until startup succeeds
rate_limiter: Optional[RateLimiter] = None


# ============================================================================
# Lifespan Context Manager
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources when server starts, cleanup when stops."""
    global core_config, provider_registry, analysis_service, rate_limiter

    # Configure logging first
    configure_logging()

    rate_limiter = RateLimiter(limit=get_analysis_rate_limit_per_hour())

    try:
        manager = BackgroundTaskManager.get_instance()
        await manager.start_cleanup_task()
    except Exception as e:
        logger.warning(f"Failed to start BackgroundTaskManager cleanup task: {e}")

    try:
        from terragon_sandbox.config import load_core_from_files
        from terragon_sandbox.core.daemon import DaemonBundle
        from terragon_sandbox.core.providers import build_default_registry
        from terragon_sandbox.core.sandbox import SandboxManager

        logger.info("Loading sandbox configuration...")
        core_config = await load_core_from_files()
        core_config.validate_api_keys()

        bundle_dir = core_config.resolve_bundle_dir()
        if bundle_dir is None:
            raise ValueError("daemon.bundle_dir is not configured")
        bundle = await DaemonBundle.from_directory(bundle_dir)

        provider_registry = build_default_registry(core_config)
        sandbox_manager = SandboxManager(core_config, provider_registry, bundle)

        analysis_service = AnalysisService(
            sandbox_manager=sandbox_manager,
            registry=provider_registry,
            dependencies=InMemoryAnalysisStore(
                github_access_token=os.getenv("GITHUB_ACCESS_TOKEN"),
            ),
            public_url=os.getenv("TERRAGON_PUBLIC_URL", ""),
        )
        logger.info(
            f"Analysis service initialized "
            f"(providers={core_config.sandbox.enabled_providers})"
        )

    except FileNotFoundError as e:
        logger.warning(f"Sandbox config not found: {e}")
        logger.warning("Analysis endpoints will not be available")
    except Exception as e:
        logger.warning(f"Failed to initialize analysis service: {e}")
        logger.warning("Analysis endpoints will not be available")

    yield  # Server is running

    logger.info("Application shutdown started...")

    # Cancel running analyses first so their sandboxes get shut down
    try:
        manager = BackgroundTaskManager.get_instance()
        await manager.shutdown(timeout=50.0)
    except Exception as e:
        logger.error(f"Error during BackgroundTaskManager shutdown: {e}")

    if provider_registry is not None:
        try:
            await provider_registry.close()
        except Exception as e:
            logger.warning(f"Error closing sandbox providers: {e}")

    analysis_service = None
    logger.info("Application shutdown complete")


# ============================================================================
# FastAPI App Initialization and Middleware Setup
# ============================================================================
app = FastAPI(
    title="Terragon Sandbox Server",
    version="0.1.0",
    lifespan=lifespan,
)


class RequestIDMiddleware:
    """Add request ID for tracing without using BaseHTTPMiddleware"""
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Let OPTIONS requests pass through immediately for CORS preflight
        if scope.get("method") == "OPTIONS":
            await self.app(scope, receive, send)
            return

        trace_id = str(uuid4())
        scope.setdefault("state", {})["trace_id"] = trace_id

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-trace-id", trace_id.encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


# Middleware runs in reverse order of registration: CORS first, then request ID
app.add_middleware(RequestIDMiddleware)

allowed_origins = get_allowed_origins()
logger.info(f"Allowed origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ============================================================================
# Router Registration
# ============================================================================
from terragon_server.app.analyze import router as analyze_router  # noqa: E402
from terragon_server.app.utilities import health_router  # noqa: E402

app.include_router(analyze_router)  # /api/v1/analyze-codebase/* - Streamed analysis
app.include_router(health_router)  # /health - Health check
