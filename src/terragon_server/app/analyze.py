"""
Codebase analysis endpoint.

POST /api/v1/analyze-codebase/stream starts a smart context analysis for
one of the user's environments and streams progress as Server-Sent Events.
The analysis runs as a background task; the response stream is returned
immediately and drains the operation's ProgressStream.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from terragon_server.app import setup
from terragon_server.config.settings import get_sse_keepalive_interval
from terragon_server.models.analysis import AnalyzeCodebaseRequest, UserProfile
from terragon_server.services.background_task_manager import BackgroundTaskManager
from terragon_server.services.rate_limiter import RateLimitExceeded

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analyze-codebase", tags=["Analysis"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/stream")
async def analyze_codebase_stream(
    request: Request,
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
):
    """
    Stream a codebase analysis.

    Events are ``data: {json}`` frames: ``progress`` events carrying
    ``output.step``, ``output.message`` and ``output.timestamp``, then one
    ``complete`` event (``data.content``, ``data.generatedAt``) or one
    ``error`` event.
    """
    if not x_user_id:
        return _error(401, "Unauthorized")

    service = setup.analysis_service
    if service is None:
        return _error(503, "Analysis service is not initialized")

    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Invalid JSON in request body")

    try:
        payload = AnalyzeCodebaseRequest.model_validate(body)
    except ValidationError:
        return _error(400, "Invalid request body")

    environment = await service.dependencies.get_environment(x_user_id, payload.environment_id)
    if environment is None:
        return _error(404, "Environment not found")

    if setup.rate_limiter is not None:
        try:
            await setup.rate_limiter.check(x_user_id)
        except RateLimitExceeded as e:
            return _error(429, str(e))

    user = UserProfile(
        id=x_user_id,
        name=x_user_name or x_user_id,
        email=x_user_email or f"{x_user_id}@users.noreply.github.com",
    )

    operation_id = f"analysis-{uuid4()}"
    stream = service.create_stream(operation_id)
    await BackgroundTaskManager.get_instance().start_operation(
        operation_id,
        service.run_analysis(stream, user, environment),
        metadata={"user_id": x_user_id, "environment_id": environment.id},
    )
    logger.info(
        f"[{operation_id}] Started analysis of {environment.repo_full_name} for user {x_user_id}"
    )

    return StreamingResponse(
        stream.iter_frames(
            keepalive_interval=get_sse_keepalive_interval(),
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
