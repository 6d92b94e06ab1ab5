"""
Health check endpoint.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from terragon_server.app import setup

logger = logging.getLogger(__name__)

# Health checks are unversioned at /health
health_router = APIRouter(tags=["Health"])


@health_router.get("/health")
async def health_check():
    """health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "0.1.0",
        "service": "terragon-sandbox",
        "analysis_available": setup.analysis_service is not None,
    }
