"""
FastAPI application entry point with router registration.
"""

from terragon_server.app.setup import app

__all__ = ["app"]
