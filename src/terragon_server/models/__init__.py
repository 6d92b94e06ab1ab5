"""Pydantic models for the server API."""
