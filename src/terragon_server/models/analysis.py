"""
Request and response models for the codebase analysis API.

An environment binds a user to a repository; smart context generated for
it is stored back on the environment.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeCodebaseRequest(BaseModel):
    """Request body for starting a streamed codebase analysis."""

    model_config = ConfigDict(populate_by_name=True)

    environment_id: str = Field(
        ...,
        alias="environmentId",
        description="Environment whose repository should be analyzed",
    )


class UserProfile(BaseModel):
    """Identity used for git attribution inside the sandbox."""

    id: str
    name: str
    email: str


class Environment(BaseModel):
    """A user's repository environment."""

    id: str
    user_id: str
    repo_full_name: str = Field(..., description="owner/name of the repository")
    smart_context: Optional[str] = None
    smart_context_generated_at: Optional[datetime] = None


class AnalysisCompleteData(BaseModel):
    """Payload of the terminal ``complete`` event."""

    model_config = ConfigDict(populate_by_name=True)

    content: str
    generated_at: str = Field(..., alias="generatedAt")


class ErrorResponse(BaseModel):
    error: str
