"""
Tourkit — Shared Response Schemas
===================================

What:  Error and health bodies used by every router.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "quota_exhausted",
            "message": "Route planning quota exhausted. ...",
            "details": {"code": "quota_exhausted"},
            "request_id": "1a2b3c4d"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    planner: str = Field(description="Planner status: configured, not_configured")
    storage: str = Field(description="Storage endpoint in use")
    uptime_seconds: float = Field(description="Seconds since service started")
