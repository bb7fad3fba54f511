"""
Travis API — Pydantic Response Schemas
========================================

What:  Response models for the endpoints served by this package.
Why:   FastAPI validates and serializes responses with them and publishes
       them in the OpenAPI document.
"""

from typing import Optional

from pydantic import BaseModel, Field


class HomeResponse(BaseModel):
    hello: str = Field(default="world")


class HealthResponse(BaseModel):
    """
    What:  Service and dependency status for load balancers and monitoring.

    A process that cannot reach its database is effectively down, so the
    database check decides between healthy and unhealthy. The logs database
    only degrades the service.
    """
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    deploy_sha: str = Field(description="Deployed commit (first 8 characters)")
    database: str = Field(description="Main database connectivity: connected, disconnected")
    logs_database: Optional[str] = Field(
        default=None,
        description="Logs database connectivity; null when logs share the main database",
    )
    uptime_seconds: float = Field(description="Seconds since service started")


class ErrorResponse(BaseModel):
    """Body of every APIError rendered by the global exception handler."""
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable explanation")
    request_id: str = Field(default="", description="Correlation id (X-Request-ID)")
