"""Pydantic response models for the FluxEdit API.

Models
------
KontextResponse
    Success payload of ``POST /api/kontext``: the edited image URL and the
    raw upstream response.
ErrorResponse
    Failure payload shared by every error status of ``POST /api/kontext``.
HealthResponse
    Payload of ``GET /health``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class KontextResponse(BaseModel):
    """Response body for a successful edit.

    Attributes:
        url: URL of the edited image.
        raw: Upstream response, passed through unchanged.
    """

    url: str = Field(..., description="URL of the edited image.")
    raw: Any = Field(default=None, description="Raw upstream response.")


class ErrorResponse(BaseModel):
    """Response body for a failed edit.

    Attributes:
        error: Short description of the failure.
        details: Underlying error message, when one is available.
        raw: Upstream response, when the failure is in its content.
    """

    error: str
    details: str | None = None
    raw: Any = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    fal_configured: bool
    supabase_configured: bool
