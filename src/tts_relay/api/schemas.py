"""
API Response Schemas.

The text-to-speech endpoint takes query parameters and answers with raw
audio, so only the JSON bodies need models:

    ErrorResponse:  {"error": "Text parameter is required"}
    HealthResponse: {"ok": true, "storage": "supabase",
                     "generator": "gpt-4o-mini-tts",
                     "jobs": {"pending": 0, "completed": 3, "failed": 0, "cancelled": 0}}
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body returned with 4xx/5xx statuses."""
    error: str = Field(..., description="Human-readable error message")


class JobsInfo(BaseModel):
    """Background persistence job counters."""
    pending: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


class HealthResponse(BaseModel):
    """
    Health check response.

    Attributes:
        ok: Always true while the process serves requests.
        storage: Blob store backend ("supabase" or "local").
        generator: Generation model name.
        jobs: Background job counters.
    """
    ok: bool = True
    storage: str
    generator: str
    jobs: JobsInfo = Field(default_factory=JobsInfo)
