from __future__ import annotations

from pydantic import BaseModel


class TrackResponse(BaseModel):
    success: bool = True


class ErrorHandlingSummary(BaseModel):
    abort_errors: float = 0.0
    authz_violations: float = 0.0
    network_retries: float = 0.0
    network_retry_successes: float = 0.0
    image_fallbacks: float = 0.0
