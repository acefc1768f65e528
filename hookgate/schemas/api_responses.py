"""
API response schemas for the webhook and health endpoints.
"""
from typing import Optional
from pydantic import BaseModel


class WebhookAcceptedResponse(BaseModel):
    status: str  # received | duplicate
    id: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str


class ReadinessResponse(BaseModel):
    status: str  # ready | degraded
    checks: dict[str, bool]
    timestamp: str
    workers: Optional[int] = None
