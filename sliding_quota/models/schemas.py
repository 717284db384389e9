"""Pydantic response schemas for the quota API."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    store: str


class QuotaStatusResponse(BaseModel):
    client_key: str
    limit: int
    used: int
    remaining: int
    window_hours: float
    reset_at: int | None = None
