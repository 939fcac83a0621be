from __future__ import annotations

from pydantic import BaseModel, Field

DNS_LABEL = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class WebsiteRef(BaseModel):
    namespace: str = Field(..., max_length=63, pattern=DNS_LABEL, description="Website namespace")
    name: str = Field(..., max_length=253, pattern=DNS_LABEL, description="Website name")


class EnqueueResponse(BaseModel):
    queued: bool
    key: str


class HealthResponse(BaseModel):
    status: str
    workers: int
    running: bool


class QueueSnapshot(BaseModel):
    queued: list[str]
    processing: list[str]
    waiting: int
    failures: dict[str, int]
    workers: int
    running: bool


class PassRecord(BaseModel):
    id: int
    ts: str
    namespace: str
    name: str
    outcome: str
    reason: str
    duration_ms: float
