"""Schemas for operator review of reconciliation failures."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class FailureRecord(BaseModel):
    """Materialization failure response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_reference: Optional[str] = None
    event_id: Optional[str] = None
    error_code: str
    detail: str
    payload: dict[str, Any]
    resolved: bool
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class ListFailuresRequest(BaseModel):
    include_resolved: bool = False
    limit: int = Field(50, ge=1, le=200)


class FailureList(BaseModel):
    failures: list[FailureRecord]


class ResolveFailureRequest(BaseModel):
    failure_id: UUID
    note: Optional[str] = Field(None, max_length=2000)
