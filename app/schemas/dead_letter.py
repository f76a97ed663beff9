import uuid
from typing import Optional

from pydantic import BaseModel, Field


class DeadLetterResponse(BaseModel):
    id: uuid.UUID
    source_queue: str
    event_type: str
    payload: str
    error_message: str
    attempt_count: int
    first_attempt_at: str
    failed_at: str
    consumer: Optional[str] = None
    outbox_record_id: Optional[uuid.UUID] = None
    resolved: bool
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None


class ResolveRequest(BaseModel):
    resolved_by: str = Field(..., min_length=1, description="Operator who handled the entry.")
    notes: Optional[str] = Field(None, description="What was done about it.")
