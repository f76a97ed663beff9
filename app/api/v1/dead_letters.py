import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from app.core.errors import DeadLetterNotFoundError
from app.models.dead_letter import DeadLetterRecord
from app.schemas.dead_letter import DeadLetterResponse, ResolveRequest
from app.schemas.response import SuccessResponse
from app.outbox.dead_letter import DeadLetterStore

router = APIRouter()
log = logging.getLogger(__name__)

store = DeadLetterStore()


def _entry(entry: DeadLetterRecord) -> dict:
    return DeadLetterResponse(
        id=entry.id,
        source_queue=entry.source_queue,
        event_type=entry.event_type,
        payload=entry.payload,
        error_message=entry.error_message,
        attempt_count=entry.attempt_count,
        first_attempt_at=str(entry.first_attempt_at),
        failed_at=str(entry.failed_at),
        consumer=entry.consumer,
        outbox_record_id=entry.outbox_record_id,
        resolved=entry.resolved,
        resolved_at=str(entry.resolved_at) if entry.resolved_at else None,
        resolved_by=entry.resolved_by,
        resolution_notes=entry.resolution_notes,
    ).model_dump()


@router.get("/", response_model=SuccessResponse)
async def list_dead_letters(
    resolved: Optional[bool] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Lists dead-letter entries, newest failure first."""
    try:
        entries = await store.list_entries(resolved=resolved, limit=limit, offset=offset)
        return SuccessResponse(data=[_entry(e) for e in entries])
    except Exception as e:
        log.error(f"Error listing dead letters: {e}")
        raise HTTPException(status_code=500, detail="Server failed to list dead letters.")


@router.get("/count", response_model=SuccessResponse)
async def count_unresolved_dead_letters():
    try:
        return SuccessResponse(data={"unresolved": await store.count_unresolved()})
    except Exception as e:
        log.error(f"Error counting dead letters: {e}")
        raise HTTPException(status_code=500, detail="Server failed to count dead letters.")


@router.get("/{entry_id}", response_model=SuccessResponse)
async def get_dead_letter(entry_id: UUID):
    try:
        return SuccessResponse(data=_entry(await store.get_entry(entry_id)))
    except DeadLetterNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        log.error(f"Error fetching dead letter {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch dead letter.")


@router.post("/{entry_id}/resolve", response_model=SuccessResponse)
async def resolve_dead_letter(entry_id: UUID, payload: ResolveRequest):
    """Marks an entry as handled by an operator."""
    try:
        entry = await store.resolve(entry_id, payload.resolved_by, payload.notes)
        return SuccessResponse(data=_entry(entry))
    except DeadLetterNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        log.error(f"Error resolving dead letter {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to resolve dead letter.")


@router.post("/{entry_id}/requeue", response_model=SuccessResponse)
async def requeue_dead_letter(entry_id: UUID, payload: ResolveRequest):
    """Hands an outbox record back to its publisher and resolves the entry."""
    try:
        record = await store.requeue_outbox_record(entry_id, payload.resolved_by)
        return SuccessResponse(data={"outbox_record_id": str(record.id), "event_type": record.event_type})
    except DeadLetterNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        log.error(f"Value error requeuing dead letter: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error requeuing dead letter {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to requeue dead letter.")
