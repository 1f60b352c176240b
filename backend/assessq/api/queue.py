"""Queue API endpoints for managing the assessment queue."""
import asyncio
import json
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..enqueue import enqueue
from ..errors import (
    InvalidQueueStateError,
    QueueItemNotFoundError,
    QueueStoreError,
    SubjectNotFoundError,
)
from ..events import queue_events
from ..models import QueueStatus
from ..queue_store import QueueStore
from ..queue_worker import QueueDispatcher, get_dispatcher, get_queue_store
from ..schemas import QueueItemView

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class QueueStatusResponse(BaseModel):
    """Response for queue status."""
    worker_running: bool
    concurrency: int
    in_flight: List[int]
    pending: int
    processing: int
    completed: int
    failed: int
    permanently_failed: int
    total: int


class AddToQueueResponse(BaseModel):
    """Response for adding to queue."""
    message: str
    item: QueueItemView


class ClearQueueResponse(BaseModel):
    """Response for clearing queue."""
    message: str
    removed: int


def _store_unavailable(e: QueueStoreError) -> HTTPException:
    logger.error(f"Queue store unavailable: {e}")
    return HTTPException(status_code=503, detail="Queue store unavailable")


# ============================================================================
# API Endpoints
# ============================================================================

@router.get("/status", response_model=QueueStatusResponse)
def get_queue_status(dispatcher: QueueDispatcher = Depends(get_dispatcher)):
    """Get current queue status."""
    try:
        return dispatcher.get_status()
    except QueueStoreError as e:
        raise _store_unavailable(e)


@router.get("/items", response_model=List[QueueItemView])
def get_queue_items(
    status: Optional[QueueStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    store: QueueStore = Depends(get_queue_store),
):
    """Get queue items, optionally filtered by status."""
    try:
        return store.list_items(status=status.value if status else None, limit=limit)
    except QueueStoreError as e:
        raise _store_unavailable(e)


@router.post("/add/{candidate_id}", response_model=AddToQueueResponse)
def add_to_queue(
    candidate_id: int,
    priority: int = Query(0, ge=-100, le=100),
    store: QueueStore = Depends(get_queue_store),
    dispatcher: QueueDispatcher = Depends(get_dispatcher),
):
    """Queue an existing candidate's recording for assessment."""
    try:
        item = enqueue(candidate_id, priority=priority, store=store, dispatcher=dispatcher)
    except SubjectNotFoundError:
        raise HTTPException(status_code=404, detail="Candidate not found")
    except QueueStoreError as e:
        raise _store_unavailable(e)

    return AddToQueueResponse(message="Added candidate to queue", item=item)


@router.delete("/clear", response_model=ClearQueueResponse)
def clear_queue(
    status: Optional[QueueStatus] = Query(None, description="Only clear items with this status"),
    store: QueueStore = Depends(get_queue_store),
):
    """Clear queue items. By default clears completed and failed items."""
    if status == QueueStatus.PROCESSING:
        raise HTTPException(status_code=400, detail="Cannot clear items that are processing")

    try:
        if status:
            removed = store.clear([status.value])
        else:
            removed = store.clear()
    except QueueStoreError as e:
        raise _store_unavailable(e)

    queue_events.broadcast({"type": "queue_cleared", "removed": removed})
    logger.info(f"Cleared {removed} items from queue")

    return ClearQueueResponse(message=f"Cleared {removed} items from queue", removed=removed)


@router.delete("/cancel/{item_id}")
def cancel_queue_item(item_id: int, store: QueueStore = Depends(get_queue_store)):
    """Cancel a pending queue item."""
    try:
        item = store.cancel(item_id)
    except QueueItemNotFoundError:
        raise HTTPException(status_code=404, detail="Queue item not found")
    except InvalidQueueStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QueueStoreError as e:
        raise _store_unavailable(e)

    queue_events.broadcast({
        "type": "item_cancelled",
        "item_id": item_id,
        "candidate_id": item.candidate_id,
    })

    return {"message": "Queue item cancelled", "item_id": item_id}


@router.get("/stream")
async def queue_stream(dispatcher: QueueDispatcher = Depends(get_dispatcher)):
    """SSE stream for real-time queue updates."""
    async def generate():
        listener = queue_events.add_listener()
        try:
            # Send initial status
            status = await asyncio.to_thread(dispatcher.get_status)
            yield f"data: {json.dumps({'type': 'status', **status})}\n\n"

            while True:
                try:
                    # Wait for events with timeout
                    event = await asyncio.wait_for(listener.get(), timeout=30.0)
                    yield f"data: {json.dumps(event, default=str)}\n\n"
                except asyncio.TimeoutError:
                    # Send heartbeat
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            queue_events.remove_listener(listener)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )
