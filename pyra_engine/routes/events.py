"""
Event ingestion route.

Business services post domain events here. The event is handed to the
background worker when the queue is enabled, otherwise dispatched in
process; either way the response returns before any rule or webhook runs.
"""
from fastapi import APIRouter, Depends, status

from pyra_engine.config import settings
from pyra_engine.dependencies.engine import get_engine
from pyra_engine.logging_config import get_logger
from pyra_engine.schemas.events import EventIn
from pyra_engine.services.engine import Engine
from pyra_engine.worker import enqueue_event


router = APIRouter(prefix="/events", tags=["events"])

log = get_logger(component="events_api")


@router.post("", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(request: EventIn, engine: Engine = Depends(get_engine)):
    event = request.to_event()

    if settings.EVENT_QUEUE_ENABLED and await enqueue_event(event):
        return {"event_id": event.id, "event_type": event.event_type, "status": "queued"}

    if settings.EVENT_QUEUE_ENABLED:
        log.warning("event_queue_unavailable", event_id=event.id, fallback="in_process")
    engine.dispatcher.dispatch(event)
    return {"event_id": event.id, "event_type": event.event_type, "status": "dispatched"}
