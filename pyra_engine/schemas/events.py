"""
Domain event schema.

A domain event is an immutable fact raised by business logic, e.g.
``invoice_paid`` with the invoice as payload.
"""
import uuid
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from pyra_engine.models.base import utcnow


TEST_EVENT_TYPE = "test"
WILDCARD_EVENT_TYPE = "*"

EventType = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class DomainEvent(BaseModel):
    """Immutable domain event."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)


class EventIn(BaseModel):
    """Request body for POST /events."""
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime | None = None

    def to_event(self) -> DomainEvent:
        if self.occurred_at is None:
            return DomainEvent(event_type=self.event_type, payload=self.payload)
        return DomainEvent(
            event_type=self.event_type,
            payload=self.payload,
            occurred_at=self.occurred_at,
        )
