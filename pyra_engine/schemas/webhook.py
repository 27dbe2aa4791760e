"""
Webhook subscription and delivery schemas.
"""
from datetime import datetime
from typing import Annotated, Any, Optional
from urllib.parse import urlparse

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
)

from pyra_engine.models.webhook import DeliveryStatus
from pyra_engine.schemas.events import EventType, WILDCARD_EVENT_TYPE


WebhookName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


def _validate_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an http(s) URL")
    return value


def _dedupe(events: list[str]) -> list[str]:
    return list(dict.fromkeys(events))


WebhookUrl = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1),
    AfterValidator(_validate_url),
]
EventList = Annotated[list[EventType], AfterValidator(_dedupe)]


class WebhookCreate(BaseModel):
    """Request model for creating a webhook subscription."""
    model_config = ConfigDict(populate_by_name=True)

    name: WebhookName
    url: WebhookUrl
    events: EventList = Field(
        min_length=1,
        validation_alias=AliasChoices("events", "subscribed_event_types"),
    )
    enabled: bool = Field(default=True, validation_alias=AliasChoices("enabled", "is_enabled"))


class WebhookUpdate(BaseModel):
    """Request model for PATCH /webhooks/{id}."""
    model_config = ConfigDict(populate_by_name=True)

    name: WebhookName = None
    url: WebhookUrl = None
    events: EventList = Field(
        default=None,
        min_length=1,
        validation_alias=AliasChoices("events", "subscribed_event_types"),
    )
    enabled: bool = Field(default=None, validation_alias=AliasChoices("enabled", "is_enabled"))
    regenerate_secret: bool = False


class WebhookSubscription(BaseModel):
    """A webhook subscription as the delivery scheduler sees it."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    url: str
    secret: str
    events: list[str]
    enabled: bool = True
    total_deliveries: int = 0
    success_deliveries: int = 0
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events or WILDCARD_EVENT_TYPE in self.events


def mask_secret(secret: str) -> str:
    """Hide all but the last four characters of a signing secret."""
    if len(secret) <= 4:
        return "****"
    prefix = "whsec_" if secret.startswith("whsec_") else ""
    return f"{prefix}****{secret[-4:]}"


class WebhookResponse(BaseModel):
    """Subscription as returned by the API. The secret is masked."""
    id: str
    name: str
    url: str
    secret: str
    events: list[str]
    enabled: bool
    total_deliveries: int
    success_deliveries: int
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_subscription(cls, webhook: WebhookSubscription, reveal_secret: bool = False) -> "WebhookResponse":
        data = webhook.model_dump()
        if not reveal_secret:
            data["secret"] = mask_secret(webhook.secret)
        return cls(**data)


class DeliveryRecord(BaseModel):
    """One entry of the delivery ledger."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    webhook_id: str
    event_type: str
    payload: dict[str, Any]
    attempt_count: int
    max_attempts: int
    status: DeliveryStatus
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DeliveryAttemptResult(BaseModel):
    """Result of one HTTP delivery attempt."""
    success: bool
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None


class SweepSummary(BaseModel):
    """Result of one retry sweep."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
