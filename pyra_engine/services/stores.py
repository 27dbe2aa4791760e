"""
Store interfaces used by the engine.

The rule engine and the delivery scheduler only see these protocols; the
SQLAlchemy implementations live in rule_service.py and webhook_store.py.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

from pyra_engine.models.webhook import DeliveryStatus
from pyra_engine.schemas.automation import ExecutionLogEntry, Rule
from pyra_engine.schemas.webhook import DeliveryRecord, WebhookSubscription


@dataclass(frozen=True)
class Lease:
    """A claim on a delivery record: who holds it and until when."""
    token: str
    until: datetime


@dataclass(frozen=True)
class AttemptOutcome:
    """State written back to a delivery record after an attempt."""
    status: DeliveryStatus
    attempt_count: int
    success: bool
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class RuleStore(Protocol):
    async def list_enabled_for_event(self, event_type: str) -> list[Rule]:
        """Enabled rules whose trigger is event_type."""
        ...


class ExecutionLogStore(Protocol):
    async def record_execution(self, entry: ExecutionLogEntry) -> None:
        """Append the entry and increment the rule's execution count, atomically."""
        ...


class WebhookStore(Protocol):
    async def list_enabled_for_event(self, event_type: str) -> list[WebhookSubscription]:
        """Enabled subscriptions subscribed to event_type (or to every event)."""
        ...

    async def find(self, webhook_id: str) -> Optional[WebhookSubscription]:
        ...

    async def get(self, webhook_id: str) -> WebhookSubscription:
        """Raises WebhookNotFoundError."""
        ...


class DeliveryLogStore(Protocol):
    async def create(
        self,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        max_attempts: int,
        lease: Lease,
    ) -> DeliveryRecord:
        """Insert a pending record already leased to the caller."""
        ...

    async def get(self, delivery_id: str, webhook_id: Optional[str] = None) -> DeliveryRecord:
        """Raises DeliveryNotFoundError."""
        ...

    async def claim_due(self, now: datetime, limit: int, lease: Lease) -> list[DeliveryRecord]:
        """Lease retrying or abandoned pending records whose next_retry_at has passed."""
        ...

    async def claim_for_manual_retry(
        self, delivery_id: str, webhook_id: str, now: datetime, lease: Lease
    ) -> bool:
        """Lease a failed or retrying record that is not leased elsewhere."""
        ...

    async def record_attempt(
        self, record: DeliveryRecord, lease: Lease, outcome: AttemptOutcome, count_attempt: bool = True
    ) -> bool:
        """
        Write an attempt's outcome and release the lease.

        Only succeeds while the caller still holds the lease. When
        count_attempt is set, the subscription's delivery counters are
        updated in the same transaction.
        """
        ...
