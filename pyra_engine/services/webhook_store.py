"""
Webhook subscription and delivery ledger storage.

Delivery records are claimed with conditional UPDATEs on the lease columns
(locked_until/locked_by), so two sweepers or a sweeper and a manual retry
can never both attempt the same record. Results are written back only while
the writer still holds its lease.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pyra_engine.exceptions import DeliveryNotFoundError, WebhookNotFoundError
from pyra_engine.logging_config import get_logger
from pyra_engine.models.webhook import DeliveryStatus, Webhook, WebhookDelivery
from pyra_engine.schemas.webhook import (
    DeliveryRecord,
    WebhookCreate,
    WebhookSubscription,
    WebhookUpdate,
)
from pyra_engine.services.rule_service import count_rows
from pyra_engine.services.signer import generate_secret
from pyra_engine.services.stores import AttemptOutcome, Lease


log = get_logger(component="webhook_store")

MANUALLY_RETRYABLE = (DeliveryStatus.FAILED, DeliveryStatus.RETRYING)
# A pending record is due once the lease of its first attempt runs out
SWEEPABLE = (DeliveryStatus.PENDING, DeliveryStatus.RETRYING)


def _lease_free(now: datetime):
    return or_(WebhookDelivery.locked_until.is_(None), WebhookDelivery.locked_until < now)


class WebhookService:
    """Subscription CRUD and the scheduler's WebhookStore."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _get_model(self, db: AsyncSession, webhook_id: str) -> Webhook:
        webhook = await db.get(Webhook, webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)
        return webhook

    async def list_enabled_for_event(self, event_type: str) -> list[WebhookSubscription]:
        async with self.session_factory() as db:
            result = await db.execute(select(Webhook).where(Webhook.enabled.is_(True)))
            subscriptions = [WebhookSubscription.model_validate(w) for w in result.scalars().all()]
        return [s for s in subscriptions if s.subscribes_to(event_type)]

    async def find(self, webhook_id: str) -> Optional[WebhookSubscription]:
        async with self.session_factory() as db:
            webhook = await db.get(Webhook, webhook_id)
            return WebhookSubscription.model_validate(webhook) if webhook else None

    async def get(self, webhook_id: str) -> WebhookSubscription:
        async with self.session_factory() as db:
            return WebhookSubscription.model_validate(await self._get_model(db, webhook_id))

    async def list(self, page: int = 1, page_size: int = 20) -> tuple[list[WebhookSubscription], int]:
        stmt = select(Webhook).order_by(Webhook.created_at.desc(), Webhook.id)
        async with self.session_factory() as db:
            total = await count_rows(db, stmt)
            result = await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))
            return [WebhookSubscription.model_validate(w) for w in result.scalars().all()], total

    async def create(self, data: WebhookCreate, created_by: Optional[str] = None) -> WebhookSubscription:
        """
        Create a subscription with a freshly generated signing secret.

        The secret is returned in full only from here and from secret
        regeneration; everywhere else the API masks it.
        """
        webhook = Webhook(
            name=data.name,
            url=data.url,
            secret=generate_secret(),
            events=list(data.events),
            enabled=data.enabled,
            total_deliveries=0,
            success_deliveries=0,
            created_by=created_by,
        )
        async with self.session_factory() as db:
            db.add(webhook)
            await db.commit()
            await db.refresh(webhook)
        log.info("webhook_created", webhook_id=webhook.id, events=webhook.events)
        return WebhookSubscription.model_validate(webhook)

    async def update(self, webhook_id: str, data: WebhookUpdate) -> WebhookSubscription:
        changes = data.model_dump(exclude_unset=True)
        async with self.session_factory() as db:
            webhook = await self._get_model(db, webhook_id)
            if "name" in changes:
                webhook.name = data.name
            if "url" in changes:
                webhook.url = data.url
            if "events" in changes:
                webhook.events = list(data.events)
            if "enabled" in changes:
                webhook.enabled = data.enabled
            if data.regenerate_secret:
                webhook.secret = generate_secret()
            await db.commit()
            await db.refresh(webhook)
            log.info("webhook_updated", webhook_id=webhook_id, fields=sorted(changes))
            return WebhookSubscription.model_validate(webhook)

    async def regenerate_secret(self, webhook_id: str) -> WebhookSubscription:
        """Replace the signing secret. Later attempts, retries included, use the new one."""
        async with self.session_factory() as db:
            webhook = await self._get_model(db, webhook_id)
            webhook.secret = generate_secret()
            await db.commit()
            await db.refresh(webhook)
            log.info("webhook_secret_regenerated", webhook_id=webhook_id)
            return WebhookSubscription.model_validate(webhook)

    async def toggle(self, webhook_id: str) -> WebhookSubscription:
        async with self.session_factory() as db:
            webhook = await self._get_model(db, webhook_id)
            webhook.enabled = not webhook.enabled
            await db.commit()
            await db.refresh(webhook)
            log.info("webhook_toggled", webhook_id=webhook_id, enabled=webhook.enabled)
            return WebhookSubscription.model_validate(webhook)

    async def delete(self, webhook_id: str) -> None:
        """Delete a subscription. Its delivery history is kept."""
        async with self.session_factory() as db:
            result = await db.execute(delete(Webhook).where(Webhook.id == webhook_id))
            if result.rowcount == 0:
                await db.rollback()
                raise WebhookNotFoundError(webhook_id)
            await db.commit()
        log.info("webhook_deleted", webhook_id=webhook_id)


class DeliveryLogService:
    """The delivery ledger."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(
        self,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        max_attempts: int,
        lease: Lease,
    ) -> DeliveryRecord:
        delivery = WebhookDelivery(
            webhook_id=webhook_id,
            event_type=event_type,
            payload=payload,
            status=DeliveryStatus.PENDING,
            attempt_count=0,
            max_attempts=max_attempts,
            next_retry_at=lease.until,
            locked_until=lease.until,
            locked_by=lease.token,
        )
        async with self.session_factory() as db:
            db.add(delivery)
            await db.commit()
            await db.refresh(delivery)
        return DeliveryRecord.model_validate(delivery)

    async def get(self, delivery_id: str, webhook_id: Optional[str] = None) -> DeliveryRecord:
        async with self.session_factory() as db:
            delivery = await db.get(WebhookDelivery, delivery_id)
            if delivery is None or (webhook_id is not None and delivery.webhook_id != webhook_id):
                raise DeliveryNotFoundError(delivery_id)
            return DeliveryRecord.model_validate(delivery)

    async def list_for_webhook(
        self, webhook_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[DeliveryRecord], int]:
        """Deliveries for one subscription, newest first."""
        stmt = (
            select(WebhookDelivery)
            .where(WebhookDelivery.webhook_id == webhook_id)
            .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id)
        )
        async with self.session_factory() as db:
            total = await count_rows(db, stmt)
            result = await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))
            return [DeliveryRecord.model_validate(d) for d in result.scalars().all()], total

    async def claim_due(self, now: datetime, limit: int, lease: Lease) -> list[DeliveryRecord]:
        """
        Lease up to `limit` records that are due: retrying ones whose
        next_retry_at has passed, and pending ones whose first attempt was
        never recorded before its lease expired.

        Candidates are picked first, then leased with one UPDATE that
        re-checks every condition, so a record claimed concurrently by
        another sweeper is simply left out of this batch.
        """
        due = (
            WebhookDelivery.status.in_(SWEEPABLE),
            WebhookDelivery.next_retry_at.is_not(None),
            WebhookDelivery.next_retry_at <= now,
            _lease_free(now),
        )
        async with self.session_factory() as db:
            candidates = await db.execute(
                select(WebhookDelivery.id)
                .where(*due)
                .order_by(WebhookDelivery.next_retry_at, WebhookDelivery.id)
                .limit(limit)
            )
            ids = list(candidates.scalars().all())
            if not ids:
                return []

            await db.execute(
                update(WebhookDelivery)
                .where(WebhookDelivery.id.in_(ids), *due)
                .values(locked_until=lease.until, locked_by=lease.token)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            claimed = await db.execute(
                select(WebhookDelivery)
                .where(WebhookDelivery.id.in_(ids), WebhookDelivery.locked_by == lease.token)
                .order_by(WebhookDelivery.next_retry_at, WebhookDelivery.id)
            )
            return [DeliveryRecord.model_validate(d) for d in claimed.scalars().all()]

    async def claim_for_manual_retry(
        self, delivery_id: str, webhook_id: str, now: datetime, lease: Lease
    ) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(WebhookDelivery)
                .where(
                    WebhookDelivery.id == delivery_id,
                    WebhookDelivery.webhook_id == webhook_id,
                    WebhookDelivery.status.in_(MANUALLY_RETRYABLE),
                    WebhookDelivery.attempt_count <= WebhookDelivery.max_attempts,
                    _lease_free(now),
                )
                .values(locked_until=lease.until, locked_by=lease.token)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def record_attempt(
        self,
        record: DeliveryRecord,
        lease: Lease,
        outcome: AttemptOutcome,
        count_attempt: bool = True,
    ) -> bool:
        """
        Write an attempt's outcome and release the lease.

        Returns False, leaving the record and the counters untouched, when
        the lease has been lost to another worker.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(WebhookDelivery)
                .where(WebhookDelivery.id == record.id, WebhookDelivery.locked_by == lease.token)
                .values(
                    status=outcome.status,
                    attempt_count=outcome.attempt_count,
                    response_status=outcome.response_status,
                    response_body=outcome.response_body,
                    error_message=outcome.error_message,
                    next_retry_at=outcome.next_retry_at,
                    delivered_at=outcome.delivered_at,
                    locked_until=None,
                    locked_by=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                log.warning("delivery_lease_lost", delivery_id=record.id, lease=lease.token)
                return False

            if count_attempt:
                await db.execute(
                    update(Webhook)
                    .where(Webhook.id == record.webhook_id)
                    .values(
                        total_deliveries=Webhook.total_deliveries + 1,
                        success_deliveries=Webhook.success_deliveries + (1 if outcome.success else 0),
                    )
                    .execution_options(synchronize_session=False)
                )
            await db.commit()
            return True
