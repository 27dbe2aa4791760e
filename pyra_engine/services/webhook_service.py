"""
Webhook Service

Delivers signed events to webhook subscribers and keeps the delivery ledger.
Failed attempts are rescheduled with exponential backoff and picked up by
the retry sweep; every attempt runs under a lease on its delivery record.
"""
import asyncio
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Optional

import httpx

from pyra_engine.config import settings
from pyra_engine.exceptions import DeliveryLockedError, InvalidDeliveryStateError
from pyra_engine.logging_config import get_logger
from pyra_engine.models.base import utcnow
from pyra_engine.models.webhook import DeliveryStatus
from pyra_engine.routes.metrics import track_retries_swept, track_webhook_attempt, track_webhook_failed
from pyra_engine.schemas.events import TEST_EVENT_TYPE, DomainEvent
from pyra_engine.schemas.webhook import (
    DeliveryAttemptResult,
    DeliveryRecord,
    SweepSummary,
    WebhookSubscription,
)
from pyra_engine.sentry_config import capture_exception
from pyra_engine.services.payload import encode_json
from pyra_engine.services.signer import SIGNATURE_HEADER, sign
from pyra_engine.services.stores import AttemptOutcome, DeliveryLogStore, Lease, WebhookStore


log = get_logger(component="webhooks")

TEST_MESSAGE = "This is a test webhook from Pyra Workspace"


def backoff_seconds(
    attempt: int,
    base: int = settings.WEBHOOK_BACKOFF_BASE_SECONDS,
    cap: int = settings.WEBHOOK_BACKOFF_MAX_SECONDS,
) -> int:
    """Delay before the retry that follows failed attempt number `attempt`: 60s, 120s, 240s... capped."""
    return min(base * 2 ** (max(attempt, 1) - 1), cap)


class DeliveryScheduler:
    """Creates delivery records, attempts them and schedules their retries."""

    def __init__(
        self,
        webhooks: WebhookStore,
        deliveries: DeliveryLogStore,
        http_client: httpx.AsyncClient,
        clock: Callable = utcnow,
        timeout: float = settings.WEBHOOK_TIMEOUT_SECONDS,
        deadline: float = settings.WEBHOOK_DELIVERY_DEADLINE_SECONDS,
        max_attempts: int = settings.WEBHOOK_MAX_ATTEMPTS,
        lease_seconds: int = settings.DELIVERY_LEASE_SECONDS,
        batch_size: int = settings.RETRY_SWEEP_BATCH_SIZE,
    ):
        self.webhooks = webhooks
        self.deliveries = deliveries
        self.http_client = http_client
        self.clock = clock
        self.timeout = timeout
        # A slow receiver must not outlive the lease on its record
        self.deadline = min(deadline, lease_seconds / 2)
        self.max_attempts = max_attempts
        self.lease_seconds = lease_seconds
        self.batch_size = batch_size

    def _new_lease(self) -> Lease:
        return Lease(token=str(uuid.uuid4()), until=self.clock() + timedelta(seconds=self.lease_seconds))

    async def deliver_webhook(self, webhook: WebhookSubscription, record: DeliveryRecord) -> DeliveryAttemptResult:
        """
        Make one HTTP attempt for a delivery record.

        The body is serialized once and the signature is computed over
        those exact bytes with the subscription's current secret.
        """
        timestamp = self.clock().isoformat()
        body = encode_json({
            "event": record.event_type,
            "data": record.payload,
            "timestamp": timestamp,
        })
        headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.WEBHOOK_USER_AGENT,
            SIGNATURE_HEADER: sign(webhook.secret, body),
            "X-Pyra-Timestamp": timestamp,
            "X-Pyra-Event": record.event_type,
            "X-Pyra-Webhook-Id": webhook.id,
            "X-Pyra-Delivery-Id": record.id,
        }

        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.http_client.post(
                    webhook.url,
                    content=body,
                    headers=headers,
                    timeout=self.timeout,
                ),
                timeout=self.deadline,
            )
            success = response.is_success
            result = DeliveryAttemptResult(
                success=success,
                status_code=response.status_code,
                body=response.text[:settings.WEBHOOK_RESPONSE_BODY_LIMIT],
                error=None if success else f"HTTP {response.status_code}",
            )
        except asyncio.TimeoutError:
            result = DeliveryAttemptResult(success=False, error=f"Timed out after {self.deadline:g}s")
        except Exception as e:
            result = DeliveryAttemptResult(success=False, error=str(e) or e.__class__.__name__)

        track_webhook_attempt(result.success, time.perf_counter() - started)
        return result

    async def _attempt(
        self, webhook: WebhookSubscription, record: DeliveryRecord, lease: Lease
    ) -> Optional[DeliveryStatus]:
        """Attempt a leased record and write the outcome back. None if the lease was lost."""
        delivery_log = log.bind(webhook_id=webhook.id, delivery_id=record.id)
        result = await self.deliver_webhook(webhook, record)
        attempt = record.attempt_count + 1
        now = self.clock()

        if result.success:
            outcome = AttemptOutcome(
                status=DeliveryStatus.SUCCESS,
                attempt_count=attempt,
                success=True,
                response_status=result.status_code,
                response_body=result.body,
                delivered_at=now,
            )
        elif attempt < record.max_attempts:
            outcome = AttemptOutcome(
                status=DeliveryStatus.RETRYING,
                attempt_count=attempt,
                success=False,
                response_status=result.status_code,
                response_body=result.body,
                error_message=result.error,
                next_retry_at=now + timedelta(seconds=backoff_seconds(attempt)),
            )
        else:
            outcome = AttemptOutcome(
                status=DeliveryStatus.FAILED,
                attempt_count=attempt,
                success=False,
                response_status=result.status_code,
                response_body=result.body,
                error_message=result.error,
            )

        if not await self.deliveries.record_attempt(record, lease, outcome):
            return None

        if outcome.status == DeliveryStatus.SUCCESS:
            delivery_log.info("webhook_delivered", attempt=attempt, status_code=result.status_code)
        elif outcome.status == DeliveryStatus.RETRYING:
            delivery_log.warning(
                "webhook_attempt_failed",
                attempt=attempt,
                error=result.error,
                next_retry_at=outcome.next_retry_at.isoformat(),
            )
        else:
            track_webhook_failed()
            delivery_log.error("webhook_failed", attempt=attempt, error=result.error)
        return outcome.status

    async def _deliver_new(
        self,
        webhook: WebhookSubscription,
        event_type: str,
        payload: dict[str, Any],
        max_attempts: int,
    ) -> DeliveryRecord:
        lease = self._new_lease()
        record = await self.deliveries.create(webhook.id, event_type, payload, max_attempts, lease)
        await self._attempt(webhook, record, lease)
        return await self.deliveries.get(record.id)

    async def on_event(self, event: DomainEvent) -> list[DeliveryRecord]:
        """
        Deliver an event to every enabled subscriber.

        Subscribers are delivered to concurrently; one subscriber's failure
        does not affect the others. A failure to load subscriptions
        propagates.
        """
        event_log = log.bind(event_id=event.id, event_type=event.event_type)
        webhooks = await self.webhooks.list_enabled_for_event(event.event_type)
        if not webhooks:
            event_log.debug("no_webhooks_for_event")
            return []

        results = await asyncio.gather(
            *(
                self._deliver_new(webhook, event.event_type, event.payload, self.max_attempts)
                for webhook in webhooks
            ),
            return_exceptions=True,
        )

        records = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                event_log.error("webhook_delivery_error", webhook_id=webhook.id, error=str(result), exc_info=result)
                capture_exception(result, webhook_id=webhook.id, event_id=event.id)
            else:
                records.append(result)
        return records

    async def _retry_claimed(self, record: DeliveryRecord, lease: Lease) -> Optional[DeliveryStatus]:
        webhook = await self.webhooks.find(record.webhook_id)
        if webhook is not None and webhook.enabled:
            return await self._attempt(webhook, record, lease)

        reason = "Webhook deleted" if webhook is None else "Webhook disabled"
        outcome = AttemptOutcome(
            status=DeliveryStatus.FAILED,
            attempt_count=record.attempt_count,
            success=False,
            response_status=record.response_status,
            response_body=record.response_body,
            error_message=reason,
        )
        if not await self.deliveries.record_attempt(record, lease, outcome, count_attempt=False):
            return None
        log.info("webhook_retry_abandoned", delivery_id=record.id, webhook_id=record.webhook_id, reason=reason)
        return DeliveryStatus.FAILED

    async def process_due_retries(self) -> SweepSummary:
        """
        Run one retry sweep.

        Claims due records under a fresh lease and re-attempts them
        concurrently. Pending records whose first attempt was never recorded
        are picked up the same way. Safe to run from several workers at once.
        """
        lease = self._new_lease()
        records = await self.deliveries.claim_due(self.clock(), self.batch_size, lease)
        if not records:
            return SweepSummary()

        results = await asyncio.gather(
            *(self._retry_claimed(record, lease) for record in records),
            return_exceptions=True,
        )

        summary = SweepSummary(processed=len(records))
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                log.error("webhook_retry_error", delivery_id=record.id, error=str(result), exc_info=result)
                capture_exception(result, delivery_id=record.id)
                summary.failed += 1
            elif result == DeliveryStatus.SUCCESS:
                summary.succeeded += 1
            else:
                summary.failed += 1

        track_retries_swept(summary.processed)
        log.info("webhook_retries_swept", **summary.model_dump())
        return summary

    @staticmethod
    def _check_retryable(record: DeliveryRecord):
        if record.status not in (DeliveryStatus.FAILED, DeliveryStatus.RETRYING):
            raise InvalidDeliveryStateError(
                f"Only failed or retrying deliveries can be retried (delivery is {record.status.value})"
            )
        if record.attempt_count > record.max_attempts:
            raise InvalidDeliveryStateError("Manual retry already used for this delivery")

    async def retry(self, webhook_id: str, delivery_id: str) -> DeliveryRecord:
        """
        Manually retry a failed or retrying delivery right now.

        A failed record may be retried once beyond max_attempts.

        Raises:
            WebhookNotFoundError / DeliveryNotFoundError
            InvalidDeliveryStateError: record is not retryable
            DeliveryLockedError: another worker holds the record's lease
        """
        webhook = await self.webhooks.get(webhook_id)
        self._check_retryable(await self.deliveries.get(delivery_id, webhook_id))

        lease = self._new_lease()
        if not await self.deliveries.claim_for_manual_retry(delivery_id, webhook_id, self.clock(), lease):
            self._check_retryable(await self.deliveries.get(delivery_id, webhook_id))
            raise DeliveryLockedError(delivery_id)

        record = await self.deliveries.get(delivery_id, webhook_id)
        log.info("webhook_manual_retry", webhook_id=webhook_id, delivery_id=delivery_id, attempt=record.attempt_count + 1)
        await self._attempt(webhook, record, lease)
        return await self.deliveries.get(delivery_id, webhook_id)

    async def test(self, webhook_id: str) -> DeliveryRecord:
        """Send a single, never-retried test delivery to a subscription."""
        webhook = await self.webhooks.get(webhook_id)
        return await self._deliver_new(webhook, TEST_EVENT_TYPE, {"message": TEST_MESSAGE}, max_attempts=1)


async def run_retry_sweeper(scheduler: DeliveryScheduler, interval_seconds: float):
    """
    Run retry sweeps forever, one every interval_seconds.

    Sweep errors are logged and reported; the loop only stops when cancelled.
    """
    log.info("retry_sweeper_started", interval_seconds=interval_seconds)
    while True:
        try:
            await scheduler.process_due_retries()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("retry_sweep_failed", error=str(e), exc_info=True)
            capture_exception(e)
        await asyncio.sleep(interval_seconds)
