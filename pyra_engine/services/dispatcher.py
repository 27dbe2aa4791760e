"""
Event Dispatcher

Fans a domain event out to its two consumers, the rule engine and the
webhook delivery scheduler. The consumers are independent: neither waits
for the other and a failure in one never affects the other.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Optional

from pyra_engine.logging_config import get_logger
from pyra_engine.routes.metrics import track_consumer_error, track_event_dispatched
from pyra_engine.schemas.automation import ExecutionLogEntry
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.schemas.webhook import DeliveryRecord
from pyra_engine.sentry_config import capture_exception
from pyra_engine.services.rule_engine import RuleEngine
from pyra_engine.services.webhook_service import DeliveryScheduler


log = get_logger(component="dispatcher")


@dataclass
class DispatchOutcome:
    """What each consumer did with one event."""
    event_id: str
    executions: list[ExecutionLogEntry] = field(default_factory=list)
    deliveries: list[DeliveryRecord] = field(default_factory=list)
    rule_engine_error: Optional[str] = None
    webhooks_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.rule_engine_error is None and self.webhooks_error is None


class EventDispatcher:
    """Hands events to the rule engine and the delivery scheduler."""

    def __init__(self, rule_engine: RuleEngine, scheduler: DeliveryScheduler):
        self.rule_engine = rule_engine
        self.scheduler = scheduler
        self._tasks: set[asyncio.Task] = set()

    async def _consume(self, consumer: str, coro, event: DomainEvent):
        try:
            return await coro
        except Exception as e:
            track_consumer_error(consumer)
            log.error(
                "event_consumer_failed",
                consumer=consumer,
                event_id=event.id,
                event_type=event.event_type,
                error=str(e),
                exc_info=True,
            )
            capture_exception(e, consumer=consumer, event_id=event.id)
            raise

    def dispatch(self, event: DomainEvent) -> list[asyncio.Task]:
        """
        Fire-and-forget delivery of an event to both consumers.

        Returns immediately; the consumers run as background tasks whose
        references are held until they finish. Must be called from a
        running event loop.
        """
        track_event_dispatched(event.event_type)
        log.info("event_dispatched", event_id=event.id, event_type=event.event_type)

        tasks = [
            asyncio.create_task(
                self._consume("rule_engine", self.rule_engine.on_event(event), event),
                name=f"rules:{event.id}",
            ),
            asyncio.create_task(
                self._consume("webhooks", self.scheduler.on_event(event), event),
                name=f"webhooks:{event.id}",
            ),
        ]
        for task in tasks:
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        return tasks

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        # Already logged and reported in _consume; retrieve it so asyncio doesn't warn
        if not task.cancelled():
            task.exception()

    async def process(self, event: DomainEvent) -> DispatchOutcome:
        """Deliver an event to both consumers and wait for them to finish."""
        track_event_dispatched(event.event_type)
        executions, deliveries = await asyncio.gather(
            self._consume("rule_engine", self.rule_engine.on_event(event), event),
            self._consume("webhooks", self.scheduler.on_event(event), event),
            return_exceptions=True,
        )

        outcome = DispatchOutcome(event_id=event.id)
        if isinstance(executions, BaseException):
            outcome.rule_engine_error = str(executions) or executions.__class__.__name__
        else:
            outcome.executions = executions
        if isinstance(deliveries, BaseException):
            outcome.webhooks_error = str(deliveries) or deliveries.__class__.__name__
        else:
            outcome.deliveries = deliveries
        return outcome

    async def drain(self):
        """Wait for every in-flight dispatch to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)
