"""
ARQ Background Worker for the automation engine.

Consumes domain events from the Redis queue and runs the periodic webhook
retry sweep. Run with: arq pyra_engine.worker.WorkerSettings
"""
import asyncio

import httpx
from arq import Retry, create_pool, cron
from arq.connections import RedisSettings

from pyra_engine.config import settings
from pyra_engine.database import AsyncSessionLocal
from pyra_engine.logging_config import get_logger
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.sentry_config import capture_exception, configure_sentry
from pyra_engine.services.engine import build_engine


log = get_logger(component="worker")

MAX_TRIES = 5


def _retry_delay(job_try: int) -> int:
    """Seconds before the next job try: 5s, 10s, 20s..."""
    return 5 * 2 ** (job_try - 1)


async def _consume(ctx: dict, consumer: str, event_data: dict):
    # ARQ uses job_try (starts at 1)
    job_try = ctx.get("job_try", 1)
    event = DomainEvent.model_validate(event_data)
    job_log = log.bind(consumer=consumer, event_id=event.id, event_type=event.event_type, job_try=job_try)

    engine = ctx["engine"]
    handler = engine.rule_engine.on_event if consumer == "rule_engine" else engine.scheduler.on_event
    try:
        return await handler(event)
    except Exception as e:
        if job_try >= MAX_TRIES:
            job_log.error("event_job_failed", error=str(e), exc_info=True)
            capture_exception(e, consumer=consumer, event_id=event.id)
            raise
        job_log.warning("event_job_retrying", error=str(e), defer=_retry_delay(job_try))
        raise Retry(defer=_retry_delay(job_try))


async def run_automation_rules(ctx: dict, event_data: dict) -> dict:
    """Run the rule engine for one event."""
    entries = await _consume(ctx, "rule_engine", event_data)
    return {
        "event_id": event_data.get("id"),
        "rules_executed": len(entries),
        "statuses": [entry.status.value for entry in entries],
    }


async def deliver_webhooks(ctx: dict, event_data: dict) -> dict:
    """Deliver one event to its webhook subscribers."""
    records = await _consume(ctx, "webhooks", event_data)
    return {
        "event_id": event_data.get("id"),
        "deliveries": len(records),
        "statuses": [record.status.value for record in records],
    }


async def sweep_webhook_retries(ctx: dict) -> dict:
    """Cron job: re-attempt deliveries whose retry time has come."""
    summary = await ctx["engine"].scheduler.process_due_retries()
    return summary.model_dump()


async def enqueue_event(event: DomainEvent) -> bool:
    """
    Enqueue both consumer jobs for an event.

    Each consumer gets its own job so a failure in one is retried without
    re-running the other. Returns False when Redis is unreachable.
    """
    event_data = event.model_dump(mode="json")
    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
    except Exception as e:
        log.error("event_enqueue_failed", event_id=event.id, error=str(e))
        return False

    try:
        await redis.enqueue_job("run_automation_rules", event_data, _job_id=f"rules:{event.id}")
        await redis.enqueue_job("deliver_webhooks", event_data, _job_id=f"webhooks:{event.id}")
    except Exception as e:
        log.error("event_enqueue_failed", event_id=event.id, error=str(e))
        return False
    finally:
        await redis.aclose()

    log.info("event_enqueued", event_id=event.id, event_type=event.event_type)
    return True


async def startup(ctx: dict):
    configure_sentry()
    ctx["http_client"] = httpx.AsyncClient()
    ctx["engine"] = build_engine(AsyncSessionLocal, ctx["http_client"])
    log.info("worker_started", redis=settings.REDIS_URL)


async def shutdown(ctx: dict):
    await ctx["http_client"].aclose()
    log.info("worker_stopped")


# Register functions for ARQ
ARQ_FUNCTIONS = [
    run_automation_rules,
    deliver_webhooks,
]


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq pyra_engine.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 120
    max_tries = MAX_TRIES
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(
            sweep_webhook_retries,
            second=set(range(0, 60, settings.RETRY_SWEEP_INTERVAL_SECONDS)),
            run_at_startup=True,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown


async def main():
    """Run the worker using arq cli."""
    log.info("worker_usage", command="arq pyra_engine.worker.WorkerSettings", redis=settings.REDIS_URL)


if __name__ == "__main__":
    asyncio.run(main())
