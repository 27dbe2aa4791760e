"""
Tests for the ARQ job functions.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from arq import Retry

from pyra_engine import worker
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.schemas.webhook import SweepSummary


def make_ctx(job_try: int = 1):
    engine = SimpleNamespace(
        rule_engine=AsyncMock(),
        scheduler=AsyncMock(),
    )
    return {"job_try": job_try, "engine": engine}


EVENT = DomainEvent(id="evt-1", event_type="invoice_paid", payload={"invoice_id": "inv-1"})


class TestEventJobs:

    @pytest.mark.asyncio
    async def test_rule_job_runs_only_the_rule_engine(self):
        ctx = make_ctx()
        ctx["engine"].rule_engine.on_event.return_value = []

        result = await worker.run_automation_rules(ctx, EVENT.model_dump(mode="json"))

        assert result == {"event_id": "evt-1", "rules_executed": 0, "statuses": []}
        ctx["engine"].rule_engine.on_event.assert_awaited_once()
        assert ctx["engine"].rule_engine.on_event.await_args.args[0].id == "evt-1"
        ctx["engine"].scheduler.on_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_webhook_job_runs_only_the_scheduler(self):
        ctx = make_ctx()
        ctx["engine"].scheduler.on_event.return_value = []

        result = await worker.deliver_webhooks(ctx, EVENT.model_dump(mode="json"))

        assert result["deliveries"] == 0
        ctx["engine"].rule_engine.on_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_retried_with_backoff(self):
        ctx = make_ctx(job_try=2)
        ctx["engine"].rule_engine.on_event.side_effect = RuntimeError("db down")

        with pytest.raises(Retry) as excinfo:
            await worker.run_automation_rules(ctx, EVENT.model_dump(mode="json"))

        assert excinfo.value.defer_score == 10_000

    @pytest.mark.asyncio
    async def test_last_try_raises_the_error(self):
        ctx = make_ctx(job_try=worker.MAX_TRIES)
        ctx["engine"].scheduler.on_event.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await worker.deliver_webhooks(ctx, EVENT.model_dump(mode="json"))

    @pytest.mark.asyncio
    async def test_sweep_job(self):
        ctx = make_ctx()
        ctx["engine"].scheduler.process_due_retries.return_value = SweepSummary(processed=2, succeeded=1, failed=1)

        assert await worker.sweep_webhook_retries(ctx) == {"processed": 2, "succeeded": 1, "failed": 1}


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_enqueues_one_job_per_consumer(self):
        redis = AsyncMock()
        with patch.object(worker, "create_pool", AsyncMock(return_value=redis)):
            assert await worker.enqueue_event(EVENT) is True

        job_ids = [call.kwargs["_job_id"] for call in redis.enqueue_job.await_args_list]
        assert job_ids == ["rules:evt-1", "webhooks:evt-1"]
        redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable_redis(self):
        with patch.object(worker, "create_pool", AsyncMock(side_effect=ConnectionError("refused"))):
            assert await worker.enqueue_event(EVENT) is False
