"""
Tests for the rule engine, run against the real SQLite-backed stores.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from pyra_engine.models.automation import ExecutionStatus
from pyra_engine.schemas.automation import ActionResult, Rule, RuleCreate
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.services.actions import ActionExecutor
from pyra_engine.services.engine import build_engine
from pyra_engine.services.rule_engine import RuleEngine, aggregate_status, summarize_errors

from fakes import RecordingCollaborators


def rule_data(**overrides) -> RuleCreate:
    data = {
        "name": "Invoice paid follow-up",
        "trigger_event_type": "invoice_paid",
        "conditions": [{"field": "status", "operator": "equals", "value": "paid"}],
        "actions": [
            {"type": "log_activity", "config": {"message": "Invoice {{invoice_number}} paid"}},
            {"type": "send_email", "config": {"to": "{{client_email}}", "subject": "Thanks!"}},
        ],
    }
    data.update(overrides)
    return RuleCreate.model_validate(data)


def paid_event(**extra) -> DomainEvent:
    payload = {"status": "paid", "invoice_number": "INV-1", "client_email": "ap@acme.test"}
    payload.update(extra)
    return DomainEvent(event_type="invoice_paid", payload=payload)


class TestAggregation:

    def test_statuses(self):
        ok = ActionResult(type="log_activity", success=True)
        bad = ActionResult(type="send_email", success=False, error="smtp down")
        assert aggregate_status([ok, ok]) == ExecutionStatus.SUCCESS
        assert aggregate_status([ok, bad]) == ExecutionStatus.PARTIAL_FAILURE
        assert aggregate_status([bad, bad]) == ExecutionStatus.FAILED
        assert aggregate_status([]) == ExecutionStatus.FAILED

    def test_error_summary(self):
        results = [
            ActionResult(type="log_activity", success=True),
            ActionResult(type="send_email", success=False, error="smtp down"),
            ActionResult(type="fire_webhook", success=False, error="HTTP 500"),
        ]
        assert summarize_errors(results) == "send_email: smtp down; fire_webhook: HTTP 500; "
        assert summarize_errors(results[:1]) is None


class TestOnEvent:

    @pytest.mark.asyncio
    async def test_matching_rule_writes_one_successful_entry(self, engine, collaborators):
        rule = await engine.rules.create(rule_data())

        entries = await engine.rule_engine.on_event(paid_event())

        assert len(entries) == 1
        entry = entries[0]
        assert entry.rule_id == rule.id
        assert entry.status == ExecutionStatus.SUCCESS
        assert entry.error_message is None
        assert [r.type for r in entry.actions_executed] == ["log_activity", "send_email"]
        assert [call[0] for call in collaborators.calls] == ["log_activity", "send_email"]

        logged, total = await engine.execution_log.list(rule_id=rule.id)
        assert total == 1
        assert logged[0].id == entry.id

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_running_later_actions(self, session_factory, http_client, clock):
        collaborators = RecordingCollaborators(failing={"log_activity"})
        engine = build_engine(session_factory, http_client, collaborators=collaborators, clock=clock)
        await engine.rules.create(rule_data())

        [entry] = await engine.rule_engine.on_event(paid_event())

        assert entry.status == ExecutionStatus.PARTIAL_FAILURE
        assert len(entry.actions_executed) == 2
        assert entry.actions_executed[0].success is False
        assert entry.actions_executed[1].success is True
        assert entry.error_message == "log_activity: log_activity unavailable; "

    @pytest.mark.asyncio
    async def test_all_actions_failing_is_failed(self, session_factory, http_client, clock):
        collaborators = RecordingCollaborators(failing={"log_activity", "send_email"})
        engine = build_engine(session_factory, http_client, collaborators=collaborators, clock=clock)
        await engine.rules.create(rule_data())

        [entry] = await engine.rule_engine.on_event(paid_event())

        assert entry.status == ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_execution_count_moves_once_per_event(self, engine):
        rule = await engine.rules.create(rule_data(actions=[
            {"type": "log_activity", "config": {}},
            {"type": "log_activity", "config": {}},
            {"type": "log_activity", "config": {}},
        ]))

        await engine.rule_engine.on_event(paid_event())
        await engine.rule_engine.on_event(paid_event())

        assert (await engine.rules.get(rule.id)).execution_count == 2
        _, total = await engine.execution_log.list(rule_id=rule.id)
        assert total == 2

    @pytest.mark.asyncio
    async def test_unmet_conditions_write_nothing(self, engine, collaborators):
        rule = await engine.rules.create(rule_data())

        entries = await engine.rule_engine.on_event(paid_event(status="draft"))

        assert entries == []
        assert collaborators.calls == []
        assert (await engine.rules.get(rule.id)).execution_count == 0

    @pytest.mark.asyncio
    async def test_disabled_and_other_trigger_rules_are_ignored(self, engine):
        await engine.rules.create(rule_data(enabled=False))
        await engine.rules.create(rule_data(trigger_event_type="invoice_overdue"))

        assert await engine.rule_engine.on_event(paid_event()) == []

    @pytest.mark.asyncio
    async def test_every_matching_rule_gets_its_own_entry(self, engine):
        first = await engine.rules.create(rule_data(name="First"))
        second = await engine.rules.create(rule_data(name="Second", conditions=[]))

        entries = await engine.rule_engine.on_event(paid_event())

        assert {e.rule_id for e in entries} == {first.id, second.id}


class TestFailureIsolation:
    """Engine behaviour with stores that misbehave."""

    def _rule(self, rule_id: str) -> Rule:
        return Rule.model_validate({
            "id": rule_id,
            "name": rule_id,
            "trigger_event_type": "invoice_paid",
            "actions": [{"type": "log_activity", "config": {}}],
        })

    @pytest.mark.asyncio
    async def test_one_rule_failing_does_not_affect_others(self, collaborators, http_client):
        rules = AsyncMock()
        rules.list_enabled_for_event.return_value = [self._rule("broken"), self._rule("healthy")]
        execution_log = AsyncMock()

        async def record(entry):
            if entry.rule_id == "broken":
                raise RuntimeError("disk full")

        execution_log.record_execution.side_effect = record
        engine = RuleEngine(
            rules, execution_log, ActionExecutor(collaborators, http_client), record_backoff=0
        )

        with pytest.raises(RuntimeError, match="disk full"):
            await engine.on_event(paid_event())

        written = [call.args[0].rule_id for call in execution_log.record_execution.await_args_list]
        assert written.count("healthy") == 1
        assert written.count("broken") == 3
        # Actions ran once per rule; only the log write was retried
        assert len(collaborators.calls) == 2

    @pytest.mark.asyncio
    async def test_log_write_is_retried_without_rerunning_actions(self, engine, collaborators, monkeypatch):
        rule = await engine.rules.create(rule_data())
        record_execution = engine.execution_log.record_execution
        failures = [OperationalError("INSERT", {}, Exception("db down"))]

        async def flaky(entry):
            if failures:
                raise failures.pop()
            await record_execution(entry)

        monkeypatch.setattr(engine.execution_log, "record_execution", flaky)
        rule_engine = RuleEngine(engine.rules, engine.execution_log, engine.rule_engine.executor, record_backoff=0)

        [entry] = await rule_engine.on_event(paid_event())

        assert [call[0] for call in collaborators.calls] == ["log_activity", "send_email"]
        assert (await engine.rules.get(rule.id)).execution_count == 1
        logged, total = await engine.execution_log.list(rule_id=rule.id)
        assert total == 1
        assert logged[0].id == entry.id

    @pytest.mark.asyncio
    async def test_rule_load_failure_propagates(self, collaborators, http_client):
        rules = AsyncMock()
        rules.list_enabled_for_event.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        engine = RuleEngine(rules, AsyncMock(), ActionExecutor(collaborators, http_client))

        with pytest.raises(OperationalError):
            await engine.on_event(paid_event())
