"""
Tests for the action executor.
"""
import json

import httpx
import pytest
import pytest_asyncio
from pydantic import ValidationError

from pyra_engine.schemas.automation import ActionListAdapter, RuleCreate
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.services.actions import ActionExecutor
from pyra_engine.services.signer import verify

from fakes import RecordingCollaborators, RecordingReceiver


def make_action(data: dict):
    return ActionListAdapter.validate_python([data])[0]


def make_event(event_type="invoice_paid", **payload):
    return DomainEvent(id="evt-1", event_type=event_type, payload=payload)


class ExplodingCollaborators(RecordingCollaborators):
    async def send_email(self, config):
        raise RuntimeError("smtp down")


@pytest_asyncio.fixture
async def executor(collaborators, http_client, clock):
    return ActionExecutor(collaborators, http_client, timeout=1.0, clock=clock)


class TestCollaboratorActions:

    @pytest.mark.asyncio
    async def test_notification_config_is_resolved_against_payload(self, executor, collaborators):
        action = make_action({
            "type": "create_notification",
            "config": {"title": "Paid: {{invoice_number}}", "message": "{{client_name}} paid"},
        })
        event = make_event(username="sara", invoice_number="INV-9", client_name="Acme")

        result = await executor.execute(action, event)

        assert result.success is True
        assert result.type == "create_notification"
        assert collaborators.calls == [(
            "create_notification",
            {
                "recipient": "sara",
                "title": "Paid: INV-9",
                "message": "Acme paid",
                "notification_type": "automation",
            },
        )]

    @pytest.mark.asyncio
    async def test_unresolved_recipient_fails(self, executor, collaborators):
        action = make_action({"type": "create_notification", "config": {}})

        result = await executor.execute(action, make_event())

        assert result.success is False
        assert "recipient" in result.error
        assert collaborators.calls == []

    @pytest.mark.asyncio
    async def test_change_project_status_uses_payload_project(self, executor, collaborators):
        action = make_action({"type": "change_project_status", "config": {"new_status": "completed"}})

        result = await executor.execute(action, make_event(project_id="p-42"))

        assert result.success is True
        assert collaborators.calls == [
            ("change_project_status", {"project_id": "p-42", "new_status": "completed"}),
        ]

    @pytest.mark.asyncio
    async def test_collaborator_error_outcome_becomes_failed_result(self, http_client, clock):
        collaborators = RecordingCollaborators(failing={"create_invoice"})
        executor = ActionExecutor(collaborators, http_client, clock=clock)
        action = make_action({"type": "create_invoice", "config": {"amount": "{{total}}", "currency": "SAR"}})

        result = await executor.execute(action, make_event(total=500))

        assert result.success is False
        assert result.error == "create_invoice unavailable"
        assert collaborators.calls == [("create_invoice", {"config": {"amount": "500", "currency": "SAR"}})]

    @pytest.mark.asyncio
    async def test_collaborator_exception_is_captured(self, http_client, clock):
        executor = ActionExecutor(ExplodingCollaborators(), http_client, clock=clock)
        action = make_action({"type": "send_email", "config": {"to": "a@b.c", "subject": "Hi"}})

        result = await executor.execute(action, make_event())

        assert result.success is False
        assert result.error == "smtp down"

    @pytest.mark.asyncio
    async def test_log_activity_carries_event_details(self, executor, collaborators):
        action = make_action({"type": "log_activity", "config": {"message": "Quote {{quote_number}} signed"}})

        await executor.execute(action, make_event("quote_signed", quote_number="Q-3"))

        assert collaborators.calls == [(
            "log_activity",
            {
                "action_type": "automation",
                "message": "Quote Q-3 signed",
                "details": {"event_id": "evt-1", "event_type": "quote_signed"},
            },
        )]

    @pytest.mark.asyncio
    async def test_every_kind_dispatches_to_its_handler(self, executor, collaborators):
        actions = [
            {"type": "create_notification", "config": {"recipient": "sara"}},
            {"type": "change_project_status", "config": {"project_id": "p-1", "new_status": "done"}},
            {"type": "create_invoice", "config": {}},
            {"type": "log_activity", "config": {}},
            {"type": "send_email", "config": {"to": "a@b.c", "subject": "Hi"}},
            {"type": "fire_webhook", "config": {"url": "https://hooks.example.com/in"}},
        ]

        results = [await executor.execute(make_action(a), make_event()) for a in actions]

        assert [r.type for r in results] == [a["type"] for a in actions]
        assert all(r.success for r in results)
        assert [call[0] for call in collaborators.calls] == [a["type"] for a in actions[:5]]


class TestFireWebhook:

    @pytest.mark.asyncio
    async def test_posts_signed_default_body(self, executor, receiver, clock):
        action = make_action({
            "type": "fire_webhook",
            "config": {
                "url": "https://hooks.example.com/in",
                "secret": "s3cret",
                "headers": {"X-Project": "{{project_id}}"},
            },
        })

        result = await executor.execute(action, make_event(project_id="p-1"))

        assert result.success is True
        [request] = receiver.requests
        body = request.content
        assert json.loads(body) == {
            "event": "invoice_paid",
            "data": {"project_id": "p-1"},
            "timestamp": clock().isoformat(),
        }
        assert request.headers["X-Project"] == "p-1"
        assert verify("s3cret", body, request.headers["X-Pyra-Signature"])

    @pytest.mark.asyncio
    async def test_custom_payload_without_secret_is_unsigned(self, executor, receiver):
        action = make_action({
            "type": "fire_webhook",
            "config": {"url": "https://hooks.example.com/in", "payload": {"invoice": "{{number}}"}},
        })

        await executor.execute(action, make_event(number="INV-1"))

        [request] = receiver.requests
        assert json.loads(request.content) == {"invoice": "INV-1"}
        assert "X-Pyra-Signature" not in request.headers

    @pytest.mark.asyncio
    async def test_non_2xx_is_a_failure_and_not_retried(self, collaborators, clock):
        receiver = RecordingReceiver(503)
        async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
            executor = ActionExecutor(collaborators, client, clock=clock)
            action = make_action({"type": "fire_webhook", "config": {"url": "https://hooks.example.com/in"}})

            result = await executor.execute(action, make_event())

        assert result.success is False
        assert result.error == "HTTP 503"
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_network_error_is_a_failure(self, collaborators, clock):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            executor = ActionExecutor(collaborators, client, clock=clock)
            action = make_action({"type": "fire_webhook", "config": {"url": "https://hooks.example.com/in"}})

            result = await executor.execute(action, make_event())

        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_url_invalid_after_resolution_fails_without_request(self, executor, receiver):
        action = make_action({"type": "fire_webhook", "config": {"url": "{{callback_url}}"}})

        result = await executor.execute(action, make_event(callback_url="ftp://files.example.com"))

        assert result.success is False
        assert result.error.startswith("Invalid config after template resolution")
        assert receiver.requests == []


class TestActionValidation:
    """The set of actions is closed and configs are structured."""

    def test_unknown_action_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            make_action({"type": "delete_everything", "config": {}})

    def test_raw_string_config_is_rejected(self):
        with pytest.raises(ValidationError):
            make_action({"type": "log_activity", "config": "message=hi"})

    def test_required_config_fields(self):
        with pytest.raises(ValidationError):
            make_action({"type": "send_email", "config": {"subject": "no recipient"}})
        with pytest.raises(ValidationError):
            make_action({"type": "fire_webhook", "config": {"url": "not a url"}})

    def test_rule_needs_at_least_one_action(self):
        with pytest.raises(ValidationError):
            RuleCreate(name="Empty", trigger_event_type="invoice_paid", actions=[])
