"""
Real database tests for rule and execution log storage.
"""
import pytest
import pytest_asyncio
from pydantic import ValidationError

from pyra_engine.exceptions import RuleNotFoundError
from pyra_engine.models.automation import AutomationRule
from pyra_engine.schemas.automation import RuleCreate, RuleUpdate
from pyra_engine.services.rule_service import RuleService


@pytest_asyncio.fixture
async def rule_service(session_factory):
    return RuleService(session_factory)


def new_rule(name="Notify on upload", **overrides) -> RuleCreate:
    data = {
        "name": name,
        "trigger_event": "file_uploaded",
        "conditions": [{"field": "size", "operator": "greater_than", "value": 1024}],
        "actions": [{"type": "create_notification", "config": {"recipient": "admin", "title": "{{file_name}}"}}],
    }
    data.update(overrides)
    return RuleCreate.model_validate(data)


class TestCreateRule:

    @pytest.mark.asyncio
    async def test_create_round_trips_structured_definition(self, rule_service):
        rule = await rule_service.create(new_rule(), created_by="sara")

        fetched = await rule_service.get(rule.id)
        assert fetched.trigger_event_type == "file_uploaded"
        assert fetched.conditions[0].value == "1024"
        assert fetched.actions[0].type == "create_notification"
        assert fetched.actions[0].config.recipient == "admin"
        assert fetched.enabled is True
        assert fetched.execution_count == 0
        assert fetched.created_by == "sara"
        assert fetched.created_at.tzinfo is not None

    def test_invalid_definitions_are_rejected(self):
        with pytest.raises(ValidationError):
            new_rule(actions=[])
        with pytest.raises(ValidationError):
            new_rule(conditions=[{"field": "size", "operator": "between", "value": "1"}])
        with pytest.raises(ValidationError):
            new_rule(actions=[{"type": "create_notification", "config": "recipient=admin"}])


class TestUpdateRule:

    @pytest.mark.asyncio
    async def test_partial_update_only_touches_given_fields(self, rule_service):
        rule = await rule_service.create(new_rule())

        updated = await rule_service.update(rule.id, RuleUpdate.model_validate({"name": "Renamed"}))

        assert updated.name == "Renamed"
        assert updated.trigger_event_type == rule.trigger_event_type
        assert len(updated.conditions) == 1

    @pytest.mark.asyncio
    async def test_conditions_can_be_cleared(self, rule_service):
        rule = await rule_service.create(new_rule())

        updated = await rule_service.update(rule.id, RuleUpdate.model_validate({"conditions": []}))

        assert updated.conditions == []

    def test_explicit_null_for_required_field_is_rejected(self):
        with pytest.raises(ValidationError):
            RuleUpdate.model_validate({"name": None})
        with pytest.raises(ValidationError):
            RuleUpdate.model_validate({"actions": []})

    @pytest.mark.asyncio
    async def test_toggle(self, rule_service):
        rule = await rule_service.create(new_rule())

        assert (await rule_service.toggle(rule.id)).enabled is False
        assert (await rule_service.toggle(rule.id)).enabled is True

    @pytest.mark.asyncio
    async def test_missing_rule(self, rule_service):
        with pytest.raises(RuleNotFoundError):
            await rule_service.update("nope", RuleUpdate())
        with pytest.raises(RuleNotFoundError):
            await rule_service.delete("nope")


class TestListRules:

    @pytest.mark.asyncio
    async def test_pagination(self, rule_service):
        for i in range(5):
            await rule_service.create(new_rule(name=f"Rule {i}"))

        page, total = await rule_service.list(page=2, page_size=2)

        assert total == 5
        assert len(page) == 2

    @pytest.mark.asyncio
    async def test_invalid_stored_rule_is_skipped_for_events(self, rule_service, session_factory):
        good = await rule_service.create(new_rule())
        async with session_factory() as db:
            db.add(AutomationRule(
                name="Corrupt",
                trigger_event_type="file_uploaded",
                conditions=[],
                actions=[{"type": "teleport", "config": {}}],
                enabled=True,
            ))
            await db.commit()

        rules = await rule_service.list_enabled_for_event("file_uploaded")

        assert [r.id for r in rules] == [good.id]

    @pytest.mark.asyncio
    async def test_delete_removes_rule(self, rule_service):
        rule = await rule_service.create(new_rule())

        await rule_service.delete(rule.id)

        with pytest.raises(RuleNotFoundError):
            await rule_service.get(rule.id)
