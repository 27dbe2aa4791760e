"""
Automation rule storage.

SQLAlchemy-backed implementations of RuleStore and ExecutionLogStore, plus
the CRUD operations used by the automations API. Each operation opens its
own short-lived session so the stores can be shared by request handlers,
background tasks and the worker.
"""
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pyra_engine.exceptions import RuleNotFoundError
from pyra_engine.logging_config import get_logger
from pyra_engine.models.automation import AutomationLog, AutomationRule
from pyra_engine.schemas.automation import (
    ActionListAdapter,
    ConditionListAdapter,
    ExecutionLogEntry,
    Rule,
    RuleCreate,
    RuleUpdate,
)


log = get_logger(component="rule_store")


async def count_rows(db: AsyncSession, stmt) -> int:
    """Total rows a select statement would return, ignoring limit/offset."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    return (await db.execute(count_stmt)).scalar_one()


class RuleService:
    """Rule CRUD and the engine's RuleStore."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _get_model(self, db: AsyncSession, rule_id: str) -> AutomationRule:
        rule = await db.get(AutomationRule, rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def list_enabled_for_event(self, event_type: str) -> list[Rule]:
        """
        Get enabled rules triggered by an event type.

        Rules whose stored definition no longer validates are skipped and
        logged rather than failing the whole event.
        """
        stmt = select(AutomationRule).where(
            AutomationRule.trigger_event_type == event_type,
            AutomationRule.enabled.is_(True),
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            models = list(result.scalars().all())

        rules = []
        for model in models:
            try:
                rules.append(Rule.model_validate(model))
            except ValidationError as e:
                log.error("rule_definition_invalid", rule_id=model.id, error=str(e))
        return rules

    async def create(self, data: RuleCreate, created_by: Optional[str] = None) -> Rule:
        """
        Create a new rule.

        Args:
            data: Validated rule definition
            created_by: Username of the author (optional)

        Returns:
            Newly created Rule
        """
        rule = AutomationRule(
            name=data.name,
            description=data.description.strip() if data.description else None,
            trigger_event_type=data.trigger_event_type,
            conditions=ConditionListAdapter.dump_python(data.conditions, mode="json"),
            actions=ActionListAdapter.dump_python(data.actions, mode="json"),
            enabled=data.enabled,
            execution_count=0,
            created_by=created_by,
        )
        async with self.session_factory() as db:
            db.add(rule)
            await db.commit()
            await db.refresh(rule)
        log.info("rule_created", rule_id=rule.id, trigger_event_type=rule.trigger_event_type)
        return Rule.model_validate(rule)

    async def get(self, rule_id: str) -> Rule:
        """Get rule by ID. Raises RuleNotFoundError."""
        async with self.session_factory() as db:
            return Rule.model_validate(await self._get_model(db, rule_id))

    async def list(self, page: int = 1, page_size: int = 20) -> tuple[list[Rule], int]:
        """List rules, newest first."""
        stmt = select(AutomationRule).order_by(AutomationRule.created_at.desc(), AutomationRule.id)
        async with self.session_factory() as db:
            total = await count_rows(db, stmt)
            result = await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))
            return [Rule.model_validate(r) for r in result.scalars().all()], total

    async def update(self, rule_id: str, data: RuleUpdate) -> Rule:
        """Apply a partial update. Only fields present in the request change."""
        changes = data.model_dump(exclude_unset=True)
        async with self.session_factory() as db:
            rule = await self._get_model(db, rule_id)
            if "name" in changes:
                rule.name = data.name
            if "description" in changes:
                rule.description = data.description.strip() if data.description else None
            if "trigger_event_type" in changes:
                rule.trigger_event_type = data.trigger_event_type
            if "conditions" in changes:
                rule.conditions = ConditionListAdapter.dump_python(data.conditions, mode="json")
            if "actions" in changes:
                rule.actions = ActionListAdapter.dump_python(data.actions, mode="json")
            if "enabled" in changes:
                rule.enabled = data.enabled
            await db.commit()
            await db.refresh(rule)
            log.info("rule_updated", rule_id=rule_id, fields=sorted(changes))
            return Rule.model_validate(rule)

    async def toggle(self, rule_id: str) -> Rule:
        """Flip a rule's enabled flag."""
        async with self.session_factory() as db:
            rule = await self._get_model(db, rule_id)
            rule.enabled = not rule.enabled
            await db.commit()
            await db.refresh(rule)
            log.info("rule_toggled", rule_id=rule_id, enabled=rule.enabled)
            return Rule.model_validate(rule)

    async def delete(self, rule_id: str) -> None:
        """Delete a rule. Its execution log is kept."""
        async with self.session_factory() as db:
            result = await db.execute(delete(AutomationRule).where(AutomationRule.id == rule_id))
            if result.rowcount == 0:
                await db.rollback()
                raise RuleNotFoundError(rule_id)
            await db.commit()
        log.info("rule_deleted", rule_id=rule_id)


class ExecutionLogService:
    """The engine's ExecutionLogStore and the log read API."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record_execution(self, entry: ExecutionLogEntry) -> None:
        """
        Append a log entry and count the firing against its rule.

        Both writes share one transaction so the count moves exactly once
        per entry. A rule deleted mid-flight still gets its log entry.
        """
        row = AutomationLog(
            id=entry.id,
            rule_id=entry.rule_id,
            rule_name=entry.rule_name,
            trigger_event_type=entry.trigger_event_type,
            trigger_payload=entry.trigger_payload,
            actions_executed=[r.model_dump(mode="json") for r in entry.actions_executed],
            status=entry.status,
            error_message=entry.error_message,
            executed_at=entry.executed_at,
        )
        async with self.session_factory() as db:
            db.add(row)
            await db.execute(
                update(AutomationRule)
                .where(AutomationRule.id == entry.rule_id)
                .values(execution_count=AutomationRule.execution_count + 1)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def list(
        self,
        rule_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[ExecutionLogEntry], int]:
        """List execution log entries, newest first, optionally for one rule."""
        stmt = select(AutomationLog)
        if rule_id:
            stmt = stmt.where(AutomationLog.rule_id == rule_id)
        stmt = stmt.order_by(AutomationLog.executed_at.desc(), AutomationLog.id)
        async with self.session_factory() as db:
            total = await count_rows(db, stmt)
            result = await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))
            return [ExecutionLogEntry.model_validate(r) for r in result.scalars().all()], total
