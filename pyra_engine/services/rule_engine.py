"""
Rule Engine

Runs every enabled rule triggered by a domain event and writes exactly one
execution log entry per matching rule.
"""
import asyncio
import uuid
from typing import Callable, Optional

from pyra_engine.config import settings
from pyra_engine.logging_config import get_logger
from pyra_engine.models.automation import ExecutionStatus
from pyra_engine.models.base import utcnow
from pyra_engine.routes.metrics import track_rule_execution
from pyra_engine.schemas.automation import ActionResult, ExecutionLogEntry, Rule
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.sentry_config import capture_exception
from pyra_engine.services.actions import ActionExecutor
from pyra_engine.services.conditions import evaluate
from pyra_engine.services.stores import ExecutionLogStore, RuleStore


log = get_logger(component="rule_engine")


def aggregate_status(results: list[ActionResult]) -> ExecutionStatus:
    """success if every action succeeded, failed if none did, else partial_failure."""
    succeeded = sum(1 for r in results if r.success)
    if results and succeeded == len(results):
        return ExecutionStatus.SUCCESS
    if succeeded == 0:
        return ExecutionStatus.FAILED
    return ExecutionStatus.PARTIAL_FAILURE


def summarize_errors(results: list[ActionResult]) -> Optional[str]:
    errors = "".join(f"{r.type}: {r.error}; " for r in results if not r.success)
    return errors or None


class RuleEngine:
    """Evaluates rules for an event and executes the actions of those that match."""

    def __init__(
        self,
        rules: RuleStore,
        execution_log: ExecutionLogStore,
        executor: ActionExecutor,
        clock: Callable = utcnow,
        record_attempts: int = settings.EXECUTION_LOG_WRITE_ATTEMPTS,
        record_backoff: float = settings.EXECUTION_LOG_WRITE_BACKOFF_SECONDS,
    ):
        self.rules = rules
        self.execution_log = execution_log
        self.executor = executor
        self.clock = clock
        self.record_attempts = record_attempts
        self.record_backoff = record_backoff

    async def on_event(self, event: DomainEvent) -> list[ExecutionLogEntry]:
        """
        Run all enabled rules for an event.

        Rules run concurrently; a failure inside one rule is logged and
        reported without affecting the others. A failure to load the rules
        propagates so the caller can retry the event, and so does a log
        entry that still cannot be written once every rule has finished.

        Returns:
            One log entry per rule whose conditions matched
        """
        event_log = log.bind(event_id=event.id, event_type=event.event_type)
        rules = await self.rules.list_enabled_for_event(event.event_type)
        if not rules:
            event_log.debug("no_rules_for_event")
            return []

        results = await asyncio.gather(
            *(self._run_rule(rule, event) for rule in rules),
            return_exceptions=True,
        )

        entries = []
        errors = []
        for rule, result in zip(rules, results):
            if isinstance(result, BaseException):
                event_log.error("rule_execution_error", rule_id=rule.id, error=str(result), exc_info=result)
                capture_exception(result, rule_id=rule.id, event_id=event.id)
                errors.append(result)
            elif result is not None:
                entries.append(result)

        if errors:
            raise errors[0]
        return entries

    async def _record(self, entry: ExecutionLogEntry, rule_log):
        """Write a log entry, retrying the write alone so actions never run twice."""
        for attempt in range(1, self.record_attempts + 1):
            try:
                await self.execution_log.record_execution(entry)
                return
            except Exception as e:
                if attempt >= self.record_attempts:
                    raise
                delay = self.record_backoff * 2 ** (attempt - 1)
                rule_log.warning("execution_log_write_retrying", attempt=attempt, error=str(e), defer=delay)
                await asyncio.sleep(delay)

    async def _run_rule(self, rule: Rule, event: DomainEvent) -> Optional[ExecutionLogEntry]:
        rule_log = log.bind(rule_id=rule.id, event_id=event.id)
        if not evaluate(rule.conditions, event.payload):
            rule_log.debug("rule_conditions_not_met")
            return None

        # Actions within a rule run in declaration order
        results = []
        for action in rule.actions:
            results.append(await self.executor.execute(action, event))

        status = aggregate_status(results)
        entry = ExecutionLogEntry(
            id=str(uuid.uuid4()),
            rule_id=rule.id,
            rule_name=rule.name,
            trigger_event_type=event.event_type,
            trigger_payload=event.payload,
            actions_executed=results,
            status=status,
            error_message=summarize_errors(results),
            executed_at=self.clock(),
        )
        await self._record(entry, rule_log)
        track_rule_execution(status.value)
        rule_log.info("rule_executed", status=status.value, actions=len(results))
        return entry
