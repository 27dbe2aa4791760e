"""
Wiring for the automation engine.

build_engine() assembles the stores, executor, rule engine, delivery
scheduler and dispatcher around one session factory and one shared HTTP
client. The web app builds it in its lifespan, the worker in on_startup.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from pyra_engine.config import settings
from pyra_engine.models.base import utcnow
from pyra_engine.services.actions import ActionExecutor
from pyra_engine.services.collaborators import Collaborators, HttpCollaborators
from pyra_engine.services.dispatcher import EventDispatcher
from pyra_engine.services.rule_engine import RuleEngine
from pyra_engine.services.rule_service import ExecutionLogService, RuleService
from pyra_engine.services.webhook_service import DeliveryScheduler
from pyra_engine.services.webhook_store import DeliveryLogService, WebhookService


@dataclass
class Engine:
    rules: RuleService
    execution_log: ExecutionLogService
    webhooks: WebhookService
    deliveries: DeliveryLogService
    rule_engine: RuleEngine
    scheduler: DeliveryScheduler
    dispatcher: EventDispatcher
    http_client: httpx.AsyncClient


def build_engine(
    session_factory: async_sessionmaker,
    http_client: httpx.AsyncClient,
    collaborators: Optional[Collaborators] = None,
    clock: Callable = utcnow,
) -> Engine:
    if collaborators is None:
        collaborators = HttpCollaborators(
            http_client,
            settings.BUSINESS_API_URL,
            token=settings.BUSINESS_API_TOKEN,
            timeout=settings.ACTION_HTTP_TIMEOUT_SECONDS,
        )

    rules = RuleService(session_factory)
    execution_log = ExecutionLogService(session_factory)
    webhooks = WebhookService(session_factory)
    deliveries = DeliveryLogService(session_factory)

    executor = ActionExecutor(collaborators, http_client, clock=clock)
    rule_engine = RuleEngine(rules, execution_log, executor, clock=clock)
    scheduler = DeliveryScheduler(webhooks, deliveries, http_client, clock=clock)

    return Engine(
        rules=rules,
        execution_log=execution_log,
        webhooks=webhooks,
        deliveries=deliveries,
        rule_engine=rule_engine,
        scheduler=scheduler,
        dispatcher=EventDispatcher(rule_engine, scheduler),
        http_client=http_client,
    )
