"""
Action execution for automation rules.

Each action kind maps to exactly one handler. A handler makes one
collaborator call (or, for fire_webhook, one HTTP request) and its result
is reported as an ActionResult. Exceptions never escape execute(), so one
failing action cannot stop the actions after it.
"""
from typing import Awaitable, Callable

import httpx
from pydantic import BaseModel, ValidationError

from pyra_engine.config import settings
from pyra_engine.logging_config import get_logger
from pyra_engine.models.base import utcnow
from pyra_engine.routes.metrics import track_action
from pyra_engine.schemas.automation import (
    Action,
    ActionKind,
    ActionResult,
    ChangeProjectStatusConfig,
    CreateInvoiceConfig,
    CreateNotificationConfig,
    FireWebhookConfig,
    LogActivityConfig,
    SendEmailConfig,
)
from pyra_engine.schemas.events import DomainEvent
from pyra_engine.services.collaborators import Collaborators, Outcome
from pyra_engine.services.payload import encode_json
from pyra_engine.services.signer import SIGNATURE_HEADER, sign
from pyra_engine.services.template_resolver import TOKEN_RE, resolve


log = get_logger(component="actions")

Handler = Callable[[BaseModel, DomainEvent], Awaitable[Outcome]]


def _unresolved(value: str) -> bool:
    return not value.strip() or TOKEN_RE.search(value) is not None


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


class ActionExecutor:
    """Runs a single action against the event that triggered its rule."""

    def __init__(
        self,
        collaborators: Collaborators,
        http_client: httpx.AsyncClient,
        timeout: float = settings.ACTION_HTTP_TIMEOUT_SECONDS,
        clock: Callable = utcnow,
    ):
        self.collaborators = collaborators
        self.http_client = http_client
        self.timeout = timeout
        self.clock = clock
        self._handlers: dict[ActionKind, Handler] = {
            ActionKind.CREATE_NOTIFICATION: self._create_notification,
            ActionKind.CHANGE_PROJECT_STATUS: self._change_project_status,
            ActionKind.CREATE_INVOICE: self._create_invoice,
            ActionKind.LOG_ACTIVITY: self._log_activity,
            ActionKind.SEND_EMAIL: self._send_email,
            ActionKind.FIRE_WEBHOOK: self._fire_webhook,
        }

    async def execute(self, action: Action, event: DomainEvent) -> ActionResult:
        """
        Resolve the action's config against the event payload and run it.

        Args:
            action: Validated action (type + structured config)
            event: Triggering domain event

        Returns:
            ActionResult with success flag and error message on failure
        """
        kind = ActionKind(action.type)
        action_type = kind.value
        action_log = log.bind(action_type=action_type, event_id=event.id)

        try:
            config_model = type(action.config)
            resolved = resolve(action.config.model_dump(mode="json"), event.payload)
            config = config_model.model_validate(resolved)
        except ValidationError as e:
            error = f"Invalid config after template resolution: {_describe_validation_error(e)}"
            action_log.warning("action_config_invalid", error=error)
            track_action(action_type, False)
            return ActionResult(type=action_type, success=False, error=error)

        handler = self._handlers[kind]
        try:
            outcome = await handler(config, event)
        except Exception as e:
            action_log.exception("action_failed")
            outcome = Outcome(ok=False, error=str(e) or e.__class__.__name__)

        track_action(action_type, outcome.ok)
        if outcome.ok:
            action_log.info("action_succeeded")
            return ActionResult(type=action_type, success=True)

        action_log.warning("action_unsuccessful", error=outcome.error)
        return ActionResult(type=action_type, success=False, error=outcome.error or "Unknown error")

    # ── Handlers ──────────────────────────────────────────────────

    async def _create_notification(self, config: CreateNotificationConfig, event: DomainEvent) -> Outcome:
        if _unresolved(config.recipient):
            return Outcome(ok=False, error="Notification recipient could not be resolved")
        return await self.collaborators.create_notification(
            config.recipient,
            config.title,
            config.message,
            config.notification_type,
        )

    async def _change_project_status(self, config: ChangeProjectStatusConfig, event: DomainEvent) -> Outcome:
        if _unresolved(config.project_id):
            return Outcome(ok=False, error="Project id could not be resolved")
        return await self.collaborators.change_project_status(config.project_id, config.new_status)

    async def _create_invoice(self, config: CreateInvoiceConfig, event: DomainEvent) -> Outcome:
        return await self.collaborators.create_invoice(config.model_dump(exclude_none=True))

    async def _log_activity(self, config: LogActivityConfig, event: DomainEvent) -> Outcome:
        return await self.collaborators.log_activity(
            config.action_type,
            config.message,
            {"event_id": event.id, "event_type": event.event_type},
        )

    async def _send_email(self, config: SendEmailConfig, event: DomainEvent) -> Outcome:
        return await self.collaborators.send_email(config.model_dump())

    async def _fire_webhook(self, config: FireWebhookConfig, event: DomainEvent) -> Outcome:
        # One shot: no delivery record and no retry
        if config.payload is not None:
            body = encode_json(config.payload)
        else:
            body = encode_json({
                "event": event.event_type,
                "data": event.payload,
                "timestamp": self.clock().isoformat(),
            })

        headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.WEBHOOK_USER_AGENT,
            "X-Pyra-Event": event.event_type,
            **config.headers,
        }
        if config.secret:
            headers[SIGNATURE_HEADER] = sign(config.secret, body)

        try:
            response = await self.http_client.post(
                config.url,
                content=body,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            return Outcome(ok=False, error=str(e) or e.__class__.__name__)

        if response.is_success:
            return Outcome(ok=True)
        return Outcome(ok=False, error=f"HTTP {response.status_code}")
