"""
Automation rule schemas.

Conditions and actions are closed sets: an unknown operator or action kind,
an empty action list, or an action config that is not a structured object
is rejected here, at write time, and never reaches the rule engine.
"""
import enum
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
)

from pyra_engine.models.automation import ExecutionStatus
from pyra_engine.schemas.events import EventType
from pyra_engine.services.payload import to_text


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class Operator(str, enum.Enum):
    """Condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class ActionKind(str, enum.Enum):
    """Action types a rule can run."""
    CREATE_NOTIFICATION = "create_notification"
    CHANGE_PROJECT_STATUS = "change_project_status"
    CREATE_INVOICE = "create_invoice"
    LOG_ACTIVITY = "log_activity"
    SEND_EMAIL = "send_email"
    FIRE_WEBHOOK = "fire_webhook"


class Condition(BaseModel):
    """One condition: a dot-path into the event payload, an operator and a value."""
    field: NonEmptyStr
    operator: Operator
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (bool, int, float)):
            return to_text(value)
        raise ValueError("condition value must be a string, number or boolean")


# ── Per-kind action configs ─────────────────────────────────────

def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class CreateNotificationConfig(BaseModel):
    recipient: str = "{{username}}"
    title: str = "Automated notification"
    message: str = ""
    notification_type: str = "automation"


class ChangeProjectStatusConfig(BaseModel):
    project_id: str = "{{project_id}}"
    new_status: NonEmptyStr


class CreateInvoiceConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    project_id: Optional[str] = None
    client_id: Optional[str] = None
    amount: Union[float, str, None] = None
    currency: Optional[str] = None
    description: Optional[str] = None


class LogActivityConfig(BaseModel):
    action_type: str = "automation"
    message: str = ""


class SendEmailConfig(BaseModel):
    to: NonEmptyStr
    subject: NonEmptyStr
    body: str = ""


class FireWebhookConfig(BaseModel):
    url: NonEmptyStr
    payload: Optional[dict[str, Any]] = None
    headers: dict[str, str] = Field(default_factory=dict)
    secret: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        # Templated URLs are checked again once resolved
        if "{{" in value or _is_http_url(value):
            return value
        raise ValueError("url must be an http(s) URL")


class CreateNotificationAction(BaseModel):
    type: Literal["create_notification"]
    config: CreateNotificationConfig = Field(default_factory=CreateNotificationConfig)


class ChangeProjectStatusAction(BaseModel):
    type: Literal["change_project_status"]
    config: ChangeProjectStatusConfig


class CreateInvoiceAction(BaseModel):
    type: Literal["create_invoice"]
    config: CreateInvoiceConfig = Field(default_factory=CreateInvoiceConfig)


class LogActivityAction(BaseModel):
    type: Literal["log_activity"]
    config: LogActivityConfig = Field(default_factory=LogActivityConfig)


class SendEmailAction(BaseModel):
    type: Literal["send_email"]
    config: SendEmailConfig


class FireWebhookAction(BaseModel):
    type: Literal["fire_webhook"]
    config: FireWebhookConfig


Action = Annotated[
    Union[
        CreateNotificationAction,
        ChangeProjectStatusAction,
        CreateInvoiceAction,
        LogActivityAction,
        SendEmailAction,
        FireWebhookAction,
    ],
    Field(discriminator="type"),
]

ActionListAdapter = TypeAdapter(list[Action])
ConditionListAdapter = TypeAdapter(list[Condition])


class ActionResult(BaseModel):
    """Outcome of one action within a rule firing."""
    type: str
    success: bool
    error: Optional[str] = None


# ── Rules ────────────────────────────────────────────────────────

class RuleCreate(BaseModel):
    """Request model for creating a rule."""
    model_config = ConfigDict(populate_by_name=True)

    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    description: Optional[str] = None
    trigger_event_type: EventType = Field(
        validation_alias=AliasChoices("trigger_event_type", "trigger_event")
    )
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(min_length=1)
    enabled: bool = Field(default=True, validation_alias=AliasChoices("enabled", "is_enabled"))


class RuleUpdate(BaseModel):
    """
    Request model for PATCH /automations/{id}.

    Only fields present in the request are applied. Explicit nulls are
    rejected for fields that cannot be empty.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)] = None
    description: Optional[str] = None
    trigger_event_type: EventType = Field(
        default=None,
        validation_alias=AliasChoices("trigger_event_type", "trigger_event"),
    )
    conditions: list[Condition] = None
    actions: list[Action] = Field(default=None, min_length=1)
    enabled: bool = Field(default=None, validation_alias=AliasChoices("enabled", "is_enabled"))


class Rule(BaseModel):
    """An automation rule as the engine and the API see it."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    trigger_event_type: str
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action]
    enabled: bool = True
    execution_count: int = 0
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionLogEntry(BaseModel):
    """One rule firing, as written to the execution log."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    rule_id: str
    rule_name: str
    trigger_event_type: str
    trigger_payload: dict[str, Any]
    actions_executed: list[ActionResult]
    status: ExecutionStatus
    error_message: Optional[str] = None
    executed_at: datetime


class AutomationTemplate(BaseModel):
    """Starter rule definition offered by GET /automations/templates."""
    id: str
    name: str
    description: str
    trigger_event_type: str
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action]
