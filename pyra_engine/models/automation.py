"""
Automation models.

Automation rules (trigger -> conditions -> actions) and the append-only
execution log written each time a rule fires.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import JSON, Boolean, Integer, String, Text, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from pyra_engine.models.base import Base, TimestampMixin, UTCDateTime, utcnow


JSONType = JSON().with_variant(JSONB(), "postgresql")


class ExecutionStatus(str, enum.Enum):
    """Outcome of one rule firing."""
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class AutomationRule(Base, TimestampMixin):
    """
    User-authored automation rule.

    Conditions and actions are stored as JSON and validated by the schema
    layer before they are written.
    """
    __tablename__ = "automation_rules"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    conditions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    actions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    execution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self):
        return f"<AutomationRule(id={self.id}, name={self.name}, trigger={self.trigger_event_type})>"


class AutomationLog(Base):
    """
    Execution log entry.

    One row per rule firing. Rows are never updated or deleted, and outlive
    the rule they reference.
    """
    __tablename__ = "automation_log"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    rule_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    rule_name: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger_payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    actions_executed: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[ExecutionStatus] = mapped_column(
        SQLEnum(
            ExecutionStatus,
            native_enum=False,
            create_constraint=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        index=True
    )

    def __repr__(self):
        return f"<AutomationLog(id={self.id}, rule_id={self.rule_id}, status={self.status})>"
