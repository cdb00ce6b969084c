from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from churchdesk.core.id_utils import generate_shortuuid
from churchdesk.db.base import Base


class Automation(Base):
    __tablename__ = "automations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    trigger_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="form_submission",
        server_default="form_submission",
    )
    trigger_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    actions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index(
            "ix_automations_organization_trigger_active",
            "organization_id",
            "trigger_type",
            "is_active",
        ),
    )


class AutomationRun(Base):
    __tablename__ = "automation_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    automation_id: Mapped[str] = mapped_column(String(36), ForeignKey("automations.id"), nullable=False, index=True)
    person_id: Mapped[str] = mapped_column(String(36), ForeignKey("people.id"), nullable=False, index=True)
    trigger_event_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", server_default="running")
    blocked_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    steps_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    steps_succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    steps_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    steps_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("automation_id", "trigger_event_id", name="uq_automation_runs_automation_trigger_event"),
        Index("ix_automation_runs_automation_created_at", "automation_id", "created_at"),
        Index(
            "ix_automation_runs_organization_status_created_at",
            "organization_id",
            "status",
            "created_at",
        ),
    )


class AutomationRunStep(Base):
    __tablename__ = "automation_run_steps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    run_id: Mapped[str] = mapped_column(String(36), ForeignKey("automation_runs.id"), nullable=False, index=True)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    input_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    output_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "step_index", name="uq_automation_run_steps_run_step"),
    )
