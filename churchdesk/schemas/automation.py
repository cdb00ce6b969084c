from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from churchdesk.schemas.common import PaginationMeta


AutomationRunStatus = Literal["running", "completed", "skipped", "timed_out", "cancelled"]
AutomationStepStatus = Literal["success", "failed", "skipped"]


class TriggerDispatchIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    automation_id: str = Field(min_length=1, max_length=36)
    person_id: str = Field(min_length=1, max_length=36)
    trigger_event_id: str | None = Field(default=None, min_length=1, max_length=120)


class AutomationRunStepOut(BaseModel):
    step_index: int
    action_type: str
    status: AutomationStepStatus
    error_code: str | None = None
    error_message: str | None = None
    output_json: dict[str, Any] | None = None
    started_at: datetime
    completed_at: datetime


class AutomationRunOut(BaseModel):
    id: str
    automation_id: str
    person_id: str
    trigger_event_id: str | None = None
    status: AutomationRunStatus
    blocked_reason: str | None = None
    steps_total: int
    steps_succeeded: int
    steps_failed: int
    steps_skipped: int
    started_at: datetime
    completed_at: datetime | None = None
    steps: list[AutomationRunStepOut] = Field(default_factory=list)


class TriggerDispatchOut(BaseModel):
    success: bool = True
    reused: bool = False
    run: AutomationRunOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "reused": False,
                "run": {
                    "id": "Yk2Jd8Lr3xv4fQW7hZ9cKp",
                    "automation_id": "automation-id",
                    "person_id": "person-id",
                    "trigger_event_id": None,
                    "status": "completed",
                    "blocked_reason": None,
                    "steps_total": 2,
                    "steps_succeeded": 1,
                    "steps_failed": 1,
                    "steps_skipped": 0,
                    "started_at": "2026-10-17T12:00:00Z",
                    "completed_at": "2026-10-17T12:00:02Z",
                    "steps": [],
                },
            }
        }
    )


class AutomationRunListOut(BaseModel):
    items: list[AutomationRunOut]
    pagination: PaginationMeta
    automation_id: str | None = None
    person_id: str | None = None
    status: str | None = None


class FormSubmissionEventIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    organization_id: str = Field(min_length=1, max_length=36)
    person_id: str = Field(min_length=1, max_length=36)
    form_id: str | None = Field(default=None, max_length=36)
    trigger_event_id: str | None = Field(default=None, min_length=1, max_length=120)


class StageEntryEventIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    organization_id: str = Field(min_length=1, max_length=36)
    person_id: str = Field(min_length=1, max_length=36)
    stage_id: str = Field(min_length=1, max_length=36)
    trigger_event_id: str | None = Field(default=None, min_length=1, max_length=120)


class TriggerEventOut(BaseModel):
    trigger_type: Literal["form_submission", "stage_entry"]
    matched_automations: int
    runs: list[AutomationRunOut]


class MessageOutboxDeliverOut(BaseModel):
    processed: int
    delivered: int
    failed: int
    dead_lettered: int
