import json
import logging
import threading
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from churchdesk.core.config import settings
from churchdesk.core.observability import log_event
from churchdesk.models.automation import Automation, AutomationRun, AutomationRunStep
from churchdesk.models.person import Person
from churchdesk.models.whatsapp import WhatsAppConfig
from churchdesk.services.automation_actions import (
    ActionContext,
    PersonSnapshot,
    TenantChannelContext,
    get_executor,
    parse_action_config,
)
from churchdesk.services.automation_errors import (
    ActionError,
    AutomationNotFound,
    PersonNotFound,
    RunCancelled,
    RunTimeout,
    StorageError,
    UnexpectedActionError,
    UnrecognizedActionType,
)

logger = logging.getLogger("churchdesk.automation")

TRIGGER_FORM_SUBMISSION = "form_submission"
TRIGGER_STAGE_ENTRY = "stage_entry"
_VALID_TRIGGER_TYPES = {TRIGGER_FORM_SUBMISSION, TRIGGER_STAGE_ENTRY}


@dataclass(frozen=True)
class AutomationSnapshot:
    id: str
    organization_id: str
    name: str
    is_active: bool
    actions: list[dict[str, Any]]


@dataclass(frozen=True)
class ActionOutcome:
    step_index: int
    action_type: str
    status: str
    error_code: str | None
    error_message: str | None
    output_json: dict[str, Any] | None
    started_at: datetime
    completed_at: datetime


@dataclass(frozen=True)
class RunReport:
    run_id: str
    automation_id: str
    person_id: str
    status: str
    blocked_reason: str | None
    started_at: datetime
    completed_at: datetime | None
    trigger_event_id: str | None = None
    steps: list[ActionOutcome] = field(default_factory=list)
    reused: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for step in self.steps if step.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for step in self.steps if step.status == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for step in self.steps if step.status == "skipped")


class ActionPacer:
    """Sequential delay between actions of one run.

    Waits on a ``threading.Event`` so a cancellation wakes the run immediately
    instead of letting it sleep out the interval.
    """

    def __init__(self, interval_seconds: float, cancel_event: threading.Event | None = None):
        self.interval_seconds = max(float(interval_seconds), 0.0)
        self._cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def wait(self) -> bool:
        """Returns False when the run was cancelled during the wait."""
        if self.interval_seconds <= 0:
            return not self.cancelled
        return not self._cancel_event.wait(self.interval_seconds)


def run_automation(
    db: Session,
    *,
    automation_id: str,
    person_id: str,
    trigger_event_id: str | None = None,
    action_delay_seconds: float | None = None,
    run_timeout_seconds: float | None = None,
    cancel_event: threading.Event | None = None,
) -> RunReport:
    """Execute an automation's actions, in order, for one person.

    Only a missing automation or person aborts the run (``NotFoundError``).
    Every per-action failure is recorded on the report and the remaining
    actions still run. Each action's effects are committed on their own, so
    nothing is rolled back when a later action fails.
    """
    automation = db.execute(select(Automation).where(Automation.id == automation_id)).scalar_one_or_none()
    if not automation:
        raise AutomationNotFound()
    person = db.execute(select(Person).where(Person.id == person_id)).scalar_one_or_none()
    if not person or person.organization_id != automation.organization_id:
        raise PersonNotFound()

    if trigger_event_id:
        existing = _find_run_for_trigger(db, automation_id=automation.id, trigger_event_id=trigger_event_id)
        if existing:
            return _report_from_run(db, existing, reused=True)

    snapshot = _snapshot_automation(automation)
    person_snapshot = PersonSnapshot(
        id=person.id,
        organization_id=person.organization_id,
        name=person.name,
        phone=person.phone,
    )

    started_at = _utcnow()
    run = AutomationRun(
        organization_id=snapshot.organization_id,
        automation_id=snapshot.id,
        person_id=person_snapshot.id,
        trigger_event_id=trigger_event_id,
        status="running" if snapshot.is_active else "skipped",
        blocked_reason=None if snapshot.is_active else "Automation is inactive",
        started_at=started_at,
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent dispatch of the same trigger event.
        db.rollback()
        existing = _find_run_for_trigger(db, automation_id=snapshot.id, trigger_event_id=trigger_event_id)
        if not existing:
            raise
        return _report_from_run(db, existing, reused=True)
    run_id = run.id

    if not snapshot.is_active:
        run.completed_at = run.started_at
        db.commit()
        _log("automation.run.skipped", run_id=run_id, automation_id=snapshot.id, reason="inactive")
        return _report_from_run(db, run)

    _log(
        "automation.run.started",
        run_id=run_id,
        automation_id=snapshot.id,
        person_id=person_snapshot.id,
        actions=len(snapshot.actions),
    )

    context = ActionContext(
        db=db,
        tenant=load_channel_context(db, organization_id=snapshot.organization_id),
        automation_id=snapshot.id,
        run_id=run_id,
    )
    delay = settings.automation_action_delay_seconds if action_delay_seconds is None else action_delay_seconds
    timeout = settings.automation_run_timeout_seconds if run_timeout_seconds is None else run_timeout_seconds
    deadline = time.monotonic() + timeout if timeout else None
    pacer = ActionPacer(delay, cancel_event)

    outcomes: list[ActionOutcome] = []
    halted: ActionError | None = None
    for index, action in enumerate(snapshot.actions):
        if halted is None:
            halted = _wait_for_turn(index, pacer, deadline)

        if halted is not None:
            outcome = _skip_step(db, run_id=run_id, index=index, action=action, error=halted)
        else:
            outcome = _execute_step(db, index=index, action=action, person=person_snapshot, context=context)
        outcomes.append(outcome)

    status = "completed"
    blocked_reason = None
    if isinstance(halted, RunTimeout):
        status, blocked_reason = "timed_out", halted.message
    elif isinstance(halted, RunCancelled):
        status, blocked_reason = "cancelled", halted.message
    report = RunReport(
        run_id=run_id,
        automation_id=snapshot.id,
        person_id=person_snapshot.id,
        status=status,
        blocked_reason=blocked_reason,
        started_at=started_at,
        completed_at=_utcnow(),
        trigger_event_id=trigger_event_id,
        steps=outcomes,
    )
    _finalize_run(db, report)

    _log(
        "automation.run.completed",
        run_id=run_id,
        automation_id=snapshot.id,
        status=report.status,
        succeeded=report.succeeded,
        failed=report.failed,
        skipped=report.skipped,
    )
    return report


def load_channel_context(db: Session, *, organization_id: str) -> TenantChannelContext:
    config = db.execute(
        select(WhatsAppConfig)
        .where(WhatsAppConfig.organization_id == organization_id)
        .order_by(WhatsAppConfig.created_at.asc(), WhatsAppConfig.id.asc())
        .limit(1)
    ).scalar_one_or_none()
    return TenantChannelContext(
        organization_id=organization_id,
        channel_config_id=config.id if config else None,
        instance_name=config.instance_name if config else None,
    )


def trigger_matches(
    automation: Automation,
    *,
    trigger_type: str,
    form_id: str | None = None,
    stage_id: str | None = None,
) -> bool:
    if (automation.trigger_type or "").strip().lower() != trigger_type:
        return False
    config = automation.trigger_config if isinstance(automation.trigger_config, dict) else {}
    if trigger_type == TRIGGER_STAGE_ENTRY:
        expected_stage = str(config.get("stage_id") or "").strip()
        return bool(expected_stage) and expected_stage == (stage_id or "").strip()
    expected_form = str(config.get("form_id") or "").strip()
    return not expected_form or expected_form == (form_id or "").strip()


def dispatch_trigger_event(
    db: Session,
    *,
    organization_id: str,
    person_id: str,
    trigger_type: str,
    form_id: str | None = None,
    stage_id: str | None = None,
    trigger_event_id: str | None = None,
) -> list[RunReport]:
    normalized_trigger = (trigger_type or "").strip().lower()
    if normalized_trigger not in _VALID_TRIGGER_TYPES:
        raise ValueError(f"Unknown trigger type '{trigger_type}'")

    person = db.execute(
        select(Person).where(Person.id == person_id, Person.organization_id == organization_id)
    ).scalar_one_or_none()
    if not person:
        raise PersonNotFound()

    automations = db.execute(
        select(Automation)
        .where(
            Automation.organization_id == organization_id,
            func.lower(func.trim(Automation.trigger_type)) == normalized_trigger,
            Automation.is_active.is_(True),
        )
        .order_by(Automation.created_at.asc(), Automation.id.asc())
    ).scalars().all()
    automation_ids = [
        item.id
        for item in automations
        if trigger_matches(item, trigger_type=normalized_trigger, form_id=form_id, stage_id=stage_id)
    ]

    reports: list[RunReport] = []
    for automation_id in automation_ids:
        reports.append(
            run_automation(
                db,
                automation_id=automation_id,
                person_id=person_id,
                trigger_event_id=trigger_event_id,
            )
        )
    return reports


def _finalize_run(db: Session, report: RunReport) -> None:
    try:
        run = db.get(AutomationRun, report.run_id)
        run.status = report.status
        run.blocked_reason = report.blocked_reason
        run.steps_total = len(report.steps)
        run.steps_succeeded = report.succeeded
        run.steps_failed = report.failed
        run.steps_skipped = report.skipped
        run.completed_at = report.completed_at
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _log(
            "automation.run.persist_failed",
            level=logging.ERROR,
            run_id=report.run_id,
            status=report.status,
            error=exc.__class__.__name__,
        )


def _wait_for_turn(index: int, pacer: ActionPacer, deadline: float | None) -> ActionError | None:
    if index > 0:
        # An action that could only start after the deadline is never attempted.
        if deadline is not None and time.monotonic() + pacer.interval_seconds >= deadline:
            return RunTimeout()
        if not pacer.wait():
            return RunCancelled()
    if pacer.cancelled:
        return RunCancelled()
    if deadline is not None and time.monotonic() >= deadline:
        return RunTimeout()
    return None


def _execute_step(
    db: Session,
    *,
    index: int,
    action: dict[str, Any],
    person: PersonSnapshot,
    context: ActionContext,
) -> ActionOutcome:
    action_type = _action_type(action)
    raw_config = _action_config(action)
    executor = get_executor(action_type)
    if executor is None:
        return _skip_step(
            db,
            run_id=context.run_id,
            index=index,
            action=action,
            error=UnrecognizedActionType(f"Unrecognized action type '{action_type}'"),
        )

    started_at = _utcnow()
    try:
        config = parse_action_config(executor, raw_config)
        output_json = executor.execute(config, person, context)
        step = _build_step(
            run_id=context.run_id,
            index=index,
            action_type=action_type,
            raw_config=raw_config,
            status="success",
            output_json=output_json,
            started_at=started_at,
        )
        outcome = _outcome(step)
        db.add(step)
        db.commit()
        return outcome
    except ActionError as exc:
        db.rollback()
        error: ActionError = exc
    except SQLAlchemyError as exc:
        db.rollback()
        error = StorageError(f"{exc.__class__.__name__} during {action_type}")
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        error = UnexpectedActionError(_short_error(exc))
        _log("automation.action.crashed", level=logging.ERROR, traceback=traceback.format_exc(limit=10))

    step = _build_step(
        run_id=context.run_id,
        index=index,
        action_type=action_type,
        raw_config=raw_config,
        status="failed",
        error=error,
        started_at=started_at,
    )
    outcome = _record_step(db, step)
    _log(
        "automation.action.failed",
        level=logging.WARNING,
        run_id=context.run_id,
        step_index=index,
        action_type=action_type,
        error_code=error.code,
        error=error.message,
    )
    return outcome


def _skip_step(
    db: Session,
    *,
    run_id: str,
    index: int,
    action: dict[str, Any],
    error: ActionError,
) -> ActionOutcome:
    now = _utcnow()
    step = _build_step(
        run_id=run_id,
        index=index,
        action_type=_action_type(action),
        raw_config=_action_config(action),
        status="skipped",
        error=error,
        started_at=now,
    )
    outcome = _record_step(db, step)
    _log(
        "automation.action.skipped",
        run_id=run_id,
        step_index=index,
        action_type=outcome.action_type,
        error_code=error.code,
    )
    return outcome


def _record_step(db: Session, step: AutomationRunStep) -> ActionOutcome:
    """Persist a failed or skipped step; a store error here must not end the run."""
    outcome = _outcome(step)
    run_id = step.run_id
    try:
        db.add(step)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _log(
            "automation.step.persist_failed",
            level=logging.ERROR,
            run_id=run_id,
            step_index=outcome.step_index,
            status=outcome.status,
            error=exc.__class__.__name__,
        )
    return outcome


def _build_step(
    *,
    run_id: str,
    index: int,
    action_type: str,
    raw_config: dict[str, Any],
    status: str,
    started_at: datetime,
    output_json: dict[str, Any] | None = None,
    error: ActionError | None = None,
) -> AutomationRunStep:
    return AutomationRunStep(
        run_id=run_id,
        step_index=index,
        action_type=(action_type or "unknown")[:40],
        status=status,
        input_json={"type": action_type, "config": raw_config},
        output_json=output_json,
        error_code=error.code if error else None,
        error_message=_short_error(error) if error else None,
        started_at=started_at,
        completed_at=_utcnow(),
    )


def _outcome(step: AutomationRunStep) -> ActionOutcome:
    return ActionOutcome(
        step_index=step.step_index,
        action_type=step.action_type,
        status=step.status,
        error_code=step.error_code,
        error_message=step.error_message,
        output_json=step.output_json if isinstance(step.output_json, dict) else None,
        started_at=step.started_at,
        completed_at=step.completed_at,
    )


def _report_from_run(db: Session, run: AutomationRun, *, reused: bool = False) -> RunReport:
    steps = db.execute(
        select(AutomationRunStep)
        .where(AutomationRunStep.run_id == run.id)
        .order_by(AutomationRunStep.step_index.asc())
    ).scalars().all()
    return RunReport(
        run_id=run.id,
        automation_id=run.automation_id,
        person_id=run.person_id,
        status=run.status,
        blocked_reason=run.blocked_reason,
        started_at=run.started_at,
        completed_at=run.completed_at,
        trigger_event_id=run.trigger_event_id,
        steps=[_outcome(step) for step in steps],
        reused=reused,
    )


def _find_run_for_trigger(
    db: Session,
    *,
    automation_id: str,
    trigger_event_id: str | None,
) -> AutomationRun | None:
    if not trigger_event_id:
        return None
    return db.execute(
        select(AutomationRun).where(
            AutomationRun.automation_id == automation_id,
            AutomationRun.trigger_event_id == trigger_event_id,
        )
    ).scalar_one_or_none()


def _snapshot_automation(automation: Automation) -> AutomationSnapshot:
    raw_actions = automation.actions if isinstance(automation.actions, list) else []
    return AutomationSnapshot(
        id=automation.id,
        organization_id=automation.organization_id,
        name=automation.name,
        is_active=bool(automation.is_active),
        # Detached copy: edits made while the run is in flight must not leak in.
        actions=json.loads(json.dumps([item if isinstance(item, dict) else {} for item in raw_actions])),
    )


def _action_type(action: dict[str, Any]) -> str:
    return str(action.get("type") or "").strip().lower()


def _action_config(action: dict[str, Any]) -> dict[str, Any]:
    config = action.get("config")
    if config is None:
        config = action.get("config_json")
    return config if isinstance(config, dict) else {}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_error(value: Exception | str) -> str:
    text = str(value).strip() or "Automation action failed"
    return text[:255]


def _log(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    log_event(logger, event, level=level, **fields)
