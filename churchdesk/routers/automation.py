import hmac
import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from churchdesk.core.api_docs import error_responses, plain_error_responses
from churchdesk.core.config import settings
from churchdesk.core.deps import get_db
from churchdesk.core.observability import plain_error_response
from churchdesk.models.automation import AutomationRun, AutomationRunStep
from churchdesk.schemas.automation import (
    AutomationRunListOut,
    AutomationRunOut,
    AutomationRunStepOut,
    FormSubmissionEventIn,
    MessageOutboxDeliverOut,
    StageEntryEventIn,
    TriggerDispatchIn,
    TriggerDispatchOut,
    TriggerEventOut,
)
from churchdesk.schemas.common import PaginationMeta
from churchdesk.services.automation_errors import NotFoundError
from churchdesk.services.automation_service import (
    TRIGGER_FORM_SUBMISSION,
    TRIGGER_STAGE_ENTRY,
    RunReport,
    dispatch_trigger_event,
    run_automation,
)
from churchdesk.services.integration_service import dispatch_due_outbox_events

router = APIRouter(prefix="/automations", tags=["automation"])

DISPATCH_SECRET_HEADER = "X-Automation-Secret"


def _run_or_404(db: Session, *, run_id: str) -> AutomationRun:
    run = db.execute(select(AutomationRun).where(AutomationRun.id == run_id)).scalar_one_or_none()
    if not run:
        raise HTTPException(status_code=404, detail="Automation run not found")
    return run


def _step_out(step: AutomationRunStep) -> AutomationRunStepOut:
    return AutomationRunStepOut(
        step_index=step.step_index,
        action_type=step.action_type,
        status=step.status,
        error_code=step.error_code,
        error_message=step.error_message,
        output_json=step.output_json if isinstance(step.output_json, dict) else None,
        started_at=step.started_at,
        completed_at=step.completed_at,
    )


def _steps_by_run_ids(db: Session, *, run_ids: list[str]) -> dict[str, list[AutomationRunStep]]:
    if not run_ids:
        return {}
    rows = db.execute(
        select(AutomationRunStep)
        .where(AutomationRunStep.run_id.in_(run_ids))
        .order_by(AutomationRunStep.run_id.asc(), AutomationRunStep.step_index.asc())
    ).scalars().all()
    out: dict[str, list[AutomationRunStep]] = {run_id: [] for run_id in run_ids}
    for row in rows:
        out.setdefault(row.run_id, []).append(row)
    return out


def _run_out(run: AutomationRun, *, steps: list[AutomationRunStep]) -> AutomationRunOut:
    return AutomationRunOut(
        id=run.id,
        automation_id=run.automation_id,
        person_id=run.person_id,
        trigger_event_id=run.trigger_event_id,
        status=run.status,
        blocked_reason=run.blocked_reason,
        steps_total=run.steps_total,
        steps_succeeded=run.steps_succeeded,
        steps_failed=run.steps_failed,
        steps_skipped=run.steps_skipped,
        started_at=run.started_at,
        completed_at=run.completed_at,
        steps=[_step_out(item) for item in steps],
    )


def _report_out(report: RunReport) -> AutomationRunOut:
    return AutomationRunOut(
        id=report.run_id,
        automation_id=report.automation_id,
        person_id=report.person_id,
        trigger_event_id=report.trigger_event_id,
        status=report.status,
        blocked_reason=report.blocked_reason,
        steps_total=len(report.steps),
        steps_succeeded=report.succeeded,
        steps_failed=report.failed,
        steps_skipped=report.skipped,
        started_at=report.started_at,
        completed_at=report.completed_at,
        steps=[
            AutomationRunStepOut(
                step_index=step.step_index,
                action_type=step.action_type,
                status=step.status,
                error_code=step.error_code,
                error_message=step.error_message,
                output_json=step.output_json,
                started_at=step.started_at,
                completed_at=step.completed_at,
            )
            for step in report.steps
        ],
    )


def _dispatch_secret_ok(request: Request) -> bool:
    expected = settings.automation_dispatch_secret
    if not expected:
        return True
    provided = request.headers.get(DISPATCH_SECRET_HEADER) or ""
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@router.post(
    "/dispatch",
    response_model=TriggerDispatchOut,
    summary="Run an automation for one person",
    responses=plain_error_responses(400, 401),
)
async def dispatch_automation(request: Request, db: Session = Depends(get_db)):
    if not _dispatch_secret_ok(request):
        return plain_error_response(status_code=401, request=request, message="Invalid automation secret")

    try:
        raw_body = await request.body()
        payload = TriggerDispatchIn.model_validate(json.loads(raw_body or b"null"))
    except (ValueError, ValidationError):
        return plain_error_response(
            status_code=400,
            request=request,
            message="automation_id and person_id are required",
        )

    try:
        report = await run_in_threadpool(
            run_automation,
            db,
            automation_id=payload.automation_id,
            person_id=payload.person_id,
            trigger_event_id=payload.trigger_event_id,
        )
    except NotFoundError:
        return plain_error_response(
            status_code=400,
            request=request,
            message=NotFoundError.default_message,
        )

    return TriggerDispatchOut(success=True, reused=report.reused, run=_report_out(report))


@router.post(
    "/events/form-submission",
    response_model=TriggerEventOut,
    summary="Run every active automation matching a form submission",
    responses=error_responses(404, 422, 500),
)
def form_submission_event(payload: FormSubmissionEventIn, db: Session = Depends(get_db)):
    try:
        reports = dispatch_trigger_event(
            db,
            organization_id=payload.organization_id,
            person_id=payload.person_id,
            trigger_type=TRIGGER_FORM_SUBMISSION,
            form_id=payload.form_id or None,
            trigger_event_id=payload.trigger_event_id,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from None
    return TriggerEventOut(
        trigger_type=TRIGGER_FORM_SUBMISSION,
        matched_automations=len(reports),
        runs=[_report_out(item) for item in reports],
    )


@router.post(
    "/events/stage-entry",
    response_model=TriggerEventOut,
    summary="Run every active automation bound to a pipeline stage",
    responses=error_responses(404, 422, 500),
)
def stage_entry_event(payload: StageEntryEventIn, db: Session = Depends(get_db)):
    try:
        reports = dispatch_trigger_event(
            db,
            organization_id=payload.organization_id,
            person_id=payload.person_id,
            trigger_type=TRIGGER_STAGE_ENTRY,
            stage_id=payload.stage_id,
            trigger_event_id=payload.trigger_event_id,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from None
    return TriggerEventOut(
        trigger_type=TRIGGER_STAGE_ENTRY,
        matched_automations=len(reports),
        runs=[_report_out(item) for item in reports],
    )


@router.get(
    "/runs",
    response_model=AutomationRunListOut,
    summary="List automation runs with step logs",
    responses=error_responses(422, 500),
)
def list_runs(
    automation_id: str | None = Query(default=None),
    person_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    count_stmt = select(func.count(AutomationRun.id))
    stmt = select(AutomationRun)

    normalized_automation_id = automation_id.strip() if automation_id else None
    normalized_person_id = person_id.strip() if person_id else None
    normalized_status = status.strip().lower() if status else None
    if normalized_automation_id:
        count_stmt = count_stmt.where(AutomationRun.automation_id == normalized_automation_id)
        stmt = stmt.where(AutomationRun.automation_id == normalized_automation_id)
    if normalized_person_id:
        count_stmt = count_stmt.where(AutomationRun.person_id == normalized_person_id)
        stmt = stmt.where(AutomationRun.person_id == normalized_person_id)
    if normalized_status:
        count_stmt = count_stmt.where(AutomationRun.status == normalized_status)
        stmt = stmt.where(AutomationRun.status == normalized_status)

    total = int(db.execute(count_stmt).scalar_one())
    runs = db.execute(
        stmt.order_by(AutomationRun.started_at.desc(), AutomationRun.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    steps_map = _steps_by_run_ids(db, run_ids=[item.id for item in runs])
    items = [_run_out(run, steps=steps_map.get(run.id, [])) for run in runs]
    count = len(items)
    return AutomationRunListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        automation_id=normalized_automation_id,
        person_id=normalized_person_id,
        status=normalized_status,
    )


@router.get(
    "/runs/{run_id}",
    response_model=AutomationRunOut,
    summary="Get automation run details",
    responses=error_responses(404, 500),
)
def get_run(run_id: str, db: Session = Depends(get_db)):
    run = _run_or_404(db, run_id=run_id)
    steps = db.execute(
        select(AutomationRunStep)
        .where(AutomationRunStep.run_id == run.id)
        .order_by(AutomationRunStep.step_index.asc())
    ).scalars().all()
    return _run_out(run, steps=steps)


@router.post(
    "/outbox/deliver",
    response_model=MessageOutboxDeliverOut,
    summary="Deliver queued WhatsApp messages through the messaging provider",
    responses=error_responses(422, 500),
)
def deliver_outbox(
    limit: int = Query(default=100, ge=1, le=1000),
    organization_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    summary = dispatch_due_outbox_events(
        db,
        organization_id=organization_id.strip() if organization_id else None,
        limit=limit,
    )
    db.commit()
    return MessageOutboxDeliverOut(
        processed=summary.processed,
        delivered=summary.delivered,
        failed=summary.failed,
        dead_lettered=summary.dead_lettered,
    )
