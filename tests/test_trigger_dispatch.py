from sqlalchemy import func, select

from churchdesk.core.config import settings
from churchdesk.models.automation import AutomationRun
from churchdesk.models.whatsapp import WhatsAppMessage


WELCOME_ACTIONS = [
    {"type": "send_whatsapp", "config": {"message": "Bem-vindo @nome"}},
    {"type": "add_tag", "config": {"tag_id": "vip"}},
]


def test_dispatch_runs_automation_and_returns_success(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, actions=WELCOME_ACTIONS)

    res = client.post(
        "/automations/dispatch",
        json={"automation_id": ids["automation_id"], "person_id": ids["person_id"]},
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["success"] is True
    assert body["run"]["status"] == "completed"
    assert [step["status"] for step in body["run"]["steps"]] == ["success", "success"]
    assert body["run"]["steps"][0]["output_json"]["content"] == "Bem-vindo Ana"

    with session_local() as db:
        assert db.execute(select(func.count()).select_from(WhatsAppMessage)).scalar_one() == 1


def test_dispatch_reports_success_even_when_actions_fail(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, phone=None, with_channel=False, actions=WELCOME_ACTIONS)

    res = client.post(
        "/automations/dispatch",
        json={"automation_id": ids["automation_id"], "person_id": ids["person_id"]},
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["success"] is True
    assert body["run"]["steps_failed"] == 1
    assert body["run"]["steps_succeeded"] == 1
    assert body["run"]["steps"][0]["error_code"] == "NoChannelConfigured"


def test_dispatch_unknown_ids_return_plain_400(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, actions=WELCOME_ACTIONS)

    missing_automation = client.post(
        "/automations/dispatch",
        json={"automation_id": "nope", "person_id": ids["person_id"]},
    )
    assert missing_automation.status_code == 400
    assert missing_automation.json() == {"error": "Automation or Person not found"}

    missing_person = client.post(
        "/automations/dispatch",
        json={"automation_id": ids["automation_id"], "person_id": "nope"},
    )
    assert missing_person.status_code == 400
    assert missing_person.json() == {"error": "Automation or Person not found"}

    with session_local() as db:
        assert db.execute(select(func.count()).select_from(AutomationRun)).scalar_one() == 0


def test_dispatch_rejects_malformed_bodies(test_context):
    client, _ = test_context

    for payload in ({}, {"automation_id": "a"}, {"automation_id": "  ", "person_id": "p"}, {"automation_id": 1, "person_id": "p"}):
        res = client.post("/automations/dispatch", json=payload)
        assert res.status_code == 400, payload
        assert set(res.json()) == {"error"}

    not_json = client.post(
        "/automations/dispatch",
        content=b"automation_id=a",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert not_json.status_code == 400
    assert "error" in not_json.json()

    list_body = client.post("/automations/dispatch", json=["a", "b"])
    assert list_body.status_code == 400


def test_dispatch_requires_secret_when_configured(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, actions=[])
    settings.automation_dispatch_secret = "s3cret-value-for-dispatch-tests"
    payload = {"automation_id": ids["automation_id"], "person_id": ids["person_id"]}

    missing = client.post("/automations/dispatch", json=payload)
    assert missing.status_code == 401
    assert missing.json() == {"error": "Invalid automation secret"}

    wrong = client.post("/automations/dispatch", json=payload, headers={"X-Automation-Secret": "nope"})
    assert wrong.status_code == 401

    ok = client.post(
        "/automations/dispatch",
        json=payload,
        headers={"X-Automation-Secret": "s3cret-value-for-dispatch-tests"},
    )
    assert ok.status_code == 200, ok.text
    assert ok.json()["success"] is True


def test_dispatch_with_trigger_event_id_is_idempotent(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, actions=WELCOME_ACTIONS)
    payload = {
        "automation_id": ids["automation_id"],
        "person_id": ids["person_id"],
        "trigger_event_id": "form-response-42",
    }

    first = client.post("/automations/dispatch", json=payload)
    second = client.post("/automations/dispatch", json=payload)
    assert first.status_code == 200, first.text
    assert second.status_code == 200, second.text
    assert first.json()["reused"] is False
    assert second.json()["reused"] is True
    assert second.json()["run"]["id"] == first.json()["run"]["id"]
    assert second.json()["run"]["trigger_event_id"] == "form-response-42"

    with session_local() as db:
        assert db.execute(select(func.count()).select_from(WhatsAppMessage)).scalar_one() == 1


def test_form_submission_event_runs_matching_automations(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(
            db,
            actions=[{"type": "add_tag", "config": {"tag_id": "vip"}}],
            trigger_config={"form_id": "form-visitantes"},
        )

    other_form = client.post(
        "/automations/events/form-submission",
        json={
            "organization_id": ids["organization_id"],
            "person_id": ids["person_id"],
            "form_id": "form-batismo",
        },
    )
    assert other_form.status_code == 200, other_form.text
    assert other_form.json()["matched_automations"] == 0

    matching = client.post(
        "/automations/events/form-submission",
        json={
            "organization_id": ids["organization_id"],
            "person_id": ids["person_id"],
            "form_id": "form-visitantes",
        },
    )
    assert matching.status_code == 200, matching.text
    body = matching.json()
    assert body["trigger_type"] == "form_submission"
    assert body["matched_automations"] == 1
    assert body["runs"][0]["automation_id"] == ids["automation_id"]
    assert body["runs"][0]["steps"][0]["status"] == "success"


def test_stage_entry_event_requires_exact_stage_and_known_person(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(
            db,
            actions=[{"type": "add_tag", "config": {"tag_id": "vip"}}],
            trigger_type="stage_entry",
            trigger_config={"stage_id": "stage-discipulado"},
        )

    matching = client.post(
        "/automations/events/stage-entry",
        json={
            "organization_id": ids["organization_id"],
            "person_id": ids["person_id"],
            "stage_id": "stage-discipulado",
        },
    )
    assert matching.status_code == 200, matching.text
    assert matching.json()["matched_automations"] == 1

    form_event = client.post(
        "/automations/events/form-submission",
        json={"organization_id": ids["organization_id"], "person_id": ids["person_id"]},
    )
    assert form_event.status_code == 200, form_event.text
    assert form_event.json()["matched_automations"] == 0

    unknown_person = client.post(
        "/automations/events/stage-entry",
        json={
            "organization_id": ids["organization_id"],
            "person_id": "nope",
            "stage_id": "stage-discipulado",
        },
    )
    assert unknown_person.status_code == 404
    assert unknown_person.json()["error"]["code"] == "not_found"

    missing_stage = client.post(
        "/automations/events/stage-entry",
        json={"organization_id": ids["organization_id"], "person_id": ids["person_id"]},
    )
    assert missing_stage.status_code == 422
    assert missing_stage.json()["error"]["code"] == "validation_error"


def test_run_log_endpoints_list_and_fetch_runs(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, phone=None, actions=WELCOME_ACTIONS)

    dispatched = client.post(
        "/automations/dispatch",
        json={"automation_id": ids["automation_id"], "person_id": ids["person_id"]},
    )
    assert dispatched.status_code == 200, dispatched.text
    run_id = dispatched.json()["run"]["id"]

    runs = client.get(f"/automations/runs?automation_id={ids['automation_id']}&status=completed")
    assert runs.status_code == 200, runs.text
    body = runs.json()
    assert body["pagination"]["total"] == 1
    assert body["items"][0]["id"] == run_id
    assert [step["action_type"] for step in body["items"][0]["steps"]] == ["send_whatsapp", "add_tag"]

    filtered = client.get("/automations/runs?status=cancelled")
    assert filtered.status_code == 200, filtered.text
    assert filtered.json()["items"] == []

    detail = client.get(f"/automations/runs/{run_id}")
    assert detail.status_code == 200, detail.text
    assert detail.json()["steps"][0]["error_code"] == "MissingRecipientAddress"
    assert detail.json()["steps_failed"] == 1

    missing = client.get("/automations/runs/unknown")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_trigger_type_matching_ignores_stored_case_and_padding(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(
            db,
            actions=[{"type": "add_tag", "config": {"tag_id": "vip"}}],
            trigger_type=" Form_Submission ",
        )

    res = client.post(
        "/automations/events/form-submission",
        json={"organization_id": ids["organization_id"], "person_id": ids["person_id"]},
    )
    assert res.status_code == 200, res.text
    assert res.json()["matched_automations"] == 1
    assert res.json()["runs"][0]["automation_id"] == ids["automation_id"]
