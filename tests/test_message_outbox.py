from unittest.mock import MagicMock

import pytest
import requests
from sqlalchemy import select

from churchdesk.models.integration import IntegrationOutboxEvent
from churchdesk.models.whatsapp import WhatsAppMessage
from churchdesk.services.automation_service import run_automation
from churchdesk.services.integration_service import dispatch_due_outbox_events
from churchdesk.services.messaging_provider import (
    EvolutionApiProvider,
    MessageSendRequest,
    MessagingProviderError,
    get_messaging_provider,
)


SEND_ACTIONS = [{"type": "send_whatsapp", "config": {"message": "Culto hoje às 19h, @nome!"}}]


class _FailingProvider:
    name = "failing"

    def send_message(self, request):
        raise MessagingProviderError("instance offline")


def test_outbox_deliver_endpoint_sends_queued_messages(test_context, seed_church):
    client, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, actions=SEND_ACTIONS)
        run_automation(db, automation_id=ids["automation_id"], person_id=ids["person_id"])

        message = db.execute(select(WhatsAppMessage)).scalar_one()
        assert message.status == "queued"
        assert message.content == "Culto hoje às 19h, Ana!"

    res = client.post("/automations/outbox/deliver?limit=10")
    assert res.status_code == 200, res.text
    assert res.json() == {"processed": 1, "delivered": 1, "failed": 0, "dead_lettered": 0}

    with session_local() as db:
        message = db.execute(select(WhatsAppMessage)).scalar_one()
        assert message.status == "sent"
        assert message.external_message_id.startswith("msg-")
        event = db.execute(select(IntegrationOutboxEvent)).scalar_one()
        assert event.status == "delivered"
        assert event.attempt_count == 1
        assert event.payload_json["message_id"] == message.id

    again = client.post("/automations/outbox/deliver")
    assert again.status_code == 200, again.text
    assert again.json()["processed"] == 0


def test_outbox_retries_then_dead_letters_failed_delivery(test_context, seed_church):
    _, session_local = test_context
    with session_local() as db:
        ids = seed_church(db, actions=SEND_ACTIONS)
        run_automation(db, automation_id=ids["automation_id"], person_id=ids["person_id"])
        event = db.execute(select(IntegrationOutboxEvent)).scalar_one()
        event.max_attempts = 2
        db.commit()

        first = dispatch_due_outbox_events(db, provider=_FailingProvider())
        db.commit()
        assert (first.processed, first.failed, first.dead_lettered) == (1, 1, 0)

        event = db.execute(select(IntegrationOutboxEvent)).scalar_one()
        assert event.status == "failed"
        assert event.last_error == "instance offline"

        not_due = dispatch_due_outbox_events(db, provider=_FailingProvider())
        assert not_due.processed == 0

        event.next_attempt_at = event.created_at
        db.commit()
        second = dispatch_due_outbox_events(db, provider=_FailingProvider())
        db.commit()
        assert (second.processed, second.failed, second.dead_lettered) == (1, 0, 1)

        event = db.execute(select(IntegrationOutboxEvent)).scalar_one()
        message = db.execute(select(WhatsAppMessage)).scalar_one()
        assert event.status == "dead_letter"
        assert message.status == "failed"
        assert message.error_message == "instance offline"


def test_evolution_provider_posts_send_text(monkeypatch):
    response = MagicMock(ok=True, status_code=201)
    response.json.return_value = {"key": {"id": "BAE5F1C2"}}
    post = MagicMock(return_value=response)
    monkeypatch.setattr(requests, "post", post)

    provider = EvolutionApiProvider(base_url="https://evo.example.org/", api_key="k-123", timeout_seconds=5)
    result = provider.send_message(
        MessageSendRequest(
            organization_id="org-1",
            instance_name="igreja-central",
            recipient="+5511999999999",
            content="Bem-vindo Ana",
        )
    )

    assert result.message_id == "BAE5F1C2"
    assert result.provider == "evolution"
    args, kwargs = post.call_args
    assert args[0] == "https://evo.example.org/message/sendText/igreja-central"
    assert kwargs["headers"]["apikey"] == "k-123"
    assert kwargs["json"] == {"number": "+5511999999999", "text": "Bem-vindo Ana"}
    assert kwargs["timeout"] == 5


def test_evolution_provider_wraps_http_failures(monkeypatch):
    post = MagicMock(side_effect=requests.ConnectionError("refused"))
    monkeypatch.setattr(requests, "post", post)
    provider = EvolutionApiProvider(base_url="https://evo.example.org", api_key="k-123")
    request = MessageSendRequest(
        organization_id="org-1",
        instance_name="igreja-central",
        recipient="+5511999999999",
        content="Oi",
    )

    with pytest.raises(MessagingProviderError, match="refused"):
        provider.send_message(request)

    unconfigured = EvolutionApiProvider(base_url=None, api_key=None)
    with pytest.raises(MessagingProviderError, match="not configured"):
        unconfigured.send_message(request)


def test_get_messaging_provider_rejects_unknown_names():
    assert get_messaging_provider(" WhatsApp_Stub ").name == "whatsapp_stub"
    with pytest.raises(ValueError, match="telegram"):
        get_messaging_provider("telegram")
