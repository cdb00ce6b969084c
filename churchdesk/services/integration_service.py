import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from churchdesk.core.config import settings
from churchdesk.core.observability import log_event
from churchdesk.models.integration import IntegrationOutboxEvent
from churchdesk.models.whatsapp import WhatsAppConfig, WhatsAppConversation, WhatsAppMessage
from churchdesk.services.messaging_provider import (
    MessageSendRequest,
    MessagingProvider,
    MessagingProviderError,
    get_messaging_provider,
)

logger = logging.getLogger("churchdesk.integrations")

MESSAGE_CREATED_EVENT = "whatsapp.message.created"


def queue_outbox_event(
    db: Session,
    *,
    organization_id: str,
    event_type: str,
    target_app_key: str,
    payload_json: dict[str, Any] | None = None,
    max_attempts: int | None = None,
) -> IntegrationOutboxEvent:
    event = IntegrationOutboxEvent(
        organization_id=organization_id,
        event_type=event_type,
        target_app_key=target_app_key,
        payload_json=payload_json,
        status="pending",
        attempt_count=0,
        max_attempts=max_attempts or settings.message_outbox_max_attempts,
        next_attempt_at=datetime.now(timezone.utc),
        last_error=None,
    )
    db.add(event)
    return event


@dataclass(frozen=True)
class DispatchSummary:
    processed: int
    delivered: int
    failed: int
    dead_lettered: int


def dispatch_due_outbox_events(
    db: Session,
    *,
    organization_id: str | None = None,
    limit: int = 100,
    provider: MessagingProvider | None = None,
) -> DispatchSummary:
    """Deliver queued outbound WhatsApp messages.

    Each due ``whatsapp.message.created`` event is handed to the messaging
    provider. Failures are retried with a fixed backoff until the event's
    ``max_attempts`` is reached, after which it is dead-lettered and the
    message is marked ``failed``. The caller owns the commit.
    """
    now = datetime.now(timezone.utc)
    stmt = select(IntegrationOutboxEvent).where(
        and_(
            IntegrationOutboxEvent.event_type == MESSAGE_CREATED_EVENT,
            IntegrationOutboxEvent.status.in_(["pending", "failed"]),
            IntegrationOutboxEvent.next_attempt_at <= now,
        )
    )
    if organization_id:
        stmt = stmt.where(IntegrationOutboxEvent.organization_id == organization_id)

    events = db.execute(stmt.order_by(IntegrationOutboxEvent.created_at.asc()).limit(limit)).scalars().all()
    provider_impl = provider or get_messaging_provider(settings.messaging_provider_default)
    processed = 0
    delivered = 0
    failed = 0
    dead_lettered = 0

    for event in events:
        processed += 1
        event.attempt_count += 1
        message_id = str((event.payload_json or {}).get("message_id") or "")
        row = db.execute(
            select(WhatsAppMessage, WhatsAppConversation, WhatsAppConfig)
            .join(WhatsAppConversation, WhatsAppConversation.id == WhatsAppMessage.conversation_id)
            .join(WhatsAppConfig, WhatsAppConfig.id == WhatsAppConversation.config_id)
            .where(WhatsAppMessage.id == message_id)
        ).one_or_none()

        if row is None:
            event.status = "dead_letter"
            event.last_error = "Message not found"
            dead_lettered += 1
            continue

        message, conversation, config = row
        try:
            result = provider_impl.send_message(
                MessageSendRequest(
                    organization_id=event.organization_id,
                    instance_name=config.instance_name,
                    recipient=conversation.phone_number,
                    content=message.content,
                )
            )
        except MessagingProviderError as exc:
            error_message = str(exc)[:255]
            event.last_error = error_message
            message.error_message = error_message
            if event.attempt_count >= event.max_attempts:
                event.status = "dead_letter"
                message.status = "failed"
                dead_lettered += 1
            else:
                event.status = "failed"
                event.next_attempt_at = now + timedelta(seconds=settings.message_outbox_retry_seconds)
                failed += 1
            log_event(
                logger,
                "message.delivery.failed",
                level=logging.WARNING,
                outbox_event_id=event.id,
                attempt=event.attempt_count,
                dead_lettered=event.status == "dead_letter",
                error=error_message,
            )
            continue

        event.status = "delivered"
        event.last_error = None
        message.status = result.status
        message.external_message_id = result.message_id
        message.error_message = None
        delivered += 1
        log_event(
            logger,
            "message.delivered",
            outbox_event_id=event.id,
            message_id=message.id,
            provider=result.provider,
        )

    return DispatchSummary(
        processed=processed,
        delivered=delivered,
        failed=failed,
        dead_lettered=dead_lettered,
    )
