from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from churchdesk.core.id_utils import generate_shortuuid
from churchdesk.db.upsert import insert_ignoring_conflict
from churchdesk.models.whatsapp import WhatsAppConversation
from churchdesk.services.automation_errors import StorageError


def resolve_conversation(
    db: Session,
    *,
    config_id: str,
    phone_number: str,
    contact_name: str | None,
) -> tuple[WhatsAppConversation, bool]:
    """Return the conversation for ``(config_id, phone_number)``, creating it if absent.

    The second element is True when this call created the conversation.
    ``contact_name`` is only written on creation.
    """
    try:
        created = insert_ignoring_conflict(
            db,
            WhatsAppConversation,
            values={
                "id": generate_shortuuid(),
                "config_id": config_id,
                "phone_number": phone_number,
                "contact_name": contact_name,
                "status": "active",
            },
            conflict_columns=["config_id", "phone_number"],
        )
        conversation = db.execute(
            select(WhatsAppConversation).where(
                WhatsAppConversation.config_id == config_id,
                WhatsAppConversation.phone_number == phone_number,
            )
        ).scalar_one()
    except SQLAlchemyError as exc:
        raise StorageError(f"Conversation lookup failed: {exc.__class__.__name__}") from exc
    return conversation, created
