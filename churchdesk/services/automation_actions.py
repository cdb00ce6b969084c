from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from churchdesk.core.id_utils import generate_shortuuid
from churchdesk.db.upsert import insert_ignoring_conflict
from churchdesk.models.person import PersonTag, Tag
from churchdesk.models.whatsapp import WhatsAppMessage
from churchdesk.services.automation_errors import (
    InvalidActionConfig,
    MissingRecipientAddress,
    MissingTagReference,
    NoChannelConfigured,
    TagNotFound,
)
from churchdesk.services.conversation_service import resolve_conversation
from churchdesk.services.integration_service import MESSAGE_CREATED_EVENT, queue_outbox_event
from churchdesk.services.template_renderer import render


@dataclass(frozen=True)
class PersonSnapshot:
    id: str
    organization_id: str
    name: str | None
    phone: str | None


@dataclass(frozen=True)
class TenantChannelContext:
    organization_id: str
    channel_config_id: str | None
    instance_name: str | None


@dataclass(frozen=True)
class ActionContext:
    db: Session
    tenant: TenantChannelContext
    automation_id: str
    run_id: str


class SendMessageConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_template: str = Field(
        default="",
        validation_alias=AliasChoices("message_template", "message"),
    )

    @field_validator("message_template", mode="before")
    @classmethod
    def coerce_missing_message(cls, value: Any) -> Any:
        return "" if value is None else value


class AddTagConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tag_id: str | None = None

    @field_validator("tag_id", mode="before")
    @classmethod
    def normalize_tag_id(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (int, str)):
            cleaned = str(value).strip()
            return cleaned or None
        return value


class ActionExecutor(Protocol):
    action_type: str
    config_model: type[BaseModel]

    def execute(self, config: Any, person: PersonSnapshot, context: ActionContext) -> dict[str, Any]:
        ...


class SendMessageExecutor:
    """Records an outbound WhatsApp message for delivery.

    Delivery itself happens later, driven by the ``whatsapp.message.created``
    outbox event queued alongside the message row.
    """

    action_type = "send_whatsapp"
    config_model = SendMessageConfig

    def execute(self, config: SendMessageConfig, person: PersonSnapshot, context: ActionContext) -> dict[str, Any]:
        tenant = context.tenant
        if not tenant.channel_config_id:
            raise NoChannelConfigured()
        phone = (person.phone or "").strip()
        if not phone:
            raise MissingRecipientAddress()

        content = render(config.message_template, person)
        conversation, conversation_created = resolve_conversation(
            context.db,
            config_id=tenant.channel_config_id,
            phone_number=phone,
            contact_name=person.name,
        )
        message = WhatsAppMessage(
            id=generate_shortuuid(),
            conversation_id=conversation.id,
            direction="outbound",
            content=content,
            message_type="text",
            is_from_ai=False,
            status="queued",
        )
        context.db.add(message)
        context.db.flush()
        queue_outbox_event(
            context.db,
            organization_id=tenant.organization_id,
            event_type=MESSAGE_CREATED_EVENT,
            target_app_key="whatsapp",
            payload_json={
                "automation_id": context.automation_id,
                "run_id": context.run_id,
                "conversation_id": conversation.id,
                "message_id": message.id,
            },
        )
        return {
            "conversation_id": conversation.id,
            "conversation_created": conversation_created,
            "message_id": message.id,
            "content": content,
        }


class AddTagExecutor:
    action_type = "add_tag"
    config_model = AddTagConfig

    def execute(self, config: AddTagConfig, person: PersonSnapshot, context: ActionContext) -> dict[str, Any]:
        if not config.tag_id:
            raise MissingTagReference()
        tag_id = context.db.execute(
            select(Tag.id).where(Tag.id == config.tag_id, Tag.organization_id == context.tenant.organization_id)
        ).scalar_one_or_none()
        if tag_id is None:
            raise TagNotFound(f"Tag '{config.tag_id}' not found for this organization")
        created = insert_ignoring_conflict(
            context.db,
            PersonTag,
            values={"id": generate_shortuuid(), "person_id": person.id, "tag_id": config.tag_id},
            conflict_columns=["person_id", "tag_id"],
        )
        return {"tag_id": config.tag_id, "link_created": created}


_EXECUTORS: dict[str, ActionExecutor] = {}


def register_executor(executor: ActionExecutor, *aliases: str) -> None:
    for name in (executor.action_type, *aliases):
        _EXECUTORS[name.strip().lower()] = executor


def get_executor(action_type: str) -> ActionExecutor | None:
    return _EXECUTORS.get((action_type or "").strip().lower())


def registered_action_types() -> list[str]:
    return sorted(_EXECUTORS)


def parse_action_config(executor: ActionExecutor, raw_config: Any) -> BaseModel:
    try:
        return executor.config_model.model_validate(raw_config if isinstance(raw_config, dict) else {})
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        raise InvalidActionConfig(f"Invalid config for {executor.action_type}: {fields}") from exc


register_executor(SendMessageExecutor(), "send_message")
register_executor(AddTagExecutor())
