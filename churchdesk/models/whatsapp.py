from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from churchdesk.core.id_utils import generate_shortuuid
from churchdesk.db.base import Base


class WhatsAppConfig(Base):
    __tablename__ = "whatsapp_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    instance_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    instance_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    api_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="disconnected", server_default="disconnected")
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class WhatsAppConversation(Base):
    __tablename__ = "whatsapp_conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    config_id: Mapped[str] = mapped_column(String(36), ForeignKey("whatsapp_configs.id"), nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(String(40), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("config_id", "phone_number", name="uq_whatsapp_conversations_config_phone"),
    )


class WhatsAppMessage(Base):
    __tablename__ = "whatsapp_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("whatsapp_conversations.id"),
        nullable=False,
        index=True,
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text", server_default="text")
    is_from_ai: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued", server_default="queued")
    external_message_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_whatsapp_messages_conversation_created_at", "conversation_id", "created_at"),
    )
