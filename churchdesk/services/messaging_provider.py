import uuid
from dataclasses import dataclass
from typing import Protocol

import requests

from churchdesk.core.config import settings


class MessagingProviderError(Exception):
    pass


@dataclass(frozen=True)
class MessageSendRequest:
    organization_id: str
    instance_name: str | None
    recipient: str
    content: str


@dataclass(frozen=True)
class MessageSendResult:
    provider: str
    message_id: str
    status: str


class MessagingProvider(Protocol):
    name: str

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        ...


class StubWhatsAppProvider:
    name = "whatsapp_stub"

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        return MessageSendResult(
            provider=self.name,
            message_id=f"msg-{uuid.uuid4().hex[:14]}",
            status="sent",
        )


class EvolutionApiProvider:
    """Sends WhatsApp text messages through an Evolution API v2 instance."""

    name = "evolution"

    def __init__(self, *, base_url: str | None, api_key: str | None, timeout_seconds: int = 15):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.timeout_seconds = timeout_seconds

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        if not self.base_url or not self.api_key:
            raise MessagingProviderError("Evolution API URL or key is not configured")
        if not request.instance_name:
            raise MessagingProviderError("WhatsApp config has no Evolution instance name")

        try:
            response = requests.post(
                f"{self.base_url}/message/sendText/{request.instance_name}",
                headers={"Content-Type": "application/json", "apikey": self.api_key},
                json={"number": request.recipient, "text": request.content},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise MessagingProviderError(f"Evolution API request failed: {exc}") from exc

        if not response.ok:
            raise MessagingProviderError(
                f"Evolution API returned {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        key = body.get("key") if isinstance(body, dict) else None
        message_id = key.get("id") if isinstance(key, dict) else None
        return MessageSendResult(
            provider=self.name,
            message_id=str(message_id or f"evo-{uuid.uuid4().hex[:14]}"),
            status="sent",
        )


def _build_providers() -> dict[str, MessagingProvider]:
    return {
        "whatsapp_stub": StubWhatsAppProvider(),
        "evolution": EvolutionApiProvider(
            base_url=settings.evolution_api_url,
            api_key=settings.evolution_api_key,
            timeout_seconds=settings.evolution_api_timeout_seconds,
        ),
    }


_MESSAGING_PROVIDERS: dict[str, MessagingProvider] = _build_providers()


def get_messaging_provider(name: str) -> MessagingProvider:
    normalized = (name or "").strip().lower()
    provider = _MESSAGING_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_MESSAGING_PROVIDERS))
        raise ValueError(f"Unknown messaging provider '{name}'. Available: {available}")
    return provider
