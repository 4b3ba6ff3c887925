from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from zapcart.models.whatsapp_integration import WhatsAppIntegration


@dataclass
class WhatsAppSendResult:
    status: str  # sent / failed
    provider_message_id: str | None = None
    error: str | None = None
    response_payload: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


class WhatsAppProvider(Protocol):
    async def send_text(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        text: str,
    ) -> WhatsAppSendResult:
        ...

    async def send_image(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        image_url: str,
        caption: str,
    ) -> WhatsAppSendResult:
        ...


# chaves com credenciais da Z-API que não podem ir para logs ou response_payload
_SECRET_KEYS = frozenset({"token", "client-token", "client_token", "authorization"})


def _mask_secret(value: Any) -> Any:
    if value is None:
        return None
    secret = str(value)
    return "****" if len(secret) <= 4 else "****" + secret[-4:]


def sanitize_payload(payload: Any) -> Any:
    if isinstance(payload, list):
        return [sanitize_payload(item) for item in payload]
    if not isinstance(payload, dict):
        return payload
    return {
        key: _mask_secret(value) if key.lower() in _SECRET_KEYS else sanitize_payload(value)
        for key, value in payload.items()
    }


def safe_json(payload: Any) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "{}"
