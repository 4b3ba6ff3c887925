from __future__ import annotations

import logging
import uuid

from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.whatsapp.base import WhatsAppProvider, WhatsAppSendResult

logger = logging.getLogger(__name__)


class MockWhatsAppProvider(WhatsAppProvider):
    """Não envia nada; registra em memória para desenvolvimento e testes."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str | None]] = []

    async def send_text(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        text: str,
    ) -> WhatsAppSendResult:
        return self._record(tenant_id=tenant_id, to_phone=to_phone, text=text, image_url=None)

    async def send_image(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        image_url: str,
        caption: str,
    ) -> WhatsAppSendResult:
        return self._record(tenant_id=tenant_id, to_phone=to_phone, text=caption, image_url=image_url)

    def _record(self, *, tenant_id: int, to_phone: str, text: str, image_url: str | None) -> WhatsAppSendResult:
        provider_message_id = f"mock-{uuid.uuid4().hex[:10]}"
        self.sent.append(
            {
                "tenant_id": str(tenant_id),
                "to": to_phone,
                "text": text,
                "image_url": image_url,
                "provider_message_id": provider_message_id,
            }
        )
        logger.info("WhatsApp mock: mensagem registrada", extra={"tenant_id": tenant_id, "phone": to_phone})
        return WhatsAppSendResult(status="sent", provider_message_id=provider_message_id)
