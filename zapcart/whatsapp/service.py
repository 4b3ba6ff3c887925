from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.whatsapp.base import WhatsAppProvider, WhatsAppSendResult
from zapcart.whatsapp.mock_provider import MockWhatsAppProvider
from zapcart.whatsapp.zapi_provider import ZapiWhatsAppProvider

logger = logging.getLogger(__name__)


class WhatsAppService:
    """Escolhe o provedor de acordo com a integração ativa do tenant."""

    def __init__(
        self,
        *,
        zapi_provider: WhatsAppProvider | None = None,
        mock_provider: WhatsAppProvider | None = None,
    ) -> None:
        self._zapi_provider = zapi_provider or ZapiWhatsAppProvider()
        self._mock_provider = mock_provider or MockWhatsAppProvider()

    @staticmethod
    def get_integration(db: Session, tenant_id: int) -> WhatsAppIntegration | None:
        return (
            db.query(WhatsAppIntegration)
            .filter(
                WhatsAppIntegration.tenant_id == tenant_id,
                WhatsAppIntegration.is_active.is_(True),
            )
            .order_by(WhatsAppIntegration.id.asc())
            .first()
        )

    def select_provider(self, integration: WhatsAppIntegration | None) -> WhatsAppProvider:
        if integration and integration.provider == "zapi" and integration.instance_id and integration.token:
            return self._zapi_provider
        return self._mock_provider

    async def send(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        text: str,
        image_url: str | None = None,
    ) -> WhatsAppSendResult:
        provider = self.select_provider(integration)
        if image_url:
            return await provider.send_image(
                tenant_id=tenant_id,
                integration=integration,
                to_phone=to_phone,
                image_url=image_url,
                caption=text,
            )
        return await provider.send_text(
            tenant_id=tenant_id,
            integration=integration,
            to_phone=to_phone,
            text=text,
        )
