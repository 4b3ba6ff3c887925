from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from zapcart.models.enums import DeliveryStatus, MessageType
from zapcart.models.outbound_message import OutboundMessageRecord
from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.services.pacing import Channel, OutboundPacer, get_pacer
from zapcart.services.phone import format_phone_for_sending
from zapcart.services.whatsapp_templates import format_currency, get_template, render_template
from zapcart.whatsapp.service import WhatsAppService

logger = logging.getLogger(__name__)

# Chave da integração que liga/desliga cada tipo de mensagem automática
_SWITCHES: dict[MessageType, str] = {
    MessageType.ITEM_ADDED: "send_item_added_msg",
    MessageType.OUT_OF_STOCK: "send_out_of_stock_msg",
    MessageType.PRODUCT_CANCELED: "send_product_canceled_msg",
    MessageType.PAYMENT_CONFIRMED: "send_paid_order_msg",
}


def _product_display(name: str, code: str | None) -> str:
    return f"{name} ({code})" if code else name


class OutboundSender:
    """Envio de mensagens automáticas: ritmo, provedor e registro do resultado."""

    def __init__(
        self,
        *,
        pacer: OutboundPacer | None = None,
        whatsapp: WhatsAppService | None = None,
    ) -> None:
        self.pacer = pacer or get_pacer()
        self.whatsapp = whatsapp or WhatsAppService()

    def is_enabled(self, integration: WhatsAppIntegration | None, message_type: MessageType) -> bool:
        switch = _SWITCHES.get(message_type)
        if integration is None or switch is None:
            return True
        return bool(getattr(integration, switch))

    async def schedule(
        self,
        db: Session,
        *,
        tenant_id: int,
        to_phone: str,
        message: str,
        channel: Channel,
        message_type: MessageType,
        order_id: int | None = None,
        image_url: str | None = None,
        integration: WhatsAppIntegration | None = None,
    ) -> bool:
        """Aplica o ritmo anti-bloqueio, envia e registra. Retorna se o provedor aceitou.

        Envio ao vivo acima do limite do tenant levanta ``OutboundRateLimited``.
        """
        if integration is None:
            integration = self.whatsapp.get_integration(db, tenant_id)

        paced = await self.pacer.pace(tenant_id=tenant_id, phone=to_phone, message=message, channel=channel)
        result = await self.whatsapp.send(
            tenant_id=tenant_id,
            integration=integration,
            to_phone=to_phone,
            text=paced.message,
            image_url=image_url,
        )

        record = OutboundMessageRecord(
            tenant_id=tenant_id,
            order_id=order_id,
            phone=to_phone,
            message_type=message_type.value,
            message=paced.message[:2000],
            delivery_status=(DeliveryStatus.SENT if result.ok else DeliveryStatus.FAILED).value,
            provider_message_id=result.provider_message_id,
            error=result.error,
        )
        db.add(record)
        db.commit()

        if result.ok:
            logger.info(
                "Mensagem automática enviada",
                extra={"tenant_id": tenant_id, "phone": to_phone, "order_id": order_id, "outcome": message_type.value},
            )
        else:
            logger.warning(
                "Falha no envio de mensagem automática: %s",
                result.error,
                extra={"tenant_id": tenant_id, "phone": to_phone, "order_id": order_id, "outcome": message_type.value},
            )
        return result.ok

    async def _send_rendered(
        self,
        db: Session,
        *,
        tenant_id: int,
        phone: str,
        message_type: MessageType,
        variables: dict[str, object],
        channel: Channel = Channel.LIVE,
        order_id: int | None = None,
    ) -> bool:
        integration = self.whatsapp.get_integration(db, tenant_id)
        if not self.is_enabled(integration, message_type):
            logger.info(
                "Mensagem automática desativada para o tenant",
                extra={"tenant_id": tenant_id, "outcome": message_type.value},
            )
            return False

        message = render_template(get_template(db, tenant_id, message_type), variables)
        return await self.schedule(
            db,
            tenant_id=tenant_id,
            to_phone=format_phone_for_sending(phone),
            message=message,
            channel=channel,
            message_type=message_type,
            order_id=order_id,
            integration=integration,
        )

    async def send_item_added(
        self,
        db: Session,
        *,
        tenant_id: int,
        phone: str,
        product_name: str,
        product_code: str,
        quantity: int,
        unit_price: Decimal,
        order_id: int | None = None,
    ) -> bool:
        return await self._send_rendered(
            db,
            tenant_id=tenant_id,
            phone=phone,
            message_type=MessageType.ITEM_ADDED,
            variables={
                "produto": _product_display(product_name, product_code),
                "quantidade": quantity,
                "valor": format_currency(Decimal(str(unit_price or 0)) * quantity),
                "codigo": product_code,
            },
            order_id=order_id,
        )

    async def send_out_of_stock(
        self,
        db: Session,
        *,
        tenant_id: int,
        phone: str,
        product_name: str,
        product_code: str,
    ) -> bool:
        return await self._send_rendered(
            db,
            tenant_id=tenant_id,
            phone=phone,
            message_type=MessageType.OUT_OF_STOCK,
            variables={"produto": _product_display(product_name, product_code), "codigo": product_code},
        )

    async def send_product_canceled(
        self,
        db: Session,
        *,
        tenant_id: int,
        phone: str,
        product_name: str,
        product_code: str | None = None,
        order_id: int | None = None,
    ) -> bool:
        return await self._send_rendered(
            db,
            tenant_id=tenant_id,
            phone=phone,
            message_type=MessageType.PRODUCT_CANCELED,
            variables={"produto": _product_display(product_name, product_code), "codigo": product_code or ""},
            order_id=order_id,
        )

    async def send_paid_order(
        self,
        db: Session,
        *,
        tenant_id: int,
        phone: str,
        order_id: int,
        total: Decimal,
    ) -> bool:
        return await self._send_rendered(
            db,
            tenant_id=tenant_id,
            phone=phone,
            message_type=MessageType.PAYMENT_CONFIRMED,
            variables={"order_id": order_id, "total": format_currency(total)},
            order_id=order_id,
        )

    async def send_checkout_link(
        self,
        db: Session,
        *,
        tenant_id: int,
        phone: str,
        checkout_url: str,
        order_id: int | None = None,
    ) -> bool:
        return await self._send_rendered(
            db,
            tenant_id=tenant_id,
            phone=phone,
            message_type=MessageType.CHECKOUT_LINK,
            variables={"checkout_url": checkout_url, "link": checkout_url},
            order_id=order_id,
        )

    async def send_broadcast(
        self,
        db: Session,
        *,
        tenant_id: int,
        chat_id: str,
        message: str,
        image_url: str | None = None,
    ) -> bool:
        return await self.schedule(
            db,
            tenant_id=tenant_id,
            to_phone=chat_id,
            message=message,
            channel=Channel.BATCH,
            message_type=MessageType.BROADCAST,
            image_url=image_url,
        )
