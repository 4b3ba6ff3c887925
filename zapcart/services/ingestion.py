from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.orm import Session

from zapcart.core.database import SessionLocal
from zapcart.core.metrics import IngestionMetrics, ingestion_metrics
from zapcart.core.request_context import tenant_context
from zapcart.models.enums import MessageType
from zapcart.models.inbound_message_log import InboundMessageLog
from zapcart.services.confirmations import create_pending_confirmation
from zapcart.services.deduplicator import DeliveryDeduplicator, ProductDedupCache, message_identity
from zapcart.services.intent import extract_product_codes
from zapcart.services.orders import CodeResult, ItemError, ItemStatus, OrderStateMachine, ensure_customer
from zapcart.services.pacing import OutboundRateLimited
from zapcart.services.phone import InvalidPhoneError, normalize_phone
from zapcart.services.tenant_resolver import TenantResolver
from zapcart.services.whatsapp_outbound import OutboundSender
from zapcart.whatsapp.base import safe_json

logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    phone: str | None
    text: str
    group_name: str | None = None
    chat_id: str | None = None
    is_group: bool = False
    from_me: bool = False
    message_id: str | None = None
    instance_id: str | None = None
    sender_name: str | None = None

    @property
    def from_group(self) -> bool:
        return self.is_group or (self.chat_id or "").endswith("@g.us")


@dataclass
class FollowUp:
    """Mensagem automática a enviar depois da resposta HTTP."""

    kind: MessageType  # ITEM_ADDED ou OUT_OF_STOCK
    tenant_id: int
    phone: str
    product_name: str
    product_code: str
    quantity: int = 1
    unit_price: Decimal = Decimal("0")
    order_id: int | None = None


@dataclass
class IngestionResult:
    status: str  # processed / skipped / duplicate
    reason: str | None = None
    tenant_id: int | None = None
    phone: str | None = None
    results: list[CodeResult] = field(default_factory=list)
    follow_ups: list[FollowUp] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        if self.reason:
            data["reason"] = self.reason
        if self.tenant_id is not None:
            data["tenant_id"] = self.tenant_id
        if self.status == "processed":
            data["results"] = [result.to_dict() for result in self.results]
        return data


class IngestionPipeline:
    """Webhook de grupo até carrinho/pedido: dedup, tenant, códigos e itens."""

    def __init__(
        self,
        *,
        deduplicator: DeliveryDeduplicator | None = None,
        product_cache: ProductDedupCache | None = None,
        metrics: IngestionMetrics = ingestion_metrics,
        state_machine_factory: Callable[..., OrderStateMachine] = OrderStateMachine,
    ) -> None:
        self.deduplicator = deduplicator if deduplicator is not None else DeliveryDeduplicator()
        self.product_cache = product_cache if product_cache is not None else ProductDedupCache()
        self.metrics = metrics
        self._state_machine_factory = state_machine_factory

    def _skip(self, reason: str, **kwargs: Any) -> IngestionResult:
        self.metrics.record(ItemStatus.SKIPPED.value)
        logger.info("Mensagem ignorada: %s", reason, extra={"outcome": reason})
        return IngestionResult(status="skipped", reason=reason, **kwargs)

    def ingest(self, db: Session, message: InboundMessage) -> IngestionResult:
        if message.from_me:
            return self._skip("from_me")
        if not message.from_group:
            return self._skip("not_group")

        text = (message.text or "").strip()
        if not text:
            return self._skip("empty_text")

        try:
            phone = normalize_phone(message.phone)
        except InvalidPhoneError:
            return self._skip("invalid_phone")

        if self.deduplicator.is_duplicate(message.message_id, phone, text):
            self.metrics.record("duplicate_message")
            return IngestionResult(status="duplicate", reason="duplicate_message", phone=phone)

        # Ambiguidade de tenant levanta e aborta o evento inteiro
        tenant = TenantResolver.resolve(
            db,
            instance_id=message.instance_id,
            group_name=message.group_name,
            phone=phone,
        )

        codes = extract_product_codes(text)
        if not codes:
            return self._skip("no_product_codes", tenant_id=tenant.id, phone=phone)

        ensure_customer(db, tenant_id=tenant.id, phone=phone, name=message.sender_name)

        machine = self._state_machine_factory(db, product_cache=self.product_cache)
        results = machine.process_codes(
            codes,
            tenant_id=tenant.id,
            phone=phone,
            message_key=message_identity(message.message_id, phone, text),
            group_name=message.group_name,
            claim_ttl_seconds=self.deduplicator.window_for(message.message_id),
        )

        for result in results:
            self.metrics.record(result.status.value, result.error.value if result.error else None)

        db.add(
            InboundMessageLog(
                tenant_id=tenant.id,
                phone=phone,
                group_name=message.group_name,
                provider_message_id=message.message_id,
                text=text,
                results_json=safe_json([result.to_dict() for result in results]),
            )
        )
        db.commit()

        return IngestionResult(
            status="processed",
            tenant_id=tenant.id,
            phone=phone,
            results=results,
            follow_ups=self._follow_ups(tenant.id, phone, results),
        )

    @staticmethod
    def _follow_ups(tenant_id: int, phone: str, results: list[CodeResult]) -> list[FollowUp]:
        follow_ups: list[FollowUp] = []
        for result in results:
            if result.applied:
                follow_ups.append(
                    FollowUp(
                        kind=MessageType.ITEM_ADDED,
                        tenant_id=tenant_id,
                        phone=phone,
                        product_name=result.product_name or result.code,
                        product_code=result.code,
                        quantity=result.quantity or 1,
                        unit_price=result.unit_price or Decimal("0"),
                        order_id=result.order_id,
                    )
                )
            elif result.error is ItemError.OUT_OF_STOCK and result.notified:
                follow_ups.append(
                    FollowUp(
                        kind=MessageType.OUT_OF_STOCK,
                        tenant_id=tenant_id,
                        phone=phone,
                        product_name=result.product_name or result.code,
                        product_code=result.code,
                    )
                )
        return follow_ups


async def dispatch_follow_ups(
    follow_ups: list[FollowUp],
    *,
    sender: OutboundSender,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Envia as respostas automáticas em sessão própria, fora da requisição."""
    if not follow_ups:
        return
    db = session_factory()
    try:
        for follow_up in follow_ups:
            try:
                with tenant_context(follow_up.tenant_id):
                    await _dispatch_one(db, follow_up, sender=sender)
            except OutboundRateLimited as exc:
                logger.warning(
                    "Resposta automática descartada pelo limite do tenant",
                    extra={
                        "tenant_id": follow_up.tenant_id,
                        "phone": follow_up.phone,
                        "delay_seconds": exc.retry_after_seconds,
                        "outcome": "rate_limited",
                    },
                )
            except Exception:
                db.rollback()
                logger.exception(
                    "Erro ao enviar resposta automática",
                    extra={"tenant_id": follow_up.tenant_id, "phone": follow_up.phone, "order_id": follow_up.order_id},
                )
    finally:
        db.close()


async def _dispatch_one(db: Session, follow_up: FollowUp, *, sender: OutboundSender) -> None:
    if follow_up.kind is MessageType.OUT_OF_STOCK:
        await sender.send_out_of_stock(
            db,
            tenant_id=follow_up.tenant_id,
            phone=follow_up.phone,
            product_name=follow_up.product_name,
            product_code=follow_up.product_code,
        )
        return

    sent = await sender.send_item_added(
        db,
        tenant_id=follow_up.tenant_id,
        phone=follow_up.phone,
        product_name=follow_up.product_name,
        product_code=follow_up.product_code,
        quantity=follow_up.quantity,
        unit_price=follow_up.unit_price,
        order_id=follow_up.order_id,
    )
    integration = sender.whatsapp.get_integration(db, follow_up.tenant_id)
    if sent and follow_up.order_id and integration and integration.confirmation_flow_enabled:
        create_pending_confirmation(
            db,
            tenant_id=follow_up.tenant_id,
            order_id=follow_up.order_id,
            phone=follow_up.phone,
            checkout_base_url=integration.checkout_base_url,
        )
