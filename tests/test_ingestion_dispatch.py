from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

from zapcart.core.idempotency import InMemoryIdempotencyCache
from zapcart.core.metrics import IngestionMetrics
from zapcart.core.request_context import get_tenant_id
from zapcart.models.enums import MessageType
from zapcart.services.deduplicator import DeliveryDeduplicator, ProductDedupCache
from zapcart.services.ingestion import FollowUp, InboundMessage, IngestionPipeline, dispatch_follow_ups
from zapcart.services.orders import ItemStatus, OrderStateMachine
from zapcart.services.pacing import OutboundRateLimited
from tests.conftest import FakeClock
from tests.fixtures_data import CUSTOMER_PHONE, GROUP_CHAT_ID, GROUP_NAME, INSTANCE_ID


class NoIntegration:
    def get_integration(self, db, tenant_id):
        return None


class RecordingSender:
    """Esgotado estoura o limite do tenant; item adicionado passa."""

    def __init__(self) -> None:
        self.whatsapp = NoIntegration()
        self.sent: list[tuple[str, str | None]] = []

    async def send_out_of_stock(self, db, **kwargs) -> bool:
        raise OutboundRateLimited(kwargs["tenant_id"], 12)

    async def send_item_added(self, db, **kwargs) -> bool:
        self.sent.append((kwargs["product_code"], get_tenant_id()))
        return True


def test_rate_limited_follow_up_does_not_stop_the_others(session_factory) -> None:
    sender = RecordingSender()
    follow_ups = [
        FollowUp(kind=MessageType.OUT_OF_STOCK, tenant_id=3, phone="5511987654321", product_name="Saia", product_code="C7"),
        FollowUp(
            kind=MessageType.ITEM_ADDED,
            tenant_id=3,
            phone="5511987654321",
            product_name="Vestido",
            product_code="C100",
            unit_price=Decimal("59.90"),
            order_id=None,
        ),
    ]

    asyncio.run(dispatch_follow_ups(follow_ups, sender=sender, session_factory=session_factory))

    assert sender.sent == [("C100", "3")]


def test_no_follow_ups_opens_no_session() -> None:
    def _explode():
        raise AssertionError("sessão não deveria ser aberta")

    asyncio.run(dispatch_follow_ups([], sender=RecordingSender(), session_factory=_explode))


def test_repeat_without_message_id_after_item_window_increments(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5)
    clock = FakeClock()
    cache = InMemoryIdempotencyCache(clock=clock)
    moment = {"now": datetime(2026, 3, 14, 15, 0, 0)}
    pipeline = IngestionPipeline(
        deduplicator=DeliveryDeduplicator(cache),
        product_cache=ProductDedupCache(cache),
        metrics=IngestionMetrics(),
        state_machine_factory=lambda session, product_cache: OrderStateMachine(
            session, product_cache=product_cache, now=lambda: moment["now"]
        ),
    )
    message = InboundMessage(
        phone=CUSTOMER_PHONE,
        text="C100",
        group_name=GROUP_NAME,
        chat_id=GROUP_CHAT_ID,
        is_group=True,
        instance_id=INSTANCE_ID,
    )

    first = pipeline.ingest(db, message)
    clock.advance(40)
    moment["now"] += timedelta(seconds=40)
    second = pipeline.ingest(db, message)

    assert first.results[0].status is ItemStatus.ADDED
    assert second.status == "processed"
    assert second.results[0].status is ItemStatus.INCREMENTED
    assert second.results[0].quantity == 2
