from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func

from zapcart.core.timeutils import event_date_for
from zapcart.models.cart import Cart
from zapcart.models.cart_item import CartItem
from zapcart.models.customer import Customer
from zapcart.models.enums import CartStatus, EventType
from zapcart.models.order import Order
from zapcart.models.product import Product
from zapcart.services.orders import (
    ItemError,
    ItemStatus,
    OrderStateMachine,
    active_cart_key,
    ensure_customer,
    insert_or_refetch,
    resolve_order,
    resolve_product,
)

PHONE = "11987654321"
NOW = datetime(2026, 3, 14, 15, 0, 0)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _machine(db, clock: Clock | None = None) -> OrderStateMachine:
    return OrderStateMachine(db, now=clock or Clock(NOW))


def _process(machine: OrderStateMachine, tenant_id: int, codes: list[str], message_key: str):
    return machine.process_codes(codes, tenant_id=tenant_id, phone=PHONE, message_key=message_key)


def _order_total_matches_items(db, order_id: int) -> bool:
    order = db.query(Order).filter(Order.id == order_id).one()
    expected = sum(
        (Decimal(str(item.unit_price)) * item.qty for item in db.query(CartItem).filter(CartItem.cart_id == order.cart_id)),
        Decimal("0"),
    )
    return Decimal(str(order.total_amount)).quantize(Decimal("0.01")) == expected.quantize(Decimal("0.01"))


def test_known_and_unknown_codes_yield_one_result_each(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5)

    results = _process(_machine(db), tenant.id, ["C100", "C9999"], "id:msg-1")

    assert len(results) == 2
    added, missing = results
    assert added.status is ItemStatus.ADDED
    assert added.quantity == 1
    assert added.stock_after == 4
    assert missing.status is ItemStatus.FAILED
    assert missing.error is ItemError.PRODUCT_NOT_FOUND

    product = db.query(Product).filter(Product.code == "C100").one()
    assert product.stock == 4
    assert _order_total_matches_items(db, added.order_id)


def test_repeat_within_window_is_ignored_and_after_window_increments(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5, price="10.00")
    clock = Clock(NOW)
    machine = _machine(db, clock)

    first = _process(machine, tenant.id, ["C100"], "id:msg-1")[0]

    clock.now = NOW + timedelta(seconds=20)
    repeated = _process(machine, tenant.id, ["C100"], "id:msg-2")[0]

    assert repeated.status is ItemStatus.DUPLICATE_IGNORED
    assert repeated.cart_item_id == first.cart_item_id
    assert db.query(Product).filter(Product.code == "C100").one().stock == 4

    clock.now = NOW + timedelta(seconds=31)
    incremented = _process(machine, tenant.id, ["C100"], "id:msg-3")[0]

    assert incremented.status is ItemStatus.INCREMENTED
    assert incremented.quantity == 2
    assert incremented.stock_after == 3
    order = db.query(Order).filter(Order.id == first.order_id).one()
    assert Decimal(str(order.total_amount)) == Decimal("20.00")


def test_concurrent_increments_apply_at_most_once(session_factory, tenant, make_product, db) -> None:
    make_product(tenant.id, "C100", stock=5)
    _process(_machine(db), tenant.id, ["C100"], "id:msg-1")
    item_id = db.query(CartItem.id).scalar()

    later = NOW + timedelta(minutes=5)
    session_a = session_factory()
    session_b = session_factory()
    try:
        item_a = session_a.query(CartItem).filter(CartItem.id == item_id).one()
        item_b = session_b.query(CartItem).filter(CartItem.id == item_id).one()
        machine_a = OrderStateMachine(session_a, now=Clock(later))
        machine_b = OrderStateMachine(session_b, now=Clock(later))

        status_a, _ = machine_a._apply_repeat(item_a, later)
        status_b, _ = machine_b._apply_repeat(item_b, later)
    finally:
        session_a.close()
        session_b.close()

    assert {status_a, status_b} == {ItemStatus.INCREMENTED, ItemStatus.DUPLICATE_IGNORED}
    db.expire_all()
    assert db.query(CartItem).filter(CartItem.id == item_id).one().qty == 2


def test_redelivered_message_does_not_reapply_products(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5)
    machine = _machine(db)

    _process(machine, tenant.id, ["C100"], "id:msg-1")
    again = _process(machine, tenant.id, ["C100"], "id:msg-1")[0]

    assert again.status is ItemStatus.SKIPPED
    assert again.reason == "duplicate_message"
    assert db.query(Product).filter(Product.code == "C100").one().stock == 4
    assert db.query(CartItem).count() == 1


def test_out_of_stock_is_reported_as_handled_without_touching_cart(db, tenant, make_product) -> None:
    make_product(tenant.id, "C300", stock=0)

    result = _process(_machine(db), tenant.id, ["C300"], "id:msg-1")[0]

    assert result.status is ItemStatus.FAILED
    assert result.error is ItemError.OUT_OF_STOCK
    assert result.notified is True
    assert db.query(Cart).count() == 0


def test_stock_never_goes_negative(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=1)
    machine = _machine(db)

    first = machine.process_code("C100", tenant_id=tenant.id, phone=PHONE, message_key="id:a")
    second = machine.process_code("C100", tenant_id=tenant.id, phone="21999998888", message_key="id:b")

    assert first.status is ItemStatus.ADDED
    assert second.error is ItemError.OUT_OF_STOCK
    assert db.query(Product).filter(Product.code == "C100").one().stock == 0


def test_cancelled_order_forces_a_new_cart(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5)
    event_date = event_date_for(NOW)
    key = active_cart_key(tenant.id, PHONE, EventType.BAZAR, event_date)
    old_cart = Cart(
        tenant_id=tenant.id,
        customer_phone=PHONE,
        event_type=EventType.BAZAR.value,
        event_date=event_date,
        status=CartStatus.OPEN.value,
        active_key=key,
    )
    db.add(old_cart)
    db.commit()
    old_order = Order(
        tenant_id=tenant.id,
        cart_id=old_cart.id,
        customer_phone=PHONE,
        event_type=EventType.BAZAR.value,
        event_date=event_date,
        is_cancelled=True,
    )
    db.add(old_order)
    db.commit()

    result = _process(_machine(db), tenant.id, ["C100"], "id:msg-1")[0]

    assert result.status is ItemStatus.ADDED
    assert result.cart_id != old_cart.id
    assert result.order_id != old_order.id
    db.refresh(old_cart)
    assert old_cart.active_key is None
    assert db.query(CartItem).filter(CartItem.cart_id == old_cart.id).count() == 0


def test_paid_order_never_receives_new_items(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5)
    make_product(tenant.id, "C200", stock=5)
    machine = _machine(db)

    first = _process(machine, tenant.id, ["C100"], "id:msg-1")[0]
    db.query(Order).filter(Order.id == first.order_id).update({Order.is_paid: True})
    db.commit()

    second = _process(machine, tenant.id, ["C200"], "id:msg-2")[0]

    assert second.status is ItemStatus.ADDED
    assert second.order_id != first.order_id
    assert second.cart_id != first.cart_id
    paid_cart_items = db.query(CartItem).filter(CartItem.cart_id == first.cart_id).all()
    assert [item.product_code for item in paid_cart_items] == ["C100"]


def test_total_always_matches_items(db, tenant, make_product) -> None:
    make_product(tenant.id, "C1", stock=10, price="19.90")
    make_product(tenant.id, "C2", stock=10, price="5.05")
    clock = Clock(NOW)
    machine = _machine(db, clock)

    results = _process(machine, tenant.id, ["C1", "C2"], "id:msg-1")
    order_id = results[0].order_id
    assert _order_total_matches_items(db, order_id)

    for step in range(1, 4):
        clock.now = NOW + timedelta(minutes=step)
        _process(machine, tenant.id, ["C2"], f"id:msg-{step + 1}")
        assert _order_total_matches_items(db, order_id)

    order = db.query(Order).filter(Order.id == order_id).one()
    assert Decimal(str(order.total_amount)) == Decimal("40.10")


def test_live_products_go_to_a_separate_bucket(db, tenant, make_product) -> None:
    make_product(tenant.id, "C100", stock=5)
    make_product(tenant.id, "C500", stock=5, sale_type="LIVE")

    bazar, live = _process(_machine(db), tenant.id, ["C100", "C500"], "id:msg-1")

    assert bazar.cart_id != live.cart_id
    live_cart = db.query(Cart).filter(Cart.id == live.cart_id).one()
    assert live_cart.event_type == EventType.LIVE.value


def test_product_resolution_tolerates_sloppy_codes(db, tenant, make_product) -> None:
    make_product(tenant.id, "c100")
    make_product(tenant.id, " C200 ")
    make_product(tenant.id, "300")
    make_product(tenant.id, "C400", is_active=False)

    assert resolve_product(db, tenant.id, "C100").code == "c100"
    assert resolve_product(db, tenant.id, "C200").code == " C200 "
    assert resolve_product(db, tenant.id, "C300").code == "300"
    assert resolve_product(db, tenant.id, "C400") is None


def test_cart_linked_order_wins_over_event_date(db, tenant) -> None:
    yesterday = date(2026, 3, 13)
    cart = Cart(
        tenant_id=tenant.id,
        customer_phone=PHONE,
        event_type=EventType.BAZAR.value,
        event_date=yesterday,
        status=CartStatus.OPEN.value,
    )
    db.add(cart)
    db.commit()
    linked = Order(
        tenant_id=tenant.id,
        cart_id=cart.id,
        customer_phone=PHONE,
        event_type=EventType.BAZAR.value,
        event_date=yesterday,
    )
    db.add(linked)
    db.commit()

    order = resolve_order(
        db,
        cart=cart,
        tenant_id=tenant.id,
        phone=PHONE,
        event_type=EventType.BAZAR,
        event_date=date(2026, 3, 14),
    )

    assert order.id == linked.id


def test_unlinked_open_order_of_the_day_is_adopted(db, tenant) -> None:
    today = date(2026, 3, 14)
    cart = Cart(
        tenant_id=tenant.id,
        customer_phone=PHONE,
        event_type=EventType.BAZAR.value,
        event_date=today,
        status=CartStatus.OPEN.value,
    )
    orphan = Order(tenant_id=tenant.id, customer_phone=PHONE, event_type=EventType.BAZAR.value, event_date=today)
    db.add_all([cart, orphan])
    db.commit()

    order = resolve_order(db, cart=cart, tenant_id=tenant.id, phone=PHONE, event_type=EventType.BAZAR, event_date=today)

    assert order.id == orphan.id
    assert order.cart_id == cart.id


def test_insert_conflict_rereads_existing_row(db, tenant) -> None:
    existing = ensure_customer(db, tenant_id=tenant.id, phone=PHONE, name="Maria")

    row, created = insert_or_refetch(
        db,
        lambda: Customer(tenant_id=tenant.id, phone=PHONE),
        lambda: db.query(Customer).filter(Customer.tenant_id == tenant.id, Customer.phone == PHONE).first(),
    )

    assert created is False
    assert row.id == existing.id
    assert db.query(func.count(Customer.id)).scalar() == 1
