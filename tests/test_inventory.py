from __future__ import annotations

from zapcart.services.inventory import ReserveOutcome, decrement_stock, reserve


def test_reserve_reports_stock_without_writing(db, tenant, make_product) -> None:
    available = make_product(tenant.id, "C100", stock=2)
    empty = make_product(tenant.id, "C101", stock=0)

    assert reserve(available, 1).ok
    assert reserve(available, 3).outcome is ReserveOutcome.INSUFFICIENT
    assert reserve(empty, 1).outcome is ReserveOutcome.OUT_OF_STOCK
    assert available.stock == 2


def test_decrement_is_clamped_at_zero(db, tenant, make_product) -> None:
    product = make_product(tenant.id, "C100", stock=2)

    assert decrement_stock(db, product, 1) == 1
    assert decrement_stock(db, product, 5) == 0
    assert decrement_stock(db, product, 1) == 0

    db.expire_all()
    assert product.stock == 0
