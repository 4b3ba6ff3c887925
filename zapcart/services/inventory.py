from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from zapcart.models.product import Product

logger = logging.getLogger(__name__)


class ReserveOutcome(str, Enum):
    OK = "ok"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT = "insufficient_stock"


@dataclass
class Reservation:
    outcome: ReserveOutcome
    available: int
    requested: int

    @property
    def ok(self) -> bool:
        return self.outcome is ReserveOutcome.OK


def reserve(product: Product, requested_qty: int = 1) -> Reservation:
    """Confere o estoque sem gravar; a baixa só acontece depois do item salvo."""
    available = int(product.stock or 0)
    if available <= 0:
        outcome = ReserveOutcome.OUT_OF_STOCK
    elif requested_qty > available:
        outcome = ReserveOutcome.INSUFFICIENT
    else:
        outcome = ReserveOutcome.OK
    return Reservation(outcome=outcome, available=available, requested=requested_qty)


def decrement_stock(db: Session, product: Product, qty: int = 1) -> int:
    """Baixa de estoque com leitura-e-escrita (última escrita vence), nunca abaixo de zero."""
    db.refresh(product)
    current = int(product.stock or 0)
    new_stock = max(0, current - qty)
    product.stock = new_stock
    db.commit()

    if new_stock == 0:
        logger.warning(
            "Produto esgotado",
            extra={"tenant_id": product.tenant_id, "product_code": product.code, "outcome": "stock_depleted"},
        )
    return new_stock
