from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from zapcart.core.database import get_db
from zapcart.deps import get_outbound_sender
from zapcart.models.order import Order
from zapcart.services.confirmations import ConfirmationExpired, ConfirmationUnavailable, send_checkout_link
from zapcart.services.pacing import OutboundRateLimited
from zapcart.services.whatsapp_outbound import OutboundSender

router = APIRouter(prefix="/api", tags=["notifications"])


class ProductCanceledRequest(BaseModel):
    tenant_id: int
    customer_phone: str = Field(..., min_length=8)
    product_name: str = Field(..., min_length=1, max_length=200)
    product_code: Optional[str] = Field(default=None, max_length=40)
    order_id: Optional[int] = None


class PaidOrderRequest(BaseModel):
    tenant_id: int
    order_id: int


def _rate_limited(exc: OutboundRateLimited) -> HTTPException:
    return HTTPException(
        status_code=429,
        detail="Limite de mensagens do tenant atingido",
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


@router.post("/notifications/product-canceled")
async def notify_product_canceled(
    payload: ProductCanceledRequest,
    db: Session = Depends(get_db),
    sender: OutboundSender = Depends(get_outbound_sender),
):
    try:
        sent = await sender.send_product_canceled(
            db,
            tenant_id=payload.tenant_id,
            phone=payload.customer_phone,
            product_name=payload.product_name,
            product_code=payload.product_code,
            order_id=payload.order_id,
        )
    except OutboundRateLimited as exc:
        raise _rate_limited(exc) from exc
    return {"sent": sent}


@router.post("/notifications/paid-order")
async def notify_paid_order(
    payload: PaidOrderRequest,
    db: Session = Depends(get_db),
    sender: OutboundSender = Depends(get_outbound_sender),
):
    order = (
        db.query(Order)
        .filter(Order.id == payload.order_id, Order.tenant_id == payload.tenant_id)
        .first()
    )
    if not order:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    if not order.is_paid:
        raise HTTPException(status_code=409, detail="Pedido ainda não está pago")

    try:
        sent = await sender.send_paid_order(
            db,
            tenant_id=order.tenant_id,
            phone=order.customer_phone,
            order_id=order.id,
            total=Decimal(str(order.total_amount or 0)),
        )
    except OutboundRateLimited as exc:
        raise _rate_limited(exc) from exc
    return {"sent": sent}


@router.post("/confirmations/{confirmation_id}/send")
async def send_confirmation_link(
    confirmation_id: int,
    db: Session = Depends(get_db),
    sender: OutboundSender = Depends(get_outbound_sender),
):
    try:
        sent = await send_checkout_link(db, confirmation_id, sender=sender)
    except ConfirmationUnavailable as exc:
        raise HTTPException(status_code=404, detail="Confirmação não encontrada ou já processada") from exc
    except ConfirmationExpired as exc:
        raise HTTPException(status_code=410, detail="Confirmação expirada") from exc
    except OutboundRateLimited as exc:
        raise _rate_limited(exc) from exc
    return {"sent": sent}
