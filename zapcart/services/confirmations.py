from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from zapcart.core.config import PENDING_CONFIRMATION_TTL_MINUTES
from zapcart.core.timeutils import utcnow
from zapcart.models.enums import ConfirmationStatus
from zapcart.models.pending_confirmation import PendingConfirmation
from zapcart.services.whatsapp_outbound import OutboundSender

logger = logging.getLogger(__name__)


class ConfirmationUnavailable(Exception):
    pass


class ConfirmationExpired(Exception):
    pass


def build_checkout_url(base_url: str, order_id: int) -> str:
    return f"{base_url.rstrip('/')}/{order_id}"


def create_pending_confirmation(
    db: Session,
    *,
    tenant_id: int,
    order_id: int,
    phone: str,
    checkout_base_url: str | None,
    now: datetime | None = None,
    ttl_minutes: int = PENDING_CONFIRMATION_TTL_MINUTES,
) -> PendingConfirmation:
    now = now or utcnow()
    expires_at = now + timedelta(minutes=ttl_minutes)
    checkout_url = build_checkout_url(checkout_base_url, order_id) if checkout_base_url else None

    # Um pedido com confirmação ainda válida só tem o prazo renovado
    existing = (
        db.query(PendingConfirmation)
        .filter(
            PendingConfirmation.order_id == order_id,
            PendingConfirmation.status == ConfirmationStatus.PENDING.value,
            PendingConfirmation.expires_at > now,
        )
        .first()
    )
    if existing:
        existing.expires_at = expires_at
        existing.checkout_url = checkout_url or existing.checkout_url
        db.commit()
        return existing

    confirmation = PendingConfirmation(
        tenant_id=tenant_id,
        order_id=order_id,
        customer_phone=phone,
        checkout_url=checkout_url,
        status=ConfirmationStatus.PENDING.value,
        expires_at=expires_at,
    )
    db.add(confirmation)
    db.commit()
    db.refresh(confirmation)
    logger.info("Confirmação pendente criada", extra={"tenant_id": tenant_id, "order_id": order_id})
    return confirmation


def _move(db: Session, confirmation_id: int, *, from_status: ConfirmationStatus, values: dict) -> int:
    moved = (
        db.query(PendingConfirmation)
        .filter(
            PendingConfirmation.id == confirmation_id,
            PendingConfirmation.status == from_status.value,
        )
        .update(values, synchronize_session=False)
    )
    db.commit()
    return moved


async def send_checkout_link(
    db: Session,
    confirmation_id: int,
    *,
    sender: OutboundSender,
    now: datetime | None = None,
) -> bool:
    """Reserva a confirmação (pending -> sending), envia e só então confirma.

    Falha no envio devolve a confirmação para ``pending``, permitindo reenvio.
    """
    now = now or utcnow()
    claimed = (
        db.query(PendingConfirmation)
        .filter(
            PendingConfirmation.id == confirmation_id,
            PendingConfirmation.status == ConfirmationStatus.PENDING.value,
            PendingConfirmation.expires_at > now,
        )
        .update({PendingConfirmation.status: ConfirmationStatus.SENDING.value}, synchronize_session=False)
    )
    db.commit()

    if not claimed:
        expired = (
            db.query(PendingConfirmation)
            .filter(
                PendingConfirmation.id == confirmation_id,
                PendingConfirmation.status == ConfirmationStatus.PENDING.value,
                PendingConfirmation.expires_at <= now,
            )
            .update({PendingConfirmation.status: ConfirmationStatus.EXPIRED.value}, synchronize_session=False)
        )
        db.commit()
        if expired:
            raise ConfirmationExpired(f"Confirmação {confirmation_id} expirada")
        raise ConfirmationUnavailable(f"Confirmação {confirmation_id} não encontrada ou já processada")

    confirmation = db.query(PendingConfirmation).filter(PendingConfirmation.id == confirmation_id).one()
    release = {PendingConfirmation.status: ConfirmationStatus.PENDING.value}
    try:
        sent = await sender.send_checkout_link(
            db,
            tenant_id=confirmation.tenant_id,
            phone=confirmation.customer_phone,
            checkout_url=confirmation.checkout_url or "",
            order_id=confirmation.order_id,
        )
    except Exception:
        db.rollback()
        _move(db, confirmation_id, from_status=ConfirmationStatus.SENDING, values=release)
        raise

    if not sent:
        logger.warning(
            "Link de checkout não enviado, confirmação volta a pendente",
            extra={"tenant_id": confirmation.tenant_id, "order_id": confirmation.order_id},
        )
        _move(db, confirmation_id, from_status=ConfirmationStatus.SENDING, values=release)
        return False

    _move(
        db,
        confirmation_id,
        from_status=ConfirmationStatus.SENDING,
        values={
            PendingConfirmation.status: ConfirmationStatus.CONFIRMED.value,
            PendingConfirmation.confirmed_at: now,
        },
    )
    return True


def expire_pending_confirmations(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    expired = (
        db.query(PendingConfirmation)
        .filter(
            PendingConfirmation.status == ConfirmationStatus.PENDING.value,
            PendingConfirmation.expires_at <= now,
        )
        .update({PendingConfirmation.status: ConfirmationStatus.EXPIRED.value}, synchronize_session=False)
    )
    db.commit()
    if expired:
        logger.info("Confirmações expiradas: %s", expired)
    return expired
