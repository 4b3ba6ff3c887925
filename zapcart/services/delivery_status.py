from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from zapcart.models.enums import DeliveryStatus, MessageType
from zapcart.models.order import Order
from zapcart.models.outbound_message import OutboundMessageRecord

logger = logging.getLogger(__name__)

# Callbacks podem chegar fora de ordem; um status nunca regride
_STATUS_RANK = {
    DeliveryStatus.FAILED: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.RECEIVED: 2,
    DeliveryStatus.READ: 3,
    DeliveryStatus.PLAYED: 4,
}

_ORDER_FLAGS: dict[str, str] = {
    MessageType.ITEM_ADDED.value: "item_added_delivered",
    MessageType.PAYMENT_CONFIRMED.value: "payment_confirmation_delivered",
}


def parse_status(raw: str | None) -> DeliveryStatus | None:
    try:
        return DeliveryStatus((raw or "").strip().upper())
    except ValueError:
        return None


class DeliveryStatusReconciler:
    def apply(self, db: Session, provider_message_id: str, status: str) -> bool:
        """Aplica um status do provedor. Ids desconhecidos são ignorados."""
        parsed = parse_status(status)
        if parsed is None:
            logger.info("Status de entrega ignorado: %s", status, extra={"message_id": provider_message_id})
            return False

        record = (
            db.query(OutboundMessageRecord)
            .filter(OutboundMessageRecord.provider_message_id == provider_message_id)
            .order_by(OutboundMessageRecord.id.desc())
            .first()
        )
        if record is None:
            logger.info("Status para mensagem desconhecida", extra={"message_id": provider_message_id})
            return False

        current = parse_status(record.delivery_status)
        if current is None or _STATUS_RANK[parsed] > _STATUS_RANK[current]:
            record.delivery_status = parsed.value

        if parsed.is_delivered and record.order_id:
            flag = _ORDER_FLAGS.get(record.message_type)
            if flag:
                db.query(Order).filter(Order.id == record.order_id).update({flag: True}, synchronize_session=False)

        db.commit()
        logger.info(
            "Status de entrega aplicado",
            extra={"message_id": provider_message_id, "order_id": record.order_id, "outcome": parsed.value},
        )
        return True

    def apply_many(self, db: Session, provider_message_ids: Iterable[str], status: str) -> int:
        return sum(1 for message_id in provider_message_ids if message_id and self.apply(db, message_id, status))
