from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    BAZAR = "BAZAR"
    LIVE = "LIVE"

    @classmethod
    def from_sale_type(cls, sale_type: str | None) -> "EventType":
        if (sale_type or "").strip().upper() == cls.LIVE.value:
            return cls.LIVE
        return cls.BAZAR


class CartStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class DeliveryStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"
    RECEIVED = "RECEIVED"
    READ = "READ"
    PLAYED = "PLAYED"

    @property
    def is_delivered(self) -> bool:
        return self in {DeliveryStatus.RECEIVED, DeliveryStatus.READ, DeliveryStatus.PLAYED}


class MessageType(str, Enum):
    ITEM_ADDED = "ITEM_ADDED"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PRODUCT_CANCELED = "PRODUCT_CANCELED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    CHECKOUT_LINK = "CHECKOUT_LINK"
    BROADCAST = "BROADCAST"


class ConfirmationStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ERROR = "error"
