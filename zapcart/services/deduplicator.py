from __future__ import annotations

import hashlib
import logging

from zapcart.core.config import (
    DEDUP_CONTENT_WINDOW_SECONDS,
    DEDUP_MESSAGE_TTL_SECONDS,
    PRODUCT_DEDUP_TTL_SECONDS,
)
from zapcart.core.idempotency import IdempotencyCache, InMemoryIdempotencyCache

logger = logging.getLogger(__name__)


def _content_hash(phone: str, text: str) -> str:
    return hashlib.sha256(f"{phone}:{text.strip()}".encode("utf-8")).hexdigest()


def message_identity(message_id: str | None, phone: str, text: str) -> str:
    if message_id:
        return f"id:{message_id}"
    return f"content:{_content_hash(phone, text)}"


class DeliveryDeduplicator:
    """Barreira em memória contra reentregas do mesmo evento do webhook.

    Com id da mensagem, a chave vale por ``message_ttl_seconds``; sem id, a
    chave telefone+conteúdo vale apenas por ``content_window_seconds``, para
    não barrar um pedido repetido legitimamente um minuto depois.
    """

    def __init__(
        self,
        cache: IdempotencyCache | None = None,
        *,
        message_ttl_seconds: float = DEDUP_MESSAGE_TTL_SECONDS,
        content_window_seconds: float = DEDUP_CONTENT_WINDOW_SECONDS,
    ) -> None:
        self.cache = cache if cache is not None else InMemoryIdempotencyCache()
        self.message_ttl_seconds = message_ttl_seconds
        self.content_window_seconds = content_window_seconds

    def window_for(self, message_id: str | None) -> float:
        return self.message_ttl_seconds if message_id else self.content_window_seconds

    def is_duplicate(self, message_id: str | None, phone: str, text: str) -> bool:
        key = message_identity(message_id, phone, text)
        ttl = self.window_for(message_id)
        first_seen = self.cache.add_if_absent(f"msg:{key}", ttl)
        if not first_seen:
            logger.info("Mensagem duplicada ignorada", extra={"message_id": message_id, "phone": phone})
        return not first_seen


class ProductDedupCache:
    """Impede reaplicar o mesmo produto para a mesma mensagem lógica."""

    def __init__(self, cache: IdempotencyCache | None = None, *, ttl_seconds: float = PRODUCT_DEDUP_TTL_SECONDS) -> None:
        self.cache = cache if cache is not None else InMemoryIdempotencyCache()
        self.ttl_seconds = ttl_seconds

    def claim(self, message_key: str, product_code: str, *, ttl_seconds: float | None = None) -> bool:
        """``ttl_seconds`` encurta a trava quando a chave é só telefone+conteúdo."""
        ttl = self.ttl_seconds if ttl_seconds is None else min(ttl_seconds, self.ttl_seconds)
        return self.cache.add_if_absent(f"product:{message_key}:{product_code.upper()}", ttl)
