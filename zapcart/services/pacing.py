from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Awaitable, Callable

from zapcart.core.config import (
    BATCH_DELAY_MAX_SECONDS,
    BATCH_DELAY_MIN_SECONDS,
    EMOJI_SWAP_PROBABILITY,
    GREETING_PROBABILITY,
    INVISIBLE_CHAR_PROBABILITY,
    LIVE_DELAY_MAX_SECONDS,
    LIVE_DELAY_MIN_SECONDS,
    PACER_RANDOM_SEED,
    PACING_ENABLED,
    PHONE_THROTTLE_MAX_SECONDS,
    PHONE_THROTTLE_MIN_SECONDS,
    PHONE_THROTTLE_WINDOW_SECONDS,
)
from zapcart.core.rate_limiter import InMemorySendWindowLimiter, SendWindowLimiter

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class Channel(str, Enum):
    # Envio em massa agendado: espera o limite do tenant liberar
    BATCH = "batch"
    # Resposta a uma ação do cliente: falha rápido quando limitado
    LIVE = "live"


class OutboundRateLimited(Exception):
    def __init__(self, tenant_id: int, retry_after_seconds: int) -> None:
        super().__init__(f"Limite de envio do tenant {tenant_id} atingido")
        self.tenant_id = tenant_id
        self.retry_after_seconds = retry_after_seconds


GREETINGS = ("Oi! ", "Olá! ", "Oi, tudo bem? ", "Olá, tudo bem? ", "Ei! ")

EMOJI_ALTERNATIVES: dict[str, tuple[str, ...]] = {
    "✅": ("✔️", "☑️"),
    "✔️": ("✅",),
    "🛒": ("🛍️",),
    "🛍️": ("🛒",),
    "🎉": ("🥳", "🎊"),
    "❤️": ("💖", "💕"),
    "💚": ("💖", "❤️"),
    "👉": ("➡️", "👇"),
    "✨": ("🌟", "⭐"),
    "💰": ("💵",),
}

INVISIBLE_CHARS = ("\u200b", "\u200c", "\u200d", "\u2060")


@dataclass
class PacedMessage:
    message: str
    wait_seconds: float
    base_delay_seconds: float
    throttle_seconds: float
    rate_limit_wait_seconds: float


class OutboundPacer:
    """Atrasos humanizados, limites e variação de conteúdo antes de cada envio.

    Etapas, nesta ordem: limite por tenant, throttle por telefone, atraso base
    e variação do texto. Aleatoriedade, relógio e ``sleep`` são injetáveis.
    """

    def __init__(
        self,
        *,
        rate_limiter: SendWindowLimiter | None = None,
        rng: random.Random | None = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = PACING_ENABLED,
        phone_throttle_window_seconds: float = PHONE_THROTTLE_WINDOW_SECONDS,
        phone_throttle_range: tuple[float, float] = (PHONE_THROTTLE_MIN_SECONDS, PHONE_THROTTLE_MAX_SECONDS),
        batch_delay_range: tuple[float, float] = (BATCH_DELAY_MIN_SECONDS, BATCH_DELAY_MAX_SECONDS),
        live_delay_range: tuple[float, float] = (LIVE_DELAY_MIN_SECONDS, LIVE_DELAY_MAX_SECONDS),
        greeting_probability: float = GREETING_PROBABILITY,
        emoji_swap_probability: float = EMOJI_SWAP_PROBABILITY,
        invisible_char_probability: float = INVISIBLE_CHAR_PROBABILITY,
    ) -> None:
        self.rate_limiter = rate_limiter or InMemorySendWindowLimiter(clock=clock)
        self.rng = rng or random.Random(PACER_RANDOM_SEED)
        self._sleep = sleep
        self._clock = clock
        self.enabled = enabled
        self.phone_throttle_window_seconds = phone_throttle_window_seconds
        self.phone_throttle_range = phone_throttle_range
        self.delay_ranges = {Channel.BATCH: batch_delay_range, Channel.LIVE: live_delay_range}
        self.greeting_probability = greeting_probability
        self.emoji_swap_probability = emoji_swap_probability
        self.invisible_char_probability = invisible_char_probability
        self._last_sent: dict[str, float] = {}
        self._lock = Lock()

    async def acquire_rate_slot(self, tenant_id: int, channel: Channel) -> float:
        waited = 0.0
        while True:
            decision = self.rate_limiter.try_acquire(tenant_id=tenant_id)
            if decision.granted:
                return waited
            if channel is Channel.LIVE:
                logger.warning(
                    "Limite de envio do tenant atingido",
                    extra={"tenant_id": tenant_id, "outcome": "rate_limited"},
                )
                raise OutboundRateLimited(tenant_id, decision.retry_after_seconds)
            logger.info(
                "Limite de envio atingido, aguardando janela",
                extra={"tenant_id": tenant_id, "delay_seconds": decision.retry_after_seconds},
            )
            await self._sleep(float(decision.retry_after_seconds))
            waited += decision.retry_after_seconds

    def _throttle_for(self, phone: str, now: float) -> float:
        last_sent = self._last_sent.get(phone)
        if last_sent is None or now - last_sent >= self.phone_throttle_window_seconds:
            return 0.0
        low, high = self.phone_throttle_range
        return self.rng.uniform(low, high)

    def _stamp(self, phone: str, sent_at: float, now: float) -> None:
        self._last_sent[phone] = sent_at
        cutoff = now - self.phone_throttle_window_seconds
        for stale in [key for key, stamped in self._last_sent.items() if stamped < cutoff]:
            del self._last_sent[stale]

    def throttle_delay(self, phone: str) -> float:
        with self._lock:
            return self._throttle_for(phone, self._clock())

    def base_delay(self, channel: Channel) -> float:
        low, high = self.delay_ranges[channel]
        return self.rng.uniform(low, high)

    def record_send(self, phone: str) -> None:
        now = self._clock()
        with self._lock:
            self._stamp(phone, now, now)

    def reserve_phone_slot(self, phone: str, channel: Channel) -> tuple[float, float]:
        """Decide throttle e atraso base e já grava o horário previsto do envio.

        Envios concorrentes para o mesmo telefone enxergam a reserva anterior
        e recebem o throttle, em vez de saírem juntos.
        """
        with self._lock:
            now = self._clock()
            throttle = self._throttle_for(phone, now)
            base = self.base_delay(channel)
            scheduled_at = now + (throttle + base if self.enabled else 0.0)
            self._stamp(phone, scheduled_at, now)
        return throttle, base

    def vary(self, message: str, channel: Channel) -> str:
        varied = message
        if channel is Channel.BATCH and self.rng.random() < self.greeting_probability:
            varied = f"{self.rng.choice(GREETINGS)}{varied}"
        if self.rng.random() < self.emoji_swap_probability:
            varied = self._swap_emoji(varied)
        if self.rng.random() < self.invisible_char_probability:
            varied = self._insert_invisible_char(varied)
        return varied

    def _swap_emoji(self, message: str) -> str:
        present = [emoji for emoji in EMOJI_ALTERNATIVES if emoji in message]
        if not present:
            return message
        original = self.rng.choice(present)
        replacement = self.rng.choice(EMOJI_ALTERNATIVES[original])
        return message.replace(original, replacement, 1)

    def _insert_invisible_char(self, message: str) -> str:
        char = self.rng.choice(INVISIBLE_CHARS)
        # Só depois de espaço ou quebra de linha, para não partir palavras, códigos ou links
        positions = [index + 1 for index, value in enumerate(message) if value.isspace()]
        if not positions:
            return f"{message}{char}"
        position = self.rng.choice(positions)
        return f"{message[:position]}{char}{message[position:]}"

    async def pace(self, *, tenant_id: int, phone: str, message: str, channel: Channel) -> PacedMessage:
        rate_wait = await self.acquire_rate_slot(tenant_id, channel)
        throttle, base = self.reserve_phone_slot(phone, channel)
        total = throttle + base
        if self.enabled and total > 0:
            logger.info(
                "Atraso anti-bloqueio",
                extra={"tenant_id": tenant_id, "phone": phone, "delay_seconds": round(total, 1)},
            )
            await self._sleep(total)
        return PacedMessage(
            message=self.vary(message, channel),
            wait_seconds=total if self.enabled else 0.0,
            base_delay_seconds=base,
            throttle_seconds=throttle,
            rate_limit_wait_seconds=rate_wait,
        )


_default_pacer: OutboundPacer | None = None


def get_pacer() -> OutboundPacer:
    global _default_pacer
    if _default_pacer is None:
        _default_pacer = OutboundPacer()
    return _default_pacer
