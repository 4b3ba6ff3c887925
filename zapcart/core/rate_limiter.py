from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from zapcart.core.config import TENANT_MESSAGES_PER_MINUTE


@dataclass(frozen=True)
class SendSlot:
    granted: bool
    sent_in_window: int
    retry_after_seconds: int = 0


class SendWindowLimiter(ABC):
    """Teto de envios por tenant, compartilhado entre todos os tipos de mensagem."""

    @abstractmethod
    def try_acquire(self, *, tenant_id: int) -> SendSlot:
        ...

    @abstractmethod
    def in_window(self, *, tenant_id: int) -> int:
        ...


class InMemorySendWindowLimiter(SendWindowLimiter):
    def __init__(
        self,
        *,
        max_sends: int = TENANT_MESSAGES_PER_MINUTE,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_sends = max_sends
        self.window_seconds = window_seconds
        self._clock = clock
        self._sent_at: defaultdict[int, deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def _expire(self, tenant_id: int, now: float) -> deque[float]:
        sent_at = self._sent_at[tenant_id]
        while sent_at and now - sent_at[0] >= self.window_seconds:
            sent_at.popleft()
        return sent_at

    def try_acquire(self, *, tenant_id: int) -> SendSlot:
        now = self._clock()
        with self._lock:
            sent_at = self._expire(tenant_id, now)
            if len(sent_at) < self.max_sends:
                sent_at.append(now)
                return SendSlot(granted=True, sent_in_window=len(sent_at))

            # o slot mais antigo libera a janela
            free_in = self.window_seconds - (now - sent_at[0])
            return SendSlot(
                granted=False,
                sent_in_window=len(sent_at),
                retry_after_seconds=max(1, math.ceil(free_in)),
            )

    def in_window(self, *, tenant_id: int) -> int:
        with self._lock:
            return len(self._expire(tenant_id, self._clock()))
