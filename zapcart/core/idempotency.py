"""Cache de idempotência com TTL.

Os pontos de chamada dependem apenas de ``IdempotencyCache``; a implementação
em memória vale por processo e pode ser trocada por um cache compartilhado.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable


class IdempotencyCache(ABC):
    @abstractmethod
    def get(self, key: str) -> float | None:
        """Retorna o instante (clock do cache) em que a chave foi gravada, se ainda válida."""

    @abstractmethod
    def set(self, key: str, ttl_seconds: float) -> None:
        """Grava a chave com validade de ``ttl_seconds``."""

    @abstractmethod
    def add_if_absent(self, key: str, ttl_seconds: float) -> bool:
        """Grava a chave somente se ausente. Retorna False quando ela já existia."""

    @abstractmethod
    def now(self) -> float:
        ...


class InMemoryIdempotencyCache(IdempotencyCache):
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, float]] = {}
        self._lock = Lock()

    def now(self) -> float:
        return self._clock()

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def get(self, key: str) -> float | None:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            entry = self._entries.get(key)
            return entry[0] if entry else None

    def set(self, key: str, ttl_seconds: float) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (now, now + ttl_seconds)

    def add_if_absent(self, key: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            if key in self._entries:
                return False
            self._entries[key] = (now, now + ttl_seconds)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
