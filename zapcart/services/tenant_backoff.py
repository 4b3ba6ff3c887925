from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass
class BackoffDecision:
    delay_seconds: float
    consecutive_failures: int


class TenantBackoffService(ABC):
    @abstractmethod
    def before_request(self, *, tenant_id: int, integration: str) -> BackoffDecision:
        """Retorna o atraso a aplicar antes da chamada ao provedor."""

    @abstractmethod
    def register_success(self, *, tenant_id: int, integration: str) -> None:
        ...

    @abstractmethod
    def register_failure(self, *, tenant_id: int, integration: str) -> int:
        """Incrementa falhas consecutivas e retorna o total atual."""


class InMemoryTenantBackoffService(TenantBackoffService):
    """Backoff exponencial por tenant+integração após falhas seguidas.

    Falhas mais antigas que ``reset_after_seconds`` são esquecidas, para que
    uma instância que voltou a responder não continue penalizada.
    """

    def __init__(
        self,
        *,
        threshold: int = 2,
        base_delay_seconds: float = 1.0,
        max_backoff_seconds: float = 8.0,
        reset_after_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.base_delay_seconds = base_delay_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.reset_after_seconds = reset_after_seconds
        self._clock = clock
        self._state: dict[tuple[int, str], tuple[int, float]] = {}
        self._lock = Lock()

    def _failures(self, key: tuple[int, str]) -> int:
        failures, last_failure_at = self._state.get(key, (0, 0.0))
        if failures and self._clock() - last_failure_at > self.reset_after_seconds:
            self._state.pop(key, None)
            return 0
        return failures

    def before_request(self, *, tenant_id: int, integration: str) -> BackoffDecision:
        key = (tenant_id, integration)
        with self._lock:
            failures = self._failures(key)
        if failures < self.threshold:
            return BackoffDecision(delay_seconds=0.0, consecutive_failures=failures)
        power = failures - self.threshold
        delay = min(self.base_delay_seconds * (2 ** power), self.max_backoff_seconds)
        return BackoffDecision(delay_seconds=float(delay), consecutive_failures=failures)

    def register_success(self, *, tenant_id: int, integration: str) -> None:
        with self._lock:
            self._state.pop((tenant_id, integration), None)

    def register_failure(self, *, tenant_id: int, integration: str) -> int:
        key = (tenant_id, integration)
        with self._lock:
            failures = self._failures(key) + 1
            self._state[key] = (failures, self._clock())
            return failures
