from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class RouteStats:
    hits: int = 0
    errors: int = 0
    elapsed_ms: float = 0.0
    slowest_ms: float = 0.0
    by_status_class: Counter[str] = field(default_factory=Counter)

    def as_dict(self) -> dict[str, object]:
        return {
            "total_requests": self.hits,
            "error_count": self.errors,
            "avg_duration_ms": round(self.elapsed_ms / self.hits, 2) if self.hits else 0.0,
            "max_duration_ms": round(self.slowest_ms, 2),
            "status_classes": dict(self.by_status_class),
        }


class InMemoryRequestMetrics:
    """Agregados por rota (template da rota, não o path cru)."""

    def __init__(self) -> None:
        self._routes: dict[str, RouteStats] = {}
        self._lock = Lock()

    def observe(self, *, endpoint: str, method: str, status_code: int, duration_ms: float) -> None:
        with self._lock:
            stats = self._routes.setdefault(f"{method} {endpoint}", RouteStats())
            stats.hits += 1
            stats.elapsed_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            stats.by_status_class[f"{status_code // 100}xx"] += 1
            if status_code >= 400:
                stats.errors += 1

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {key: stats.as_dict() for key, stats in self._routes.items()}


class IngestionMetrics:
    """Contadores por desfecho da ingestão.

    Desfechos esperados (duplicado, ignorado) ficam separados das falhas,
    que são contadas por código de erro.
    """

    def __init__(self) -> None:
        self._outcomes: Counter[str] = Counter()
        self._errors: Counter[str] = Counter()
        self._lock = Lock()

    def record(self, outcome: str, error: str | None = None) -> None:
        with self._lock:
            self._outcomes[outcome] += 1
            if error:
                self._errors[error] += 1

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {"outcomes": dict(self._outcomes), "errors": dict(self._errors)}

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._errors.clear()


request_metrics = InMemoryRequestMetrics()
ingestion_metrics = IngestionMetrics()
