from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_tenant_id: ContextVar[str | None] = ContextVar("tenant_id", default=None)


def set_request_context(*, request_id: str | None = None, tenant_id: str | int | None = None) -> None:
    if request_id is not None:
        _request_id.set(request_id)
    if tenant_id is not None:
        _tenant_id.set(str(tenant_id))


def get_request_id() -> str | None:
    return _request_id.get()


def get_tenant_id() -> str | None:
    return _tenant_id.get()


def clear_request_context() -> None:
    _request_id.set(None)
    _tenant_id.set(None)


@contextmanager
def tenant_context(tenant_id: int) -> Iterator[None]:
    """Marca os logs de trabalho em segundo plano (respostas automáticas, envios em massa)."""
    token = _tenant_id.set(str(tenant_id))
    try:
        yield
    finally:
        _tenant_id.reset(token)
