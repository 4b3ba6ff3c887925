from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from zapcart.core.metrics import request_metrics
from zapcart.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _route_template(request: Request) -> str:
    # /api/sending-jobs/{job_id} em vez de um path por job
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Correlação por request id, métricas por rota e uma linha de log por requisição.

    O tenant só é conhecido depois que o webhook resolve a mensagem; o router
    grava em ``request.state.tenant_id`` e o log final o inclui.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_context(request_id=request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self._finish(request, request_id, started, status_code=500)
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        self._finish(request, request_id, started, status_code=response.status_code)
        return response

    def _finish(self, request: Request, request_id: str, started: float, *, status_code: int) -> None:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        endpoint = _route_template(request)
        request_metrics.observe(
            endpoint=endpoint,
            method=request.method,
            status_code=status_code,
            duration_ms=elapsed_ms,
        )
        tenant_id = getattr(request.state, "tenant_id", None)
        level = logging.WARNING if status_code >= 500 else logging.INFO
        logger.log(
            level,
            "Requisição finalizada",
            extra={
                "request_id": request_id,
                "tenant_id": str(tenant_id) if tenant_id is not None else None,
                "endpoint": endpoint,
                "method": request.method,
                "status_code": status_code,
                "duration_ms": elapsed_ms,
            },
        )
        clear_request_context()
