from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from zapcart.core.config import ZAPI_BASE_URL, ZAPI_TIMEOUT_SECONDS
from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.services.tenant_backoff import InMemoryTenantBackoffService, TenantBackoffService
from zapcart.whatsapp.base import WhatsAppProvider, WhatsAppSendResult, sanitize_payload

logger = logging.getLogger(__name__)


def extract_message_id(data: dict[str, Any]) -> str | None:
    for key in ("messageId", "zaapId", "id"):
        value = data.get(key)
        if value:
            return str(value)
    return None


class ZapiWhatsAppProvider(WhatsAppProvider):
    MAX_RETRIES = 3
    INTEGRATION_NAME = "zapi"

    def __init__(
        self,
        *,
        base_url: str = ZAPI_BASE_URL,
        timeout: float = ZAPI_TIMEOUT_SECONDS,
        backoff: TenantBackoffService | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.backoff = backoff or InMemoryTenantBackoffService()
        self._transport = transport

    async def send_text(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        text: str,
    ) -> WhatsAppSendResult:
        return await self._send(
            tenant_id=tenant_id,
            integration=integration,
            endpoint="send-text",
            payload={"phone": to_phone, "message": text},
        )

    async def send_image(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        to_phone: str,
        image_url: str,
        caption: str,
    ) -> WhatsAppSendResult:
        return await self._send(
            tenant_id=tenant_id,
            integration=integration,
            endpoint="send-image",
            payload={"phone": to_phone, "image": image_url, "caption": caption},
        )

    async def _send(
        self,
        *,
        tenant_id: int,
        integration: WhatsAppIntegration | None,
        endpoint: str,
        payload: dict[str, Any],
    ) -> WhatsAppSendResult:
        if not integration or not integration.instance_id or not integration.token:
            return WhatsAppSendResult(status="failed", error="Credenciais da Z-API incompletas")

        url = f"{self.base_url}/instances/{integration.instance_id}/token/{integration.token}/{endpoint}"
        headers = {"Content-Type": "application/json"}
        if integration.client_token:
            headers["Client-Token"] = integration.client_token

        last_error: str | None = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            decision = self.backoff.before_request(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
            if decision.delay_seconds > 0:
                logger.warning(
                    "tenant integration backoff activated",
                    extra={
                        "tenant_id": tenant_id,
                        "integration": self.INTEGRATION_NAME,
                        "delay_seconds": decision.delay_seconds,
                        "consecutive_failures": decision.consecutive_failures,
                    },
                )
                await asyncio.sleep(decision.delay_seconds)

            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(url, headers=headers, json=payload)

                if 200 <= response.status_code < 300:
                    self.backoff.register_success(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
                    try:
                        data = response.json()
                    except json.JSONDecodeError:
                        data = {"raw": response.text}
                    if not isinstance(data, dict):
                        data = {"raw": data}
                    return WhatsAppSendResult(
                        status="sent",
                        provider_message_id=extract_message_id(data),
                        response_payload=sanitize_payload(data),
                    )

                last_error = f"Erro Z-API {response.status_code}: {response.text[:300]}"
            except httpx.HTTPError as exc:
                last_error = str(exc) or exc.__class__.__name__

            failures = self.backoff.register_failure(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
            logger.warning(
                "Falha no envio Z-API (tentativa %s/%s)",
                attempt,
                self.MAX_RETRIES,
                extra={
                    "tenant_id": tenant_id,
                    "integration": self.INTEGRATION_NAME,
                    "consecutive_failures": failures,
                },
            )

        return WhatsAppSendResult(status="failed", error=last_error)
