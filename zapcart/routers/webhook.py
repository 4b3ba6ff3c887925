from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from zapcart.core.database import get_db
from zapcart.core.request_context import set_request_context
from zapcart.deps import get_ingestion_pipeline, get_outbound_sender, get_reconciler, get_session_factory
from zapcart.services.delivery_status import DeliveryStatusReconciler
from zapcart.services.ingestion import InboundMessage, IngestionPipeline, dispatch_follow_ups
from zapcart.services.tenant_resolver import TenantConflictError, TenantResolutionError
from zapcart.services.whatsapp_outbound import OutboundSender

router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)

STATUS_CALLBACK_TYPE = "MessageStatusCallback"


class ZapiText(BaseModel):
    message: Optional[str] = None


class ZapiWebhookPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Optional[str] = None
    phone: Optional[str] = None
    participant_phone: Optional[str] = Field(default=None, alias="participantPhone")
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    chat_name: Optional[str] = Field(default=None, alias="chatName")
    sender_name: Optional[str] = Field(default=None, alias="senderName")
    text: Optional[ZapiText] = None
    message: Optional[str] = None
    is_group: bool = Field(default=False, alias="isGroup")
    from_me: bool = Field(default=False, alias="fromMe")
    message_id: Optional[str] = Field(default=None, alias="messageId")
    zapi_message_id: Optional[str] = Field(default=None, alias="zapiMessageId")
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    status: Optional[str] = None
    ids: list[str] = Field(default_factory=list)

    @property
    def is_status_callback(self) -> bool:
        return self.type == STATUS_CALLBACK_TYPE or (bool(self.status) and bool(self.ids))

    def to_inbound(self) -> InboundMessage:
        text = (self.text.message if self.text else None) or self.message or ""
        is_group = self.is_group or (self.phone or "").endswith("-group") or (self.chat_id or "").endswith("@g.us")
        # Em grupos, phone é o id do grupo e o autor vem em participantPhone
        author = self.participant_phone if is_group and self.participant_phone else self.phone
        return InboundMessage(
            phone=author,
            text=text,
            group_name=self.chat_name,
            chat_id=self.chat_id or (self.phone if is_group else None),
            is_group=is_group,
            from_me=self.from_me,
            message_id=self.message_id or self.zapi_message_id,
            instance_id=self.instance_id,
            sender_name=self.sender_name,
        )


@router.post("/zapi")
async def zapi_webhook(
    payload: ZapiWebhookPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
    sender: OutboundSender = Depends(get_outbound_sender),
    reconciler: DeliveryStatusReconciler = Depends(get_reconciler),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> Any:
    if payload.is_status_callback:
        updated = reconciler.apply_many(db, payload.ids, payload.status or "")
        return {"status": "status_updated", "updated": updated}

    message = payload.to_inbound()
    try:
        result = pipeline.ingest(db, message)
    except TenantConflictError:
        return JSONResponse(status_code=409, content={"status": "error", "error": "instance_id_conflict"})
    except TenantResolutionError:
        return JSONResponse(status_code=400, content={"status": "error", "error": "tenant_not_found"})

    if result.tenant_id is not None:
        request.state.tenant_id = result.tenant_id
        set_request_context(tenant_id=str(result.tenant_id))
    if result.follow_ups:
        background_tasks.add_task(
            dispatch_follow_ups,
            result.follow_ups,
            sender=sender,
            session_factory=session_factory,
        )
    return result.to_dict()
