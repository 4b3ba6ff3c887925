from __future__ import annotations

from functools import lru_cache
from typing import Callable

from sqlalchemy.orm import Session

from zapcart.core.database import SessionLocal
from zapcart.services.delivery_status import DeliveryStatusReconciler
from zapcart.services.ingestion import IngestionPipeline
from zapcart.services.sending_jobs import SendingJobRunner
from zapcart.services.whatsapp_outbound import OutboundSender


# Instâncias por processo; os caches em memória vivem nelas
@lru_cache
def get_ingestion_pipeline() -> IngestionPipeline:
    return IngestionPipeline()


@lru_cache
def get_outbound_sender() -> OutboundSender:
    return OutboundSender()


@lru_cache
def get_reconciler() -> DeliveryStatusReconciler:
    return DeliveryStatusReconciler()


@lru_cache
def get_job_runner() -> SendingJobRunner:
    return SendingJobRunner(sender=get_outbound_sender())


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal
