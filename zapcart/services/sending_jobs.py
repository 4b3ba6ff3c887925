from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from zapcart.core.database import SessionLocal
from zapcart.core.timeutils import utcnow
from zapcart.models.enums import JobStatus, MessageType
from zapcart.models.product import Product
from zapcart.models.sending_job import SendingJob
from zapcart.models.whatsapp_group import WhatsAppGroup
from zapcart.services.whatsapp_outbound import OutboundSender
from zapcart.services.whatsapp_templates import get_template, render_broadcast

logger = logging.getLogger(__name__)


class JobStateError(Exception):
    pass


def build_targets(job_data: dict) -> list[tuple[int, int]]:
    """Pares (produto, grupo) na ordem de envio: cada produto em todos os grupos."""
    product_ids = [int(value) for value in job_data.get("product_ids") or []]
    group_ids = [int(value) for value in job_data.get("group_ids") or []]
    return [(product_id, group_id) for product_id in product_ids for group_id in group_ids]


def create_job(
    db: Session,
    *,
    tenant_id: int,
    product_ids: list[int],
    group_ids: list[int],
    template: str | None = None,
) -> SendingJob:
    job_data = {"product_ids": product_ids, "group_ids": group_ids, "template": template}
    job = SendingJob(
        tenant_id=tenant_id,
        status=JobStatus.PENDING.value,
        job_data=job_data,
        total_items=len(build_targets(job_data)),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Envio em massa criado", extra={"tenant_id": tenant_id, "job_id": job.id})
    return job


def _transition(db: Session, job_id: int, *, from_statuses: set[JobStatus], to_status: JobStatus, **values) -> SendingJob:
    updated = (
        db.query(SendingJob)
        .filter(SendingJob.id == job_id, SendingJob.status.in_([status.value for status in from_statuses]))
        .update({SendingJob.status: to_status.value, **values}, synchronize_session=False)
    )
    db.commit()
    job = db.query(SendingJob).filter(SendingJob.id == job_id).first()
    if job is None:
        raise LookupError(f"Envio {job_id} não encontrado")
    if not updated:
        raise JobStateError(f"Envio {job_id} está {job.status}, não pode ir para {to_status.value}")
    db.refresh(job)
    return job


class SendingJobRunner:
    """Executa envios em massa com checkpoint, pausa e cancelamento."""

    def __init__(
        self,
        *,
        sender: OutboundSender | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.sender = sender or OutboundSender()
        self.session_factory = session_factory
        self._tasks: dict[int, asyncio.Task] = {}

    def mark_running(self, db: Session, job_id: int) -> SendingJob:
        return _transition(
            db,
            job_id,
            from_statuses={JobStatus.PENDING, JobStatus.PAUSED},
            to_status=JobStatus.RUNNING,
            started_at=utcnow(),
            paused_at=None,
        )

    def start(self, db: Session, job_id: int) -> SendingJob:
        job = self.mark_running(db, job_id)
        self._tasks[job_id] = asyncio.get_running_loop().create_task(self.run(job_id))
        return job

    def pause(self, db: Session, job_id: int) -> SendingJob:
        job = _transition(
            db,
            job_id,
            from_statuses={JobStatus.RUNNING, JobStatus.PENDING},
            to_status=JobStatus.PAUSED,
            paused_at=utcnow(),
        )
        self._cancel_task(job_id)
        return job

    def cancel(self, db: Session, job_id: int) -> SendingJob:
        job = _transition(
            db,
            job_id,
            from_statuses={JobStatus.RUNNING, JobStatus.PENDING, JobStatus.PAUSED},
            to_status=JobStatus.CANCELLED,
        )
        self._cancel_task(job_id)
        return job

    def _cancel_task(self, job_id: int) -> None:
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()

    async def run(self, job_id: int) -> None:
        db = self.session_factory()
        index: int | None = None
        try:
            job = db.query(SendingJob).filter(SendingJob.id == job_id).first()
            if job is None or job.status != JobStatus.RUNNING.value:
                return

            targets = build_targets(job.job_data or {})
            template = (job.job_data or {}).get("template") or get_template(db, job.tenant_id, MessageType.BROADCAST)
            products = {
                product.id: product
                for product in db.query(Product).filter(Product.tenant_id == job.tenant_id).all()
            }
            groups = {
                group.id: group
                for group in db.query(WhatsAppGroup).filter(WhatsAppGroup.tenant_id == job.tenant_id).all()
            }
            index = job.current_index or 0
            sent_count = job.sent_count or 0
            error_count = job.error_count or 0

            while index < len(targets):
                db.refresh(job)
                if job.status != JobStatus.RUNNING.value:
                    logger.info("Envio interrompido: %s", job.status, extra={"job_id": job_id})
                    return

                product_id, group_id = targets[index]
                product = products.get(product_id)
                group = groups.get(group_id)
                if product is None or group is None or not group.chat_id:
                    error_count += 1
                    logger.warning("Alvo inválido no envio em massa", extra={"job_id": job_id})
                else:
                    message = render_broadcast(
                        template,
                        code=product.code,
                        name=product.name,
                        price=product.price,
                        color=product.color,
                        size=product.size,
                    )
                    sent = await self.sender.send_broadcast(
                        db,
                        tenant_id=job.tenant_id,
                        chat_id=group.chat_id,
                        message=message,
                        image_url=product.image_url,
                    )
                    if sent:
                        sent_count += 1
                    else:
                        error_count += 1

                index += 1
                self._checkpoint(db, job, index=index, sent_count=sent_count, error_count=error_count)

            db.query(SendingJob).filter(
                SendingJob.id == job_id,
                SendingJob.status == JobStatus.RUNNING.value,
            ).update(
                {SendingJob.status: JobStatus.COMPLETED.value, SendingJob.completed_at: utcnow()},
                synchronize_session=False,
            )
            db.commit()
            logger.info("Envio em massa concluído", extra={"job_id": job_id, "tenant_id": job.tenant_id})
        except asyncio.CancelledError:
            db.rollback()
            job = db.query(SendingJob).filter(SendingJob.id == job_id).first()
            if job is not None:
                if index is not None:
                    job.current_index = index
                    job.processed_items = index
                if job.status == JobStatus.RUNNING.value:
                    job.status = JobStatus.PAUSED.value
                    job.paused_at = utcnow()
                db.commit()
            logger.info("Envio em massa cancelado no meio do atraso", extra={"job_id": job_id})
            raise
        except Exception as exc:
            db.rollback()
            logger.exception("Erro no envio em massa", extra={"job_id": job_id})
            db.query(SendingJob).filter(SendingJob.id == job_id).update(
                {SendingJob.status: JobStatus.ERROR.value, SendingJob.error_message: str(exc)[:500]},
                synchronize_session=False,
            )
            db.commit()
        finally:
            db.close()
            self._tasks.pop(job_id, None)

    @staticmethod
    def _checkpoint(db: Session, job: SendingJob, *, index: int, sent_count: int, error_count: int) -> None:
        job.current_index = index
        job.processed_items = index
        job.sent_count = sent_count
        job.error_count = error_count
        db.commit()
