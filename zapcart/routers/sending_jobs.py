from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from zapcart.core.database import get_db
from zapcart.deps import get_job_runner
from zapcart.models.sending_job import SendingJob
from zapcart.services.sending_jobs import JobStateError, SendingJobRunner, create_job

router = APIRouter(prefix="/api/sending-jobs", tags=["sending-jobs"])


class SendingJobCreate(BaseModel):
    tenant_id: int
    product_ids: list[int] = Field(..., min_length=1)
    group_ids: list[int] = Field(..., min_length=1)
    template: Optional[str] = None


class SendingJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    status: str
    current_index: int
    processed_items: int
    total_items: int
    sent_count: int
    error_count: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


def _get_job(db: Session, job_id: int) -> SendingJob:
    job = db.query(SendingJob).filter(SendingJob.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Envio não encontrado")
    return job


@router.post("", response_model=SendingJobRead, status_code=201)
def create_sending_job(payload: SendingJobCreate, db: Session = Depends(get_db)):
    return create_job(
        db,
        tenant_id=payload.tenant_id,
        product_ids=payload.product_ids,
        group_ids=payload.group_ids,
        template=payload.template,
    )


@router.get("/{job_id}", response_model=SendingJobRead)
def read_sending_job(job_id: int, db: Session = Depends(get_db)):
    return _get_job(db, job_id)


@router.post("/{job_id}/start", response_model=SendingJobRead, status_code=202)
async def start_sending_job(
    job_id: int,
    db: Session = Depends(get_db),
    runner: SendingJobRunner = Depends(get_job_runner),
):
    _get_job(db, job_id)
    try:
        return runner.start(db, job_id)
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/{job_id}/pause", response_model=SendingJobRead)
async def pause_sending_job(
    job_id: int,
    db: Session = Depends(get_db),
    runner: SendingJobRunner = Depends(get_job_runner),
):
    _get_job(db, job_id)
    try:
        return runner.pause(db, job_id)
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/{job_id}/cancel", response_model=SendingJobRead)
async def cancel_sending_job(
    job_id: int,
    db: Session = Depends(get_db),
    runner: SendingJobRunner = Depends(get_job_runner),
):
    _get_job(db, job_id)
    try:
        return runner.cancel(db, job_id)
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
