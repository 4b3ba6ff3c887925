from __future__ import annotations

import asyncio

import pytest

from zapcart.models.enums import JobStatus
from zapcart.models.sending_job import SendingJob
from zapcart.models.whatsapp_group import WhatsAppGroup
from zapcart.services.pacing import OutboundPacer
from zapcart.services.sending_jobs import JobStateError, SendingJobRunner, build_targets, create_job
from zapcart.services.whatsapp_outbound import OutboundSender
from zapcart.whatsapp.service import WhatsAppService


class PausingSender(OutboundSender):
    """Pausa o envio logo depois do primeiro disparo."""

    def __init__(self, *, runner_ref: list, session_factory, job_id_ref: list, **kwargs) -> None:
        super().__init__(**kwargs)
        self.runner_ref = runner_ref
        self.session_factory = session_factory
        self.job_id_ref = job_id_ref
        self.calls = 0

    async def send_broadcast(self, db, **kwargs) -> bool:
        self.calls += 1
        sent = await super().send_broadcast(db, **kwargs)
        if self.calls == 1:
            other = self.session_factory()
            try:
                self.runner_ref[0].pause(other, self.job_id_ref[0])
            finally:
                other.close()
        return sent


@pytest.fixture
def catalog(db, tenant, make_product):
    products = [make_product(tenant.id, "C100", color="Azul", size="M"), make_product(tenant.id, "C200")]
    group = db.query(WhatsAppGroup).filter(WhatsAppGroup.tenant_id == tenant.id).one()
    return products, group


def test_targets_are_product_major() -> None:
    assert build_targets({"product_ids": [1, 2], "group_ids": [10, 20]}) == [(1, 10), (1, 20), (2, 10), (2, 20)]
    assert build_targets({}) == []


def test_job_runs_to_completion(db, tenant, catalog, sender, mock_provider, session_factory) -> None:
    products, group = catalog
    job = create_job(db, tenant_id=tenant.id, product_ids=[p.id for p in products], group_ids=[group.id])
    runner = SendingJobRunner(sender=sender, session_factory=session_factory)

    runner.mark_running(db, job.id)
    asyncio.run(runner.run(job.id))

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    assert job.total_items == 2
    assert job.processed_items == 2
    assert job.sent_count == 2
    assert job.error_count == 0
    assert [sent["to"] for sent in mock_provider.sent] == [group.chat_id, group.chat_id]
    assert "Azul" in mock_provider.sent[0]["text"]


def test_pause_checkpoints_and_resume_continues(db, tenant, catalog, pacer, mock_provider, session_factory) -> None:
    products, group = catalog
    job = create_job(db, tenant_id=tenant.id, product_ids=[p.id for p in products], group_ids=[group.id])
    runner_ref: list = []
    sender = PausingSender(
        runner_ref=runner_ref,
        session_factory=session_factory,
        job_id_ref=[job.id],
        pacer=pacer,
        whatsapp=WhatsAppService(zapi_provider=mock_provider, mock_provider=mock_provider),
    )
    runner = SendingJobRunner(sender=sender, session_factory=session_factory)
    runner_ref.append(runner)

    runner.mark_running(db, job.id)
    asyncio.run(runner.run(job.id))

    db.refresh(job)
    assert job.status == JobStatus.PAUSED.value
    assert job.current_index == 1
    assert len(mock_provider.sent) == 1

    runner.mark_running(db, job.id)
    asyncio.run(runner.run(job.id))

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    assert job.sent_count == 2
    assert len(mock_provider.sent) == 2


def test_pause_during_delay_cancels_the_task(db, tenant, catalog, mock_provider, session_factory) -> None:
    products, group = catalog
    job = create_job(db, tenant_id=tenant.id, product_ids=[p.id for p in products], group_ids=[group.id])

    async def never_wakes(seconds: float) -> None:
        await asyncio.Event().wait()

    sender = OutboundSender(
        pacer=OutboundPacer(sleep=never_wakes, enabled=True),
        whatsapp=WhatsAppService(zapi_provider=mock_provider, mock_provider=mock_provider),
    )
    runner = SendingJobRunner(sender=sender, session_factory=session_factory)

    async def scenario() -> asyncio.Task:
        runner.start(db, job.id)
        task = runner._tasks[job.id]
        for _ in range(5):
            await asyncio.sleep(0)
        runner.pause(db, job.id)
        with pytest.raises(asyncio.CancelledError):
            await task
        return task

    task = asyncio.run(scenario())

    assert task.cancelled()
    db.expire_all()
    stored = db.query(SendingJob).filter(SendingJob.id == job.id).one()
    assert stored.status == JobStatus.PAUSED.value
    assert stored.current_index == 0
    assert mock_provider.sent == []
    assert job.id not in runner._tasks


def test_cancelled_job_cannot_be_started(db, tenant, catalog, sender, session_factory) -> None:
    products, group = catalog
    job = create_job(db, tenant_id=tenant.id, product_ids=[products[0].id], group_ids=[group.id])
    runner = SendingJobRunner(sender=sender, session_factory=session_factory)

    cancelled = runner.cancel(db, job.id)

    assert cancelled.status == JobStatus.CANCELLED.value
    with pytest.raises(JobStateError):
        runner.mark_running(db, job.id)


def test_missing_group_counts_as_error(db, tenant, catalog, sender, mock_provider, session_factory) -> None:
    products, _ = catalog
    job = create_job(db, tenant_id=tenant.id, product_ids=[products[0].id], group_ids=[9999])
    runner = SendingJobRunner(sender=sender, session_factory=session_factory)

    runner.mark_running(db, job.id)
    asyncio.run(runner.run(job.id))

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    assert job.error_count == 1
    assert mock_provider.sent == []
