import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from zapcart.core.database import Base


class SendingJob(Base):
    __tablename__ = "sending_jobs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    status = Column(String(20), default="pending", nullable=False)
    # {"product_ids": [...], "group_ids": [...], "template": "..."}
    job_data = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False)

    # Checkpoint para retomada
    current_index = Column(Integer, default=0, nullable=False)
    processed_items = Column(Integer, default=0, nullable=False)
    total_items = Column(Integer, default=0, nullable=False)
    sent_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
