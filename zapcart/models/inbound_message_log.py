from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func

from zapcart.core.database import Base


class InboundMessageLog(Base):
    __tablename__ = "inbound_message_log"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    phone = Column(String(30), nullable=False)
    group_name = Column(String(255), nullable=True)
    provider_message_id = Column(String(120), nullable=True)
    text = Column(Text, nullable=False)
    results_json = Column(Text, default="[]", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


Index("ix_inbound_message_log_tenant_created", InboundMessageLog.tenant_id, InboundMessageLog.created_at)
