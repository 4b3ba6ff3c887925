from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func

from zapcart.core.database import Base


class OutboundMessageRecord(Base):
    __tablename__ = "outbound_messages"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    phone = Column(String(30), nullable=False)
    message_type = Column(String(40), nullable=False)
    message = Column(Text, nullable=False)
    delivery_status = Column(String(20), nullable=False)  # SENT / FAILED / RECEIVED / READ / PLAYED
    provider_message_id = Column(String(120), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


Index("ix_outbound_messages_provider_id", OutboundMessageRecord.provider_message_id)
Index("ix_outbound_messages_tenant_created", OutboundMessageRecord.tenant_id, OutboundMessageRecord.created_at)
