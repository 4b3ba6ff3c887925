from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func

from zapcart.core.database import Base


class PendingConfirmation(Base):
    __tablename__ = "pending_confirmations"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    checkout_url = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending / sending / confirmed / expired
    # UTC sem tzinfo
    expires_at = Column(DateTime, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
