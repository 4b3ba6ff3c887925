from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func

from zapcart.core.database import Base


class WhatsAppGroup(Base):
    __tablename__ = "whatsapp_groups"
    __table_args__ = (UniqueConstraint("tenant_id", "group_name", name="uq_whatsapp_groups_tenant_name"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    group_name = Column(String(255), nullable=False, index=True)
    # Identificador do chat no provedor, usado como destino nos envios em massa
    chat_id = Column(String(120), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
