from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, func

from zapcart.core.database import Base


class WhatsAppIntegration(Base):
    __tablename__ = "whatsapp_integrations"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    provider = Column(String(20), default="zapi", nullable=False)  # zapi / mock
    instance_id = Column(String(120), nullable=True)
    token = Column(String(255), nullable=True)
    client_token = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Chaves por tipo de mensagem automática
    send_item_added_msg = Column(Boolean, default=True, nullable=False)
    send_out_of_stock_msg = Column(Boolean, default=True, nullable=False)
    send_product_canceled_msg = Column(Boolean, default=True, nullable=False)
    send_paid_order_msg = Column(Boolean, default=True, nullable=False)

    confirmation_flow_enabled = Column(Boolean, default=False, nullable=False)
    checkout_base_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


Index("ix_whatsapp_integrations_instance", WhatsAppIntegration.instance_id)
