from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import relationship

from zapcart.core.database import Base


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    event_type = Column(String(20), nullable=False)  # BAZAR / LIVE
    event_date = Column(Date, nullable=False)
    status = Column(String(20), default="OPEN", nullable=False)  # OPEN / CLOSED
    # tenant:telefone:tipo:data enquanto for o carrinho aberto utilizável do bucket
    active_key = Column(String(200), unique=True, nullable=True)
    whatsapp_group_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan")


Index(
    "ix_carts_bucket",
    Cart.tenant_id,
    Cart.customer_phone,
    Cart.event_type,
    Cart.event_date,
    Cart.status,
)
