from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, func

from zapcart.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    # Um pedido por carrinho
    cart_id = Column(Integer, ForeignKey("carts.id"), unique=True, nullable=True)
    customer_phone = Column(String(30), nullable=False)
    event_type = Column(String(20), nullable=False)
    event_date = Column(Date, nullable=False)

    is_paid = Column(Boolean, default=False, nullable=False)
    is_cancelled = Column(Boolean, default=False, nullable=False)
    # Sempre recalculado a partir dos itens do carrinho
    total_amount = Column(Numeric(10, 2), default=0, nullable=False)

    item_added_delivered = Column(Boolean, default=False, nullable=False)
    payment_confirmation_delivered = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_open(self) -> bool:
        return not self.is_paid and not self.is_cancelled


Index("ix_orders_bucket", Order.tenant_id, Order.customer_phone, Order.event_type, Order.event_date)
