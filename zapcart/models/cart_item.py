from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from zapcart.core.database import Base


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    # Cópia do produto no momento da inclusão
    product_code = Column(String(40), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_image_url = Column(Text, nullable=True)
    unit_price = Column(Numeric(10, 2), nullable=False)

    qty = Column(Integer, default=1, nullable=False)
    # UTC sem tzinfo; base da janela de duplicidade
    last_added_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    cart = relationship("Cart", back_populates="items")
