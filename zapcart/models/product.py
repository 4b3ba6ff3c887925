from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func

from zapcart.core.database import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uq_products_tenant_code"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    code = Column(String(40), nullable=False)  # C<dígitos>
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    sale_type = Column(String(20), default="BAZAR", nullable=False)  # BAZAR / LIVE
    image_url = Column(Text, nullable=True)
    color = Column(String(60), nullable=True)
    size = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
