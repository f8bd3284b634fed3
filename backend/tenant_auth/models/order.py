"""
Tenant orders, read by the tenant dashboard
"""

from sqlalchemy import Column, String, Numeric, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from tenant_auth.models.base import BaseModel


class Order(BaseModel):
    __tablename__ = "orders"

    tenant_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('tenants.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    total = Column(
        Numeric(12, 2),
        nullable=False,
        default=0,
        comment="Order total in the tenant currency"
    )

    status = Column(String(50), nullable=False, default="completed")

    tenant = relationship("Tenant", back_populates="orders")
