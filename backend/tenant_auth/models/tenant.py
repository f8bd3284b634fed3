"""
Tenant and tenant membership models
"""

from sqlalchemy import Column, String, Boolean, ForeignKey, Enum, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship, validates
import enum
import re

from tenant_auth.models.base import BaseModel

SLUG_PATTERN = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')


class TenantRole(str, enum.Enum):
    """Roles a user can hold inside one tenant"""
    TENANT_ADMIN = "TENANT_ADMIN"
    TEAM_MEMBER = "TEAM_MEMBER"
    CUSTOMER = "CUSTOMER"


class Tenant(BaseModel):
    """
    Tenant (customer organisation) owning its own users and data
    """
    __tablename__ = "tenants"

    name = Column(
        String(255),
        nullable=False,
        comment="Display name"
    )

    slug = Column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="URL-safe unique identifier"
    )

    is_active = Column(
        Boolean,
        default=True,
        nullable=False,
        comment="Whether the tenant is active"
    )

    memberships = relationship("UserTenant", back_populates="tenant", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="tenant", cascade="all, delete-orphan")

    @validates('slug')
    def validate_slug(self, key: str, slug: str) -> str:
        if not slug or not SLUG_PATTERN.match(slug):
            raise ValueError("Invalid tenant slug format")
        return slug

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug='{self.slug}')>"


class UserTenant(BaseModel):
    """
    Membership of a user in a tenant with a tenant-scoped role
    """
    __tablename__ = "user_tenants"
    __table_args__ = (
        UniqueConstraint('user_id', 'tenant_id', name='uq_user_tenant'),
    )

    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    tenant_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('tenants.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    role = Column(
        Enum(TenantRole, name="tenant_role", native_enum=False, length=32),
        nullable=False,
        default=TenantRole.CUSTOMER,
        comment="Role within the tenant"
    )

    user = relationship("User", back_populates="memberships")
    tenant = relationship("Tenant", back_populates="memberships")

    def __repr__(self) -> str:
        return f"<UserTenant(user_id={self.user_id}, tenant_id={self.tenant_id}, role={self.role})>"
