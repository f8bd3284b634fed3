"""
Platform-wide role assignments
"""

from sqlalchemy import Column, String, ForeignKey, Enum, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import enum

from tenant_auth.models.base import BaseModel

PLATFORM_SCOPE = "platform"


class PlatformRole(str, enum.Enum):
    """Roles that apply across every tenant"""
    PLATFORM_ADMIN = "PLATFORM_ADMIN"


class RoleAssignment(BaseModel):
    """
    Role granted to a user outside of any single tenant
    """
    __tablename__ = "role_assignments"
    __table_args__ = (
        UniqueConstraint('user_id', 'role', 'scope', name='uq_role_assignment'),
    )

    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    role = Column(
        Enum(PlatformRole, name="platform_role", native_enum=False, length=32),
        nullable=False
    )

    scope = Column(
        String(50),
        nullable=False,
        default=PLATFORM_SCOPE,
        comment="Assignment scope; only 'platform' is issued today"
    )

    user = relationship("User", back_populates="role_assignments")
