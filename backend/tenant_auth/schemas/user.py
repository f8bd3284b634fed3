"""
Pydantic schemas for user profiles, sessions and platform administration
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from tenant_auth.models.role_assignment import PlatformRole
from tenant_auth.models.tenant import TenantRole


class UserResponse(BaseModel):
    """Schema for user API responses"""

    id: UUID
    email: str
    name: Optional[str] = None
    email_verified: bool
    is_active: bool
    has_password: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MembershipSummary(BaseModel):
    tenant_id: UUID
    tenant_name: str
    tenant_slug: str
    role: TenantRole


class UserProfile(UserResponse):
    """Profile of the authenticated user"""

    memberships: List[MembershipSummary] = Field(default_factory=list)
    platform_roles: List[PlatformRole] = Field(default_factory=list)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255, description="Display name")


class SessionResponse(BaseModel):
    """An active refresh-token session"""

    id: UUID
    tenant_id: Optional[UUID] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class RoleGrant(BaseModel):
    role: PlatformRole = Field(..., description="Platform role to grant")


class PlatformMetrics(BaseModel):
    users_count: int
    tenants_count: int
    active_sessions: int
