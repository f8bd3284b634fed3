"""
Pydantic schemas for tenants, memberships and the tenant dashboard
"""

from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from tenant_auth.models.tenant import TenantRole


class TenantCreate(BaseModel):
    """Schema for creating a tenant"""

    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    slug: Optional[str] = Field(
        None,
        max_length=100,
        description="Preferred slug; derived from the name when omitted"
    )


class TenantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class TenantResponse(BaseModel):
    """Schema for tenant API responses"""

    id: UUID
    name: str
    slug: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TenantMembershipResponse(TenantResponse):
    """Tenant as seen by one of its members"""

    role: TenantRole = Field(..., description="The caller's role in the tenant")


class TenantList(BaseModel):
    """Schema for paginated tenant list responses"""

    tenants: List[TenantResponse] = Field(..., description="List of tenants")
    total: int = Field(..., description="Total number of tenants")
    page: int = Field(1, description="Current page number")
    per_page: int = Field(50, description="Items per page")
    has_next: bool = Field(False, description="Whether there are more pages")
    has_prev: bool = Field(False, description="Whether there are previous pages")


class MemberAdd(BaseModel):
    """Add an existing user to a tenant"""

    email: EmailStr = Field(..., description="Email of the user to add")
    role: TenantRole = Field(TenantRole.TEAM_MEMBER, description="Role within the tenant")


class MemberUpdate(BaseModel):
    role: TenantRole = Field(..., description="New role within the tenant")


class MemberResponse(BaseModel):
    user_id: UUID
    email: str
    name: Optional[str] = None
    role: TenantRole
    joined_at: datetime


class DashboardMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    orders_count: int = Field(0, alias="ordersCount")
    users_count: int = Field(0, alias="usersCount")
    revenue: float = Field(0.0, description="Sum of order totals")


class DashboardResponse(BaseModel):
    tenant_id: UUID
    metrics: DashboardMetrics
