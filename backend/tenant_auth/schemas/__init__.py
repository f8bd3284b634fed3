"""
Pydantic schemas for API request/response validation
"""

from .auth import (
    SignupRequest, LoginRequest, RefreshRequest, SwitchTenantRequest, EmailRequest,
    ResetPasswordRequest, ChangePasswordRequest, TokenResponse, MessageResponse
)
from .tenant import (
    TenantCreate, TenantUpdate, TenantResponse, TenantMembershipResponse, TenantList,
    MemberAdd, MemberUpdate, MemberResponse, DashboardMetrics, DashboardResponse
)
from .user import (
    UserResponse, MembershipSummary, UserProfile, UserUpdate, SessionResponse,
    RoleGrant, PlatformMetrics
)

__all__ = [
    # Auth schemas
    "SignupRequest", "LoginRequest", "RefreshRequest", "SwitchTenantRequest", "EmailRequest",
    "ResetPasswordRequest", "ChangePasswordRequest", "TokenResponse", "MessageResponse",
    # Tenant schemas
    "TenantCreate", "TenantUpdate", "TenantResponse", "TenantMembershipResponse", "TenantList",
    "MemberAdd", "MemberUpdate", "MemberResponse", "DashboardMetrics", "DashboardResponse",
    # User schemas
    "UserResponse", "MembershipSummary", "UserProfile", "UserUpdate", "SessionResponse",
    "RoleGrant", "PlatformMetrics"
]
