"""
Database models package
"""

from .base import Base, BaseModel
from .user import User
from .tenant import Tenant, UserTenant, TenantRole
from .role_assignment import RoleAssignment, PlatformRole, PLATFORM_SCOPE
from .token import RefreshToken, EmailToken, EmailTokenType
from .oauth_account import OAuthAccount
from .audit_log import AuditLog
from .order import Order
from .rate_limit import RateLimitTracker

__all__ = [
    "Base", "BaseModel", "User", "Tenant", "UserTenant", "TenantRole",
    "RoleAssignment", "PlatformRole", "PLATFORM_SCOPE",
    "RefreshToken", "EmailToken", "EmailTokenType",
    "OAuthAccount", "AuditLog", "Order", "RateLimitTracker"
]
