"""
FastAPI dependencies for authentication and role-based access control
"""

import uuid
from typing import Callable, Iterable, Optional, Sequence, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from tenant_auth.core.database import get_db
from tenant_auth.core.exceptions import PermissionDenied, TokenInvalid
from tenant_auth.models import PlatformRole, TenantRole, User, UserTenant
from tenant_auth.services import rbac_service, token_service
from tenant_auth.services.auth_service import ClientInfo
from tenant_auth.services.rate_limit import API_LIMIT, RateLimiter

_bearer_scheme = HTTPBearer(auto_error=False)


def get_client_info(request: Request) -> ClientInfo:
    """
    Caller address and user agent

    The address is the socket peer. X-Forwarded-For only reaches it through
    ProxyHeadersMiddleware, for proxies listed in FORWARDED_ALLOW_IPS.
    """
    ip = request.client.host if request.client else None
    return ClientInfo(ip=ip, user_agent=request.headers.get("user-agent"))


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the user behind the bearer access token

    The verified claims are kept on request.state.token_claims.
    """
    if credentials is None or not credentials.credentials:
        raise TokenInvalid("Missing token")

    payload = token_service.decode_access_token(credentials.credentials)
    user = db.get(User, uuid.UUID(payload["sub"]))
    if user is None or not user.is_active:
        raise TokenInvalid("Invalid token")

    request.state.token_claims = payload
    return user


def require_role(role: str) -> Callable[..., User]:
    """Check a role embedded in the access token"""

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        roles = request.state.token_claims.get("roles") or []
        if role not in roles:
            raise PermissionDenied("Forbidden")
        return user

    return dependency


def require_platform_role(*roles: PlatformRole) -> Callable[..., User]:
    """Check platform role assignments in the database"""

    def dependency(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> User:
        if not rbac_service.has_platform_role(db, user.id, *roles):
            raise PermissionDenied("Forbidden")
        return user

    return dependency


def require_tenant_role(
    roles: Union[Sequence[TenantRole], str] = "any",
    tenant_id_param: str = "tenant_id",
) -> Callable[..., UserTenant]:
    """
    Require membership of the tenant named in the path (or query string)

    Args:
        roles: Allowed tenant roles, or "any" for any member
        tenant_id_param: Name of the path/query parameter carrying the tenant id

    The membership is stored on request.state.tenant_membership.
    """
    allowed: Optional[Iterable[TenantRole]] = None if roles == "any" else tuple(roles)

    def dependency(
        request: Request,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> UserTenant:
        raw = request.path_params.get(tenant_id_param) or request.query_params.get(tenant_id_param)
        if not raw:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing tenantId")
        try:
            tenant_id = uuid.UUID(str(raw))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid tenantId")

        membership = rbac_service.get_membership(db, user.id, tenant_id)
        if membership is None:
            raise PermissionDenied("Not a member of tenant")
        if allowed is not None and membership.role not in allowed:
            raise PermissionDenied("Insufficient role")

        request.state.tenant_membership = membership
        return membership

    return dependency


def rate_limit(request: Request, db: Session = Depends(get_db)) -> None:
    """Per-client request budget for the auth endpoints"""
    client = get_client_info(request)
    RateLimiter(db).hit(API_LIMIT, client.ip or "unknown")
