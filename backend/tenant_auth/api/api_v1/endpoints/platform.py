"""
Platform administration endpoints, open to PLATFORM_ADMIN only
"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from uuid import UUID
import logging

from tenant_auth.api.deps import get_client_info, require_platform_role
from tenant_auth.core.database import get_db
from tenant_auth.core.exceptions import NotFound
from tenant_auth.models import AuditLog, PlatformRole, RefreshToken, Tenant, User
from tenant_auth.models.base import utcnow
from tenant_auth.schemas.auth import MessageResponse
from tenant_auth.schemas.tenant import TenantList, TenantResponse
from tenant_auth.schemas.user import PlatformMetrics, RoleGrant
from tenant_auth.services import rbac_service, token_service
from tenant_auth.services.auth_service import ClientInfo
from tenant_auth.services.tenant_service import list_tenants

logger = logging.getLogger(__name__)

require_platform_admin = require_platform_role(PlatformRole.PLATFORM_ADMIN)

router = APIRouter(dependencies=[Depends(require_platform_admin)])


def _get_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.get("/tenants", response_model=TenantList)
def all_tenants(
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
):
    """Every tenant on the platform, oldest first"""
    tenants, total = list_tenants(db, page=page, per_page=per_page)
    return TenantList(
        tenants=[TenantResponse.model_validate(t) for t in tenants],
        total=total,
        page=page,
        per_page=per_page,
        has_next=page * per_page < total,
        has_prev=page > 1,
    )


@router.get("/metrics", response_model=PlatformMetrics)
def platform_metrics(db: Session = Depends(get_db)):
    active_sessions = (
        db.query(RefreshToken)
        .filter(RefreshToken.revoked.is_(False), RefreshToken.expires_at > utcnow())
        .count()
    )
    return PlatformMetrics(
        users_count=db.query(User).count(),
        tenants_count=db.query(Tenant).count(),
        active_sessions=active_sessions,
    )


@router.post("/users/{user_id}/roles", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def grant_role(
    user_id: UUID,
    payload: RoleGrant,
    admin: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    user = _get_user(db, user_id)
    rbac_service.grant_platform_role(db, user.id, payload.role)
    AuditLog.record(
        db, "platform_role_granted", user_id=admin.id,
        meta={"target": str(user.id), "role": payload.role.value}, ip=client.ip,
    )
    db.commit()
    logger.info(f"{payload.role.value} granted to user {user.id} by {admin.id}")
    return MessageResponse(message=f"Granted {payload.role.value}")


@router.delete("/users/{user_id}/roles/{role}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_role(
    user_id: UUID,
    role: PlatformRole,
    admin: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    user = _get_user(db, user_id)
    if not rbac_service.revoke_platform_role(db, user.id, role):
        raise NotFound("Role not assigned")
    AuditLog.record(
        db, "platform_role_revoked", user_id=admin.id,
        meta={"target": str(user.id), "role": role.value}, ip=client.ip,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/users/{user_id}/disable", response_model=MessageResponse)
def disable_user(
    user_id: UUID,
    admin: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Disable an account and revoke all of its sessions"""
    user = _get_user(db, user_id)
    user.is_active = False
    revoked = token_service.revoke_all_for_user(db, user.id)
    AuditLog.record(
        db, "user_disabled", user_id=admin.id,
        meta={"target": str(user.id), "sessions_revoked": revoked}, ip=client.ip,
    )
    db.commit()
    return MessageResponse(message=f"User disabled, {revoked} sessions revoked")
