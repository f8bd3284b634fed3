"""
Endpoints for the signed-in user: profile, password and sessions
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from tenant_auth.api.deps import get_client_info, get_current_user
from tenant_auth.core.database import get_db
from tenant_auth.models import AuditLog, User
from tenant_auth.schemas.auth import ChangePasswordRequest, MessageResponse
from tenant_auth.schemas.user import MembershipSummary, SessionResponse, UserProfile, UserResponse, UserUpdate
from tenant_auth.services import rbac_service, tenant_service, token_service
from tenant_auth.services.auth_service import AuthService, ClientInfo

router = APIRouter()


def _profile(db: Session, user: User) -> UserProfile:
    memberships = [
        MembershipSummary(tenant_id=tenant.id, tenant_name=tenant.name, tenant_slug=tenant.slug, role=role)
        for tenant, role in tenant_service.list_user_tenants(db, user.id)
    ]
    return UserProfile(
        **UserResponse.model_validate(user).model_dump(),
        memberships=memberships,
        platform_roles=rbac_service.get_platform_roles(db, user.id),
    )


@router.get("/me", response_model=UserProfile)
def read_me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Profile of the caller with tenant memberships and platform roles"""
    return _profile(db, user)


@router.patch("/me", response_model=UserProfile)
def update_me(
    payload: UserUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.name is not None:
        user.name = payload.name.strip() or None
        db.commit()
    return _profile(db, user)


@router.post("/me/password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """
    Change the caller's password

    Every other session is revoked. The session the access token was
    minted with stays signed in, following any refreshes since.
    """
    sid = request.state.token_claims.get("sid")
    keep_session_id = token_service.latest_in_chain(db, user.id, UUID(sid)) if sid else None

    AuthService(db).change_password(
        user,
        payload.current_password,
        payload.new_password,
        keep_session_id=keep_session_id,
        client=client,
    )
    return MessageResponse(message="Password updated")


@router.get("/me/sessions", response_model=List[SessionResponse])
def list_sessions(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return token_service.list_active_sessions(db, user.id)


@router.delete("/me/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_session(
    session_id: UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    token_service.revoke_session(db, user.id, session_id)
    AuditLog.record(db, "session_revoked", user_id=user.id, meta={"session_id": str(session_id)}, ip=client.ip)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
