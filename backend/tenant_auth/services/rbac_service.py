"""
Role lookups for platform-scoped and tenant-scoped access control
"""

import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from tenant_auth.models import PLATFORM_SCOPE, PlatformRole, RoleAssignment, UserTenant


def get_platform_roles(db: Session, user_id: uuid.UUID) -> List[PlatformRole]:
    assignments = (
        db.query(RoleAssignment)
        .filter(RoleAssignment.user_id == user_id, RoleAssignment.scope == PLATFORM_SCOPE)
        .all()
    )
    return [a.role for a in assignments]


def has_platform_role(db: Session, user_id: uuid.UUID, *roles: PlatformRole) -> bool:
    return any(role in roles for role in get_platform_roles(db, user_id))


def get_membership(db: Session, user_id: uuid.UUID, tenant_id: uuid.UUID) -> Optional[UserTenant]:
    return (
        db.query(UserTenant)
        .filter(UserTenant.user_id == user_id, UserTenant.tenant_id == tenant_id)
        .first()
    )


def get_default_membership(db: Session, user_id: uuid.UUID) -> Optional[UserTenant]:
    """Oldest membership; used as the tenant context when login names none"""
    return (
        db.query(UserTenant)
        .filter(UserTenant.user_id == user_id)
        .order_by(UserTenant.created_at.asc())
        .first()
    )


def roles_for_context(db: Session, user_id: uuid.UUID, tenant_id: Optional[uuid.UUID]) -> List[str]:
    """
    Roles embedded in an access token: platform roles plus the tenant role
    held in tenant_id, if any
    """
    roles = [role.value for role in get_platform_roles(db, user_id)]
    if tenant_id is not None:
        membership = get_membership(db, user_id, tenant_id)
        if membership is not None:
            roles.append(membership.role.value)
    return roles


def grant_platform_role(db: Session, user_id: uuid.UUID, role: PlatformRole) -> RoleAssignment:
    existing = (
        db.query(RoleAssignment)
        .filter(
            RoleAssignment.user_id == user_id,
            RoleAssignment.role == role,
            RoleAssignment.scope == PLATFORM_SCOPE,
        )
        .first()
    )
    if existing is not None:
        return existing
    assignment = RoleAssignment(user_id=user_id, role=role, scope=PLATFORM_SCOPE)
    db.add(assignment)
    db.flush()
    return assignment


def revoke_platform_role(db: Session, user_id: uuid.UUID, role: PlatformRole) -> bool:
    deleted = (
        db.query(RoleAssignment)
        .filter(
            RoleAssignment.user_id == user_id,
            RoleAssignment.role == role,
            RoleAssignment.scope == PLATFORM_SCOPE,
        )
        .delete(synchronize_session=False)
    )
    return deleted > 0
