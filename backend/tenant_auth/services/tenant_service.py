"""
Tenant lifecycle, memberships and the tenant dashboard
"""

import logging
import re
import unicodedata
import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import Uuid, bindparam, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenant_auth.core.exceptions import Conflict, NotFound
from tenant_auth.models import AuditLog, Tenant, TenantRole, User, UserTenant
from tenant_auth.models.user import normalize_email

logger = logging.getLogger(__name__)

_SLUG_MAX_LENGTH = 90

_ORDER_METRICS_SQL = text(
    "SELECT COUNT(*) AS orders_count, COALESCE(SUM(total), 0) AS revenue "
    "FROM orders WHERE tenant_id = :tenant_id"
).bindparams(bindparam("tenant_id", type_=Uuid(as_uuid=True)))


def slugify(value: str) -> str:
    """
    Lower-case ASCII slug: runs of anything but letters and digits become one dash
    """
    value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return value[:_SLUG_MAX_LENGTH].strip("-")


def generate_unique_tenant_slug(db: Session, base: str) -> str:
    """
    First free slug among base, base-1, base-2, ...
    """
    slug_base = slugify(base) or "tenant"
    unique = slug_base
    i = 1
    while db.query(Tenant.id).filter(Tenant.slug == unique).first() is not None:
        unique = f"{slug_base}-{i}"
        i += 1
    return unique


def create_tenant(
    db: Session,
    owner: User,
    name: str,
    slug: Optional[str] = None,
) -> Tuple[Tenant, UserTenant]:
    """
    Create a tenant and make the owner its TENANT_ADMIN; the caller commits
    """
    tenant = Tenant(name=name, slug=generate_unique_tenant_slug(db, slug or name))
    db.add(tenant)
    db.flush()

    membership = UserTenant(user_id=owner.id, tenant_id=tenant.id, role=TenantRole.TENANT_ADMIN)
    db.add(membership)
    db.flush()

    logger.info(f"Created tenant {tenant.slug} owned by {owner.id}")
    return tenant, membership


def get_tenant(db: Session, tenant_id: uuid.UUID) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    return tenant


def list_user_tenants(db: Session, user_id: uuid.UUID) -> List[Tuple[Tenant, TenantRole]]:
    rows = (
        db.query(Tenant, UserTenant.role)
        .join(UserTenant, UserTenant.tenant_id == Tenant.id)
        .filter(UserTenant.user_id == user_id)
        .order_by(UserTenant.created_at.asc())
        .all()
    )
    return [(tenant, role) for tenant, role in rows]


def list_tenants(db: Session, page: int = 1, per_page: int = 50) -> Tuple[List[Tenant], int]:
    query = db.query(Tenant)
    total = query.count()
    tenants = (
        query.order_by(Tenant.created_at.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return tenants, total


def list_members(db: Session, tenant_id: uuid.UUID) -> List[Tuple[UserTenant, User]]:
    return (
        db.query(UserTenant, User)
        .join(User, User.id == UserTenant.user_id)
        .filter(UserTenant.tenant_id == tenant_id)
        .order_by(UserTenant.created_at.asc())
        .all()
    )


def _count_admins(db: Session, tenant_id: uuid.UUID) -> int:
    return (
        db.query(UserTenant)
        .filter(UserTenant.tenant_id == tenant_id, UserTenant.role == TenantRole.TENANT_ADMIN)
        .count()
    )


def _get_member(db: Session, tenant_id: uuid.UUID, user_id: uuid.UUID) -> UserTenant:
    membership = (
        db.query(UserTenant)
        .filter(UserTenant.tenant_id == tenant_id, UserTenant.user_id == user_id)
        .first()
    )
    if membership is None:
        raise NotFound("Member not found")
    return membership


def add_member(
    db: Session,
    tenant_id: uuid.UUID,
    email: str,
    role: TenantRole,
    actor: User,
) -> Tuple[UserTenant, User]:
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        raise NotFound("User not found")

    existing = (
        db.query(UserTenant)
        .filter(UserTenant.tenant_id == tenant_id, UserTenant.user_id == user.id)
        .first()
    )
    if existing is not None:
        raise Conflict("User is already a member of tenant")

    membership = UserTenant(user_id=user.id, tenant_id=tenant_id, role=role)
    db.add(membership)
    AuditLog.record(
        db,
        "tenant_member_added",
        user_id=actor.id,
        meta={"tenant_id": str(tenant_id), "member_id": str(user.id), "role": role.value},
    )
    db.commit()
    return membership, user


def change_member_role(
    db: Session,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    role: TenantRole,
    actor: User,
) -> UserTenant:
    membership = _get_member(db, tenant_id, user_id)
    if (
        membership.role == TenantRole.TENANT_ADMIN
        and role != TenantRole.TENANT_ADMIN
        and _count_admins(db, tenant_id) <= 1
    ):
        raise Conflict("Tenant must keep at least one TENANT_ADMIN")

    previous = membership.role
    membership.role = role
    AuditLog.record(
        db,
        "tenant_member_role_changed",
        user_id=actor.id,
        meta={
            "tenant_id": str(tenant_id),
            "member_id": str(user_id),
            "from": previous.value,
            "to": role.value,
        },
    )
    db.commit()
    return membership


def remove_member(db: Session, tenant_id: uuid.UUID, user_id: uuid.UUID, actor: User) -> None:
    membership = _get_member(db, tenant_id, user_id)
    if membership.role == TenantRole.TENANT_ADMIN and _count_admins(db, tenant_id) <= 1:
        raise Conflict("Tenant must keep at least one TENANT_ADMIN")

    db.delete(membership)
    AuditLog.record(
        db,
        "tenant_member_removed",
        user_id=actor.id,
        meta={"tenant_id": str(tenant_id), "member_id": str(user_id)},
    )
    db.commit()


def tenant_dashboard(db: Session, tenant_id: uuid.UUID) -> Dict[str, object]:
    """
    Headline metrics for a tenant

    Order figures come from a raw query over the orders table; when that
    query fails (e.g. the table is not provisioned) they read as zero.
    """
    users_count = db.query(func.count(UserTenant.id)).filter(UserTenant.tenant_id == tenant_id).scalar() or 0

    orders_count = 0
    revenue = Decimal("0")
    try:
        row = db.execute(_ORDER_METRICS_SQL, {"tenant_id": tenant_id}).one()
        orders_count = int(row.orders_count or 0)
        revenue = Decimal(str(row.revenue or 0)).quantize(Decimal("0.01"))
    except SQLAlchemyError as e:
        logger.warning(f"Order metrics unavailable for tenant {tenant_id}: {e}")
        db.rollback()

    return {"ordersCount": orders_count, "usersCount": users_count, "revenue": float(revenue)}
