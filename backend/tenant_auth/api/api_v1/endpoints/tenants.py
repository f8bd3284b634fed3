"""
Tenant management and tenant dashboard endpoints
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
import logging

from tenant_auth.api.deps import get_current_user, require_tenant_role
from tenant_auth.core.database import get_db
from tenant_auth.models import AuditLog, Tenant, TenantRole, User, UserTenant
from tenant_auth.schemas.tenant import (
    DashboardMetrics,
    DashboardResponse,
    MemberAdd,
    MemberResponse,
    MemberUpdate,
    TenantCreate,
    TenantMembershipResponse,
    TenantUpdate,
)
from tenant_auth.services import tenant_service

logger = logging.getLogger(__name__)

router = APIRouter()

require_member = require_tenant_role("any")
require_admin = require_tenant_role([TenantRole.TENANT_ADMIN])


def _tenant_response(tenant: Tenant, role: TenantRole) -> TenantMembershipResponse:
    return TenantMembershipResponse(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        is_active=tenant.is_active,
        created_at=tenant.created_at,
        role=role,
    )


def _member_response(membership: UserTenant, user: User) -> MemberResponse:
    return MemberResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=membership.role,
        joined_at=membership.created_at,
    )


@router.get("/", response_model=List[TenantMembershipResponse])
def list_my_tenants(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Tenants the caller belongs to, with the caller's role in each"""
    return [
        _tenant_response(tenant, role)
        for tenant, role in tenant_service.list_user_tenants(db, user.id)
    ]


@router.post("/", response_model=TenantMembershipResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    payload: TenantCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a tenant; the caller becomes its TENANT_ADMIN"""
    tenant, membership = tenant_service.create_tenant(db, user, name=payload.name, slug=payload.slug)
    AuditLog.record(db, "tenant_created", user_id=user.id, meta={"tenant_id": str(tenant.id), "slug": tenant.slug})
    db.commit()
    return _tenant_response(tenant, membership.role)


@router.get("/{tenant_id}", response_model=TenantMembershipResponse)
def get_tenant(
    tenant_id: UUID,
    membership: UserTenant = Depends(require_member),
    db: Session = Depends(get_db),
):
    tenant = tenant_service.get_tenant(db, tenant_id)
    return _tenant_response(tenant, membership.role)


@router.patch("/{tenant_id}", response_model=TenantMembershipResponse)
def update_tenant(
    tenant_id: UUID,
    payload: TenantUpdate,
    membership: UserTenant = Depends(require_admin),
    db: Session = Depends(get_db),
):
    tenant = tenant_service.get_tenant(db, tenant_id)
    if payload.name is not None:
        tenant.name = payload.name
    db.commit()
    return _tenant_response(tenant, membership.role)


@router.get("/{tenant_id}/dashboard", response_model=DashboardResponse)
def tenant_dashboard(
    tenant_id: UUID,
    membership: UserTenant = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Headline metrics for tenant admins"""
    metrics = tenant_service.tenant_dashboard(db, tenant_id)
    return DashboardResponse(tenant_id=tenant_id, metrics=DashboardMetrics(**metrics))


@router.get("/{tenant_id}/members", response_model=List[MemberResponse])
def list_members(
    tenant_id: UUID,
    membership: UserTenant = Depends(require_member),
    db: Session = Depends(get_db),
):
    return [_member_response(m, u) for m, u in tenant_service.list_members(db, tenant_id)]


@router.post("/{tenant_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
def add_member(
    tenant_id: UUID,
    payload: MemberAdd,
    user: User = Depends(get_current_user),
    membership: UserTenant = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Add an existing user to the tenant"""
    new_membership, member = tenant_service.add_member(db, tenant_id, payload.email, payload.role, actor=user)
    return _member_response(new_membership, member)


@router.patch("/{tenant_id}/members/{user_id}", response_model=MemberResponse)
def change_member_role(
    tenant_id: UUID,
    user_id: UUID,
    payload: MemberUpdate,
    user: User = Depends(get_current_user),
    membership: UserTenant = Depends(require_admin),
    db: Session = Depends(get_db),
):
    updated = tenant_service.change_member_role(db, tenant_id, user_id, payload.role, actor=user)
    return _member_response(updated, updated.user)


@router.delete("/{tenant_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    tenant_id: UUID,
    user_id: UUID,
    user: User = Depends(get_current_user),
    membership: UserTenant = Depends(require_admin),
    db: Session = Depends(get_db),
):
    tenant_service.remove_member(db, tenant_id, user_id, actor=user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
