"""
Main API router that includes all endpoint routers
"""

from fastapi import APIRouter

from tenant_auth.api.api_v1.endpoints import auth, tenants, users, platform

# Create main API router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(tenants.router, prefix="/tenants", tags=["tenants"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(platform.router, prefix="/platform", tags=["platform"])
