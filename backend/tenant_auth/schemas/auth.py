"""
Pydantic schemas for authentication requests and token responses
"""

from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, List
from uuid import UUID


class SignupRequest(BaseModel):
    """Schema for account signup"""

    email: EmailStr = Field(..., description="Login email")
    password: str = Field(..., min_length=1, max_length=256, description="Account password")
    name: Optional[str] = Field(None, max_length=255, description="Display name")
    tenant_slug: Optional[str] = Field(
        None,
        max_length=100,
        description="When set, a tenant is created and the new user becomes its admin"
    )

    @field_validator('tenant_slug')
    @classmethod
    def blank_slug_is_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class LoginRequest(BaseModel):
    """Schema for password login"""

    email: EmailStr = Field(..., description="Login email")
    password: str = Field(..., min_length=1, max_length=256, description="Account password")
    tenant_id: Optional[UUID] = Field(None, description="Tenant context to sign in to")


class RefreshRequest(BaseModel):
    """Refresh token passed in the body by clients that cannot use cookies"""

    refresh_token: Optional[str] = Field(None, description="Raw refresh token")


class SwitchTenantRequest(BaseModel):
    tenant_id: UUID = Field(..., description="Tenant to switch the session to")


class EmailRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email")


class ResetPasswordRequest(BaseModel):
    """Schema for completing a password reset"""

    uid: UUID = Field(..., description="User id from the reset link")
    token: str = Field(..., min_length=1, description="Token from the reset link")
    new_password: str = Field(..., min_length=1, max_length=256, description="New password")


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., min_length=1, max_length=256)


class TokenResponse(BaseModel):
    """Access token issued by login, refresh and tenant switch"""

    access_token: str = Field(..., description="Signed JWT for the Authorization header")
    token_type: str = Field("bearer", description="Always 'bearer'")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    tenant_id: Optional[UUID] = Field(None, description="Tenant context of the token")
    roles: List[str] = Field(default_factory=list, description="Roles embedded in the token")


class MessageResponse(BaseModel):
    message: str
