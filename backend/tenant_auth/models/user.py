"""
User model for accounts that can sign in
"""

from sqlalchemy import Column, String, Boolean, Text
from sqlalchemy.orm import relationship, validates

from tenant_auth.models.base import BaseModel, UTCDateTime


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class User(BaseModel):
    """
    User account; authenticates with a password, an OAuth provider, or both
    """
    __tablename__ = "users"

    email = Column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Login email, stored lower-cased"
    )

    password_hash = Column(
        Text,
        nullable=True,
        comment="argon2id hash; NULL for OAuth-only accounts"
    )

    name = Column(
        String(255),
        nullable=True,
        comment="Display name"
    )

    email_verified = Column(
        Boolean,
        default=False,
        nullable=False,
        comment="Whether the email address has been confirmed"
    )

    is_active = Column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
        comment="Disabled accounts cannot sign in or refresh"
    )

    last_login_at = Column(
        UTCDateTime,
        nullable=True,
        comment="Timestamp of the last successful login"
    )

    # Relationships
    memberships = relationship("UserTenant", back_populates="user", cascade="all, delete-orphan")
    role_assignments = relationship("RoleAssignment", back_populates="user", cascade="all, delete-orphan")
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    email_tokens = relationship("EmailToken", back_populates="user", cascade="all, delete-orphan")
    oauth_accounts = relationship("OAuthAccount", back_populates="user", cascade="all, delete-orphan")

    @validates('email')
    def validate_email(self, key: str, email: str) -> str:
        """Store addresses normalised; format is checked by EmailStr at the API edge"""
        email = normalize_email(email)
        if not email:
            raise ValueError("Email cannot be empty")
        return email

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
