"""
Persisted refresh tokens and single-use email tokens

Only SHA-256 hashes of the raw values handed to clients are stored.
"""

from sqlalchemy import Column, String, Boolean, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
import enum

from tenant_auth.models.base import BaseModel, UTCDateTime, utcnow


class EmailTokenType(str, enum.Enum):
    EMAIL_CONFIRM = "EMAIL_CONFIRM"
    PASSWORD_RESET = "PASSWORD_RESET"


class RefreshToken(BaseModel):
    """
    One link in a refresh-token rotation chain (a session)
    """
    __tablename__ = "refresh_tokens"

    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    tenant_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('tenants.id', ondelete='SET NULL'),
        nullable=True,
        comment="Tenant context the session was issued for"
    )

    token_hash = Column(
        String(64),
        unique=True,
        nullable=False,
        index=True
    )

    expires_at = Column(UTCDateTime, nullable=False, index=True)

    revoked = Column(Boolean, default=False, nullable=False, index=True)

    revoked_at = Column(UTCDateTime, nullable=True)

    replaced_by_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('refresh_tokens.id', ondelete='SET NULL'),
        nullable=True,
        comment="Token issued when this one was rotated"
    )

    ip = Column(String(64), nullable=True)

    user_agent = Column(String(512), nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def is_active(self) -> bool:
        return not self.revoked and not self.is_expired()

    def revoke(self) -> None:
        if not self.revoked:
            self.revoked = True
            self.revoked_at = utcnow()


class EmailToken(BaseModel):
    """
    Single-use token mailed to the user (confirmation, password reset)
    """
    __tablename__ = "email_tokens"

    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    token_hash = Column(String(64), nullable=False, index=True)

    type = Column(
        Enum(EmailTokenType, name="email_token_type", native_enum=False, length=32),
        nullable=False
    )

    expires_at = Column(UTCDateTime, nullable=False)

    used_at = Column(UTCDateTime, nullable=True)

    user = relationship("User", back_populates="email_tokens")

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.used_at is None and (now or utcnow()) < self.expires_at
