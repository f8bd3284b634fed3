"""
External identity provider accounts linked to users
"""

from sqlalchemy import Column, String, Text, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from tenant_auth.models.base import BaseModel


class OAuthAccount(BaseModel):
    """
    Link between a user and an identity at an OAuth provider
    """
    __tablename__ = "oauth_accounts"
    __table_args__ = (
        UniqueConstraint('provider', 'provider_id', name='uq_oauth_provider_identity'),
    )

    provider = Column(String(50), nullable=False, comment="google, facebook")

    provider_id = Column(String(255), nullable=False, comment="Subject identifier at the provider")

    provider_email = Column(String(255), nullable=True)

    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    access_token = Column(
        Text,
        nullable=True,
        comment="Encrypted provider access token"
    )

    user = relationship("User", back_populates="oauth_accounts")

