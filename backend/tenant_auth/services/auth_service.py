"""
Account and session lifecycle: signup, login, refresh, logout,
email confirmation and password reset
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_auth.core.config import settings
from tenant_auth.core.exceptions import (
    AccountDisabled,
    AuthError,
    Conflict,
    EmailNotVerified,
    InvalidCredentials,
    PermissionDenied,
)
from tenant_auth.core.security import (
    generate_token,
    hash_password,
    hash_token,
    needs_rehash,
    validate_password_strength,
    verify_password,
)
from tenant_auth.models import AuditLog, EmailToken, EmailTokenType, RefreshToken, User
from tenant_auth.models.base import utcnow
from tenant_auth.models.user import normalize_email
from tenant_auth.services import email_service, rbac_service, tenant_service, token_service
from tenant_auth.services.rate_limit import LOGIN_LIMIT, RateLimiter

logger = logging.getLogger(__name__)

INVALID_LINK_MESSAGE = "Invalid or expired token"


@dataclass
class IssuedSession:
    """Tokens handed to the client after a successful authentication"""

    user: User
    access_token: str
    refresh_token: str
    tenant_id: Optional[uuid.UUID] = None
    roles: List[str] = field(default_factory=list)
    expires_in: int = 0


@dataclass
class ClientInfo:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class AuthService:
    """Service for password-based authentication and session management"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == normalize_email(email)).first()

    def _check_password_strength(self, password: str) -> None:
        try:
            validate_password_strength(password)
        except ValueError as e:
            raise AuthError(str(e)) from e

    def _frontend_link(self, path: str, raw_token: str, user_id: uuid.UUID) -> str:
        query = urlencode({"token": raw_token, "uid": str(user_id)})
        return f"{settings.FRONTEND_URL.rstrip('/')}{path}?{query}"

    def _create_email_token(self, user: User, token_type: EmailTokenType, ttl_minutes: int) -> str:
        """Invalidate outstanding tokens of the same type and mint a new one"""
        now = utcnow()
        outstanding = (
            self.db.query(EmailToken)
            .filter(
                EmailToken.user_id == user.id,
                EmailToken.type == token_type,
                EmailToken.used_at.is_(None),
            )
            .all()
        )
        for token in outstanding:
            token.used_at = now

        raw = generate_token(32)
        self.db.add(
            EmailToken(
                user_id=user.id,
                token_hash=hash_token(raw),
                type=token_type,
                expires_at=now + timedelta(minutes=ttl_minutes),
            )
        )
        return raw

    def _consume_email_token(self, user_id: uuid.UUID, raw_token: str, token_type: EmailTokenType) -> User:
        """
        Mark a matching usable email token as used

        Raises:
            AuthError: no such token, wrong user or type, expired or spent
        """
        token = (
            self.db.query(EmailToken)
            .filter(
                EmailToken.user_id == user_id,
                EmailToken.token_hash == hash_token(raw_token),
                EmailToken.type == token_type,
            )
            .first()
        )
        if token is None or not token.is_usable():
            raise AuthError(INVALID_LINK_MESSAGE)

        user = self.db.get(User, user_id)
        if user is None:
            raise AuthError(INVALID_LINK_MESSAGE)

        token.used_at = utcnow()
        return user

    def _issue_session(
        self,
        user: User,
        tenant_id: Optional[uuid.UUID],
        client: ClientInfo,
    ) -> IssuedSession:
        raw_refresh, record = token_service.issue_refresh_token(
            self.db, user.id, tenant_id=tenant_id, ip=client.ip, user_agent=client.user_agent
        )
        return self._session_for(user, tenant_id, raw_refresh, record)

    def _session_for(
        self,
        user: User,
        tenant_id: Optional[uuid.UUID],
        raw_refresh: str,
        record: RefreshToken,
    ) -> IssuedSession:
        roles = rbac_service.roles_for_context(self.db, user.id, tenant_id)
        access = token_service.create_access_token(
            user.id, tenant_id=tenant_id, roles=roles, email=user.email, session_id=record.id
        )
        return IssuedSession(
            user=user,
            access_token=access,
            refresh_token=raw_refresh,
            tenant_id=tenant_id,
            roles=roles,
            expires_in=settings.JWT_ACCESS_TTL_SEC,
        )

    def _resolve_login_tenant(self, user: User, tenant_id: Optional[uuid.UUID]) -> Optional[uuid.UUID]:
        if tenant_id is not None:
            if rbac_service.get_membership(self.db, user.id, tenant_id) is None:
                raise PermissionDenied("Not a member of tenant")
            return tenant_id
        membership = rbac_service.get_default_membership(self.db, user.id)
        return membership.tenant_id if membership else None

    # ------------------------------------------------------------------
    # Signup and email confirmation
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        tenant_slug: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> User:
        """
        Register a user, optionally creating a tenant they administer,
        and mail an email confirmation link
        """
        client = client or ClientInfo()
        email = normalize_email(email)
        if not email or not password:
            raise AuthError("email and password required")
        self._check_password_strength(password)

        if self._find_user_by_email(email) is not None:
            raise Conflict("Email already exists")

        user = User(email=email, password_hash=hash_password(password), name=name)
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("Email already exists") from e

        tenant = None
        if tenant_slug:
            tenant, _ = tenant_service.create_tenant(self.db, user, name=tenant_slug, slug=tenant_slug)

        raw = self._create_email_token(user, EmailTokenType.EMAIL_CONFIRM, settings.EMAIL_CONFIRM_TTL_MINUTES)
        AuditLog.record(
            self.db,
            "signup",
            user_id=user.id,
            meta={"tenantSlug": tenant.slug if tenant else None},
            ip=client.ip,
        )
        self.db.commit()

        email_service.send_email_confirmation(user.email, self._frontend_link("/auth/confirm-email", raw, user.id))
        logger.info(f"User signed up: {user.id}")
        return user

    def confirm_email(self, user_id: uuid.UUID, raw_token: str) -> User:
        user = self._consume_email_token(user_id, raw_token, EmailTokenType.EMAIL_CONFIRM)
        user.email_verified = True
        AuditLog.record(self.db, "email_confirmed", user_id=user.id)
        self.db.commit()
        return user

    def resend_confirmation(self, email: str) -> None:
        """Send a fresh confirmation link; silent when there is nothing to confirm"""
        user = self._find_user_by_email(email)
        if user is None or user.email_verified or not user.is_active:
            return
        raw = self._create_email_token(user, EmailTokenType.EMAIL_CONFIRM, settings.EMAIL_CONFIRM_TTL_MINUTES)
        self.db.commit()
        email_service.send_email_confirmation(user.email, self._frontend_link("/auth/confirm-email", raw, user.id))

    # ------------------------------------------------------------------
    # Login, refresh, logout
    # ------------------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        tenant_id: Optional[uuid.UUID] = None,
        client: Optional[ClientInfo] = None,
    ) -> IssuedSession:
        client = client or ClientInfo()
        email = normalize_email(email)
        limiter = RateLimiter(self.db)
        limiter.check(LOGIN_LIMIT, email)

        user = self._find_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            limiter.record_failure(LOGIN_LIMIT, email)
            AuditLog.record(
                self.db,
                "login_failed",
                user_id=user.id if user else None,
                meta={"email": email},
                ip=client.ip,
            )
            self.db.commit()
            logger.warning(f"Failed login for {email} from {client.ip}")
            raise InvalidCredentials("Invalid credentials")

        if not user.is_active:
            raise AccountDisabled("Account disabled")
        if settings.REQUIRE_EMAIL_VERIFIED and not user.email_verified:
            raise EmailNotVerified("Email not confirmed")

        active_tenant = self._resolve_login_tenant(user, tenant_id)

        limiter.reset(LOGIN_LIMIT, email)
        if needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)
        user.last_login_at = utcnow()

        session = self._issue_session(user, active_tenant, client)
        AuditLog.record(
            self.db,
            "login",
            user_id=user.id,
            meta={"tenant_id": str(active_tenant) if active_tenant else None},
            ip=client.ip,
        )
        self.db.commit()
        return session

    def oauth_login(
        self,
        user: User,
        provider: str,
        created: bool,
        client: Optional[ClientInfo] = None,
    ) -> IssuedSession:
        """Start a session for a user resolved by an OAuth provider"""
        client = client or ClientInfo()
        if not user.is_active:
            raise AccountDisabled("Account disabled")

        active_tenant = self._resolve_login_tenant(user, None)
        user.last_login_at = utcnow()
        session = self._issue_session(user, active_tenant, client)
        AuditLog.record(
            self.db,
            "oauth_login",
            user_id=user.id,
            meta={"provider": provider, "created": created},
            ip=client.ip,
        )
        self.db.commit()
        return session

    def refresh(self, raw_refresh: str, client: Optional[ClientInfo] = None) -> IssuedSession:
        """
        Rotate the refresh token and mint an access token with roles
        re-read from the database
        """
        client = client or ClientInfo()
        user, new_raw, record = token_service.rotate_refresh_token(
            self.db, raw_refresh, ip=client.ip, user_agent=client.user_agent
        )

        tenant_id = record.tenant_id
        if tenant_id is not None and rbac_service.get_membership(self.db, user.id, tenant_id) is None:
            # Membership was removed since the session started
            record.tenant_id = None
            tenant_id = None

        session = self._session_for(user, tenant_id, new_raw, record)
        self.db.commit()
        return session

    def switch_tenant(
        self,
        user: User,
        raw_refresh: str,
        tenant_id: uuid.UUID,
        client: Optional[ClientInfo] = None,
    ) -> IssuedSession:
        """Move the caller's session to another tenant they belong to"""
        client = client or ClientInfo()
        if rbac_service.get_membership(self.db, user.id, tenant_id) is None:
            raise PermissionDenied("Not a member of tenant")

        current = token_service.find_refresh_token(self.db, raw_refresh)
        if current is None or current.user_id != user.id:
            raise InvalidCredentials("Invalid refresh token")

        rotated_user, new_raw, successor = token_service.rotate_refresh_token(
            self.db,
            raw_refresh,
            tenant_id=tenant_id,
            switch_tenant=True,
            ip=client.ip,
            user_agent=client.user_agent,
        )
        session = self._session_for(rotated_user, tenant_id, new_raw, successor)
        AuditLog.record(
            self.db, "tenant_switched", user_id=user.id, meta={"tenant_id": str(tenant_id)}, ip=client.ip
        )
        self.db.commit()
        return session

    def logout(self, raw_refresh: Optional[str], client: Optional[ClientInfo] = None) -> None:
        client = client or ClientInfo()
        if not raw_refresh:
            return
        token = token_service.revoke_refresh_token(self.db, raw_refresh)
        if token is not None:
            AuditLog.record(self.db, "logout", user_id=token.user_id, ip=client.ip)
        self.db.commit()

    def logout_all(self, user: User, client: Optional[ClientInfo] = None) -> int:
        client = client or ClientInfo()
        revoked = token_service.revoke_all_for_user(self.db, user.id)
        AuditLog.record(self.db, "logout_all", user_id=user.id, meta={"sessions_revoked": revoked}, ip=client.ip)
        self.db.commit()
        return revoked

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def forgot_password(self, email: str, client: Optional[ClientInfo] = None) -> None:
        """Mail a reset link when the account exists; the caller answers the same either way"""
        client = client or ClientInfo()
        user = self._find_user_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or disabled account")
            return

        raw = self._create_email_token(user, EmailTokenType.PASSWORD_RESET, settings.PASSWORD_RESET_TTL_MINUTES)
        AuditLog.record(self.db, "password_reset_requested", user_id=user.id, ip=client.ip)
        self.db.commit()
        email_service.send_password_reset(user.email, self._frontend_link("/auth/reset-password", raw, user.id))

    def reset_password(
        self,
        user_id: uuid.UUID,
        raw_token: str,
        new_password: str,
        client: Optional[ClientInfo] = None,
    ) -> User:
        client = client or ClientInfo()
        self._check_password_strength(new_password)
        user = self._consume_email_token(user_id, raw_token, EmailTokenType.PASSWORD_RESET)

        user.password_hash = hash_password(new_password)
        # Following the link proves control of the mailbox
        user.email_verified = True
        revoked = token_service.revoke_all_for_user(self.db, user.id)
        AuditLog.record(
            self.db, "password_reset", user_id=user.id, meta={"sessions_revoked": revoked}, ip=client.ip
        )
        self.db.commit()
        return user

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        keep_session_id: Optional[uuid.UUID] = None,
        client: Optional[ClientInfo] = None,
    ) -> None:
        """Change the password of a signed-in user and end their other sessions"""
        client = client or ClientInfo()
        if user.has_password and not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        self._check_password_strength(new_password)

        user.password_hash = hash_password(new_password)
        revoked = token_service.revoke_all_for_user(self.db, user.id, except_id=keep_session_id)
        AuditLog.record(
            self.db, "password_changed", user_id=user.id, meta={"sessions_revoked": revoked}, ip=client.ip
        )
        self.db.commit()
