"""
Access token signing and refresh-token rotation

Access tokens are short-lived HS256 JWTs. Refresh tokens are opaque random
strings; the database keeps their SHA-256 hash. Every refresh consumes the
presented token and issues a successor. Presenting a token that was already
consumed means it leaked, so every session of that user is revoked.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import jwt
from sqlalchemy import delete, or_, and_
from sqlalchemy.orm import Session

from tenant_auth.core.config import settings
from tenant_auth.core.exceptions import NotFound, TokenInvalid, TokenReuseDetected
from tenant_auth.core.security import hash_token
from tenant_auth.models import AuditLog, EmailToken, RefreshToken, User
from tenant_auth.models.base import utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    user_id: uuid.UUID,
    tenant_id: Optional[uuid.UUID] = None,
    roles: Optional[List[str]] = None,
    email: Optional[str] = None,
    session_id: Optional[uuid.UUID] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token

    Args:
        user_id: Subject of the token
        tenant_id: Tenant context, or None for a tenant-less session
        roles: Platform roles plus the tenant role for tenant_id
        email: Included so clients can render the signed-in user
        session_id: Id of the refresh token this access token was minted with
        expires_delta: Override of JWT_ACCESS_TTL_SEC

    Returns:
        Encoded JWT
    """
    now = utcnow()
    if expires_delta is None:
        expires_delta = timedelta(seconds=settings.JWT_ACCESS_TTL_SEC)

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "tid": str(tenant_id) if tenant_id else None,
        "roles": list(roles or []),
        "email": email,
        "sid": str(session_id) if session_id else None,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + expires_delta,
    }
    if settings.JWT_ISSUER:
        payload["iss"] = settings.JWT_ISSUER
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify an access token and return its claims

    Raises:
        TokenInvalid: bad signature, expired, wrong issuer/audience or type
    """
    options = {"require": ["exp", "iat", "sub"]}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenInvalid("Token expired") from e
    except jwt.PyJWTError as e:
        raise TokenInvalid("Invalid token") from e

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise TokenInvalid("Invalid token")
    try:
        uuid.UUID(payload["sub"])
    except (TypeError, ValueError) as e:
        raise TokenInvalid("Invalid token") from e
    return payload


def generate_refresh_token_raw() -> str:
    return secrets.token_hex(48)


def store_refresh_token(
    db: Session,
    user_id: uuid.UUID,
    raw_token: str,
    tenant_id: Optional[uuid.UUID] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> RefreshToken:
    """Persist the hash of a freshly issued refresh token; the caller commits"""
    token = RefreshToken(
        user_id=user_id,
        tenant_id=tenant_id,
        token_hash=hash_token(raw_token),
        expires_at=utcnow() + timedelta(days=settings.JWT_REFRESH_TTL_DAYS),
        ip=ip,
        user_agent=(user_agent or "")[:512] or None,
    )
    db.add(token)
    db.flush()
    return token


def issue_refresh_token(
    db: Session,
    user_id: uuid.UUID,
    tenant_id: Optional[uuid.UUID] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[str, RefreshToken]:
    raw = generate_refresh_token_raw()
    record = store_refresh_token(db, user_id, raw, tenant_id=tenant_id, ip=ip, user_agent=user_agent)
    return raw, record


def find_refresh_token(db: Session, raw_token: str) -> Optional[RefreshToken]:
    if not raw_token:
        return None
    return db.query(RefreshToken).filter(RefreshToken.token_hash == hash_token(raw_token)).first()


def revoke_all_for_user(db: Session, user_id: uuid.UUID, except_id: Optional[uuid.UUID] = None) -> int:
    """Revoke every active refresh token of a user; returns how many were revoked"""
    query = db.query(RefreshToken).filter(
        RefreshToken.user_id == user_id,
        RefreshToken.revoked.is_(False),
    )
    if except_id is not None:
        query = query.filter(RefreshToken.id != except_id)

    count = 0
    for token in query.all():
        token.revoke()
        count += 1
    return count


def rotate_refresh_token(
    db: Session,
    raw_token: str,
    tenant_id: Optional[uuid.UUID] = None,
    switch_tenant: bool = False,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[User, str, RefreshToken]:
    """
    Consume a refresh token and issue its successor

    Args:
        raw_token: Token presented by the client
        tenant_id: New tenant context, used only when switch_tenant is set
        switch_tenant: Move the session to tenant_id instead of keeping
            the context of the presented token

    Returns:
        (user, new raw token, new token record)

    Raises:
        TokenReuseDetected: the token had already been consumed or revoked
        TokenInvalid: unknown, expired, or belonging to an unusable account
    """
    current = find_refresh_token(db, raw_token)
    if current is None:
        raise TokenInvalid("Invalid refresh token")

    if current.revoked:
        revoked = revoke_all_for_user(db, current.user_id)
        AuditLog.record(
            db,
            "refresh_token_reuse",
            user_id=current.user_id,
            meta={"token_id": str(current.id), "sessions_revoked": revoked},
            ip=ip,
        )
        db.commit()
        logger.warning(
            f"Refresh token reuse detected for user {current.user_id}; revoked {revoked} sessions"
        )
        raise TokenReuseDetected("Refresh token reuse detected")

    if current.is_expired():
        current.revoke()
        db.commit()
        raise TokenInvalid("Refresh token expired")

    user = db.get(User, current.user_id)
    if user is None or not user.is_active:
        current.revoke()
        db.commit()
        raise TokenInvalid("Invalid refresh token")

    next_tenant_id = tenant_id if switch_tenant else current.tenant_id
    new_raw, successor = issue_refresh_token(
        db,
        user.id,
        tenant_id=next_tenant_id,
        ip=ip,
        user_agent=user_agent,
    )
    current.revoke()
    current.replaced_by_id = successor.id
    return user, new_raw, successor


def revoke_refresh_token(db: Session, raw_token: str) -> Optional[RefreshToken]:
    """Revoke the presented token if it exists; revoking twice is a no-op"""
    token = find_refresh_token(db, raw_token)
    if token is not None:
        token.revoke()
    return token


def latest_in_chain(db: Session, user_id: uuid.UUID, session_id: uuid.UUID) -> Optional[uuid.UUID]:
    """
    Follow rotations forward from a refresh token id to the token that
    replaced it last; None when the id is not one of the user's sessions
    """
    seen = set()
    token = db.get(RefreshToken, session_id)
    if token is None or token.user_id != user_id:
        return None
    while token.replaced_by_id is not None and token.replaced_by_id not in seen:
        seen.add(token.id)
        successor = db.get(RefreshToken, token.replaced_by_id)
        if successor is None:
            break
        token = successor
    return token.id


def list_active_sessions(db: Session, user_id: uuid.UUID) -> List[RefreshToken]:
    return (
        db.query(RefreshToken)
        .filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked.is_(False),
            RefreshToken.expires_at > utcnow(),
        )
        .order_by(RefreshToken.created_at.desc())
        .all()
    )


def revoke_session(db: Session, user_id: uuid.UUID, session_id: uuid.UUID) -> RefreshToken:
    token = (
        db.query(RefreshToken)
        .filter(RefreshToken.id == session_id, RefreshToken.user_id == user_id)
        .first()
    )
    if token is None:
        raise NotFound("Session not found")
    token.revoke()
    return token


def purge_expired_tokens(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Delete refresh tokens past expiry and email tokens that can no longer be used

    Revoked refresh tokens are kept until they expire so that reuse of a
    rotated token is still detected.
    """
    now = now or utcnow()

    db.query(RefreshToken).filter(RefreshToken.expires_at <= now).update(
        {RefreshToken.replaced_by_id: None}, synchronize_session=False
    )
    refresh_result = db.execute(
        delete(RefreshToken).where(RefreshToken.expires_at <= now)
    )
    email_result = db.execute(
        delete(EmailToken).where(
            or_(
                EmailToken.expires_at <= now,
                and_(EmailToken.used_at.is_not(None), EmailToken.used_at <= now),
            )
        )
    )
    db.commit()

    purged = {
        "refresh_tokens": refresh_result.rowcount or 0,
        "email_tokens": email_result.rowcount or 0,
    }
    logger.info(f"Purged expired tokens: {purged}")
    return purged
