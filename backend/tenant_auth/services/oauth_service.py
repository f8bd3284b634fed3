"""
OAuth 2.0 sign-in with external identity providers (Google, Facebook)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
import jwt
from sqlalchemy.orm import Session

from tenant_auth.core.config import settings
from tenant_auth.core.encryption import encrypt_token
from tenant_auth.core.exceptions import NotFound, OAuthError
from tenant_auth.models import AuditLog, OAuthAccount, User
from tenant_auth.models.user import normalize_email
from tenant_auth.services import token_service

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

FACEBOOK_GRAPH_VERSION = "v19.0"
FACEBOOK_AUTHORIZE_URL = f"https://www.facebook.com/{FACEBOOK_GRAPH_VERSION}/dialog/oauth"
FACEBOOK_TOKEN_URL = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}/oauth/access_token"
FACEBOOK_ME_URL = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}/me"

SUPPORTED_PROVIDERS = ("google", "facebook")


@dataclass(frozen=True)
class OAuthIdentity:
    """Identity asserted by a provider after a successful code exchange"""

    provider: str
    provider_id: str
    email: str
    name: Optional[str]
    email_verified: bool
    access_token: Optional[str] = None


class OAuthService:
    """Service for handling the provider authorization-code flow"""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def _credentials(self, provider: str) -> Tuple[str, str]:
        if provider not in SUPPORTED_PROVIDERS:
            raise NotFound("Unknown provider")
        if provider == "google":
            client_id, client_secret = settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET
        else:
            client_id, client_secret = settings.FACEBOOK_CLIENT_ID, settings.FACEBOOK_CLIENT_SECRET
        if not client_id or not client_secret:
            raise OAuthError(f"OAuth provider {provider} is not configured")
        return client_id, client_secret

    def redirect_uri(self, provider: str) -> str:
        base = settings.OAUTH_REDIRECT_BASE_URL.rstrip("/")
        return f"{base}{settings.API_V1_STR}/auth/oauth/{provider}/callback"

    def get_authorization_url(self, provider: str, state: str) -> str:
        """
        Build the provider consent URL

        Args:
            provider: 'google' or 'facebook'
            state: CSRF token echoed back on the callback

        Returns:
            URL to redirect the browser to
        """
        client_id, _ = self._credentials(provider)
        if provider == "google":
            params = {
                "client_id": client_id,
                "redirect_uri": self.redirect_uri(provider),
                "response_type": "code",
                "scope": "openid email profile",
                "prompt": "select_account",
                "access_type": "offline",
                "state": state,
            }
            return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

        params = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri(provider),
            "response_type": "code",
            "scope": "email,public_profile",
            "state": state,
        }
        return f"{FACEBOOK_AUTHORIZE_URL}?{urlencode(params)}"

    async def fetch_identity(self, provider: str, code: str) -> OAuthIdentity:
        """Exchange the authorization code and read the user's identity"""
        if not code:
            raise OAuthError("No code")
        client_id, client_secret = self._credentials(provider)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                if provider == "google":
                    return await self._google_identity(client, code, client_id, client_secret)
                return await self._facebook_identity(client, code, client_id, client_secret)
        except httpx.HTTPError as e:
            logger.error(f"{provider} OAuth exchange error: {e}")
            raise OAuthError(f"Failed to complete {provider} sign-in") from e

    async def _google_identity(
        self, client: httpx.AsyncClient, code: str, client_id: str, client_secret: str
    ) -> OAuthIdentity:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": self.redirect_uri("google"),
                "grant_type": "authorization_code",
            },
        )
        response.raise_for_status()
        token_data = response.json()

        id_token = token_data.get("id_token")
        if not id_token:
            raise OAuthError("No id_token in response")

        # Received directly from Google's token endpoint over TLS, so the
        # claims are trusted without fetching signing keys
        try:
            claims: Dict[str, Any] = jwt.decode(id_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise OAuthError("Malformed id_token") from e

        if claims.get("iss") not in GOOGLE_ISSUERS or claims.get("aud") != client_id:
            raise OAuthError("id_token was not issued for this application")

        email = claims.get("email")
        if not email:
            raise OAuthError("No email")

        return OAuthIdentity(
            provider="google",
            provider_id=str(claims["sub"]),
            email=normalize_email(email),
            name=claims.get("name"),
            email_verified=bool(claims.get("email_verified", False)),
            access_token=token_data.get("access_token"),
        )

    async def _facebook_identity(
        self, client: httpx.AsyncClient, code: str, client_id: str, client_secret: str
    ) -> OAuthIdentity:
        response = await client.get(
            FACEBOOK_TOKEN_URL,
            params={
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": self.redirect_uri("facebook"),
                "code": code,
            },
        )
        response.raise_for_status()
        access_token = response.json().get("access_token")
        if not access_token:
            raise OAuthError("No access token in response")

        me = await client.get(
            FACEBOOK_ME_URL,
            params={"fields": "id,name,email", "access_token": access_token},
        )
        me.raise_for_status()
        profile = me.json()

        email = profile.get("email")
        if not email:
            raise OAuthError("No email")

        return OAuthIdentity(
            provider="facebook",
            provider_id=str(profile["id"]),
            email=normalize_email(email),
            name=profile.get("name"),
            # Facebook only returns confirmed addresses
            email_verified=True,
            access_token=access_token,
        )

    def link_or_create_user(self, db: Session, identity: OAuthIdentity) -> Tuple[User, bool]:
        """
        Resolve the local user for a provider identity

        Lookup order: the linked OAuth account, then an existing user with
        the same email (only when the provider verified it), then a new
        verified user. Linking to an unconfirmed account drops its password
        and sessions. The caller commits.

        Returns:
            (user, created) where created is True for a brand-new user
        """
        encrypted = encrypt_token(identity.access_token) if identity.access_token else None

        account = (
            db.query(OAuthAccount)
            .filter(
                OAuthAccount.provider == identity.provider,
                OAuthAccount.provider_id == identity.provider_id,
            )
            .first()
        )
        if account is not None:
            account.provider_email = identity.email
            if encrypted:
                account.access_token = encrypted
            user = db.get(User, account.user_id)
            return user, False

        created = False
        user = db.query(User).filter(User.email == identity.email).first()
        if user is not None and not identity.email_verified:
            raise OAuthError("Email is registered; sign in with your password to link this provider")

        if user is None:
            user = User(email=identity.email, name=identity.name, email_verified=True)
            db.add(user)
            db.flush()
            created = True
        elif not user.email_verified:
            # Credentials set before the address was confirmed do not survive linking
            revoked = token_service.revoke_all_for_user(db, user.id)
            user.password_hash = None
            user.email_verified = True
            AuditLog.record(
                db, "unverified_credentials_cleared", user_id=user.id,
                meta={"provider": identity.provider, "sessions_revoked": revoked},
            )
            logger.warning(f"Cleared password of unconfirmed user {user.id} before linking {identity.provider}")

        db.add(
            OAuthAccount(
                provider=identity.provider,
                provider_id=identity.provider_id,
                provider_email=identity.email,
                user_id=user.id,
                access_token=encrypted,
            )
        )
        db.flush()
        logger.info(f"Linked {identity.provider} account to user {user.id} (created={created})")
        return user, created


# Global instance
oauth_service = OAuthService()
