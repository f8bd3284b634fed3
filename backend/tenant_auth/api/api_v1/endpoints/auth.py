"""
Authentication endpoints: password and OAuth sign-in, refresh-token
rotation, email confirmation and password reset
"""

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID
import logging
import secrets

from tenant_auth.api.deps import get_client_info, get_current_user, rate_limit
from tenant_auth.core.config import settings
from tenant_auth.core.database import get_db
from tenant_auth.core.exceptions import OAuthError, TokenInvalid
from tenant_auth.models import User
from tenant_auth.schemas.auth import (
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SignupRequest,
    SwitchTenantRequest,
    TokenResponse,
)
from tenant_auth.services.auth_service import AuthService, ClientInfo, IssuedSession
from tenant_auth.services.oauth_service import OAuthIdentity, oauth_service

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(rate_limit)])

GENERIC_EMAIL_MESSAGE = "If an account exists for that email, a message has been sent."
OAUTH_STATE_MAX_AGE = 600


def set_refresh_cookie(response: Response, raw_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=raw_token,
        max_age=settings.JWT_REFRESH_TTL_DAYS * 24 * 60 * 60,
        path=settings.refresh_cookie_path,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.refresh_cookie_path,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )


def read_refresh_token(request: Request, payload: Optional[RefreshRequest]) -> Optional[str]:
    """Cookie first, then the JSON body"""
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not token and payload is not None:
        token = payload.refresh_token
    return token


def token_response(response: Response, session: IssuedSession) -> TokenResponse:
    set_refresh_cookie(response, session.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse(
        access_token=session.access_token,
        expires_in=session.expires_in,
        tenant_id=session.tenant_id,
        roles=session.roles,
    )


@router.post("/signup", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def signup(
    payload: SignupRequest,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """
    Register a new account

    When tenant_slug is given a tenant is created with the new user as its
    TENANT_ADMIN. A confirmation link is mailed to the address.
    """
    AuthService(db).signup(
        email=payload.email,
        password=payload.password,
        name=payload.name,
        tenant_slug=payload.tenant_slug,
        client=client,
    )
    return MessageResponse(message="Signup ok, check your email to confirm.")


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Password login; sets the refresh cookie and returns an access token"""
    session = AuthService(db).login(
        email=payload.email,
        password=payload.password,
        tenant_id=payload.tenant_id,
        client=client,
    )
    return token_response(response, session)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    payload: Optional[RefreshRequest] = None,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Exchange the refresh token for a new access token and a rotated refresh token"""
    raw = read_refresh_token(request, payload)
    if not raw:
        raise TokenInvalid("Missing refresh token")
    session = AuthService(db).refresh(raw, client=client)
    return token_response(response, session)


@router.post("/switch-tenant", response_model=TokenResponse)
def switch_tenant(
    payload: SwitchTenantRequest,
    request: Request,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Move the current session to another tenant the caller belongs to"""
    raw = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not raw:
        raise TokenInvalid("Missing refresh token")
    session = AuthService(db).switch_tenant(user, raw, payload.tenant_id, client=client)
    return token_response(response, session)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    payload: Optional[RefreshRequest] = None,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Revoke the presented refresh token and clear the cookie"""
    AuthService(db).logout(read_refresh_token(request, payload), client=client)
    clear_refresh_cookie(response)
    return MessageResponse(message="Logged out")


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Revoke every session of the caller"""
    revoked = AuthService(db).logout_all(user, client=client)
    clear_refresh_cookie(response)
    return MessageResponse(message=f"Logged out of {revoked} sessions")


@router.get("/confirm-email", response_model=MessageResponse)
def confirm_email(
    token: str = Query(..., min_length=1),
    uid: UUID = Query(...),
    db: Session = Depends(get_db),
):
    AuthService(db).confirm_email(uid, token)
    return MessageResponse(message="Email confirmed")


@router.post("/resend-confirmation", response_model=MessageResponse)
def resend_confirmation(payload: EmailRequest, db: Session = Depends(get_db)):
    AuthService(db).resend_confirmation(payload.email)
    return MessageResponse(message=GENERIC_EMAIL_MESSAGE)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: EmailRequest,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    AuthService(db).forgot_password(payload.email, client=client)
    return MessageResponse(message=GENERIC_EMAIL_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    response: Response,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Set a new password from a reset link; every session is signed out"""
    AuthService(db).reset_password(payload.uid, payload.token, payload.new_password, client=client)
    clear_refresh_cookie(response)
    return MessageResponse(message="Password updated")


# OAuth flow endpoints

@router.get("/oauth/{provider}")
def oauth_redirect(provider: str):
    """Redirect the browser to the provider consent screen"""
    state = secrets.token_urlsafe(32)
    url = oauth_service.get_authorization_url(provider, state)

    response = RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    response.set_cookie(
        key=settings.OAUTH_STATE_COOKIE_NAME,
        value=state,
        max_age=OAUTH_STATE_MAX_AGE,
        path=f"{settings.API_V1_STR}/auth/oauth",
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )
    return response


def _oauth_sign_in(db: Session, identity: OAuthIdentity, client: ClientInfo):
    user, created = oauth_service.link_or_create_user(db, identity)
    return AuthService(db).oauth_login(user, identity.provider, created, client=client), created


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """
    Complete the provider flow, start a session and hand the browser
    back to the frontend, which then calls /refresh for an access token
    """
    if error:
        raise OAuthError(f"Provider returned an error: {error}")

    expected_state = request.cookies.get(settings.OAUTH_STATE_COOKIE_NAME)
    if not state or not expected_state or not secrets.compare_digest(state, expected_state):
        raise OAuthError("Invalid OAuth state")

    identity = await oauth_service.fetch_identity(provider, code or "")
    session, created = await run_in_threadpool(_oauth_sign_in, db, identity, client)

    query = urlencode({"created": "1" if created else "0"})
    response = RedirectResponse(
        f"{settings.FRONTEND_URL.rstrip('/')}/auth/callback?{query}",
        status_code=status.HTTP_303_SEE_OTHER,
    )
    set_refresh_cookie(response, session.refresh_token)
    response.delete_cookie(settings.OAUTH_STATE_COOKIE_NAME, path=f"{settings.API_V1_STR}/auth/oauth")
    return response
