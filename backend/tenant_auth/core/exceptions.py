"""
Domain exceptions raised by the service layer

Each carries the HTTP status the API answers with; the handler in
tenant_auth.main renders them as {"error": message}.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for authentication and authorization failures"""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidCredentials(AuthError):
    status_code = 401


class TokenInvalid(AuthError):
    status_code = 401


class TokenReuseDetected(TokenInvalid):
    """A refresh token was presented after it had already been rotated"""


class EmailNotVerified(AuthError):
    status_code = 403


class AccountDisabled(AuthError):
    status_code = 403


class PermissionDenied(AuthError):
    status_code = 403


class NotFound(AuthError):
    status_code = 404


class Conflict(AuthError):
    status_code = 409


class RateLimited(AuthError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class OAuthError(AuthError):
    status_code = 400
