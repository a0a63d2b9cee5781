"""
Careena error types.

Parsing and classification never raise; everything here comes from the
network layer or the session lifecycle.
"""

from typing import Any, Optional

AUTH_EXPIRED_MARKERS = ("session has expired", "token has expired")


class CareenaError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class AuthError(CareenaError):
    def __init__(self, message: str, code: str = "auth_error"):
        super().__init__(code, message)


class AuthExpiredError(AuthError):
    def __init__(self, message: str = "Your session has expired. Please login again."):
        super().__init__(message, code="auth_expired")


class SessionError(CareenaError):
    def __init__(self, message: str, code: str = "session_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class ConnectionError(CareenaError):
    def __init__(self, message: str, code: str = "connection_error"):
        super().__init__(code, message)


def is_auth_expired(exc: BaseException) -> bool:
    """True when an error means the auth token is gone, judged by type or message text."""
    if isinstance(exc, AuthExpiredError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in AUTH_EXPIRED_MARKERS)
