"""Error taxonomy shared by the credential store, OAuth engine and adapters."""

from __future__ import annotations


class WorkfeedError(Exception):
    """Base class for every error raised by workfeed."""


# ============================================
# Authentication
# ============================================


class AuthError(WorkfeedError):
    """Authorization or token lifecycle failure."""


class NotAuthenticatedError(AuthError):
    def __init__(self, message: str = "Not authenticated - please connect in Settings") -> None:
        super().__init__(message)


class AccessDeniedError(AuthError):
    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class UserCancelledError(AuthError):
    """The user dismissed the consent flow. Never shown as an error banner."""

    def __init__(self, message: str = "Authorization cancelled") -> None:
        super().__init__(message)


class NoAuthorizationCodeError(AuthError):
    def __init__(self, message: str = "No authorization code in callback") -> None:
        super().__init__(message)


class StateMismatchError(AuthError):
    def __init__(self, message: str = "State mismatch in authorization callback") -> None:
        super().__init__(message)


class TokenExchangeError(AuthError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Token exchange failed: {detail}")


class NoRefreshTokenError(AuthError):
    def __init__(self, message: str = "No refresh token available") -> None:
        super().__init__(message)


class RefreshFailedError(AuthError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Token refresh failed: {detail}")


class UnsupportedProviderError(AuthError):
    def __init__(self, message: str = "This service does not use OAuth") -> None:
        super().__init__(message)


# ============================================
# Transport / API
# ============================================


class UpstreamError(WorkfeedError):
    """A provider API call failed."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class UnauthorizedError(UpstreamError):
    """HTTP 401. The stored token is stale; not retried within the round."""

    def __init__(self) -> None:
        super().__init__("Unauthorized (401) - token may be expired")


class UpstreamStatusError(UpstreamError):
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body[:200]}")


class InvalidResponseError(UpstreamError):
    def __init__(self, detail: str = "Invalid HTTP response") -> None:
        super().__init__(detail)


# ============================================
# Storage
# ============================================


class StorageError(WorkfeedError):
    """Credential or settings store unreachable or corrupt."""
