"""
Authentication error taxonomy.

Every failure the auth service can surface is an ``AuthError`` subclass with a
stable ``kind`` string, a human readable ``message`` and the HTTP status code the
API layer answers with. Messages never include cache keys, token material,
nonces or signatures.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for caller-visible auth failures."""

    kind: str = "auth_error"
    message: str = "Authentication failed"
    status_code: int = 401

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class InvalidAddress(AuthError):
    kind = "invalid_address"
    message = "Invalid wallet address"
    status_code = 400


class MalformedMessage(AuthError):
    kind = "malformed_message"
    message = "Invalid message format"
    status_code = 400


class InvalidChainId(AuthError):
    kind = "invalid_chain_id"
    message = "Invalid chain id"
    status_code = 400


class InvalidOrExpiredNonce(AuthError):
    kind = "invalid_or_expired_nonce"
    message = "Invalid or expired nonce"


class AddressMismatch(AuthError):
    kind = "address_mismatch"
    message = "Address mismatch"


class NonceExpired(AuthError):
    kind = "nonce_expired"
    message = "Nonce expired"


class InvalidSignature(AuthError):
    kind = "invalid_signature"
    message = "Invalid signature"


class DuplicateIdentity(AuthError):
    kind = "duplicate_identity"
    message = "Identity is already linked to another account"
    status_code = 409


class AccountDisabled(AuthError):
    kind = "account_disabled"
    message = "Account is not active"
    status_code = 403


class SocialAuthFailed(AuthError):
    kind = "social_auth_failed"
    message = "LINE authentication failed"


class InvalidRefreshToken(AuthError):
    kind = "invalid_refresh_token"
    message = "Invalid refresh token"


class InvalidSession(AuthError):
    kind = "invalid_session"
    message = "Invalid session"


class SessionExpired(AuthError):
    kind = "session_expired"
    message = "Session expired"


class TokenRevoked(AuthError):
    kind = "token_revoked"
    message = "Token has been revoked"


class InvalidToken(AuthError):
    kind = "invalid_token"
    message = "Invalid token"


class TokenExpired(AuthError):
    kind = "token_expired"
    message = "Token expired"


class UpstreamUnavailable(AuthError):
    kind = "upstream_unavailable"
    message = "Authentication backend temporarily unavailable"
    status_code = 503


__all__ = [
    "AuthError",
    "InvalidAddress",
    "MalformedMessage",
    "InvalidChainId",
    "InvalidOrExpiredNonce",
    "AddressMismatch",
    "NonceExpired",
    "InvalidSignature",
    "DuplicateIdentity",
    "AccountDisabled",
    "SocialAuthFailed",
    "InvalidRefreshToken",
    "InvalidSession",
    "SessionExpired",
    "TokenRevoked",
    "InvalidToken",
    "TokenExpired",
    "UpstreamUnavailable",
]
