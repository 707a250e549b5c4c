"""
JWT Token Utilities

This module handles JSON Web Token (JWT) creation and verification for the auth service.
After a user proves wallet ownership (or logs in with LINE), the service creates an
access token and a refresh token, both bound to a session id.

Flow:
1. Login succeeds -> issue_access_token() + issue_refresh_token()
2. Client calls an API with the access token -> verify_access_token()
3. Access token expires -> client calls refresh with the refresh token -> verify_refresh_token()

The JWT contains:
- user_id, session_id: identity and the server-side session it is bound to
- address / social_id: the wallet address or LINE user id, when known
- kyc_tier: compliance level (access tokens only)
- iss, aud, iat, exp: registered claims, all enforced on verification
- jti: random token id, keeps tokens minted in the same second distinct

Access and refresh tokens are signed with different keys so that a leaked access
key cannot mint refresh tokens.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

from r2s_auth.core.config import Settings
from r2s_auth.core.errors import InvalidToken, TokenExpired
from r2s_auth.core.timeutils import utc_now


@dataclass
class TokenClaims:
    user_id: str
    session_id: str
    address: Optional[str] = None
    social_id: Optional[str] = None
    kyc_tier: Optional[int] = None
    iss: Optional[str] = None
    aud: Optional[str] = None
    iat: Optional[int] = None
    exp: Optional[int] = None
    jti: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        aud = payload.get("aud")
        if isinstance(aud, list):
            aud = aud[0] if aud else None
        return cls(
            user_id=str(payload["user_id"]),
            session_id=str(payload["session_id"]),
            address=payload.get("address"),
            social_id=payload.get("social_id"),
            kyc_tier=payload.get("kyc_tier"),
            iss=payload.get("iss"),
            aud=aud,
            iat=payload.get("iat"),
            exp=payload.get("exp"),
            jti=payload.get("jti") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.exp is None:
            return None
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


class TokenIssuer:
    """Mints and verifies HS256 access/refresh tokens."""

    def __init__(self, settings: Settings, clock: Callable = utc_now):
        if not settings.JWT_SECRET or not settings.JWT_REFRESH_SECRET:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must be configured")
        if settings.JWT_SECRET == settings.JWT_REFRESH_SECRET:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        if not settings.JWT_ALGORITHM.startswith("HS"):
            raise RuntimeError("only HMAC signing algorithms are supported")

        self._access_key = settings.JWT_SECRET
        self._refresh_key = settings.JWT_REFRESH_SECRET
        self.algorithm = settings.JWT_ALGORITHM
        self.issuer = settings.JWT_ISSUER
        self.audience = settings.JWT_AUDIENCE
        self.access_ttl = timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)
        self.refresh_ttl = timedelta(seconds=settings.REFRESH_TOKEN_EXPIRE_SECONDS)
        self.clock = clock

    def _encode(self, claims: TokenClaims, key: str, ttl: timedelta, now: Optional[datetime]) -> str:
        now = now or self.clock()
        claims.iss = self.issuer
        claims.aud = self.audience
        claims.iat = int(now.timestamp())
        claims.exp = int((now + ttl).timestamp())
        if not claims.jti:
            claims.jti = uuid.uuid4().hex
        return jwt.encode(claims.to_dict(), key, algorithm=self.algorithm)

    def issue_access_token(self, claims: TokenClaims, now: Optional[datetime] = None) -> str:
        """
        Create a signed access token.

        ``claims`` is completed in place with iss/aud/iat/exp/jti, so the caller
        can read the expiry that was actually signed.
        """
        if not claims.user_id or not claims.session_id:
            raise ValueError("user_id and session_id are required")
        return self._encode(claims, self._access_key, self.access_ttl, now)

    def issue_refresh_token(
        self,
        user_id: str,
        address: Optional[str] = None,
        *,
        session_id: str,
        social_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Create a signed refresh token. It carries no KYC tier; refresh reloads it."""
        if not user_id or not session_id:
            raise ValueError("user_id and session_id are required")
        claims = TokenClaims(
            user_id=user_id,
            session_id=session_id,
            address=address,
            social_id=social_id,
        )
        return self._encode(claims, self._refresh_key, self.refresh_ttl, now)

    def _decode(self, token: str, key: str) -> TokenClaims:
        if not token:
            raise InvalidToken("Missing token")
        try:
            # algorithms pinned: a token claiming "none" or RS256 is rejected
            payload = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                # exp and iat are checked below against the injected clock
                options={
                    "require": ["exp", "iat", "iss", "aud"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError:
            raise InvalidToken()

        exp, iat = payload["exp"], payload["iat"]
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            raise InvalidToken()
        now = self.clock().timestamp()
        if iat > now:
            raise InvalidToken("Token issued in the future")
        if exp <= now:
            raise TokenExpired()

        if "user_id" not in payload or "session_id" not in payload:
            raise InvalidToken("Invalid token payload")
        return TokenClaims.from_payload(payload)

    def verify_access_token(self, token: str) -> TokenClaims:
        """
        Verify and decode an access token.

        Raises:
            TokenExpired: signature is valid but exp has passed
            InvalidToken: malformed, bad signature, wrong algorithm/issuer/audience
        """
        return self._decode(token, self._access_key)

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self._decode(token, self._refresh_key)


def remaining_lifetime(claims: TokenClaims, now: Optional[datetime] = None) -> int:
    """Whole seconds until ``claims`` expires, 0 if already expired."""
    if claims.exp is None:
        return 0
    now = now or utc_now()
    return max(int(claims.exp - now.timestamp()), 0)
