"""
Auth facade.

Composes the challenge store, signature verifier, identity resolver, token
issuer, session ledger and revocation list into the public operations:

    issue_challenge -> verify_and_login -> (refresh)* -> logout
    social_login    ->                     (refresh)* -> logout
    validate (any time, by other services)

Every failure is an ``AuthError`` subclass; nothing is retried except the
single lookup after a lost identity-create race.
"""

import logging
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from threading import BoundedSemaphore
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import sessionmaker

from r2s_auth.core.cache import CacheManager
from r2s_auth.core.config import Settings
from r2s_auth.core.errors import (
    AccountDisabled,
    AddressMismatch,
    DuplicateIdentity,
    InvalidAddress,
    InvalidOrExpiredNonce,
    InvalidRefreshToken,
    InvalidSession,
    InvalidSignature,
    InvalidToken,
    MalformedMessage,
    NonceExpired,
    SessionExpired,
    SocialAuthFailed,
    TokenExpired,
    TokenRevoked,
)
from r2s_auth.core.jwt_utils import TokenClaims, TokenIssuer, remaining_lifetime
from r2s_auth.core.timeutils import as_utc, utc_now
from r2s_auth.core.wallet_auth import is_valid_address, normalize_address, verify_signature
from r2s_auth.models.sessions import AuthSession
from r2s_auth.models.users import User
from r2s_auth.services.challenge_store import ChallengeStore, IssuedChallenge, parse_message
from r2s_auth.services.identity import IdentityResolver
from r2s_auth.services.line_client import LineClient
from r2s_auth.services.revocation import RevocationList
from r2s_auth.services.session_ledger import SessionLedger, hash_token

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class WalletUserSummary:
    id: str
    address: Optional[str]
    kyc_tier: int
    social_linked: bool


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    session_id: str
    user: WalletUserSummary


@dataclass
class SocialUserSummary:
    id: str
    social_id: Optional[str]
    display_name: Optional[str]
    avatar_url: Optional[str]
    wallet_linked: bool
    kyc_tier: int


@dataclass
class SocialLoginResult:
    token: str
    refresh_token: str
    session_id: str
    user: SocialUserSummary


@dataclass
class _IssuedSession:
    access_token: str
    refresh_token: str
    session_id: str


def _log_touch_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.warning("touch last_used_at failed: %s", error.__class__.__name__)


class AuthService:
    """Wallet and LINE login, token refresh, logout and validation."""

    def __init__(
        self,
        settings: Settings,
        *,
        challenges: ChallengeStore,
        tokens: TokenIssuer,
        identities: IdentityResolver,
        sessions: SessionLedger,
        revocations: RevocationList,
        line_client: Optional[LineClient] = None,
        clock: Callable = utc_now,
        executor: Optional[Executor] = None,
    ) -> None:
        self.settings = settings
        self.challenges = challenges
        self.tokens = tokens
        self.identities = identities
        self.sessions = sessions
        self.revocations = revocations
        self.line_client = line_client
        self.clock = clock
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max(settings.TOUCH_WORKERS, 1),
            thread_name_prefix="session-touch",
        )
        self._touch_slots = BoundedSemaphore(max(settings.TOUCH_MAX_PENDING, 1))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: sessionmaker,
        cache: CacheManager,
        *,
        line_client: Optional[LineClient] = None,
        clock: Callable = utc_now,
        executor: Optional[Executor] = None,
    ) -> "AuthService":
        """Wire every component from explicit database and cache handles."""
        return cls(
            settings,
            challenges=ChallengeStore(cache, settings, clock=clock),
            tokens=TokenIssuer(settings, clock=clock),
            identities=IdentityResolver(session_factory, clock=clock),
            sessions=SessionLedger(session_factory, clock=clock),
            revocations=RevocationList(cache),
            line_client=line_client or LineClient(settings),
            clock=clock,
            executor=executor,
        )

    def close(self) -> None:
        """Wait for queued last-used updates and stop the worker pool."""
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # wallet login
    # ------------------------------------------------------------------

    def issue_challenge(self, address: str, chain_id: Optional[str] = None) -> IssuedChallenge:
        if not is_valid_address(address):
            raise InvalidAddress()
        return self.challenges.issue(address.strip(), chain_id)

    def verify_and_login(
        self,
        address: str,
        signature: str,
        message: str,
        request_id: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        """
        Redeem a signed challenge and open a session.

        Checks run in a fixed order and the nonce is burned as soon as it is
        found, so a failed attempt cannot be retried with the same challenge.
        """
        if not is_valid_address(address):
            raise InvalidAddress()
        claimed = normalize_address(address)

        parsed = parse_message(message)
        challenge = self.challenges.consume(parsed.nonce)
        if request_id != challenge.request_id:
            raise InvalidOrExpiredNonce()

        embedded = normalize_address(parsed.address) if is_valid_address(parsed.address) else None
        if challenge.address != claimed or embedded != claimed:
            raise AddressMismatch()
        if not self.challenges.matches(challenge, parsed):
            raise MalformedMessage("Message does not match the issued challenge")

        now = self.clock()
        if now > parsed.expires_at or now > challenge.expires_at:
            raise NonceExpired()

        if not verify_signature(message, signature, claimed):
            raise InvalidSignature()

        user = self._resolve_once_more_on_race(
            lambda: self.identities.resolve_or_create_by_wallet(claimed)
        )
        self._ensure_active(user)

        issued = self._open_session(user, ip, user_agent)
        logger.info("wallet login user=%s session=%s", user.id, issued.session_id)
        return LoginResult(
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            session_id=issued.session_id,
            user=WalletUserSummary(
                id=user.id,
                address=user.wallet_address,
                kyc_tier=user.kyc_tier,
                social_linked=user.social_id is not None,
            ),
        )

    # ------------------------------------------------------------------
    # LINE login
    # ------------------------------------------------------------------

    def social_login(
        self,
        id_token: str,
        access_token: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SocialLoginResult:
        if self.line_client is None:
            raise SocialAuthFailed("LINE login is not configured")
        profile = self.line_client.fetch_profile(id_token, access_token)

        user = self._resolve_once_more_on_race(
            lambda: self.identities.resolve_or_create_by_social(profile)
        )
        self._ensure_active(user)

        issued = self._open_session(user, ip, user_agent)
        logger.info("LINE login user=%s session=%s", user.id, issued.session_id)
        return SocialLoginResult(
            token=issued.access_token,
            refresh_token=issued.refresh_token,
            session_id=issued.session_id,
            user=SocialUserSummary(
                id=user.id,
                social_id=user.social_id,
                display_name=user.display_name,
                avatar_url=user.avatar_url,
                wallet_linked=user.wallet_address is not None,
                kyc_tier=user.kyc_tier,
            ),
        )

    # ------------------------------------------------------------------
    # token lifecycle
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> str:
        """
        Mint a new access token for the session behind ``refresh_token``.

        The refresh token itself is not rotated. The new access token carries
        the user's current KYC tier.
        """
        try:
            claims = self.tokens.verify_refresh_token(refresh_token)
        except (InvalidToken, TokenExpired):
            raise InvalidRefreshToken()

        session = self.sessions.find_by_refresh_token_hash(hash_token(refresh_token))
        if (
            session is None
            or session.user_id != claims.user_id
            or session.id != claims.session_id
        ):
            logger.warning("refresh rejected for user=%s: no matching session", claims.user_id)
            raise InvalidSession()

        now = self.clock()
        if session.refresh_expires_at is not None and now > as_utc(session.refresh_expires_at):
            raise SessionExpired()

        user = self.identities.get_user(claims.user_id)
        if user is None:
            raise InvalidSession()
        self._ensure_active(user)

        access_token = self.tokens.issue_access_token(
            TokenClaims(
                user_id=user.id,
                session_id=session.id,
                address=user.wallet_address,
                social_id=user.social_id,
                kyc_tier=user.kyc_tier,
            ),
            now=now,
        )
        rotated = self.sessions.rotate_access_token(
            session.id, hash_token(access_token), now + self.tokens.access_ttl
        )
        if not rotated:
            raise InvalidSession()
        logger.info("refreshed session=%s", session.id)
        return access_token

    def logout(self, access_token: str) -> None:
        """
        End the session behind ``access_token``. Idempotent.

        The row is deleted first; then, if the token still verifies, its hash
        is denied for exactly its remaining lifetime.
        """
        if not access_token:
            raise InvalidToken("Missing token")
        token_hash = hash_token(access_token)
        deleted = self.sessions.delete_by_access_token_hash(token_hash)

        try:
            claims = self.tokens.verify_access_token(access_token)
        except (InvalidToken, TokenExpired):
            claims = None
        if claims is not None:
            self.revocations.revoke(token_hash, remaining_lifetime(claims, self.clock()))
            logger.info("logout user=%s session=%s deleted=%d", claims.user_id, claims.session_id, deleted)

    def logout_all(self, user_id: str) -> int:
        """End every session of ``user_id`` and deny their live access tokens."""
        now = self.clock()
        sessions = self.sessions.list_for_user(user_id)
        for session in sessions:
            ttl = int((as_utc(session.expires_at) - now).total_seconds())
            self.revocations.revoke(session.token_hash, ttl)
        deleted = self.sessions.delete_by_user_id(user_id)
        logger.info("logout all user=%s sessions=%d", user_id, deleted)
        return deleted

    def validate(self, access_token: str) -> TokenClaims:
        """
        Authenticate a bearer token for another service.

        Order: revocation list, JWT verification, session lookup, session
        expiry against the wall clock. last_used_at is stamped in the background.
        """
        if not access_token:
            raise InvalidToken("Missing token")
        token_hash = hash_token(access_token)
        if self.revocations.is_revoked(token_hash):
            raise TokenRevoked()

        claims = self.tokens.verify_access_token(access_token)

        session = self.sessions.find_by_access_token_hash(token_hash)
        if (
            session is None
            or session.user_id != claims.user_id
            or session.id != claims.session_id
        ):
            raise InvalidSession()

        if self.clock() > as_utc(session.expires_at):
            raise SessionExpired()

        self._touch_in_background(session.id)
        return claims

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _resolve_once_more_on_race(self, resolve: Callable[[], T]) -> T:
        try:
            return resolve()
        except DuplicateIdentity:
            logger.info("identity create lost a race, retrying lookup")
            return resolve()

    @staticmethod
    def _ensure_active(user: User) -> None:
        if user.status != "active":
            logger.warning("login refused for %s user=%s", user.status, user.id)
            raise AccountDisabled()

    def _open_session(
        self, user: User, ip: Optional[str], user_agent: Optional[str]
    ) -> _IssuedSession:
        now = self.clock()
        session_id = str(uuid.uuid4())
        access_token = self.tokens.issue_access_token(
            TokenClaims(
                user_id=user.id,
                session_id=session_id,
                address=user.wallet_address,
                social_id=user.social_id,
                kyc_tier=user.kyc_tier,
            ),
            now=now,
        )
        refresh_token = self.tokens.issue_refresh_token(
            user.id,
            user.wallet_address,
            session_id=session_id,
            social_id=user.social_id,
            now=now,
        )
        self.sessions.create(
            AuthSession(
                id=session_id,
                user_id=user.id,
                token_hash=hash_token(access_token),
                refresh_token_hash=hash_token(refresh_token),
                ip_address=ip,
                user_agent=user_agent,
                expires_at=now + self.tokens.access_ttl,
                refresh_expires_at=now + self.tokens.refresh_ttl,
                created_at=now,
                last_used_at=now,
            )
        )
        if self.settings.MAX_SESSIONS_PER_USER > 0:
            self.sessions.delete_old_sessions(user.id, self.settings.MAX_SESSIONS_PER_USER)
        return _IssuedSession(access_token, refresh_token, session_id)

    def _touch_in_background(self, session_id: str) -> None:
        if not self._touch_slots.acquire(blocking=False):
            logger.debug("touch backlog full, skipped session=%s", session_id)
            return
        try:
            future = self.executor.submit(self.sessions.touch_last_used, session_id)
        except RuntimeError:
            # pool already shut down; last_used_at is best effort
            self._touch_slots.release()
            logger.debug("touch skipped for session=%s", session_id)
            return
        future.add_done_callback(self._touch_done)

    def _touch_done(self, future: Future) -> None:
        self._touch_slots.release()
        _log_touch_failure(future)
