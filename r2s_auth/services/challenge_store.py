"""
Single-use sign-in challenges.

A challenge is a random nonce plus the EIP-4361 style message the wallet signs.
The nonce record lives in the cache under the sha256 of the nonce with a hard
TTL and is consumed with an atomic get-and-delete, so it can be redeemed once.

The message layout is part of the verification contract: the wallet signs these
exact bytes, so any change to the template (whitespace included) invalidates
every outstanding challenge.
"""

import hashlib
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from r2s_auth.core.cache import CacheManager
from r2s_auth.core.config import Settings
from r2s_auth.core.errors import InvalidChainId, InvalidOrExpiredNonce, MalformedMessage
from r2s_auth.core.timeutils import format_iso, parse_iso, utc_now
from r2s_auth.core.wallet_auth import generate_nonce, normalize_address

NONCE_PREFIX = "nonce:"
MESSAGE_VERSION = "1"
STATEMENT = "Sign to authenticate with R2S platform."
CHAIN_ID_PATTERN = re.compile(r"\A[A-Za-z0-9_]{1,32}\Z")

MESSAGE_TEMPLATE = (
    "{domain} wants you to sign in with your wallet:\n"
    "{address}\n"
    "\n"
    "URI: {domain}\n"
    "Version: {version}\n"
    "Chain ID: {chain_id}\n"
    "Nonce: {nonce}\n"
    "Issued At: {issued_at}\n"
    "Expiration Time: {expires_at}\n"
    "Request ID: {request_id}\n"
    "Statement: {statement}"
)

MESSAGE_PATTERN = re.compile(
    r"\A(?P<domain>\S+) wants you to sign in with your wallet:\n"
    r"(?P<address>\S+)\n"
    r"\n"
    r"URI: (?P<uri>\S+)\n"
    r"Version: " + re.escape(MESSAGE_VERSION) + r"\n"
    r"Chain ID: (?P<chain_id>\S+)\n"
    r"Nonce: (?P<nonce>[a-f0-9]{32})\n"
    r"Issued At: (?P<issued_at>\S+)\n"
    r"Expiration Time: (?P<expires_at>\S+)\n"
    r"Request ID: (?P<request_id>\S+)\n"
    r"Statement: " + re.escape(STATEMENT) + r"\Z"
)


@dataclass(frozen=True)
class IssuedChallenge:
    nonce: str
    message: str
    request_id: str
    expires_at: str


@dataclass(frozen=True)
class Challenge:
    """A consumed nonce record."""

    address: str
    chain_id: str
    request_id: str
    expires_at: datetime


@dataclass(frozen=True)
class ChallengeMessage:
    """Fields read back from a signed challenge message."""

    domain: str
    uri: str
    address: str
    chain_id: str
    nonce: str
    issued_at: str
    expires_at: datetime
    request_id: str


def nonce_key(nonce: str) -> str:
    return NONCE_PREFIX + hashlib.sha256(nonce.encode("utf-8")).hexdigest()


def build_message(
    domain: str,
    address: str,
    chain_id: str,
    nonce: str,
    issued_at: str,
    expires_at: str,
    request_id: str,
) -> str:
    return MESSAGE_TEMPLATE.format(
        domain=domain,
        address=address,
        version=MESSAGE_VERSION,
        chain_id=chain_id,
        nonce=nonce,
        issued_at=issued_at,
        expires_at=expires_at,
        request_id=request_id,
        statement=STATEMENT,
    )


def parse_message(message: str) -> ChallengeMessage:
    """
    Match ``message`` against the challenge template.

    Raises:
        MalformedMessage: the text does not follow the template or its
            expiration time is not a valid timestamp
    """
    match = MESSAGE_PATTERN.match(message or "")
    if match is None:
        raise MalformedMessage()
    try:
        expires_at = parse_iso(match.group("expires_at"))
    except ValueError:
        raise MalformedMessage()
    return ChallengeMessage(
        domain=match.group("domain"),
        uri=match.group("uri"),
        address=match.group("address"),
        chain_id=match.group("chain_id"),
        nonce=match.group("nonce"),
        issued_at=match.group("issued_at"),
        expires_at=expires_at,
        request_id=match.group("request_id"),
    )


class ChallengeStore:
    def __init__(self, cache: CacheManager, settings: Settings, clock: Callable = utc_now):
        self.cache = cache
        self.domain = settings.APP_URL
        self.ttl_seconds = settings.NONCE_EXPIRY_SECONDS
        self.default_chain_id = settings.DEFAULT_CHAIN_ID
        self.clock = clock

    def issue(self, address: str, chain_id: Optional[str] = None) -> IssuedChallenge:
        """Create a nonce for ``address`` and the message the wallet must sign."""
        chain_id = (chain_id or "").strip() or self.default_chain_id
        if not CHAIN_ID_PATTERN.match(chain_id):
            raise InvalidChainId()
        nonce = generate_nonce()
        request_id = str(uuid.uuid4())
        now = self.clock().replace(microsecond=0)
        issued_at = format_iso(now)
        expires_at = format_iso(now + timedelta(seconds=self.ttl_seconds))

        message = build_message(
            self.domain, address, chain_id, nonce, issued_at, expires_at, request_id
        )
        self.cache.set(
            nonce_key(nonce),
            {
                "address": normalize_address(address),
                "chainId": chain_id,
                "requestId": request_id,
                "expiresAt": expires_at,
            },
            self.ttl_seconds,
        )
        return IssuedChallenge(
            nonce=nonce, message=message, request_id=request_id, expires_at=expires_at
        )

    def consume(self, nonce: str) -> Challenge:
        """
        Redeem ``nonce``. Succeeds at most once per nonce.

        Raises:
            InvalidOrExpiredNonce: unknown, already consumed, or expired from the cache
        """
        record = self.cache.getdel(nonce_key(nonce))
        if not isinstance(record, dict):
            raise InvalidOrExpiredNonce()
        try:
            return Challenge(
                address=record["address"],
                chain_id=record["chainId"],
                request_id=record["requestId"],
                expires_at=parse_iso(record["expiresAt"]),
            )
        except (KeyError, TypeError, ValueError):
            raise InvalidOrExpiredNonce()

    def matches(self, challenge: Challenge, parsed: ChallengeMessage) -> bool:
        """True when the signed message names this service, the challenge's chain and its expiry."""
        return (
            parsed.domain == self.domain
            and parsed.uri == self.domain
            and parsed.chain_id == challenge.chain_id
            and parsed.expires_at == challenge.expires_at
        )
