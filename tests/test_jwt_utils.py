from datetime import timedelta

import jwt
import pytest

from r2s_auth.core.config import Settings
from r2s_auth.core.errors import InvalidToken, TokenExpired
from r2s_auth.core.jwt_utils import TokenClaims, TokenIssuer, remaining_lifetime
from r2s_auth.core.timeutils import utc_now
from tests.conftest import TEST_ACCESS_SECRET, TEST_REFRESH_SECRET, FakeClock


@pytest.fixture
def issuer(settings) -> TokenIssuer:
    return TokenIssuer(settings)


def _claims() -> TokenClaims:
    return TokenClaims(
        user_id="user-1",
        session_id="session-1",
        address="0xabcdef0123456789000000000000000000000001",
        kyc_tier=2,
    )


class TestTokenIssuer:
    """Access/refresh token issuance and verification"""

    def test_access_token_round_trip(self, issuer):
        token = issuer.issue_access_token(_claims())
        claims = issuer.verify_access_token(token)
        assert claims.user_id == "user-1"
        assert claims.session_id == "session-1"
        assert claims.kyc_tier == 2
        assert claims.iss == "r2s-auth"
        assert claims.aud == "r2s-api"
        assert claims.exp - claims.iat == 15 * 60

    def test_refresh_token_lifetime_and_session(self, issuer):
        token = issuer.issue_refresh_token("user-1", None, session_id="session-1")
        claims = issuer.verify_refresh_token(token)
        assert claims.session_id == "session-1"
        assert claims.kyc_tier is None
        assert claims.exp - claims.iat == 7 * 24 * 3600

    def test_keys_are_not_interchangeable(self, issuer):
        access = issuer.issue_access_token(_claims())
        refresh = issuer.issue_refresh_token("user-1", None, session_id="session-1")
        with pytest.raises(InvalidToken):
            issuer.verify_refresh_token(access)
        with pytest.raises(InvalidToken):
            issuer.verify_access_token(refresh)

    def test_expired_token(self, issuer):
        token = issuer.issue_access_token(_claims(), now=utc_now() - timedelta(hours=1))
        with pytest.raises(TokenExpired):
            issuer.verify_access_token(token)

    def test_garbage_token(self, issuer):
        with pytest.raises(InvalidToken):
            issuer.verify_access_token("not.a.jwt")
        with pytest.raises(InvalidToken):
            issuer.verify_access_token("")

    def test_other_algorithm_is_rejected(self, issuer):
        now = int(utc_now().timestamp())
        payload = {
            "user_id": "user-1",
            "session_id": "session-1",
            "iss": "r2s-auth",
            "aud": "r2s-api",
            "iat": now,
            "exp": now + 600,
        }
        token = jwt.encode(payload, TEST_ACCESS_SECRET, algorithm="HS512")
        with pytest.raises(InvalidToken):
            issuer.verify_access_token(token)

    def test_wrong_audience_is_rejected(self, issuer):
        now = int(utc_now().timestamp())
        payload = {
            "user_id": "user-1",
            "session_id": "session-1",
            "iss": "r2s-auth",
            "aud": "someone-else",
            "iat": now,
            "exp": now + 600,
        }
        token = jwt.encode(payload, TEST_ACCESS_SECRET, algorithm="HS256")
        with pytest.raises(InvalidToken):
            issuer.verify_access_token(token)

    def test_tokens_in_same_second_differ(self, issuer):
        now = utc_now()
        first = issuer.issue_access_token(_claims(), now=now)
        second = issuer.issue_access_token(_claims(), now=now)
        assert first != second

    def test_remaining_lifetime(self, issuer):
        now = utc_now()
        claims = _claims()
        issuer.issue_access_token(claims, now=now)
        assert 15 * 60 - 1 <= remaining_lifetime(claims, now) <= 15 * 60
        assert remaining_lifetime(claims, now + timedelta(hours=1)) == 0


class TestTokenIssuerConfig:
    def test_missing_keys(self):
        with pytest.raises(RuntimeError):
            TokenIssuer(Settings(JWT_SECRET=None, JWT_REFRESH_SECRET=TEST_REFRESH_SECRET))

    def test_identical_keys(self):
        with pytest.raises(RuntimeError):
            TokenIssuer(Settings(JWT_SECRET=TEST_ACCESS_SECRET, JWT_REFRESH_SECRET=TEST_ACCESS_SECRET))


class TestTokenIssuerClock:
    """exp and iat are judged by the issuer's clock, not the wall clock"""

    def test_token_minted_ahead_of_wall_clock(self, settings):
        clock = FakeClock()
        issuer = TokenIssuer(settings, clock=clock)
        clock.advance(hours=2)

        token = issuer.issue_access_token(_claims())
        assert issuer.verify_access_token(token).session_id == "session-1"

    def test_expiry_uses_issuer_clock(self, settings):
        clock = FakeClock()
        issuer = TokenIssuer(settings, clock=clock)
        token = issuer.issue_access_token(_claims())

        clock.advance(minutes=14)
        issuer.verify_access_token(token)
        clock.advance(minutes=1)
        with pytest.raises(TokenExpired):
            issuer.verify_access_token(token)

    def test_token_from_the_future_is_rejected(self, settings):
        clock = FakeClock()
        issuer = TokenIssuer(settings, clock=clock)
        token = issuer.issue_access_token(_claims(), now=clock.now + timedelta(minutes=5))

        with pytest.raises(InvalidToken):
            issuer.verify_access_token(token)
