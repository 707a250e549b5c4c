import pytest
from sqlalchemy.orm import Query

from r2s_auth.core.errors import DuplicateIdentity, InvalidAddress
from r2s_auth.services.identity import IdentityResolver
from r2s_auth.services.line_client import SocialProfile

ADDRESS = "0xABCDEF0123456789000000000000000000000001"
OTHER_ADDRESS = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def resolver(session_factory, clock) -> IdentityResolver:
    return IdentityResolver(session_factory, clock=clock)


class TestWalletIdentity:
    """Users created and found by wallet address"""

    def test_first_login_creates_user(self, resolver: IdentityResolver, clock):
        user = resolver.resolve_or_create_by_wallet(ADDRESS)

        assert user.id
        assert user.wallet_address == ADDRESS.lower()
        assert user.kyc_tier == 0
        assert user.status == "active"
        assert user.social_id is None
        assert user.last_login_at == clock.now

    def test_later_login_returns_same_user(self, resolver: IdentityResolver, clock):
        first = resolver.resolve_or_create_by_wallet(ADDRESS)
        clock.advance(minutes=5)
        second = resolver.resolve_or_create_by_wallet(ADDRESS.lower())

        assert second.id == first.id
        assert second.last_login_at == clock.now

    def test_invalid_address(self, resolver: IdentityResolver):
        with pytest.raises(InvalidAddress):
            resolver.resolve_or_create_by_wallet("not-an-address")

    def test_get_user(self, resolver: IdentityResolver):
        user = resolver.resolve_or_create_by_wallet(ADDRESS)
        assert resolver.get_user(user.id).wallet_address == ADDRESS.lower()
        assert resolver.get_user("missing") is None

    def test_lost_create_race_is_duplicate_identity(self, resolver: IdentityResolver, monkeypatch):
        resolver.resolve_or_create_by_wallet(ADDRESS)
        # the lookup misses as if another instance inserted after it ran
        monkeypatch.setattr(Query, "first", lambda self: None)

        with pytest.raises(DuplicateIdentity):
            resolver.resolve_or_create_by_wallet(ADDRESS)


class TestSocialIdentity:
    """Users created and refreshed from LINE profiles"""

    def test_first_login_creates_user(self, resolver: IdentityResolver):
        profile = SocialProfile("U123", "Alice", "https://img/alice.png", "alice@example.com")
        user = resolver.resolve_or_create_by_social(profile)

        assert user.social_id == "U123"
        assert user.display_name == "Alice"
        assert user.email == "alice@example.com"
        assert user.wallet_address is None
        assert user.kyc_tier == 0

    def test_profile_is_refreshed(self, resolver: IdentityResolver):
        first = resolver.resolve_or_create_by_social(
            SocialProfile("U123", "Alice", "https://img/a.png", "alice@example.com")
        )
        second = resolver.resolve_or_create_by_social(
            SocialProfile("U123", "Alice B", "https://img/b.png", "other@example.com")
        )

        assert second.id == first.id
        assert second.display_name == "Alice B"
        assert second.avatar_url == "https://img/b.png"
        # an existing email is kept
        assert second.email == "alice@example.com"


class TestMergeWallet:
    """Linking a wallet onto an existing account"""

    def test_merge_onto_social_user(self, resolver: IdentityResolver):
        user = resolver.resolve_or_create_by_social(SocialProfile("U123", "Alice"))
        merged = resolver.merge_wallet_onto_user(user.id, ADDRESS)

        assert merged.id == user.id
        assert merged.wallet_address == ADDRESS.lower()
        assert resolver.resolve_or_create_by_wallet(ADDRESS).id == user.id

    def test_merge_same_address_is_noop(self, resolver: IdentityResolver):
        user = resolver.resolve_or_create_by_wallet(ADDRESS)
        assert resolver.merge_wallet_onto_user(user.id, ADDRESS).id == user.id

    def test_address_owned_by_another_user(self, resolver: IdentityResolver):
        resolver.resolve_or_create_by_wallet(ADDRESS)
        social = resolver.resolve_or_create_by_social(SocialProfile("U123", "Alice"))

        with pytest.raises(DuplicateIdentity):
            resolver.merge_wallet_onto_user(social.id, ADDRESS)

    def test_user_already_has_other_wallet(self, resolver: IdentityResolver):
        user = resolver.resolve_or_create_by_wallet(ADDRESS)
        with pytest.raises(DuplicateIdentity):
            resolver.merge_wallet_onto_user(user.id, OTHER_ADDRESS)

    def test_unknown_user(self, resolver: IdentityResolver):
        with pytest.raises(LookupError):
            resolver.merge_wallet_onto_user("missing", ADDRESS)

    def test_invalid_address(self, resolver: IdentityResolver):
        user = resolver.resolve_or_create_by_social(SocialProfile("U123", "Alice"))
        with pytest.raises(InvalidAddress):
            resolver.merge_wallet_onto_user(user.id, "nope")
