import threading
from datetime import datetime, timezone

import pytest

from r2s_auth.core.errors import InvalidOrExpiredNonce, MalformedMessage
from r2s_auth.services.challenge_store import (
    ChallengeStore,
    build_message,
    nonce_key,
    parse_message,
)
from tests.conftest import FakeClock

ADDRESS = "0xABCDEF0123456789000000000000000000000001"


@pytest.fixture
def store(cache, settings) -> ChallengeStore:
    clock = FakeClock(datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc))
    return ChallengeStore(cache, settings, clock=clock)


class TestMessageFormat:
    """The exact text a wallet is asked to sign"""

    def test_issue_builds_expected_message(self, store: ChallengeStore):
        issued = store.issue(ADDRESS, "1001")

        expected = (
            "https://r2s.io wants you to sign in with your wallet:\n"
            f"{ADDRESS}\n"
            "\n"
            "URI: https://r2s.io\n"
            "Version: 1\n"
            "Chain ID: 1001\n"
            f"Nonce: {issued.nonce}\n"
            "Issued At: 2024-01-01T12:00:00Z\n"
            "Expiration Time: 2024-01-01T12:06:00Z\n"
            f"Request ID: {issued.request_id}\n"
            "Statement: Sign to authenticate with R2S platform."
        )
        assert issued.message == expected
        assert issued.expires_at == "2024-01-01T12:06:00Z"
        assert len(issued.nonce) == 32

    def test_default_chain_id(self, store: ChallengeStore):
        issued = store.issue(ADDRESS)
        assert "Chain ID: 1001\n" in issued.message

    def test_parse_round_trips_issued_fields(self, store: ChallengeStore):
        issued = store.issue(ADDRESS, "8217")
        parsed = parse_message(issued.message)

        assert parsed.address == ADDRESS
        assert parsed.chain_id == "8217"
        assert parsed.nonce == issued.nonce
        assert parsed.request_id == issued.request_id
        assert parsed.expires_at == datetime(2024, 1, 1, 12, 6, tzinfo=timezone.utc)

    @pytest.mark.parametrize("message", [
        "",
        "hello",
        build_message("https://r2s.io", ADDRESS, "1001", "XYZ", "a", "2024-01-01T12:06:00Z", "r"),
        build_message("https://r2s.io", ADDRESS, "1001", "a" * 32, "a", "tomorrow", "r"),
        build_message("https://r2s.io", ADDRESS, "1001", "a" * 32, "a", "2024-01-01T12:06:00Z", "r") + "\n",
    ])
    def test_malformed_messages(self, message):
        with pytest.raises(MalformedMessage):
            parse_message(message)


class TestConsume:
    """Single-use redemption of nonces"""

    def test_consume_once(self, store: ChallengeStore):
        issued = store.issue(ADDRESS, "1001")

        challenge = store.consume(issued.nonce)
        assert challenge.address == ADDRESS.lower()
        assert challenge.request_id == issued.request_id
        assert challenge.chain_id == "1001"

        with pytest.raises(InvalidOrExpiredNonce):
            store.consume(issued.nonce)

    def test_unknown_nonce(self, store: ChallengeStore):
        with pytest.raises(InvalidOrExpiredNonce):
            store.consume("0" * 32)

    def test_concurrent_consume_succeeds_once(self, store: ChallengeStore):
        issued = store.issue(ADDRESS, "1001")
        workers = 8
        barrier = threading.Barrier(workers)
        redeemed, rejected = [], []

        def redeem():
            barrier.wait()
            try:
                redeemed.append(store.consume(issued.nonce))
            except InvalidOrExpiredNonce:
                rejected.append(True)

        threads = [threading.Thread(target=redeem) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(redeemed) == 1
        assert len(rejected) == workers - 1

    def test_nonce_is_stored_hashed(self, store: ChallengeStore, cache):
        issued = store.issue(ADDRESS, "1001")

        assert list(cache.memory_cache) == [nonce_key(issued.nonce)]
        assert issued.nonce not in nonce_key(issued.nonce)

    def test_record_ttl_matches_expiry(self, store: ChallengeStore, cache, monkeypatch):
        now = [500.0]
        monkeypatch.setattr("r2s_auth.core.cache.time.monotonic", lambda: now[0])
        issued = store.issue(ADDRESS, "1001")

        now[0] += 6 * 60
        with pytest.raises(InvalidOrExpiredNonce):
            store.consume(issued.nonce)
