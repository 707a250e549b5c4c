from r2s_auth.core.cache import CacheManager

REVOKED_PREFIX = "revoked:"


class RevocationList:
    """Denylist of access-token hashes that must fail before their JWT expiry."""

    def __init__(self, cache: CacheManager):
        self.cache = cache

    def revoke(self, token_hash: str, ttl_seconds: int) -> bool:
        """Deny ``token_hash`` for ``ttl_seconds``. No-op for a non-positive TTL."""
        if ttl_seconds <= 0:
            return False
        self.cache.set(REVOKED_PREFIX + token_hash, "1", ttl_seconds)
        return True

    def is_revoked(self, token_hash: str) -> bool:
        return self.cache.exists(REVOKED_PREFIX + token_hash)
