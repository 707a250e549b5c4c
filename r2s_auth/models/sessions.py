import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.sql import func

from r2s_auth.db.base import Base


class AuthSession(Base):
    """One row per login. Only sha256 hashes of the tokens are stored.
    Example:
    {
        "id": "1b4e28ba-2fa1-11d2-883f-0016d3cca427",
        "user_id": "550e8400-e29b-41d4-a716-446655440000",
        "token_hash": "9f86d081884c7d65...",
        "refresh_token_hash": "60303ae22b998861...",
        "ip_address": "203.0.113.7",
        "user_agent": "Mozilla/5.0 ...",
        "expires_at": "2024-01-01T12:15:00",
        "refresh_expires_at": "2024-01-08T12:00:00"
    }
    """

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = Column(String(64), nullable=False, unique=True)
    refresh_token_hash = Column(String(64), nullable=True, unique=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_fingerprint = Column(String(255), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    refresh_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_used_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
