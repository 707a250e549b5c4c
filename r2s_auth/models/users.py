import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from r2s_auth.db.base import Base

USER_STATUSES = ("active", "suspended", "deleted")


class User(Base):
    """Model for users table
    Example:
    {
        "id": "550e8400-e29b-41d4-a716-446655440000",
        "wallet_address": "0xabcdef0123456789000000000000000000000001",
        "social_id": null,
        "kyc_tier": 0,
        "status": "active",
        "created_at": "2024-01-01T12:00:00",
        "last_login_at": "2024-01-01T12:00:00"
    }
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "wallet_address IS NOT NULL OR social_id IS NOT NULL",
            name="ck_users_has_identity",
        ),
        CheckConstraint("kyc_tier >= 0 AND kyc_tier <= 3", name="ck_users_kyc_tier"),
        CheckConstraint(
            "status IN ('active', 'suspended', 'deleted')", name="ck_users_status"
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # lower-cased 0x address
    wallet_address = Column(String(42), nullable=True, unique=True)
    # LINE user id
    social_id = Column(String(64), nullable=True, unique=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    email = Column(String(255), nullable=True)
    kyc_tier = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
