"""
Identity resolution: wallet address or LINE profile -> durable User row.

First sight of an identity creates the user; later logins stamp last_login_at
(and refresh the LINE display name/avatar). Concurrent first logins race on the
unique constraints of the users table; the loser gets ``DuplicateIdentity`` and
the caller retries the lookup.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from r2s_auth.core.errors import DuplicateIdentity, InvalidAddress
from r2s_auth.core.timeutils import utc_now
from r2s_auth.core.wallet_auth import is_valid_address, normalize_address
from r2s_auth.db.session import session_scope
from r2s_auth.models.users import User
from r2s_auth.services.line_client import SocialProfile

logger = logging.getLogger(__name__)


class IdentityResolver:
    def __init__(self, session_factory: sessionmaker, clock: Callable = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def get_user(self, user_id: str) -> Optional[User]:
        with session_scope(self.session_factory) as db:
            return db.get(User, user_id)

    def resolve_or_create_by_wallet(self, address: str) -> User:
        """Look up the user owning ``address``, creating it on first login."""
        if not is_valid_address(address):
            raise InvalidAddress()
        wallet_address = normalize_address(address)
        now = self.clock()

        try:
            with session_scope(self.session_factory) as db:
                user = db.query(User).filter(User.wallet_address == wallet_address).first()
                if user is None:
                    user = User(
                        wallet_address=wallet_address,
                        kyc_tier=0,
                        status="active",
                        created_at=now,
                        updated_at=now,
                        last_login_at=now,
                    )
                    db.add(user)
                    db.flush()
                    logger.info("created user %s from wallet login", user.id)
                else:
                    user.last_login_at = now
                return user
        except IntegrityError as e:
            raise DuplicateIdentity() from e

    def resolve_or_create_by_social(self, profile: SocialProfile) -> User:
        """Look up the user owning the LINE id, creating or refreshing its profile."""
        now = self.clock()
        try:
            with session_scope(self.session_factory) as db:
                user = db.query(User).filter(User.social_id == profile.user_id).first()
                if user is None:
                    user = User(
                        social_id=profile.user_id,
                        display_name=profile.display_name,
                        avatar_url=profile.avatar_url,
                        email=profile.email,
                        kyc_tier=0,
                        status="active",
                        created_at=now,
                        updated_at=now,
                        last_login_at=now,
                    )
                    db.add(user)
                    db.flush()
                    logger.info("created user %s from LINE login", user.id)
                else:
                    # LINE users can rename themselves or change their picture
                    user.display_name = profile.display_name
                    user.avatar_url = profile.avatar_url
                    if profile.email and not user.email:
                        user.email = profile.email
                    user.updated_at = now
                    user.last_login_at = now
                return user
        except IntegrityError as e:
            raise DuplicateIdentity() from e

    def merge_wallet_onto_user(self, user_id: str, address: str) -> User:
        """
        Attach a wallet address to an existing (typically LINE) user.

        Raises:
            InvalidAddress: malformed address
            DuplicateIdentity: the address already belongs to another user, or
                this user already carries a different address
            LookupError: no such user
        """
        if not is_valid_address(address):
            raise InvalidAddress()
        wallet_address = normalize_address(address)

        try:
            with session_scope(self.session_factory) as db:
                user = db.get(User, user_id)
                if user is None:
                    raise LookupError(f"user {user_id} not found")
                if user.wallet_address == wallet_address:
                    return user
                if user.wallet_address is not None:
                    raise DuplicateIdentity("Account already has a wallet linked")

                owner = db.query(User).filter(User.wallet_address == wallet_address).first()
                if owner is not None:
                    raise DuplicateIdentity()

                user.wallet_address = wallet_address
                user.updated_at = self.clock()
                db.flush()
                logger.info("linked wallet to user %s", user.id)
                return user
        except IntegrityError as e:
            raise DuplicateIdentity() from e
