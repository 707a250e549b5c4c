"""
Session ledger: one row per login, keyed by the hashes of its tokens.

Raw tokens never reach the database; a leaked sessions table yields no usable
bearer credentials. A refresh rotates the access-token hash and expiry in place:
the session id and the refresh-token hash never change for the life of a login.
"""

import hashlib
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from r2s_auth.core.timeutils import utc_now
from r2s_auth.db.session import session_scope
from r2s_auth.models.sessions import AuthSession

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """sha256 hex digest used for session lookup and revocation keys."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionLedger:
    def __init__(self, session_factory: sessionmaker, clock: Callable = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def create(self, session: AuthSession) -> AuthSession:
        now = self.clock()
        if session.created_at is None:
            session.created_at = now
        if session.last_used_at is None:
            session.last_used_at = now
        with session_scope(self.session_factory) as db:
            db.add(session)
        return session

    def find_by_access_token_hash(self, token_hash: str) -> Optional[AuthSession]:
        with session_scope(self.session_factory) as db:
            return db.query(AuthSession).filter(AuthSession.token_hash == token_hash).first()

    def find_by_refresh_token_hash(self, token_hash: str) -> Optional[AuthSession]:
        with session_scope(self.session_factory) as db:
            return (
                db.query(AuthSession)
                .filter(AuthSession.refresh_token_hash == token_hash)
                .first()
            )

    def list_for_user(self, user_id: str) -> List[AuthSession]:
        with session_scope(self.session_factory) as db:
            return (
                db.query(AuthSession)
                .filter(AuthSession.user_id == user_id)
                .order_by(AuthSession.created_at.desc())
                .all()
            )

    def rotate_access_token(self, session_id: str, new_hash: str, new_expiry: datetime) -> bool:
        """
        Point the session at a freshly issued access token.

        Only token_hash, expires_at and last_used_at change. Concurrent refreshes
        of one session race here and the last writer wins.

        Returns:
            False when the session no longer exists (logged out meanwhile)
        """
        with session_scope(self.session_factory) as db:
            updated = (
                db.query(AuthSession)
                .filter(AuthSession.id == session_id)
                .update(
                    {
                        AuthSession.token_hash: new_hash,
                        AuthSession.expires_at: new_expiry,
                        AuthSession.last_used_at: self.clock(),
                    },
                    synchronize_session=False,
                )
            )
        return updated > 0

    def touch_last_used(self, session_id: str) -> None:
        with session_scope(self.session_factory) as db:
            db.query(AuthSession).filter(AuthSession.id == session_id).update(
                {AuthSession.last_used_at: self.clock()}, synchronize_session=False
            )

    def delete_by_access_token_hash(self, token_hash: str) -> int:
        with session_scope(self.session_factory) as db:
            return (
                db.query(AuthSession)
                .filter(AuthSession.token_hash == token_hash)
                .delete(synchronize_session=False)
            )

    def delete_by_user_id(self, user_id: str) -> int:
        with session_scope(self.session_factory) as db:
            return (
                db.query(AuthSession)
                .filter(AuthSession.user_id == user_id)
                .delete(synchronize_session=False)
            )

    def delete_old_sessions(self, user_id: str, keep_count: int) -> int:
        """Keep the ``keep_count`` newest sessions of a user and delete the rest."""
        if keep_count <= 0:
            return 0
        with session_scope(self.session_factory) as db:
            keep_ids = [
                row.id
                for row in db.query(AuthSession.id)
                .filter(AuthSession.user_id == user_id)
                .order_by(AuthSession.created_at.desc(), AuthSession.id)
                .limit(keep_count)
                .all()
            ]
            return (
                db.query(AuthSession)
                .filter(AuthSession.user_id == user_id, AuthSession.id.notin_(keep_ids))
                .delete(synchronize_session=False)
            )

    def delete_expired(self) -> int:
        """Drop sessions whose access token has expired. Called by the scheduler."""
        with session_scope(self.session_factory) as db:
            deleted = (
                db.query(AuthSession)
                .filter(AuthSession.expires_at < self.clock())
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info("pruned %d expired sessions", deleted)
        return deleted
