import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from r2s_auth.core.config import Settings
from r2s_auth.core.errors import UpstreamUnavailable
from r2s_auth.db.base import Base

logger = logging.getLogger(__name__)


def make_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine for the users/sessions store."""
    connect_args = {}
    if not settings.DATABASE_URL.startswith("sqlite"):
        connect_args["connect_timeout"] = 30
    return create_engine(
        settings.DATABASE_URL,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )


def init_db(engine: Engine) -> None:
    """Create missing tables. Migrations proper are owned by the platform."""
    import r2s_auth.models.sessions  # noqa: F401
    import r2s_auth.models.users  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Open a session, commit on success and roll back on error.

    Connection-level failures become ``UpstreamUnavailable``; every other
    exception propagates unchanged after rollback.
    """
    db = factory()
    try:
        yield db
        db.commit()
    except (OperationalError, InterfaceError) as e:
        db.rollback()
        logger.error("database unavailable: %s", e.__class__.__name__)
        raise UpstreamUnavailable() from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
