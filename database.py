"""
Database Configuration and Session Management
============================================

Engine and session factory construction for the earnings ledger. Services
never import a module-level session; they receive a session factory so the
backend can be swapped and tests stay isolated.
"""

import logging
import threading
import weakref
from contextlib import contextmanager, nullcontext
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base, EmergencyState, SystemSettings, AdminAccount, AdminRole
from utils.helpers import utcnow

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1
EMERGENCY_ROW_ID = 1

# Engines whose sessions all share one DBAPI connection, with the lock that
# keeps their transactions from interleaving on it
_shared_connection_locks: "weakref.WeakKeyDictionary[Engine, threading.RLock]" = weakref.WeakKeyDictionary()
_shared_connection_guard = threading.Lock()


class LedgerStoreError(Exception):
    """Fatal persistence failure, distinct from business-rule rejections"""
    pass


def create_ledger_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create the SQLAlchemy engine for the ledger store"""
    url = database_url or Config.DATABASE_URL
    echo = Config.SQL_ECHO if echo is None else echo

    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection so every session sees the same in-memory database.
        # managed_session serializes transactions on it across threads.
        engine = create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    elif url.startswith("sqlite"):
        engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, echo=echo, pool_pre_ping=True, pool_recycle=3600)

    logger.info(f"🗄️ Ledger engine created for {url.split('://')[0]}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory injected into every service"""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(engine: Engine, session_factory: sessionmaker) -> None:
    """Create tables and seed the settings, emergency and root admin rows"""
    Base.metadata.create_all(engine)

    with managed_session(session_factory) as session:
        if session.get(SystemSettings, SETTINGS_ROW_ID) is None:
            session.add(SystemSettings(
                id=SETTINGS_ROW_ID,
                platform_fee_percent=Config.DEFAULT_PLATFORM_FEE_PERCENT,
                transaction_fee_percent=Config.DEFAULT_TRANSACTION_FEE_PERCENT,
                min_withdrawal_trial=Config.DEFAULT_MIN_WITHDRAWAL_TRIAL,
                min_withdrawal_paid=Config.DEFAULT_MIN_WITHDRAWAL_PAID,
                referrals_enabled=Config.DEFAULT_REFERRALS_ENABLED,
                maintenance_mode=Config.DEFAULT_MAINTENANCE_MODE,
            ))
            logger.info("⚙️ System settings seeded from configuration defaults")

        if session.get(EmergencyState, EMERGENCY_ROW_ID) is None:
            session.add(EmergencyState(
                id=EMERGENCY_ROW_ID,
                withdrawals_paused=False,
                earnings_paused=False,
                referrals_paused=False,
            ))

        if session.get(AdminAccount, Config.ROOT_ADMIN_ID) is None:
            session.add(AdminAccount(
                id=Config.ROOT_ADMIN_ID,
                name=Config.ROOT_ADMIN_NAME,
                role=AdminRole.SUPER_ADMIN.value,
                is_active=True,
                created_at=utcnow(),
            ))
            logger.info(f"👑 Root admin {Config.ROOT_ADMIN_ID} seeded")


def shared_connection_lock(session_factory: sessionmaker) -> Optional[threading.RLock]:
    """Transaction lock for a single-connection engine, None for pooled engines"""
    engine = session_factory.kw.get("bind")
    if not isinstance(engine, Engine) or not isinstance(engine.pool, StaticPool):
        return None
    with _shared_connection_guard:
        lock = _shared_connection_locks.get(engine)
        if lock is None:
            lock = threading.RLock()
            _shared_connection_locks[engine] = lock
        return lock


@contextmanager
def managed_session(session_factory: sessionmaker):
    """Commit-or-rollback session scope; persistence faults surface as LedgerStoreError"""
    store_lock = shared_connection_lock(session_factory)
    with store_lock if store_lock is not None else nullcontext():
        session: Session = session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise LedgerStoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
