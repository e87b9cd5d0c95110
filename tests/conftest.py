"""
Shared fixtures for the FairTask ledger test suites

Key Components:
1. A fresh in-memory SQLite store per test, created and seeded by init_db
2. A controllable clock injected into every service
3. Factories for users (plan, balances, KYC, streak) and admins (role)
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import select

from config import Config
from database import create_ledger_engine, create_session_factory, init_db, managed_session
from models import AdminAccount, AdminRole, KycStatus, LedgerEntry, PlanTier, User, UserStatus
from services.admin_service import AdminOperations
from services.atomic_lock_manager import AtomicLockManager
from services.rules_engine import RulesEngine
from services.user_service import UserService, load_user
from utils.helpers import generate_admin_id

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

ROOT_ADMIN_ID = Config.ROOT_ADMIN_ID


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 10, 12, 0, 0))


@pytest.fixture
def engine():
    engine = create_ledger_engine("sqlite:///:memory:", echo=False)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = create_session_factory(engine)
    init_db(engine, factory)
    return factory


@pytest.fixture
def lock_manager():
    return AtomicLockManager()


@pytest.fixture
def user_service(session_factory, clock):
    return UserService(session_factory, clock)


@pytest.fixture
def rules_engine(session_factory, lock_manager, clock):
    return RulesEngine(session_factory, lock_manager, clock)


@pytest.fixture
def admin_ops(session_factory, lock_manager, clock):
    return AdminOperations(session_factory, lock_manager, clock)


@pytest.fixture
def make_user(session_factory, user_service):
    """Register a user, then force plan, balances, KYC and unlock progress"""

    def _make_user(
        name: str = "Test User",
        tier: PlanTier = PlanTier.TRIAL,
        main: str = "0",
        pending: str = "0",
        bonus: str = "0",
        kyc: KycStatus = KycStatus.NOT_STARTED,
        status: UserStatus = UserStatus.ACTIVE,
        referral_code: Optional[str] = None,
        consecutive_days: int = 0,
        has_completed_withdrawal: bool = False,
    ) -> str:
        result = user_service.register_user(name, referral_code=referral_code, tier=tier)
        assert result.success, result.error_message
        user_id = result.data["user"]["id"]

        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            user.status = status.value
            user.wallet.main_balance = Decimal(main)
            user.wallet.pending_balance = Decimal(pending)
            user.wallet.bonus_balance = Decimal(bonus)
            user.kyc.status = kyc.value
            user.consecutive_days_active = consecutive_days
            user.has_completed_withdrawal = has_completed_withdrawal
        return user_id

    return _make_user


@pytest.fixture
def make_admin(session_factory, clock):
    def _make_admin(role: AdminRole, extra_capabilities=None, is_active: bool = True) -> str:
        admin_id = generate_admin_id()
        with managed_session(session_factory) as session:
            session.add(AdminAccount(
                id=admin_id,
                name=f"{role.value.title()} Tester",
                role=role.value,
                extra_capabilities=extra_capabilities,
                is_active=is_active,
                created_at=clock(),
                created_by=ROOT_ADMIN_ID,
            ))
        return admin_id

    return _make_admin


@pytest.fixture
def wallet_of(session_factory):
    """Fresh read of a user's three buckets"""

    def _wallet_of(user_id: str) -> dict:
        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            return {
                "main": Decimal(user.wallet.main_balance),
                "pending": Decimal(user.wallet.pending_balance),
                "bonus": Decimal(user.wallet.bonus_balance),
            }

    return _wallet_of


@pytest.fixture
def user_row(session_factory):
    """Detached snapshot of the user row"""

    def _user_row(user_id: str) -> User:
        with managed_session(session_factory) as session:
            return load_user(session, user_id)

    return _user_row


@pytest.fixture
def entries_of(session_factory):
    """Ledger entries of a user in append order, optionally filtered by type"""

    def _entries_of(user_id: str, transaction_type=None) -> list:
        with managed_session(session_factory) as session:
            query = select(LedgerEntry).where(LedgerEntry.user_id == user_id).order_by(LedgerEntry.id)
            if transaction_type is not None:
                query = query.where(LedgerEntry.transaction_type == transaction_type.value)
            return list(session.scalars(query).all())

    return _entries_of
