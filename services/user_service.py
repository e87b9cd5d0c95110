"""
User Directory - registration, referral links and user snapshots

Registration creates the user aggregate in one transaction: the user row,
an empty three-bucket wallet and a NOT_STARTED KYC record.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from config import Config
from database import managed_session
from models import KycRecord, KycStatus, PlanTier, User, UserStatus, Wallet
from services.operation_result import ErrorKind, OperationResult
from services.plan_catalog import MAX_REFERRAL_DEPTH, get_plan
from services.wallet_ledger import wallet_snapshot
from utils.helpers import generate_referral_code, generate_user_id, utcnow

logger = logging.getLogger(__name__)

_REFERRAL_COUNT_COLUMNS = {1: "l1_count", 2: "l2_count", 3: "l3_count"}


def load_user(session: Session, user_id: str) -> Optional[User]:
    """User with wallet and KYC eagerly loaded"""
    return session.scalar(
        select(User)
        .options(selectinload(User.wallet), selectinload(User.kyc))
        .where(User.id == user_id)
    )


def referral_chain(user: User, depth: int = MAX_REFERRAL_DEPTH) -> List[User]:
    """Upstream referrers, nearest first, at most `depth` long"""
    chain: List[User] = []
    seen = {user.id}
    current = user.referrer
    while current is not None and len(chain) < depth and current.id not in seen:
        chain.append(current)
        seen.add(current.id)
        current = current.referrer
    return chain


def effective_plan_tier(user: User, now: datetime) -> PlanTier:
    """A paid plan past its expiry earns and limits like TRIAL"""
    tier = PlanTier(user.plan_tier)
    if tier != PlanTier.TRIAL and user.plan_expires_at is not None and user.plan_expires_at <= now:
        return PlanTier.TRIAL
    return tier


def serialize_user(user: User) -> Dict[str, Any]:
    kyc = user.kyc
    return {
        "id": user.id,
        "name": user.name,
        "phone": user.phone,
        "email": user.email,
        "status": user.status,
        "plan_tier": user.plan_tier,
        "plan_expires_at": user.plan_expires_at,
        "wallet": wallet_snapshot(user.wallet) if user.wallet else None,
        "kyc_status": kyc.status if kyc else KycStatus.NOT_STARTED.value,
        "daily_stats": {
            "date": user.daily_stats_date,
            "videos_watched": user.videos_today,
            "links_visited": user.links_today,
        },
        "unlock_progress": {
            "consecutive_days_active": user.consecutive_days_active,
            "last_active_date": user.last_active_date,
            "has_completed_withdrawal": user.has_completed_withdrawal,
        },
        "referral": {
            "code": user.referral_code,
            "referred_by": user.referred_by_id,
            "l1_count": user.l1_count,
            "l2_count": user.l2_count,
            "l3_count": user.l3_count,
            "total_earnings": Decimal(user.referral_earnings or 0),
        },
        "created_at": user.created_at,
    }


class UserService:
    """Creates users and serves read-only snapshots"""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or utcnow

    def _unique_referral_code(self, session: Session, name: str) -> str:
        while True:
            code = generate_referral_code(name)
            if session.scalar(select(User.id).where(User.referral_code == code)) is None:
                return code

    def register_user(
        self,
        name: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        referral_code: Optional[str] = None,
        tier: Union[PlanTier, str] = PlanTier.TRIAL,
    ) -> OperationResult:
        plan = get_plan(tier)
        if not name or not name.strip():
            return OperationResult.fail(ErrorKind.INVALID_INPUT, "Name is required")

        with managed_session(self.session_factory) as session:
            referrer = None
            if referral_code:
                referrer = session.scalar(select(User).where(User.referral_code == referral_code.upper()))
                if referrer is None:
                    logger.info(f"Registration with unknown referral code {referral_code}")
                    return OperationResult.fail(ErrorKind.NOT_FOUND, "Referral code not found")

            now = self.clock()
            user = User(
                id=generate_user_id(),
                name=name.strip(),
                phone=phone,
                email=email,
                status=UserStatus.ACTIVE.value,
                plan_tier=plan.tier.value,
                plan_expires_at=now + timedelta(days=plan.duration_days),
                videos_today=0,
                links_today=0,
                consecutive_days_active=0,
                has_completed_withdrawal=False,
                referral_code=self._unique_referral_code(session, name),
                referred_by_id=referrer.id if referrer else None,
                l1_count=0,
                l2_count=0,
                l3_count=0,
                referral_earnings=Decimal("0"),
                created_at=now,
            )
            user.referrer = referrer
            user.wallet = Wallet(
                currency=Config.LEDGER_CURRENCY,
                main_balance=Decimal("0"),
                pending_balance=Decimal("0"),
                bonus_balance=Decimal("0"),
            )
            user.kyc = KycRecord(status=KycStatus.NOT_STARTED.value)
            session.add(user)

            for level, upstream in enumerate(referral_chain(user), start=1):
                column = getattr(User, _REFERRAL_COUNT_COLUMNS[level])
                session.execute(
                    update(User)
                    .where(User.id == upstream.id)
                    .values({column: column + 1})
                    .execution_options(synchronize_session=False)
                )

            logger.info(
                f"👤 Registered {user.id} on {plan.tier.value}"
                + (f" referred by {referrer.id}" if referrer else "")
            )
            return OperationResult.ok(user=serialize_user(user))

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with managed_session(self.session_factory) as session:
            user = load_user(session, user_id)
            return serialize_user(user) if user else None

    def list_users(self, status: Optional[Union[UserStatus, str]] = None) -> List[Dict[str, Any]]:
        with managed_session(self.session_factory) as session:
            query = select(User).options(selectinload(User.wallet), selectinload(User.kyc)).order_by(User.created_at)
            if status is not None:
                value = status.value if isinstance(status, UserStatus) else status
                query = query.where(User.status == value)
            return [serialize_user(user) for user in session.scalars(query).all()]
