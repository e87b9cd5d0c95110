"""
Rules Engine - task rewards, withdrawals, bonus unlock, referrals and leaderboards

Every user-facing mutation runs read-validate-mutate-append under the
user's lock and inside one database transaction. Business rejections come
back as OperationResult failures; only persistence faults raise.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from config import Config
from database import managed_session
from models import (
    EmergencyFlag,
    KycDocumentType,
    KycRecord,
    KycStatus,
    LeaderboardTimeframe,
    LedgerEntry,
    PlanTier,
    TaskType,
    TransactionStatus,
    TransactionType,
    User,
    UserStatus,
    WalletBucket,
    WithdrawalMethod,
    WithdrawalRequest,
)
from services.atomic_lock_manager import AtomicLockManager, LockOperationType
from services.emergency_control_service import EmergencyGate
from services.operation_result import ErrorKind, OperationResult
from services.plan_catalog import UNLOCK_RULES, get_plan, leaderboard_reward, referral_rate
from services.settings_service import SettingsService
from services.user_service import effective_plan_tier, load_user, referral_chain
from services.wallet_ledger import WalletLedger
from utils.financial import FinancialCalculator
from utils.helpers import generate_withdrawal_id, utcnow

logger = logging.getLogger(__name__)

_EARN_TYPES = {
    TaskType.VIDEO: TransactionType.EARN_VIDEO,
    TaskType.LINK: TransactionType.EARN_LINK,
}

_LEADERBOARD_WINDOWS = {
    LeaderboardTimeframe.DAILY: timedelta(days=1),
    LeaderboardTimeframe.WEEKLY: timedelta(days=7),
    LeaderboardTimeframe.MONTHLY: timedelta(days=30),
    LeaderboardTimeframe.YEARLY: timedelta(days=365),
    LeaderboardTimeframe.LIFETIME: None,
}

# Deepest paid rank per board
_LEADERBOARD_PAID_RANKS = {
    LeaderboardTimeframe.DAILY: 3,
    LeaderboardTimeframe.WEEKLY: 5,
    LeaderboardTimeframe.MONTHLY: 10,
}


def serialize_withdrawal(request: WithdrawalRequest) -> Dict[str, Any]:
    return {
        "id": request.withdrawal_id,
        "user_id": request.user_id,
        "amount": Decimal(request.amount),
        "platform_fee": Decimal(request.platform_fee),
        "transaction_fee": Decimal(request.transaction_fee),
        "net_amount": Decimal(request.net_amount),
        "method": request.method,
        "details": request.details,
        "status": request.status,
        "user_kyc_status": request.user_kyc_status,
        "ledger_entry_id": request.ledger_entry_id,
        "created_at": request.created_at,
        "processed_at": request.processed_at,
        "processed_by": request.processed_by,
    }


def serialize_kyc(kyc: KycRecord) -> Dict[str, Any]:
    return {
        "user_id": kyc.user_id,
        "status": kyc.status,
        "full_name": kyc.full_name,
        "document_type": kyc.document_type,
        "document_number": kyc.document_number,
        "document_image_front": kyc.document_image_front,
        "document_image_back": kyc.document_image_back,
        "submitted_at": kyc.submitted_at,
        "reviewed_at": kyc.reviewed_at,
        "reviewed_by": kyc.reviewed_by,
        "rejection_reason": kyc.rejection_reason,
    }


def list_withdrawals(
    session_factory: sessionmaker,
    user_id: Optional[str] = None,
    status: Optional[Union[TransactionStatus, str]] = None,
) -> List[Dict[str, Any]]:
    """Withdrawal requests, newest first"""
    with managed_session(session_factory) as session:
        query = select(WithdrawalRequest).order_by(WithdrawalRequest.id.desc())
        if user_id:
            query = query.where(WithdrawalRequest.user_id == user_id)
        if status is not None:
            value = status.value if isinstance(status, TransactionStatus) else status
            query = query.where(WithdrawalRequest.status == value)
        return [serialize_withdrawal(request) for request in session.scalars(query).all()]


def parse_timeframe(timeframe: Union[LeaderboardTimeframe, str]) -> Optional[LeaderboardTimeframe]:
    if isinstance(timeframe, LeaderboardTimeframe):
        return timeframe
    try:
        return LeaderboardTimeframe(timeframe)
    except ValueError:
        return None


def mask_name(name: str) -> str:
    """Public leaderboard name: first two letters and a mask"""
    visible = name.strip()[:2]
    return f"{visible}***"


def record_daily_activity(user: User, today: date) -> int:
    """Advance the consecutive-day streak and return it"""
    last = user.last_active_date
    if last == today:
        return user.consecutive_days_active
    if last is not None and last == today - timedelta(days=1):
        user.consecutive_days_active += 1
    else:
        user.consecutive_days_active = 1
    user.last_active_date = today
    return user.consecutive_days_active


def is_bonus_unlockable(user: User) -> bool:
    """Either condition is enough"""
    return (
        user.consecutive_days_active >= UNLOCK_RULES["REQUIRED_DAYS"]
        or bool(user.has_completed_withdrawal)
    )


class RulesEngine:
    """User-facing ledger operations"""

    def __init__(
        self,
        session_factory: sessionmaker,
        lock_manager: Optional[AtomicLockManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or utcnow
        self.locks = lock_manager or AtomicLockManager()
        self.ledger = WalletLedger(session_factory, self.clock)
        self.emergency = EmergencyGate(session_factory, self.clock)
        self.settings = SettingsService(session_factory, self.clock)

    # ------------------------------------------------------------------
    # Task completion
    # ------------------------------------------------------------------

    @staticmethod
    def _tasks_today(user: User, task_type: TaskType, today: date) -> int:
        if user.daily_stats_date != today:
            return 0
        return user.videos_today if task_type == TaskType.VIDEO else user.links_today

    def complete_task(self, user_id: str, task_type: Union[TaskType, str]) -> OperationResult:
        try:
            task = task_type if isinstance(task_type, TaskType) else TaskType(task_type)
        except ValueError:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown task type {task_type!r}")

        with self.locks.user_lock(user_id, LockOperationType.TASK_COMPLETION):
            with managed_session(self.session_factory) as session:
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")

                if self.emergency.is_paused_in(session, EmergencyFlag.EARNINGS_PAUSED):
                    logger.warning(f"⛔ Task rejected for {user_id}: earnings paused")
                    return OperationResult.fail(ErrorKind.EMERGENCY_PAUSED, "Earnings are temporarily paused")

                if self.settings.settings_row(session).maintenance_mode:
                    return OperationResult.fail(ErrorKind.MAINTENANCE_MODE, "Platform is under maintenance")

                now = self.clock()
                today = now.date()
                plan = get_plan(effective_plan_tier(user, now))
                done = self._tasks_today(user, task, today)
                limit = plan.daily_limit(task)
                if done >= limit:
                    logger.info(f"Daily {task.value} limit {limit} reached for {user_id}")
                    return OperationResult.fail(
                        ErrorKind.LIMIT_REACHED,
                        f"Daily {task.value.lower()} limit of {limit} reached",
                        limit=limit,
                    )

                if user.status != UserStatus.ACTIVE.value:
                    return OperationResult.fail(ErrorKind.ACCOUNT_NOT_ACTIVE, f"Account is {user.status}")

                # Checks passed - mutate
                if user.daily_stats_date != today:
                    user.daily_stats_date = today
                    user.videos_today = 0
                    user.links_today = 0

                reward = plan.per_task_reward(task)
                entry = self.ledger.credit(
                    session, user, WalletBucket.PENDING, reward, _EARN_TYPES[task],
                    f"{task.value.title()} task reward ({plan.tier.value})",
                    status=TransactionStatus.PENDING,
                )
                if task == TaskType.VIDEO:
                    user.videos_today += 1
                    tasks_today = user.videos_today
                else:
                    user.links_today += 1
                    tasks_today = user.links_today
                record_daily_activity(user, today)
                user.updated_at = now

                commissions = self.credit_referral_commissions(
                    session, user, reward, "TASK", reference_id=entry.transaction_id
                )

                return OperationResult.ok(
                    reward=reward,
                    pending_balance=self.ledger.balance(user.wallet, WalletBucket.PENDING),
                    tasks_today=tasks_today,
                    transaction_id=entry.transaction_id,
                    referral_commissions=commissions,
                )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def request_withdrawal(
        self,
        user_id: str,
        amount: Union[Decimal, int, float, str],
        method: Union[WithdrawalMethod, str],
        details: str,
    ) -> OperationResult:
        with self.locks.user_lock(user_id, LockOperationType.WITHDRAWAL_REQUEST):
            with managed_session(self.session_factory) as session:
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")

                if self.emergency.is_paused_in(session, EmergencyFlag.WITHDRAWALS_PAUSED):
                    logger.warning(f"⛔ Withdrawal rejected for {user_id}: withdrawals paused")
                    return OperationResult.fail(ErrorKind.EMERGENCY_PAUSED, "Withdrawals are temporarily paused")

                settings = self.settings.settings_row(session)
                if settings.maintenance_mode:
                    return OperationResult.fail(ErrorKind.MAINTENANCE_MODE, "Platform is under maintenance")

                try:
                    gross = FinancialCalculator.to_ledger(amount)
                except ValueError:
                    return OperationResult.fail(ErrorKind.INVALID_AMOUNT, f"Invalid amount {amount!r}")
                if gross <= 0:
                    return OperationResult.fail(ErrorKind.INVALID_AMOUNT, "Withdrawal amount must be positive")
                try:
                    withdrawal_method = method if isinstance(method, WithdrawalMethod) else WithdrawalMethod(method)
                except ValueError:
                    return OperationResult.fail(ErrorKind.INVALID_AMOUNT, f"Unsupported withdrawal method {method!r}")

                kyc_status = user.kyc.status if user.kyc else KycStatus.NOT_STARTED.value
                if kyc_status != KycStatus.APPROVED.value:
                    return OperationResult.fail(ErrorKind.KYC_REQUIRED, "KYC verification required")

                minimum = SettingsService.minimum_withdrawal(settings, user.plan_tier)
                if gross < minimum:
                    return OperationResult.fail(
                        ErrorKind.BELOW_MINIMUM,
                        f"Minimum withdrawal is ${minimum}",
                        minimum=minimum,
                    )

                main_balance = self.ledger.balance(user.wallet, WalletBucket.MAIN)
                if main_balance < gross:
                    return OperationResult.fail(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient main balance")

                breakdown = FinancialCalculator.withdrawal_breakdown(
                    gross, settings.platform_fee_percent, settings.transaction_fee_percent
                )
                withdrawal_id = generate_withdrawal_id()
                entry = self.ledger.debit(
                    session, user, WalletBucket.MAIN, gross, TransactionType.WITHDRAWAL,
                    f"Withdrawal via {withdrawal_method.value}",
                    status=TransactionStatus.PENDING,
                    reference_id=withdrawal_id,
                )
                user.has_completed_withdrawal = True
                user.updated_at = self.clock()

                request = WithdrawalRequest(
                    withdrawal_id=withdrawal_id,
                    user_id=user.id,
                    amount=gross,
                    platform_fee=breakdown["platform_fee"],
                    transaction_fee=breakdown["transaction_fee"],
                    net_amount=breakdown["net"],
                    method=withdrawal_method.value,
                    details=str(details or ""),
                    status=TransactionStatus.PENDING.value,
                    user_kyc_status=kyc_status,
                    ledger_entry_id=entry.transaction_id,
                    created_at=self.clock(),
                )
                session.add(request)

                logger.info(
                    f"🏦 Withdrawal {withdrawal_id} requested by {user_id}: "
                    f"gross=${gross} net=${breakdown['net']}"
                )
                return OperationResult.ok(withdrawal=serialize_withdrawal(request))

    def get_withdrawals(self, user_id: str) -> List[Dict[str, Any]]:
        return list_withdrawals(self.session_factory, user_id=user_id)

    # ------------------------------------------------------------------
    # Bonus unlock
    # ------------------------------------------------------------------

    def unlock_bonus(self, user_id: str) -> OperationResult:
        with self.locks.user_lock(user_id, LockOperationType.BONUS_UNLOCK):
            with managed_session(self.session_factory) as session:
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")

                if not is_bonus_unlockable(user):
                    return OperationResult.fail(
                        ErrorKind.REQUIREMENT_NOT_MET,
                        f"Stay active {UNLOCK_RULES['REQUIRED_DAYS']} days in a row or complete a withdrawal",
                        consecutive_days_active=user.consecutive_days_active,
                    )

                bonus = self.ledger.balance(user.wallet, WalletBucket.BONUS)
                if bonus <= 0:
                    return OperationResult.fail(ErrorKind.NO_BALANCE, "No bonus balance to unlock")

                entry = self.ledger.transfer(
                    session, user, WalletBucket.BONUS, WalletBucket.MAIN, bonus,
                    TransactionType.BONUS_UNLOCK, "Bonus unlocked to main wallet",
                )
                logger.info(f"🔓 Bonus ${bonus} unlocked for {user_id}")
                return OperationResult.ok(
                    amount=bonus,
                    main_balance=self.ledger.balance(user.wallet, WalletBucket.MAIN),
                    transaction_id=entry.transaction_id,
                )

    # ------------------------------------------------------------------
    # KYC
    # ------------------------------------------------------------------

    def submit_kyc(self, user_id: str, kyc_data: Mapping[str, Any]) -> OperationResult:
        full_name = str(kyc_data.get("full_name") or "").strip()
        document_number = str(kyc_data.get("document_number") or "").strip()
        if not full_name or not document_number:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, "Full name and document number are required")
        try:
            document_type = KycDocumentType(kyc_data.get("document_type"))
        except ValueError:
            return OperationResult.fail(
                ErrorKind.INVALID_INPUT, f"Unsupported document type {kyc_data.get('document_type')!r}"
            )

        with self.locks.user_lock(user_id, LockOperationType.KYC_UPDATE):
            with managed_session(self.session_factory) as session:
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")

                kyc = user.kyc
                if kyc is None:
                    kyc = KycRecord(status=KycStatus.NOT_STARTED.value)
                    user.kyc = kyc
                if kyc.status in (KycStatus.SUBMITTED.value, KycStatus.APPROVED.value):
                    return OperationResult.fail(ErrorKind.INVALID_STATE, f"KYC already {kyc.status}")

                kyc.status = KycStatus.SUBMITTED.value
                kyc.full_name = full_name
                kyc.document_type = document_type.value
                kyc.document_number = document_number
                kyc.document_image_front = kyc_data.get("document_image_front")
                kyc.document_image_back = kyc_data.get("document_image_back")
                kyc.submitted_at = self.clock()
                kyc.reviewed_at = None
                kyc.reviewed_by = None
                kyc.rejection_reason = None

                logger.info(f"🪪 KYC submitted by {user_id} ({document_type.value})")
                return OperationResult.ok(kyc=serialize_kyc(kyc))

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------

    def credit_referral_commissions(
        self,
        session: Session,
        source_user: User,
        event_amount: Decimal,
        kind: str,
        reference_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Pay commission on a downstream event to up to three referrers.

        kind is "PLAN" or "TASK". Nothing is credited while referrals are
        paused or disabled in settings.
        """
        if self.emergency.is_paused_in(session, EmergencyFlag.REFERRALS_PAUSED):
            logger.info(f"Referral commissions skipped for {source_user.id}: referrals paused")
            return []
        if not self.settings.settings_row(session).referrals_enabled:
            return []

        credited = []
        for level, referrer in enumerate(referral_chain(source_user), start=1):
            commission = FinancialCalculator.referral_commission(event_amount, referral_rate(kind, level))
            if commission <= 0:
                continue
            entry = self.ledger.credit_in_place(
                session, referrer.id, WalletBucket.BONUS, commission, TransactionType.REFERRAL_BONUS,
                f"L{level} {kind.lower()} commission from {source_user.id}",
                reference_id=reference_id,
            )
            session.execute(
                update(User)
                .where(User.id == referrer.id)
                .values(referral_earnings=User.referral_earnings + commission)
                .execution_options(synchronize_session=False)
            )
            credited.append({
                "level": level,
                "referrer_id": referrer.id,
                "amount": commission,
                "transaction_id": entry.transaction_id,
            })
        return credited

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def purchase_plan(self, user_id: str, tier: Union[PlanTier, str]) -> OperationResult:
        try:
            plan = get_plan(tier)
        except ValueError:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown plan tier {tier!r}")

        with self.locks.user_lock(user_id, LockOperationType.WALLET_BALANCE_UPDATE):
            with managed_session(self.session_factory) as session:
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")
                if self.settings.settings_row(session).maintenance_mode:
                    return OperationResult.fail(ErrorKind.MAINTENANCE_MODE, "Platform is under maintenance")
                if user.status != UserStatus.ACTIVE.value:
                    return OperationResult.fail(ErrorKind.ACCOUNT_NOT_ACTIVE, f"Account is {user.status}")

                now = self.clock()
                price = plan.price_usd
                user.plan_tier = plan.tier.value
                user.plan_expires_at = now + timedelta(days=plan.duration_days)
                user.updated_at = now

                # Payment is collected off-ledger; the entry records the purchase only
                entry = self.ledger.append_entry(
                    session, user.id, TransactionType.PLAN_PURCHASE, price, TransactionStatus.COMPLETED,
                    f"Purchased {plan.tier.value} plan (₹{plan.price_inr})",
                    bucket=WalletBucket.MAIN,
                    balance_after=self.ledger.balance(user.wallet, WalletBucket.MAIN),
                )
                commissions = self.credit_referral_commissions(
                    session, user, price, "PLAN", reference_id=entry.transaction_id
                )
                logger.info(f"📦 {user_id} purchased {plan.tier.value} until {user.plan_expires_at:%Y-%m-%d}")
                return OperationResult.ok(
                    plan_tier=plan.tier.value,
                    plan_expires_at=user.plan_expires_at,
                    price_usd=price,
                    transaction_id=entry.transaction_id,
                    referral_commissions=commissions,
                )

    # ------------------------------------------------------------------
    # Leaderboards
    # ------------------------------------------------------------------

    @staticmethod
    def leaderboard_reward(timeframe: Union[LeaderboardTimeframe, str], rank: int) -> Decimal:
        return leaderboard_reward(timeframe, rank)

    def award_leaderboard_reward(
        self,
        user_id: str,
        timeframe: Union[LeaderboardTimeframe, str],
        rank: int,
        reference_id: Optional[str] = None,
    ) -> OperationResult:
        frame = parse_timeframe(timeframe)
        if frame is None:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown leaderboard timeframe {timeframe!r}")
        reward = leaderboard_reward(frame, rank)

        with self.locks.user_lock(user_id, LockOperationType.WALLET_BALANCE_UPDATE):
            with managed_session(self.session_factory) as session:
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")
                if self.emergency.is_paused_in(session, EmergencyFlag.EARNINGS_PAUSED):
                    return OperationResult.fail(ErrorKind.EMERGENCY_PAUSED, "Earnings are temporarily paused")
                if reward <= 0:
                    return OperationResult.ok(amount=Decimal("0"), rank=rank, timeframe=frame.value)

                entry = self.ledger.credit(
                    session, user, WalletBucket.BONUS, reward, TransactionType.LEADERBOARD_BONUS,
                    f"{frame.value.title()} leaderboard rank #{rank}",
                    reference_id=reference_id,
                )
                logger.info(f"🏆 {frame.value} rank #{rank} reward ${reward} to {user_id}")
                return OperationResult.ok(
                    amount=reward,
                    rank=rank,
                    timeframe=frame.value,
                    bonus_balance=self.ledger.balance(user.wallet, WalletBucket.BONUS),
                    transaction_id=entry.transaction_id,
                )

    def compute_leaderboard(
        self,
        timeframe: Union[LeaderboardTimeframe, str],
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """
        Rank active users by task earnings inside the timeframe window.

        Earnings are the sum of EARN_VIDEO/EARN_LINK entries that are not
        failed or cancelled, read in a single transaction so every figure
        comes from the same snapshot.
        """
        frame = parse_timeframe(timeframe)
        if frame is None:
            logger.warning(f"Leaderboard requested for unknown timeframe {timeframe!r}")
            return []
        window = _LEADERBOARD_WINDOWS[frame]
        earnings = func.sum(LedgerEntry.amount).label("earnings")
        tasks = func.count(LedgerEntry.id).label("tasks")

        query = (
            select(User, earnings, tasks)
            .join(LedgerEntry, LedgerEntry.user_id == User.id)
            .where(
                LedgerEntry.transaction_type.in_([t.value for t in _EARN_TYPES.values()]),
                LedgerEntry.status.in_([TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value]),
                User.status == UserStatus.ACTIVE.value,
            )
            .group_by(User.id)
            .order_by(earnings.desc(), tasks.desc(), User.id)
            .limit(limit)
        )
        if window is not None:
            query = query.where(LedgerEntry.created_at >= self.clock() - window)

        with managed_session(self.session_factory) as session:
            rows = session.execute(query).all()
            board = []
            for rank, (user, total, count) in enumerate(rows, start=1):
                board.append({
                    "rank": rank,
                    "user_id": user.id,
                    "name": mask_name(user.name),
                    "plan_tier": user.plan_tier,
                    "earnings": FinancialCalculator.to_ledger(total or 0),
                    "tasks_completed": count,
                    "reward": leaderboard_reward(frame, rank),
                    "is_bonus_locked": not is_bonus_unlockable(user),
                })
            return board

    def distribute_leaderboard_rewards(self, timeframe: Union[LeaderboardTimeframe, str]) -> OperationResult:
        """Pay every rewarded rank of the current board once per period"""
        frame = parse_timeframe(timeframe)
        if frame is None:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown leaderboard timeframe {timeframe!r}")
        depth = _LEADERBOARD_PAID_RANKS.get(frame)
        if not depth:
            return OperationResult.ok(timeframe=frame.value, awarded=[], skipped=[], total=Decimal("0"))

        period_reference = f"LB_{frame.value}_{self.clock():%Y%m%d}"
        board = self.compute_leaderboard(frame, limit=depth)

        with managed_session(self.session_factory) as session:
            already_paid = set(session.scalars(
                select(LedgerEntry.user_id).where(
                    LedgerEntry.transaction_type == TransactionType.LEADERBOARD_BONUS.value,
                    LedgerEntry.reference_id == period_reference,
                )
            ).all())

        awarded, skipped = [], []
        total = Decimal("0")
        for row in board:
            if row["reward"] <= 0 or row["user_id"] in already_paid:
                continue
            result = self.award_leaderboard_reward(row["user_id"], frame, row["rank"], reference_id=period_reference)
            if result.success:
                awarded.append({"user_id": row["user_id"], "rank": row["rank"], "amount": result.data["amount"]})
                total += result.data["amount"]
            else:
                skipped.append({"user_id": row["user_id"], "rank": row["rank"], "error": result.error_code.value})

        logger.info(f"🏆 {frame.value} leaderboard paid ${total} to {len(awarded)} users ({len(skipped)} skipped)")
        return OperationResult.ok(timeframe=frame.value, awarded=awarded, skipped=skipped, total=total)

    # ------------------------------------------------------------------
    # Pending release
    # ------------------------------------------------------------------

    def release_matured_pending(self, now: Optional[datetime] = None) -> OperationResult:
        """Move task earnings past the verification hold from pending to main"""
        cutoff = (now or self.clock()) - timedelta(hours=Config.PENDING_HOLD_HOURS)
        earn_types = [t.value for t in _EARN_TYPES.values()]

        with managed_session(self.session_factory) as session:
            user_ids = sorted(set(session.scalars(
                select(LedgerEntry.user_id).where(
                    LedgerEntry.transaction_type.in_(earn_types),
                    LedgerEntry.status == TransactionStatus.PENDING.value,
                    LedgerEntry.created_at <= cutoff,
                )
            ).all()))

        released_entries = 0
        released_total = Decimal("0")
        shortfalls = []
        for user_id in user_ids:
            with self.locks.user_lock(user_id, LockOperationType.WALLET_BALANCE_UPDATE):
                with managed_session(self.session_factory) as session:
                    user = load_user(session, user_id)
                    entries = session.scalars(
                        select(LedgerEntry).where(
                            LedgerEntry.user_id == user_id,
                            LedgerEntry.transaction_type.in_(earn_types),
                            LedgerEntry.status == TransactionStatus.PENDING.value,
                            LedgerEntry.created_at <= cutoff,
                        ).order_by(LedgerEntry.id)
                    ).all()
                    for entry in entries:
                        owed = Decimal(entry.amount)
                        amount = min(owed, self.ledger.balance(user.wallet, WalletBucket.PENDING))
                        self.ledger.set_entry_status(session, entry.transaction_id, TransactionStatus.COMPLETED)
                        description = "Verified earnings released"
                        if amount < owed:
                            shortfall = owed - amount
                            shortfalls.append({
                                "user_id": user_id,
                                "transaction_id": entry.transaction_id,
                                "released": amount,
                                "shortfall": shortfall,
                            })
                            description = f"Verified earnings released, ${shortfall} short of the pending bucket"
                            logger.warning(
                                f"Pending bucket of {user_id} short by ${shortfall} "
                                f"while releasing {entry.transaction_id}"
                            )
                        if amount <= 0:
                            continue
                        self.ledger.transfer(
                            session, user, WalletBucket.PENDING, WalletBucket.MAIN, amount,
                            TransactionType.PENDING_RELEASE, description,
                            reference_id=entry.transaction_id,
                        )
                        released_entries += 1
                        released_total += amount

        if released_entries:
            logger.info(f"⏳ Released ${released_total} from {released_entries} pending entries")
        return OperationResult.ok(
            released_entries=released_entries,
            released_amount=released_total,
            users=len(user_ids),
            shortfalls=shortfalls,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_ledger(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.ledger.get_ledger(user_id, limit)
