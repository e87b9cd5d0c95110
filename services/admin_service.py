"""
Admin Operations - moderation, payouts, KYC review, settings and emergency switches

Each operation resolves the acting admin and checks one capability before
reading or writing anything else. Mutations that touch a user's wallet or
profile take that user's lock; every successful operation appends an audit
row after its mutation, in the same transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from config import Config
from database import managed_session
from models import (
    AdminAccount,
    AdminRole,
    EmergencyFlag,
    KycRecord,
    KycStatus,
    TransactionStatus,
    TransactionType,
    UserStatus,
    WalletBucket,
    WithdrawalRequest,
)
from services.atomic_lock_manager import AtomicLockManager, LockOperationType
from services.audit_trail_service import AuditAction, AuditTrailService
from services.emergency_control_service import EmergencyGate, serialize_emergency_state
from services.operation_result import ErrorKind, OperationResult
from services.rules_engine import list_withdrawals, serialize_kyc, serialize_withdrawal
from services.settings_service import SettingsService, SettingsValidationError, serialize_settings, validate_settings
from services.user_service import UserService, load_user
from services.wallet_ledger import WalletLedger
from utils.admin_security import Capability, PermissionDenied, capabilities_for, parse_capabilities, require_capability
from utils.financial import FinancialCalculator
from utils.helpers import generate_admin_id, utcnow

logger = logging.getLogger(__name__)

WITHDRAWAL_OUTCOMES = (TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED)
KYC_OUTCOMES = (KycStatus.APPROVED, KycStatus.REJECTED)


class UnknownAdmin(LookupError):
    """Acting admin id does not exist"""
    pass


def admin_operation(func):
    """Turn authorization failures raised inside an operation into results"""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except PermissionDenied as e:
            return OperationResult.fail(
                ErrorKind.PERMISSION_DENIED, str(e), required_capability=e.capability.value
            )
        except UnknownAdmin as e:
            return OperationResult.fail(ErrorKind.NOT_FOUND, str(e))

    return wrapper


def serialize_admin(admin: AdminAccount) -> Dict[str, Any]:
    return {
        "id": admin.id,
        "name": admin.name,
        "phone": admin.phone,
        "role": admin.role,
        "capabilities": sorted(c.value for c in capabilities_for(admin)),
        "is_active": admin.is_active,
        "created_at": admin.created_at,
        "created_by": admin.created_by,
    }


class AdminOperations:
    """Capability-checked administrative operations"""

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
        self.audit = AuditTrailService(session_factory, self.clock)
        self.users = UserService(session_factory, self.clock)

    @staticmethod
    def _authorize(session: Session, admin_id: str, capability: Capability) -> AdminAccount:
        admin = session.get(AdminAccount, admin_id)
        if admin is None:
            raise UnknownAdmin(f"Admin {admin_id} not found")
        require_capability(admin, capability)
        return admin

    def _check(self, admin_id: str, capability: Capability) -> None:
        """Authorize before taking any user lock"""
        with managed_session(self.session_factory) as session:
            self._authorize(session, admin_id, capability)

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    @admin_operation
    def process_withdrawal(
        self, request_id: str, outcome: Union[TransactionStatus, str], admin_id: str
    ) -> OperationResult:
        self._check(admin_id, Capability.APPROVE_WITHDRAWALS)
        try:
            status = outcome if isinstance(outcome, TransactionStatus) else TransactionStatus(outcome)
        except ValueError:
            status = None
        if status not in WITHDRAWAL_OUTCOMES:
            return OperationResult.fail(ErrorKind.INVALID_STATE, f"Unsupported withdrawal outcome {outcome!r}")

        with managed_session(self.session_factory) as session:
            owner_id = session.scalar(
                select(WithdrawalRequest.user_id).where(WithdrawalRequest.withdrawal_id == request_id)
            )
        if owner_id is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, f"Withdrawal {request_id} not found")

        with self.locks.user_lock(owner_id, LockOperationType.WITHDRAWAL_RESOLUTION):
            with managed_session(self.session_factory) as session:
                admin = self._authorize(session, admin_id, Capability.APPROVE_WITHDRAWALS)
                request = session.scalar(
                    select(WithdrawalRequest).where(WithdrawalRequest.withdrawal_id == request_id)
                )
                if request is None or request.status != TransactionStatus.PENDING.value:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"No pending withdrawal {request_id}")

                user = load_user(session, owner_id)
                now = self.clock()
                request.status = status.value
                request.processed_at = now
                request.processed_by = admin.id
                if request.ledger_entry_id:
                    self.ledger.set_entry_status(session, request.ledger_entry_id, status)

                refunded = Decimal("0")
                main_balance = self.ledger.balance(user.wallet, WalletBucket.MAIN)
                if status == TransactionStatus.COMPLETED:
                    for fee_type, fee in (
                        (TransactionType.FEE_PLATFORM, Decimal(request.platform_fee)),
                        (TransactionType.FEE_TX, Decimal(request.transaction_fee)),
                    ):
                        if fee > 0:
                            self.ledger.append_entry(
                                session, user.id, fee_type, -fee, TransactionStatus.COMPLETED,
                                f"{fee_type.value.replace('_', ' ').title()} on withdrawal {request_id}",
                                bucket=WalletBucket.MAIN, balance_after=main_balance,
                                reference_id=request_id,
                            )
                else:
                    refunded = Decimal(request.amount)
                    self.ledger.credit(
                        session, user, WalletBucket.MAIN, refunded, TransactionType.WITHDRAWAL_REFUND,
                        f"Refund of {status.value.lower()} withdrawal {request_id}",
                        reference_id=request_id,
                    )

                self.audit.log_admin_action(
                    session, admin, AuditAction.PROCESS_WITHDRAWAL, target_id=request_id,
                    description=f"Withdrawal {request_id} marked {status.value}",
                    details={
                        "user_id": user.id,
                        "outcome": status.value,
                        "amount": str(request.amount),
                        "net_amount": str(request.net_amount),
                        "refunded": str(refunded),
                    },
                )
                logger.info(f"🏦 Withdrawal {request_id} {status.value} by {admin.id}")
                return OperationResult.ok(withdrawal=serialize_withdrawal(request), refunded=refunded)

    # ------------------------------------------------------------------
    # KYC
    # ------------------------------------------------------------------

    @admin_operation
    def review_kyc(
        self,
        user_id: str,
        outcome: Union[KycStatus, str],
        reason: Optional[str],
        admin_id: str,
    ) -> OperationResult:
        self._check(admin_id, Capability.APPROVE_KYC)
        try:
            status = outcome if isinstance(outcome, KycStatus) else KycStatus(outcome)
        except ValueError:
            status = None
        if status not in KYC_OUTCOMES:
            return OperationResult.fail(ErrorKind.INVALID_STATE, f"Unsupported KYC outcome {outcome!r}")

        with self.locks.user_lock(user_id, LockOperationType.KYC_UPDATE):
            with managed_session(self.session_factory) as session:
                admin = self._authorize(session, admin_id, Capability.APPROVE_KYC)
                user = load_user(session, user_id)
                kyc = user.kyc if user else None
                if kyc is None or kyc.status != KycStatus.SUBMITTED.value:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"No submitted KYC for {user_id}")

                kyc.status = status.value
                kyc.reviewed_at = self.clock()
                kyc.reviewed_by = admin.id
                kyc.rejection_reason = reason if status == KycStatus.REJECTED else None

                self.audit.log_admin_action(
                    session, admin, AuditAction.REVIEW_KYC, target_id=user_id,
                    description=f"KYC {status.value}" + (f": {reason}" if reason else ""),
                    details={"outcome": status.value, "reason": reason},
                )
                logger.info(f"🪪 KYC for {user_id} {status.value} by {admin.id}")
                return OperationResult.ok(kyc=serialize_kyc(kyc))

    # ------------------------------------------------------------------
    # Users, emergency switches and settings
    # ------------------------------------------------------------------

    @admin_operation
    def set_user_status(self, user_id: str, status: Union[UserStatus, str], admin_id: str) -> OperationResult:
        self._check(admin_id, Capability.EDIT_USERS)
        try:
            new_status = status if isinstance(status, UserStatus) else UserStatus(status)
        except ValueError:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown user status {status!r}")

        with self.locks.user_lock(user_id, LockOperationType.ADMIN_OVERRIDE):
            with managed_session(self.session_factory) as session:
                admin = self._authorize(session, admin_id, Capability.EDIT_USERS)
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")

                previous = user.status
                user.status = new_status.value
                user.updated_at = self.clock()

                self.audit.log_admin_action(
                    session, admin, AuditAction.SET_USER_STATUS, target_id=user_id,
                    description=f"Status {previous} -> {new_status.value}",
                    details={"previous": previous, "status": new_status.value},
                )
                logger.warning(f"👮 {admin.id} set {user_id} status {previous} -> {new_status.value}")
                return OperationResult.ok(user_id=user_id, status=new_status.value, previous_status=previous)

    @admin_operation
    def toggle_emergency_flag(self, flag: Union[EmergencyFlag, str], value: bool, admin_id: str) -> OperationResult:
        try:
            emergency_flag = flag if isinstance(flag, EmergencyFlag) else EmergencyFlag(flag)
        except ValueError:
            emergency_flag = None

        with self.locks.named_lock("emergency_state"):
            with managed_session(self.session_factory) as session:
                admin = self._authorize(session, admin_id, Capability.EMERGENCY_CONTROL)
                if emergency_flag is None:
                    return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown emergency flag {flag!r}")

                state = self.emergency.set_flag(session, emergency_flag, bool(value), admin.id)
                self.audit.log_admin_action(
                    session, admin, AuditAction.TOGGLE_EMERGENCY, target_id=emergency_flag.value,
                    description=f"{emergency_flag.value} set to {bool(value)}",
                    details={"flag": emergency_flag.value, "value": bool(value)},
                )
                return OperationResult.ok(emergency_state=serialize_emergency_state(state))

    @admin_operation
    def update_settings(self, new_settings: Mapping[str, Any], admin_id: str) -> OperationResult:
        with self.locks.named_lock("system_settings"):
            with managed_session(self.session_factory) as session:
                admin = self._authorize(session, admin_id, Capability.MANAGE_SETTINGS)
                try:
                    cleaned = validate_settings(new_settings)
                except SettingsValidationError as e:
                    logger.info(f"Settings update by {admin.id} rejected: {e}")
                    return OperationResult.fail(ErrorKind.INVALID_INPUT, str(e))

                before = {k: str(v) for k, v in serialize_settings(self.settings.settings_row(session)).items()}
                settings = self.settings.replace(session, cleaned, admin.id)
                self.audit.log_admin_action(
                    session, admin, AuditAction.UPDATE_SETTINGS,
                    description="System settings replaced",
                    details={"before": before, "after": {k: str(v) for k, v in cleaned.items()}},
                )
                return OperationResult.ok(settings=serialize_settings(settings))

    # ------------------------------------------------------------------
    # Balance adjustments
    # ------------------------------------------------------------------

    @admin_operation
    def adjust_balance(
        self,
        user_id: str,
        bucket: Union[WalletBucket, str],
        amount: Union[Decimal, int, float, str],
        reason: str,
        admin_id: str,
    ) -> OperationResult:
        """Signed manual correction of one bucket; never drives it below zero"""
        self._check(admin_id, Capability.ADJUST_BALANCES)
        try:
            target_bucket = bucket if isinstance(bucket, WalletBucket) else WalletBucket(bucket)
        except ValueError:
            return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown wallet bucket {bucket!r}")
        try:
            delta = FinancialCalculator.to_ledger(amount)
        except ValueError:
            return OperationResult.fail(ErrorKind.INVALID_AMOUNT, f"Invalid amount {amount!r}")
        if delta == 0:
            return OperationResult.fail(ErrorKind.INVALID_AMOUNT, "Adjustment amount cannot be zero")
        if not reason or not reason.strip():
            return OperationResult.fail(ErrorKind.INVALID_INPUT, "A reason is required for balance adjustments")

        with self.locks.user_lock(user_id, LockOperationType.ADMIN_OVERRIDE):
            with managed_session(self.session_factory) as session:
                admin = self._authorize(session, admin_id, Capability.ADJUST_BALANCES)
                user = load_user(session, user_id)
                if user is None:
                    return OperationResult.fail(ErrorKind.NOT_FOUND, f"User {user_id} not found")

                description = f"Admin adjustment: {reason.strip()}"
                if delta > 0:
                    entry = self.ledger.credit(
                        session, user, target_bucket, delta, TransactionType.ADMIN_ADJUSTMENT, description
                    )
                else:
                    if self.ledger.balance(user.wallet, target_bucket) < -delta:
                        return OperationResult.fail(
                            ErrorKind.INSUFFICIENT_BALANCE,
                            f"{target_bucket.value} balance cannot go below zero",
                        )
                    entry = self.ledger.debit(
                        session, user, target_bucket, -delta, TransactionType.ADMIN_ADJUSTMENT, description
                    )

                self.audit.log_admin_action(
                    session, admin, AuditAction.ADJUST_BALANCE, target_id=user_id,
                    description=description,
                    details={"bucket": target_bucket.value, "amount": str(delta), "transaction_id": entry.transaction_id},
                )
                return OperationResult.ok(
                    user_id=user_id,
                    bucket=target_bucket.value,
                    amount=delta,
                    balance=self.ledger.balance(user.wallet, target_bucket),
                    transaction_id=entry.transaction_id,
                )

    # ------------------------------------------------------------------
    # Sub-admins
    # ------------------------------------------------------------------

    @admin_operation
    def create_sub_admin(
        self,
        name: str,
        phone: Optional[str],
        role: Union[AdminRole, str],
        admin_id: str,
        extra_capabilities: Optional[Iterable[str]] = None,
    ) -> OperationResult:
        with managed_session(self.session_factory) as session:
            admin = self._authorize(session, admin_id, Capability.MANAGE_ADMINS)
            try:
                admin_role = role if isinstance(role, AdminRole) else AdminRole(role)
            except ValueError:
                return OperationResult.fail(ErrorKind.INVALID_INPUT, f"Unknown admin role {role!r}")
            if admin_role == AdminRole.SUPER_ADMIN:
                return OperationResult.fail(ErrorKind.INVALID_INPUT, "Sub-admins cannot be super admins")
            if not name or not name.strip():
                return OperationResult.fail(ErrorKind.INVALID_INPUT, "Name is required")
            if phone and session.scalar(select(AdminAccount.id).where(AdminAccount.phone == phone)):
                return OperationResult.fail(ErrorKind.INVALID_STATE, f"An admin with phone {phone} already exists")

            extras = sorted(c.value for c in parse_capabilities(extra_capabilities))
            sub_admin = AdminAccount(
                id=generate_admin_id(),
                name=name.strip(),
                phone=phone,
                role=admin_role.value,
                extra_capabilities=extras or None,
                is_active=True,
                created_at=self.clock(),
                created_by=admin.id,
            )
            session.add(sub_admin)
            self.audit.log_admin_action(
                session, admin, AuditAction.CREATE_ADMIN, target_id=sub_admin.id,
                description=f"Created {admin_role.value}",
                details={"role": admin_role.value, "extra_capabilities": extras},
            )
            logger.info(f"👑 {admin.id} created {admin_role.value} {sub_admin.id}")
            return OperationResult.ok(admin=serialize_admin(sub_admin))

    @admin_operation
    def deactivate_sub_admin(self, target_admin_id: str, admin_id: str) -> OperationResult:
        with managed_session(self.session_factory) as session:
            admin = self._authorize(session, admin_id, Capability.MANAGE_ADMINS)
            target = session.get(AdminAccount, target_admin_id)
            if target is None:
                return OperationResult.fail(ErrorKind.NOT_FOUND, f"Admin {target_admin_id} not found")
            if target.id in (admin.id, Config.ROOT_ADMIN_ID):
                return OperationResult.fail(ErrorKind.INVALID_STATE, "This admin cannot be deactivated")
            if not target.is_active:
                return OperationResult.fail(ErrorKind.INVALID_STATE, f"Admin {target_admin_id} already inactive")

            target.is_active = False
            self.audit.log_admin_action(
                session, admin, AuditAction.DEACTIVATE_ADMIN, target_id=target.id,
                description=f"Deactivated {target.role}",
            )
            return OperationResult.ok(admin=serialize_admin(target))

    # ------------------------------------------------------------------
    # Console reads
    # ------------------------------------------------------------------

    @admin_operation
    def get_withdrawals(
        self, admin_id: str, status: Optional[Union[TransactionStatus, str]] = None
    ) -> OperationResult:
        self._check(admin_id, Capability.VIEW_FINANCE)
        return OperationResult.ok(withdrawals=list_withdrawals(self.session_factory, status=status))

    @admin_operation
    def get_pending_kyc(self, admin_id: str) -> OperationResult:
        with managed_session(self.session_factory) as session:
            self._authorize(session, admin_id, Capability.VIEW_KYC)
            records = session.scalars(
                select(KycRecord)
                .where(KycRecord.status == KycStatus.SUBMITTED.value)
                .order_by(KycRecord.submitted_at)
            ).all()
            return OperationResult.ok(requests=[serialize_kyc(record) for record in records])

    @admin_operation
    def get_users(self, admin_id: str, status: Optional[Union[UserStatus, str]] = None) -> OperationResult:
        self._check(admin_id, Capability.VIEW_USERS)
        return OperationResult.ok(users=self.users.list_users(status))

    @admin_operation
    def get_audit_log(
        self, admin_id: str, actor_id: Optional[str] = None, limit: Optional[int] = None
    ) -> OperationResult:
        self._check(admin_id, Capability.VIEW_AUDIT)
        return OperationResult.ok(entries=self.audit.get_audit_log(actor_id, limit))

    @admin_operation
    def get_sub_admins(self, admin_id: str) -> OperationResult:
        with managed_session(self.session_factory) as session:
            self._authorize(session, admin_id, Capability.MANAGE_ADMINS)
            admins = session.scalars(select(AdminAccount).order_by(AdminAccount.created_at)).all()
            return OperationResult.ok(admins=[serialize_admin(a) for a in admins])

    def get_settings(self) -> Dict[str, Any]:
        return self.settings.get_settings()

    def get_emergency_state(self) -> Dict[str, Any]:
        return self.emergency.get_state()
