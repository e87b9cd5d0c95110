"""
FairTask Earnings Ledger - Database Schema
==========================================

Schema for the task-to-earn ledger core:
- Users with a three-bucket wallet (main / pending / bonus)
- Append-only ledger of every credit and debit
- Withdrawal requests resolved by finance admins
- KYC records reviewed by KYC admins
- Process-wide emergency switches and mutable system settings
- Append-only admin audit trail
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Date, Boolean, Text,
    ForeignKey, Index, CheckConstraint, func, JSON
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class UserStatus(Enum):
    """User account status"""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class PlanTier(Enum):
    TRIAL = "TRIAL"
    STARTER = "STARTER"
    BASIC = "BASIC"
    PRO = "PRO"
    ULTRA = "ULTRA"


class TaskType(Enum):
    VIDEO = "VIDEO"
    LINK = "LINK"


class KycStatus(Enum):
    """KYC lifecycle: NOT_STARTED -> SUBMITTED -> APPROVED | REJECTED"""
    NOT_STARTED = "NOT_STARTED"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class KycDocumentType(Enum):
    AADHAAR = "AADHAAR"
    PAN = "PAN"
    VOTER_ID = "VOTER_ID"
    DRIVING_LICENSE = "DRIVING_LICENSE"


class TransactionType(Enum):
    EARN_VIDEO = "EARN_VIDEO"
    EARN_LINK = "EARN_LINK"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    LEADERBOARD_BONUS = "LEADERBOARD_BONUS"
    PLAN_PURCHASE = "PLAN_PURCHASE"
    WITHDRAWAL = "WITHDRAWAL"
    WITHDRAWAL_REFUND = "WITHDRAWAL_REFUND"
    FEE_PLATFORM = "FEE_PLATFORM"
    FEE_TX = "FEE_TX"
    BONUS_UNLOCK = "BONUS_UNLOCK"
    PENDING_RELEASE = "PENDING_RELEASE"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class TransactionStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class WalletBucket(Enum):
    """Balance buckets held by every wallet"""
    MAIN = "main"
    PENDING = "pending"
    BONUS = "bonus"


class WithdrawalMethod(Enum):
    UPI = "UPI"
    BANK = "BANK"


class EmergencyFlag(Enum):
    """Independent platform-wide kill switches"""
    WITHDRAWALS_PAUSED = "withdrawals_paused"
    EARNINGS_PAUSED = "earnings_paused"
    REFERRALS_PAUSED = "referrals_paused"


class LeaderboardTimeframe(Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    LIFETIME = "LIFETIME"


class AdminRole(Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    FINANCE_ADMIN = "FINANCE_ADMIN"
    KYC_ADMIN = "KYC_ADMIN"
    SUPPORT_ADMIN = "SUPPORT_ADMIN"
    FRAUD_ANALYST = "FRAUD_ANALYST"
    CONTENT_ADMIN = "CONTENT_ADMIN"
    AUDITOR = "AUDITOR"


# ============================================================================
# CORE ENTITIES
# ============================================================================

class User(Base):
    """User aggregate root - identity, plan, counters and referral stats"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=UserStatus.ACTIVE.value, nullable=False)

    # Plan subscription
    plan_tier: Mapped[str] = mapped_column(String(20), default=PlanTier.TRIAL.value, nullable=False)
    plan_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Date-scoped task counters, reset when daily_stats_date rolls over
    daily_stats_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    videos_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    links_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Bonus unlock progress
    consecutive_days_active: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_active_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    has_completed_withdrawal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Referral system
    referral_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    referred_by_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey('users.id'), nullable=True, index=True)
    l1_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    l2_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    l3_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    referral_earnings: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="user", uselist=False, cascade="all, delete-orphan")
    kyc: Mapped["KycRecord"] = relationship("KycRecord", back_populates="user", uselist=False, cascade="all, delete-orphan")
    referrer: Mapped[Optional["User"]] = relationship("User", remote_side="User.id")
    ledger_entries: Mapped[list["LedgerEntry"]] = relationship("LedgerEntry", back_populates="user")
    withdrawals: Mapped[list["WithdrawalRequest"]] = relationship("WithdrawalRequest", back_populates="user")

    __table_args__ = (
        CheckConstraint(
            f"status IN ('{UserStatus.ACTIVE.value}', '{UserStatus.SUSPENDED.value}', '{UserStatus.BANNED.value}')",
            name='ck_user_status_valid'
        ),
        CheckConstraint('videos_today >= 0', name='ck_user_videos_today_positive'),
        CheckConstraint('links_today >= 0', name='ck_user_links_today_positive'),
    )


class Wallet(Base):
    """Three-bucket wallet owned by exactly one user"""
    __tablename__ = 'wallets'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), unique=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USD", nullable=False)

    main_balance: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)  # Withdrawable
    pending_balance: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)  # Verification hold
    bonus_balance: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)  # Locked referral/promo credit

    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="wallet")

    __table_args__ = (
        CheckConstraint('main_balance >= 0', name='ck_wallet_main_positive'),
        CheckConstraint('pending_balance >= 0', name='ck_wallet_pending_positive'),
        CheckConstraint('bonus_balance >= 0', name='ck_wallet_bonus_positive'),
    )


class KycRecord(Base):
    """Identity verification record, one per user"""
    __tablename__ = 'kyc_records'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=KycStatus.NOT_STARTED.value, nullable=False)

    full_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    document_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    document_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    document_image_front: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    document_image_back: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="kyc")

    __table_args__ = (
        Index('ix_kyc_status', 'status'),
    )


class LedgerEntry(Base):
    """Append-only financial ledger - rows are never updated except PENDING status resolution"""
    __tablename__ = 'ledger_entries'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)  # Append order
    transaction_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)  # Signed
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=TransactionStatus.PENDING.value, nullable=False)
    bucket: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # Bucket the snapshot refers to
    balance_after: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="ledger_entries")

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')",
            name='ck_ledger_status_valid'
        ),
        Index('ix_ledger_user_created', 'user_id', 'created_at'),
        Index('ix_ledger_type_status', 'transaction_type', 'status'),
    )


class WithdrawalRequest(Base):
    """Withdrawal requests awaiting finance review"""
    __tablename__ = 'withdrawal_requests'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    withdrawal_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)  # Gross, debited at request time
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)
    transaction_fee: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)

    method: Mapped[str] = mapped_column(String(10), nullable=False)
    details: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=TransactionStatus.PENDING.value, nullable=False)
    user_kyc_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # Snapshot at request time
    ledger_entry_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="withdrawals")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_withdrawal_amount_positive'),
        CheckConstraint('net_amount >= 0', name='ck_withdrawal_net_positive'),
        Index('ix_withdrawals_status_created', 'status', 'created_at'),
    )


# ============================================================================
# PLATFORM SINGLETONS
# ============================================================================

class EmergencyState(Base):
    """Process-wide kill switches (single row, id=1)"""
    __tablename__ = 'emergency_state'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    withdrawals_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    earnings_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    referrals_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)


class SystemSettings(Base):
    """Mutable fee and withdrawal settings (single row, id=1)"""
    __tablename__ = 'system_settings'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    platform_fee_percent: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    transaction_fee_percent: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    min_withdrawal_trial: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    min_withdrawal_paid: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    referrals_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    maintenance_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)


class AdminAccount(Base):
    """Administrator with a role and optional extra capabilities"""
    __tablename__ = 'admin_accounts'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    extra_capabilities: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)


class AuditLog(Base):
    """Append-only trail of administrative actions"""
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    admin_role: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index('ix_audit_admin_created', 'admin_id', 'created_at'),
    )
