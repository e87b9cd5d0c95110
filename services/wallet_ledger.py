"""
Wallet Ledger - three-bucket balances and the append-only transaction log

Every balance change goes through credit/debit/transfer, which post the
change first and append the ledger entry afterwards, inside the caller's
session. Callers own the transaction boundary and the per-user lock.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from config import Config
from database import managed_session
from models import LedgerEntry, TransactionStatus, TransactionType, User, Wallet, WalletBucket
from utils.financial import FinancialCalculator
from utils.helpers import generate_transaction_id, utcnow

logger = logging.getLogger(__name__)

_BUCKET_COLUMNS = {
    WalletBucket.MAIN: "main_balance",
    WalletBucket.PENDING: "pending_balance",
    WalletBucket.BONUS: "bonus_balance",
}

# Decimal places kept by the Numeric(20, 8) balance columns
_LEDGER_SCALE = 8

# Only unresolved entries may change status
_ALLOWED_RESOLUTIONS = {
    TransactionStatus.COMPLETED,
    TransactionStatus.FAILED,
    TransactionStatus.CANCELLED,
}


class InsufficientFundsError(Exception):
    """A debit would drive a bucket negative; rules must be checked before posting"""

    def __init__(self, user_id: str, bucket: WalletBucket, balance: Decimal, amount: Decimal):
        self.user_id = user_id
        self.bucket = bucket
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Debit of {amount} from {bucket.value} exceeds balance {balance} for user {user_id}"
        )


class LedgerEntryStateError(Exception):
    """Attempt to mutate an already-resolved ledger entry"""
    pass


def serialize_entry(entry: LedgerEntry) -> Dict[str, Any]:
    return {
        "id": entry.transaction_id,
        "user_id": entry.user_id,
        "type": entry.transaction_type,
        "amount": entry.amount,
        "currency": entry.currency,
        "status": entry.status,
        "bucket": entry.bucket,
        "balance_after": entry.balance_after,
        "description": entry.description,
        "reference_id": entry.reference_id,
        "timestamp": entry.created_at,
    }


def wallet_snapshot(wallet: Wallet) -> Dict[str, Decimal]:
    return {
        "main": Decimal(wallet.main_balance),
        "pending": Decimal(wallet.pending_balance),
        "bonus": Decimal(wallet.bonus_balance),
    }


class WalletLedger:
    """Bucket arithmetic plus ledger appends"""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or utcnow
        self.currency = Config.LEDGER_CURRENCY

    # ------------------------------------------------------------------
    # Bucket access
    # ------------------------------------------------------------------

    @staticmethod
    def balance(wallet: Wallet, bucket: WalletBucket) -> Decimal:
        return Decimal(getattr(wallet, _BUCKET_COLUMNS[bucket]) or 0)

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------

    def _post(
        self,
        session: Session,
        user_id: str,
        deltas: Dict[WalletBucket, Decimal],
        wallet: Optional[Wallet] = None,
    ) -> Dict[WalletBucket, Decimal]:
        """
        Apply bucket deltas as one relative UPDATE and return the new balances.

        Debited buckets are guarded in the WHERE clause, so the row only
        changes if every one of them still covers its debit. Concurrent
        relative credits from other transactions are never overwritten.
        """
        session.flush()
        conditions = [Wallet.user_id == user_id]
        values: Dict[Any, Any] = {Wallet.updated_at: self.clock()}
        for bucket, delta in deltas.items():
            column = getattr(Wallet, _BUCKET_COLUMNS[bucket])
            values[column] = func.round(column + delta, _LEDGER_SCALE)
            if delta < 0:
                conditions.append(column >= -delta)

        result = session.execute(
            update(Wallet)
            .where(*conditions)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        row = session.execute(
            select(Wallet.main_balance, Wallet.pending_balance, Wallet.bonus_balance)
            .where(Wallet.user_id == user_id)
        ).one_or_none()
        if row is None:
            raise LookupError(f"Wallet for user {user_id} not found")
        balances = {
            WalletBucket.MAIN: Decimal(row.main_balance),
            WalletBucket.PENDING: Decimal(row.pending_balance),
            WalletBucket.BONUS: Decimal(row.bonus_balance),
        }
        if result.rowcount != 1:
            debits = [(b, d) for b, d in deltas.items() if d < 0]
            bucket, delta = next(((b, d) for b, d in debits if balances[b] < -d), debits[0])
            raise InsufficientFundsError(user_id, bucket, balances[bucket], -delta)

        if wallet is not None:
            session.refresh(wallet)
        return balances

    def credit(
        self,
        session: Session,
        user: User,
        bucket: WalletBucket,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        amount = FinancialCalculator.to_ledger(amount)
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        new_balance = self._post(session, user.id, {bucket: amount}, user.wallet)[bucket]

        entry = self.append_entry(
            session, user.id, transaction_type, amount, status, description,
            bucket=bucket, balance_after=new_balance, reference_id=reference_id,
        )
        logger.info(
            f"💰 CREDIT {user.id} {bucket.value} +{amount} {self.currency} "
            f"[{transaction_type.value}] balance={new_balance}"
        )
        return entry

    def debit(
        self,
        session: Session,
        user: User,
        bucket: WalletBucket,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        amount = FinancialCalculator.to_ledger(amount)
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        new_balance = self._post(session, user.id, {bucket: -amount}, user.wallet)[bucket]

        entry = self.append_entry(
            session, user.id, transaction_type, -amount, status, description,
            bucket=bucket, balance_after=new_balance, reference_id=reference_id,
        )
        logger.info(
            f"💸 DEBIT {user.id} {bucket.value} -{amount} {self.currency} "
            f"[{transaction_type.value}] balance={new_balance}"
        )
        return entry

    def transfer(
        self,
        session: Session,
        user: User,
        from_bucket: WalletBucket,
        to_bucket: WalletBucket,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Move value between two buckets of the same wallet.

        A single entry is appended, carrying the positive amount and the
        destination bucket's balance after the move.
        """
        amount = FinancialCalculator.to_ledger(amount)
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")

        balances = self._post(session, user.id, {from_bucket: -amount, to_bucket: amount}, user.wallet)
        destination_balance = balances[to_bucket]

        entry = self.append_entry(
            session, user.id, transaction_type, amount, TransactionStatus.COMPLETED, description,
            bucket=to_bucket, balance_after=destination_balance, reference_id=reference_id,
        )
        logger.info(
            f"🔁 TRANSFER {user.id} {from_bucket.value}->{to_bucket.value} {amount} "
            f"[{transaction_type.value}]"
        )
        return entry

    def credit_in_place(
        self,
        session: Session,
        user_id: str,
        bucket: WalletBucket,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        """Credit a wallet the current operation does not hold the lock for"""
        amount = FinancialCalculator.to_ledger(amount)
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        new_balance = self._post(session, user_id, {bucket: amount})[bucket]

        entry = self.append_entry(
            session, user_id, transaction_type, amount, TransactionStatus.COMPLETED, description,
            bucket=bucket, balance_after=new_balance, reference_id=reference_id,
        )
        logger.info(
            f"💰 CREDIT {user_id} {bucket.value} +{amount} {self.currency} "
            f"[{transaction_type.value}] balance={new_balance}"
        )
        return entry

    def append_entry(
        self,
        session: Session,
        user_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        status: TransactionStatus,
        description: str,
        bucket: Optional[WalletBucket] = None,
        balance_after: Decimal = Decimal("0"),
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            transaction_id=generate_transaction_id(),
            user_id=user_id,
            transaction_type=transaction_type.value,
            amount=amount,
            currency=self.currency,
            status=status.value,
            bucket=bucket.value if bucket else None,
            balance_after=balance_after,
            description=description,
            reference_id=reference_id,
            created_at=self.clock(),
        )
        session.add(entry)
        return entry

    def set_entry_status(self, session: Session, entry_id: str, status: TransactionStatus) -> LedgerEntry:
        """Resolve a PENDING entry; resolved entries are immutable"""
        entry = session.scalar(select(LedgerEntry).where(LedgerEntry.transaction_id == entry_id))
        if entry is None:
            raise LookupError(f"Ledger entry {entry_id} not found")
        if entry.status != TransactionStatus.PENDING.value:
            raise LedgerEntryStateError(f"Ledger entry {entry_id} already {entry.status}")
        if status not in _ALLOWED_RESOLUTIONS:
            raise LedgerEntryStateError(f"Cannot resolve ledger entry to {status.value}")
        entry.status = status.value
        entry.resolved_at = self.clock()
        return entry

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_ledger(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Entries for one user, newest first"""
        with managed_session(self.session_factory) as session:
            query = (
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.id.desc())
            )
            if limit:
                query = query.limit(limit)
            return [serialize_entry(entry) for entry in session.scalars(query).all()]

    def get_wallet(self, user_id: str) -> Optional[Dict[str, Decimal]]:
        with managed_session(self.session_factory) as session:
            wallet = session.scalar(select(Wallet).where(Wallet.user_id == user_id))
            return wallet_snapshot(wallet) if wallet else None
