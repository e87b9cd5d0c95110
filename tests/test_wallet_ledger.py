"""
Wallet ledger postings
Bucket arithmetic, append-only entries and PENDING-only status resolution
"""

from decimal import Decimal

import pytest

from database import create_ledger_engine, create_session_factory, init_db, managed_session
from models import TransactionStatus, TransactionType, WalletBucket
from services.user_service import UserService, load_user
from services.wallet_ledger import InsufficientFundsError, LedgerEntryStateError, WalletLedger


@pytest.fixture
def ledger(session_factory, clock):
    return WalletLedger(session_factory, clock)


class TestPostings:

    def test_credit_appends_entry_with_balance_snapshot(self, ledger, session_factory, make_user):
        user_id = make_user(main="5")
        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            entry = ledger.credit(
                session, user, WalletBucket.MAIN, Decimal("2.5"), TransactionType.ADMIN_ADJUSTMENT, "test"
            )
            assert entry.amount == Decimal("2.5")
            assert entry.balance_after == Decimal("7.5")

        entries = ledger.get_ledger(user_id)
        assert len(entries) == 1
        assert entries[0]["type"] == TransactionType.ADMIN_ADJUSTMENT.value
        assert entries[0]["bucket"] == WalletBucket.MAIN.value
        assert entries[0]["id"].startswith("TX_")

    def test_debit_is_signed_negative(self, ledger, session_factory, make_user, wallet_of):
        user_id = make_user(main="10")
        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            entry = ledger.debit(session, user, WalletBucket.MAIN, Decimal("4"), TransactionType.WITHDRAWAL, "out")
            assert entry.amount == Decimal("-4")
        assert wallet_of(user_id)["main"] == Decimal("6")

    def test_debit_refuses_to_go_negative(self, ledger, session_factory, make_user, wallet_of):
        user_id = make_user(main="1")
        with pytest.raises(InsufficientFundsError):
            with managed_session(session_factory) as session:
                user = load_user(session, user_id)
                ledger.debit(session, user, WalletBucket.MAIN, Decimal("1.01"), TransactionType.WITHDRAWAL, "out")
        assert wallet_of(user_id)["main"] == Decimal("1")
        assert ledger.get_ledger(user_id) == []

    def test_non_positive_amounts_rejected(self, ledger, session_factory, make_user):
        user_id = make_user()
        with pytest.raises(ValueError):
            with managed_session(session_factory) as session:
                user = load_user(session, user_id)
                ledger.credit(session, user, WalletBucket.MAIN, Decimal("0"), TransactionType.ADMIN_ADJUSTMENT, "x")

    def test_transfer_moves_between_buckets(self, ledger, session_factory, make_user, wallet_of):
        user_id = make_user(bonus="3.25", main="1")
        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            entry = ledger.transfer(
                session, user, WalletBucket.BONUS, WalletBucket.MAIN, Decimal("3.25"),
                TransactionType.BONUS_UNLOCK, "unlock",
            )
            assert entry.balance_after == Decimal("4.25")
        assert wallet_of(user_id) == {"main": Decimal("4.25"), "pending": Decimal("0"), "bonus": Decimal("0")}

    def test_credit_in_place_updates_without_loaded_wallet(self, ledger, session_factory, make_user, wallet_of):
        user_id = make_user(bonus="1")
        with managed_session(session_factory) as session:
            entry = ledger.credit_in_place(
                session, user_id, WalletBucket.BONUS, Decimal("0.5"), TransactionType.REFERRAL_BONUS, "ref"
            )
            assert entry.balance_after == Decimal("1.5")
        assert wallet_of(user_id)["bonus"] == Decimal("1.5")


@pytest.fixture
def file_store(tmp_path, clock):
    """File-backed store whose sessions hold separate connections"""
    engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}", echo=False)
    factory = create_session_factory(engine)
    init_db(engine, factory)
    yield factory
    engine.dispose()


@pytest.fixture
def file_user(file_store, clock):
    """Registered user on the file store with main 10 and bonus 5"""
    user_id = UserService(file_store, clock).register_user("Asha").data["user"]["id"]
    with managed_session(file_store) as session:
        wallet = load_user(session, user_id).wallet
        wallet.main_balance = Decimal("10")
        wallet.bonus_balance = Decimal("5")
    return user_id


class TestInterleavedTransactions:

    def test_credit_posted_after_read_survives_transfer(self, file_store, file_user, clock):
        ledger = WalletLedger(file_store, clock)
        with managed_session(file_store) as unlock_session:
            user = load_user(unlock_session, file_user)
            bonus_seen = ledger.balance(user.wallet, WalletBucket.BONUS)

            with managed_session(file_store) as commission_session:
                ledger.credit_in_place(
                    commission_session, file_user, WalletBucket.BONUS, Decimal("0.0018"),
                    TransactionType.REFERRAL_BONUS, "L1 task commission",
                )

            entry = ledger.transfer(
                unlock_session, user, WalletBucket.BONUS, WalletBucket.MAIN, bonus_seen,
                TransactionType.BONUS_UNLOCK, "unlock",
            )
            assert entry.balance_after == Decimal("15")
            assert ledger.balance(user.wallet, WalletBucket.BONUS) == Decimal("0.0018")

        assert ledger.get_wallet(file_user) == {
            "main": Decimal("15"), "pending": Decimal("0"), "bonus": Decimal("0.0018"),
        }

    def test_debit_checks_committed_balance_not_loaded_copy(self, file_store, file_user, clock):
        ledger = WalletLedger(file_store, clock)
        with pytest.raises(InsufficientFundsError) as excinfo:
            with managed_session(file_store) as stale_session:
                user = load_user(stale_session, file_user)
                assert ledger.balance(user.wallet, WalletBucket.MAIN) == Decimal("10")

                with managed_session(file_store) as other_session:
                    ledger.debit(
                        other_session, load_user(other_session, file_user), WalletBucket.MAIN,
                        Decimal("8"), TransactionType.WITHDRAWAL, "out",
                    )

                ledger.debit(stale_session, user, WalletBucket.MAIN, Decimal("5"), TransactionType.WITHDRAWAL, "out")

        assert excinfo.value.balance == Decimal("2")
        assert ledger.get_wallet(file_user)["main"] == Decimal("2")
        assert len(ledger.get_ledger(file_user)) == 1


class TestEntryResolution:

    def _pending_entry(self, ledger, session_factory, user_id):
        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            return ledger.credit(
                session, user, WalletBucket.PENDING, Decimal("0.06"), TransactionType.EARN_VIDEO, "video",
                status=TransactionStatus.PENDING,
            ).transaction_id

    def test_pending_entry_can_be_resolved_once(self, ledger, session_factory, make_user):
        user_id = make_user()
        entry_id = self._pending_entry(ledger, session_factory, user_id)

        with managed_session(session_factory) as session:
            ledger.set_entry_status(session, entry_id, TransactionStatus.COMPLETED)

        with pytest.raises(LedgerEntryStateError):
            with managed_session(session_factory) as session:
                ledger.set_entry_status(session, entry_id, TransactionStatus.FAILED)

        assert ledger.get_ledger(user_id)[0]["status"] == TransactionStatus.COMPLETED.value

    def test_cannot_resolve_back_to_pending(self, ledger, session_factory, make_user):
        user_id = make_user()
        entry_id = self._pending_entry(ledger, session_factory, user_id)
        with pytest.raises(LedgerEntryStateError):
            with managed_session(session_factory) as session:
                ledger.set_entry_status(session, entry_id, TransactionStatus.PENDING)

    def test_unknown_entry(self, ledger, session_factory):
        with pytest.raises(LookupError):
            with managed_session(session_factory) as session:
                ledger.set_entry_status(session, "TX_missing", TransactionStatus.COMPLETED)


class TestReads:

    def test_ledger_is_newest_first_and_limited(self, ledger, session_factory, make_user):
        user_id = make_user()
        with managed_session(session_factory) as session:
            user = load_user(session, user_id)
            for description in ("first", "second", "third"):
                ledger.credit(session, user, WalletBucket.MAIN, Decimal("1"), TransactionType.ADMIN_ADJUSTMENT, description)

        entries = ledger.get_ledger(user_id)
        assert [e["description"] for e in entries] == ["third", "second", "first"]
        assert len(ledger.get_ledger(user_id, limit=2)) == 2

    def test_get_wallet_unknown_user(self, ledger):
        assert ledger.get_wallet("user_missing") is None
