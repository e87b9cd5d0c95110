"""
Admin operations
Withdrawal resolution and refunds, KYC review, user moderation, settings,
balance adjustments, sub-admins and capability enforcement
"""

from decimal import Decimal

import pytest

from config import Config
from models import AdminRole, KycStatus, TransactionStatus, TransactionType, UserStatus, WalletBucket
from services.audit_trail_service import AuditAction
from services.operation_result import ErrorKind

ROOT = Config.ROOT_ADMIN_ID

KYC_FORM = {
    "full_name": "Ravi Kumar",
    "document_type": "AADHAAR",
    "document_number": "1234-5678-9012",
    "document_image_front": "front.jpg",
}


@pytest.fixture
def pending_withdrawal(rules_engine, make_user):
    """User with 100 main who requested 40; returns (user_id, withdrawal)"""
    user_id = make_user(main="100", kyc=KycStatus.APPROVED)
    result = rules_engine.request_withdrawal(user_id, "40", "UPI", "ravi@upi")
    assert result.success, result.error_message
    return user_id, result.data["withdrawal"]


class TestProcessWithdrawal:

    @pytest.mark.parametrize("outcome", [TransactionStatus.FAILED, TransactionStatus.CANCELLED])
    def test_failed_or_cancelled_refunds_gross(self, admin_ops, pending_withdrawal, wallet_of, entries_of, outcome):
        user_id, withdrawal = pending_withdrawal
        assert wallet_of(user_id)["main"] == Decimal("60")

        result = admin_ops.process_withdrawal(withdrawal["id"], outcome, ROOT)
        assert result.success, result.error_message
        assert result.data["refunded"] == Decimal("40")
        assert result.data["withdrawal"]["status"] == outcome.value
        assert wallet_of(user_id)["main"] == Decimal("100")

        refunds = entries_of(user_id, TransactionType.WITHDRAWAL_REFUND)
        assert len(refunds) == 1
        assert refunds[0].amount == Decimal("40")
        assert refunds[0].reference_id == withdrawal["id"]

        debit = entries_of(user_id, TransactionType.WITHDRAWAL)[0]
        assert debit.status == outcome.value

    def test_completed_keeps_debit_and_records_fees(self, admin_ops, pending_withdrawal, wallet_of, entries_of):
        user_id, withdrawal = pending_withdrawal
        result = admin_ops.process_withdrawal(withdrawal["id"], "COMPLETED", ROOT)
        assert result.success
        assert result.data["refunded"] == Decimal("0")
        assert result.data["withdrawal"]["processed_by"] == ROOT
        assert wallet_of(user_id)["main"] == Decimal("60")

        assert entries_of(user_id, TransactionType.WITHDRAWAL)[0].status == TransactionStatus.COMPLETED.value
        assert entries_of(user_id, TransactionType.FEE_PLATFORM)[0].amount == Decimal("-4")
        assert entries_of(user_id, TransactionType.FEE_TX)[0].amount == Decimal("-2")
        assert entries_of(user_id, TransactionType.WITHDRAWAL_REFUND) == []

    def test_request_resolves_only_once(self, admin_ops, pending_withdrawal, wallet_of):
        user_id, withdrawal = pending_withdrawal
        assert admin_ops.process_withdrawal(withdrawal["id"], "FAILED", ROOT).success
        again = admin_ops.process_withdrawal(withdrawal["id"], "FAILED", ROOT)
        assert again.error_code == ErrorKind.NOT_FOUND
        assert wallet_of(user_id)["main"] == Decimal("100")

    def test_unknown_request(self, admin_ops):
        assert admin_ops.process_withdrawal("WD_missing", "COMPLETED", ROOT).error_code == ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("outcome", ["PENDING", "APPROVED"])
    def test_outcome_must_be_terminal(self, admin_ops, pending_withdrawal, outcome):
        _, withdrawal = pending_withdrawal
        assert admin_ops.process_withdrawal(withdrawal["id"], outcome, ROOT).error_code == ErrorKind.INVALID_STATE

    def test_kyc_admin_cannot_process(self, admin_ops, make_admin, pending_withdrawal, wallet_of, entries_of):
        user_id, withdrawal = pending_withdrawal
        kyc_admin = make_admin(AdminRole.KYC_ADMIN)

        result = admin_ops.process_withdrawal(withdrawal["id"], "FAILED", kyc_admin)
        assert result.error_code == ErrorKind.PERMISSION_DENIED
        assert result.data["required_capability"] == "APPROVE_WITHDRAWALS"
        assert wallet_of(user_id)["main"] == Decimal("60")
        assert entries_of(user_id, TransactionType.WITHDRAWAL_REFUND) == []
        assert admin_ops.audit.get_audit_log() == []

    def test_finance_admin_can_process(self, admin_ops, make_admin, pending_withdrawal):
        _, withdrawal = pending_withdrawal
        finance = make_admin(AdminRole.FINANCE_ADMIN)
        assert admin_ops.process_withdrawal(withdrawal["id"], "COMPLETED", finance).success

    def test_resolution_is_audited(self, admin_ops, pending_withdrawal):
        user_id, withdrawal = pending_withdrawal
        admin_ops.process_withdrawal(withdrawal["id"], "FAILED", ROOT)

        log = admin_ops.audit.get_audit_log()
        assert len(log) == 1
        assert log[0]["action"] == AuditAction.PROCESS_WITHDRAWAL
        assert log[0]["admin_id"] == ROOT
        assert log[0]["target_id"] == withdrawal["id"]
        assert log[0]["details"]["user_id"] == user_id
        assert Decimal(log[0]["details"]["refunded"]) == Decimal("40")


class TestKycReview:

    def test_submit_then_approve_enables_withdrawal(self, rules_engine, admin_ops, make_user):
        user_id = make_user(main="50")
        assert rules_engine.request_withdrawal(user_id, "20", "UPI", "x").error_code == ErrorKind.KYC_REQUIRED

        submitted = rules_engine.submit_kyc(user_id, KYC_FORM)
        assert submitted.data["kyc"]["status"] == KycStatus.SUBMITTED.value

        pending = admin_ops.get_pending_kyc(ROOT)
        assert [r["user_id"] for r in pending.data["requests"]] == [user_id]

        reviewed = admin_ops.review_kyc(user_id, KycStatus.APPROVED, None, ROOT)
        assert reviewed.success
        assert reviewed.data["kyc"]["reviewed_by"] == ROOT
        assert rules_engine.request_withdrawal(user_id, "20", "UPI", "x").success

    def test_rejection_keeps_reason_until_resubmission(self, rules_engine, admin_ops, make_user, user_row):
        user_id = make_user()
        rules_engine.submit_kyc(user_id, KYC_FORM)
        result = admin_ops.review_kyc(user_id, "REJECTED", "Blurry photo", ROOT)
        assert result.data["kyc"]["rejection_reason"] == "Blurry photo"

        resubmitted = rules_engine.submit_kyc(user_id, dict(KYC_FORM, document_type="PAN"))
        assert resubmitted.success
        kyc = user_row(user_id).kyc
        assert kyc.status == KycStatus.SUBMITTED.value
        assert kyc.rejection_reason is None
        assert kyc.document_type == "PAN"

    def test_review_requires_submitted_record(self, admin_ops, make_user):
        user_id = make_user(kyc=KycStatus.NOT_STARTED)
        assert admin_ops.review_kyc(user_id, "APPROVED", None, ROOT).error_code == ErrorKind.NOT_FOUND

    def test_cannot_resubmit_while_under_review(self, rules_engine, make_user):
        user_id = make_user()
        assert rules_engine.submit_kyc(user_id, KYC_FORM).success
        assert rules_engine.submit_kyc(user_id, KYC_FORM).error_code == ErrorKind.INVALID_STATE

    @pytest.mark.parametrize("form", [
        {"document_type": "AADHAAR", "document_number": "1"},
        dict(KYC_FORM, document_number="  "),
        dict(KYC_FORM, document_type="PASSPORT"),
    ])
    def test_incomplete_forms_rejected(self, rules_engine, make_user, form):
        user_id = make_user()
        assert rules_engine.submit_kyc(user_id, form).error_code == ErrorKind.INVALID_INPUT

    def test_finance_admin_cannot_review(self, rules_engine, admin_ops, make_admin, make_user, user_row):
        user_id = make_user()
        rules_engine.submit_kyc(user_id, KYC_FORM)
        finance = make_admin(AdminRole.FINANCE_ADMIN)
        assert admin_ops.review_kyc(user_id, "APPROVED", None, finance).error_code == ErrorKind.PERMISSION_DENIED
        assert user_row(user_id).kyc.status == KycStatus.SUBMITTED.value


class TestUserModeration:

    def test_suspend_then_reactivate(self, rules_engine, admin_ops, make_user, make_admin):
        user_id = make_user()
        support = make_admin(AdminRole.SUPPORT_ADMIN)

        result = admin_ops.set_user_status(user_id, UserStatus.SUSPENDED, support)
        assert result.data == {"user_id": user_id, "status": "SUSPENDED", "previous_status": "ACTIVE"}
        assert rules_engine.complete_task(user_id, "VIDEO").error_code == ErrorKind.ACCOUNT_NOT_ACTIVE

        assert admin_ops.set_user_status(user_id, "ACTIVE", support).success
        assert rules_engine.complete_task(user_id, "VIDEO").success

        actions = [e["action"] for e in admin_ops.audit.get_audit_log(admin_id=support)]
        assert actions == [AuditAction.SET_USER_STATUS, AuditAction.SET_USER_STATUS]

    def test_unknown_status_and_user(self, admin_ops, make_user):
        user_id = make_user()
        assert admin_ops.set_user_status(user_id, "FROZEN", ROOT).error_code == ErrorKind.INVALID_INPUT
        assert admin_ops.set_user_status("user_missing", "BANNED", ROOT).error_code == ErrorKind.NOT_FOUND

    def test_auditor_cannot_edit(self, admin_ops, make_admin, make_user, user_row):
        user_id = make_user()
        auditor = make_admin(AdminRole.AUDITOR)
        assert admin_ops.set_user_status(user_id, "BANNED", auditor).error_code == ErrorKind.PERMISSION_DENIED
        assert user_row(user_id).status == UserStatus.ACTIVE.value


class TestSettings:

    def test_update_replaces_whole_record(self, admin_ops):
        settings = admin_ops.get_settings()
        settings.update(min_withdrawal_trial="5", platform_fee_percent="8")
        result = admin_ops.update_settings(settings, ROOT)
        assert result.success
        assert result.data["settings"]["min_withdrawal_trial"] == Decimal("5")
        assert result.data["settings"]["updated_by"] == ROOT

        audit = admin_ops.audit.get_audit_log()[0]
        assert audit["action"] == AuditAction.UPDATE_SETTINGS
        assert Decimal(audit["details"]["before"]["platform_fee_percent"]) == Decimal("10")
        assert Decimal(audit["details"]["after"]["platform_fee_percent"]) == Decimal("8")

    @pytest.mark.parametrize("changes", [
        {"platform_fee_percent": "60", "transaction_fee_percent": "40"},
        {"platform_fee_percent": "-1"},
        {"min_withdrawal_paid": "-5"},
        {"maintenance_mode": "yes"},
    ])
    def test_invalid_settings_rejected(self, admin_ops, changes):
        before = admin_ops.get_settings()
        result = admin_ops.update_settings(dict(before, **changes), ROOT)
        assert result.error_code == ErrorKind.INVALID_INPUT
        assert admin_ops.get_settings() == before

    def test_partial_record_rejected(self, admin_ops):
        result = admin_ops.update_settings({"maintenance_mode": True}, ROOT)
        assert result.error_code == ErrorKind.INVALID_INPUT
        assert admin_ops.get_settings()["maintenance_mode"] is False

    def test_minimum_change_applies_immediately(self, rules_engine, admin_ops, make_user):
        user_id = make_user(main="8", kyc=KycStatus.APPROVED)
        assert rules_engine.request_withdrawal(user_id, "8", "UPI", "x").error_code == ErrorKind.BELOW_MINIMUM
        admin_ops.update_settings(dict(admin_ops.get_settings(), min_withdrawal_trial="5"), ROOT)
        assert rules_engine.request_withdrawal(user_id, "8", "UPI", "x").success


class TestBalanceAdjustments:

    def test_credit_and_debit(self, admin_ops, make_user, wallet_of, entries_of):
        user_id = make_user(main="10")
        credit = admin_ops.adjust_balance(user_id, "main", "2.5", "Goodwill", ROOT)
        assert credit.data["balance"] == Decimal("12.5")

        debit = admin_ops.adjust_balance(user_id, WalletBucket.MAIN, "-12.5", "Chargeback", ROOT)
        assert debit.success
        assert wallet_of(user_id)["main"] == Decimal("0")
        assert [e.amount for e in entries_of(user_id, TransactionType.ADMIN_ADJUSTMENT)] == [
            Decimal("2.5"), Decimal("-12.5")
        ]

    def test_debit_cannot_go_negative(self, admin_ops, make_user, wallet_of):
        user_id = make_user(bonus="1")
        result = admin_ops.adjust_balance(user_id, "bonus", "-1.01", "Fraud", ROOT)
        assert result.error_code == ErrorKind.INSUFFICIENT_BALANCE
        assert wallet_of(user_id)["bonus"] == Decimal("1")

    def test_reason_and_amount_required(self, admin_ops, make_user):
        user_id = make_user()
        assert admin_ops.adjust_balance(user_id, "main", "1", " ", ROOT).error_code == ErrorKind.INVALID_INPUT
        assert admin_ops.adjust_balance(user_id, "main", "0", "x", ROOT).error_code == ErrorKind.INVALID_AMOUNT
        assert admin_ops.adjust_balance(user_id, "savings", "1", "x", ROOT).error_code == ErrorKind.INVALID_INPUT

    def test_finance_admin_needs_extra_capability(self, admin_ops, make_admin, make_user):
        user_id = make_user()
        plain = make_admin(AdminRole.FINANCE_ADMIN)
        extended = make_admin(AdminRole.FINANCE_ADMIN, extra_capabilities=["ADJUST_BALANCES"])
        assert admin_ops.adjust_balance(user_id, "main", "1", "x", plain).error_code == ErrorKind.PERMISSION_DENIED
        assert admin_ops.adjust_balance(user_id, "main", "1", "x", extended).success


class TestSubAdmins:

    def test_create_and_deactivate(self, admin_ops):
        created = admin_ops.create_sub_admin("Meera", "+911234", AdminRole.KYC_ADMIN, ROOT, ["VIEW_AUDIT", "BOGUS"])
        assert created.success
        sub_admin = created.data["admin"]
        assert sub_admin["capabilities"] == ["APPROVE_KYC", "VIEW_AUDIT", "VIEW_KYC"]
        assert admin_ops.get_audit_log(sub_admin["id"]).success

        deactivated = admin_ops.deactivate_sub_admin(sub_admin["id"], ROOT)
        assert deactivated.data["admin"]["is_active"] is False
        assert admin_ops.get_pending_kyc(sub_admin["id"]).error_code == ErrorKind.PERMISSION_DENIED

        listed = admin_ops.get_sub_admins(ROOT).data["admins"]
        assert {a["id"] for a in listed} == {ROOT, sub_admin["id"]}

    def test_cannot_create_super_admin_or_duplicate_phone(self, admin_ops):
        assert admin_ops.create_sub_admin("X", None, "SUPER_ADMIN", ROOT).error_code == ErrorKind.INVALID_INPUT
        assert admin_ops.create_sub_admin("A", "+91999", "AUDITOR", ROOT).success
        assert admin_ops.create_sub_admin("B", "+91999", "AUDITOR", ROOT).error_code == ErrorKind.INVALID_STATE

    def test_root_and_self_cannot_be_deactivated(self, admin_ops, make_admin):
        other_super = make_admin(AdminRole.SUPER_ADMIN)
        assert admin_ops.deactivate_sub_admin(ROOT, other_super).error_code == ErrorKind.INVALID_STATE
        assert admin_ops.deactivate_sub_admin(other_super, other_super).error_code == ErrorKind.INVALID_STATE

    def test_only_admin_managers_create(self, admin_ops, make_admin):
        support = make_admin(AdminRole.SUPPORT_ADMIN)
        assert admin_ops.create_sub_admin("X", None, "AUDITOR", support).error_code == ErrorKind.PERMISSION_DENIED


class TestAuthorization:

    def test_unknown_admin(self, admin_ops, make_user):
        user_id = make_user()
        assert admin_ops.set_user_status(user_id, "BANNED", "admin_ghost").error_code == ErrorKind.NOT_FOUND

    def test_inactive_admin_has_no_capabilities(self, admin_ops, make_admin, pending_withdrawal):
        _, withdrawal = pending_withdrawal
        retired = make_admin(AdminRole.SUPER_ADMIN, is_active=False)
        assert admin_ops.process_withdrawal(withdrawal["id"], "COMPLETED", retired).error_code == ErrorKind.PERMISSION_DENIED

    def test_console_reads_are_capability_checked(self, admin_ops, make_admin, pending_withdrawal):
        auditor = make_admin(AdminRole.AUDITOR)
        kyc_admin = make_admin(AdminRole.KYC_ADMIN)

        assert len(admin_ops.get_withdrawals(auditor, status="PENDING").data["withdrawals"]) == 1
        assert admin_ops.get_audit_log(auditor).success
        assert admin_ops.get_withdrawals(kyc_admin).error_code == ErrorKind.PERMISSION_DENIED
        assert admin_ops.get_users(kyc_admin).error_code == ErrorKind.PERMISSION_DENIED
        assert len(admin_ops.get_users(ROOT, status="ACTIVE").data["users"]) == 1
