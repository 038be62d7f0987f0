"""
Unit Tests for the Lifecycle Service

Tests cover:
1. Approval with opening balance, validity and number limit
2. Rejection and re-approval
3. Suspension and reactivation
4. Recharge and charge through the lifecycle boundary
5. Best-effort secondary steps
6. Authorization context
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from pydantic import ValidationError as SchemaError

from common.auth import ActorContext, Permission
from common.errors import ErrorKind, PersistenceError, StateConflictError
from common.storage import RESELLERS, VALIDITY_HISTORY, WALLET_TRANSACTIONS
from lifecycle.models import (
    ApproveResellerRequest,
    ChargeRequest,
    RechargeRequest,
    ResellerCreate,
    ResellerState,
)
from validity.models import ValidityAction, ValidityStatus


# Test constants
RESELLER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_RESELLER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
ADMIN_ID = UUID("9b2f6a1e-4c3d-4e8f-9a7b-1c2d3e4f5a6b")
SUSPENSION_REASON = "Payment dispute with customer"


@pytest.fixture
def approved_reseller(service, admin, pending_reseller):
    return service.approve(admin, RESELLER_ID, ApproveResellerRequest(wallet_balance=Decimal("1000"))).unwrap()


class TestRegistration:
    """Tests for registering a reseller."""

    @pytest.mark.parametrize("reseller_id", [
        "{550e8400-e29b-41d4-a716-446655440000}",
        "urn:uuid:550e8400-e29b-41d4-a716-446655440000",
        "550e8400e29b41d4a716446655440000",
    ])
    def test_non_canonical_id_is_rejected(self, reseller_id):
        with pytest.raises(SchemaError, match="Invalid reseller ID format"):
            ResellerCreate(business_name="Beta", reseller_id=reseller_id)

    def test_canonical_id_is_kept(self, service, admin):
        request = ResellerCreate(business_name="Beta", reseller_id=str(OTHER_RESELLER_ID).upper())
        assert service.register_reseller(admin, request).unwrap().id == OTHER_RESELLER_ID

    def test_duplicate_registration_conflicts(self, service, admin, pending_reseller):
        result = service.register_reseller(admin, ResellerCreate(business_name="Again", reseller_id=RESELLER_ID))
        assert result.error == ErrorKind.STATE_CONFLICT


class TestApproval:
    """Tests for approving a reseller."""

    def test_approve_with_opening_balance(self, service, admin, pending_reseller, clock):
        """Approval credits the wallet and opens a default validity window."""
        result = service.approve(admin, RESELLER_ID, ApproveResellerRequest(wallet_balance=Decimal("1000")))

        assert result.success
        assert result.warnings == []
        outcome = result.unwrap()
        assert outcome.reseller.state == ResellerState.APPROVED
        assert outcome.reseller.status is True
        assert outcome.reseller.approved_by == ADMIN_ID
        assert outcome.reseller.approval_date == clock.now

        wallet = service.get_wallet(admin, RESELLER_ID).unwrap()
        assert wallet.balance == Decimal("1000")
        assert outcome.posting.transaction.reference == f"APPROVAL_{RESELLER_ID}"

        validity = service.get_validity(admin, RESELLER_ID).unwrap()
        assert validity.start_date == clock.now
        assert validity.end_date == clock.now + timedelta(days=365)

        history = service.get_validity_history(admin, RESELLER_ID).unwrap()
        assert len(history) == 1
        assert history[0].action == ValidityAction.RESELLER_APPROVAL

    def test_approve_with_validity_date_and_limits(self, service, admin, pending_reseller):
        request = ApproveResellerRequest(
            wallet_balance=Decimal("250"),
            grace_period_days=7,
            number_limit_count=25,
            validity_date=date(2026, 6, 30),
        )
        outcome = service.approve(admin, RESELLER_ID, request).unwrap()

        assert outcome.reseller.grace_period_days == 7
        assert outcome.validity.validity.end_date.date() == date(2026, 6, 30)
        assert outcome.validity.history.action == ValidityAction.RESELLER_APPROVAL
        assert service.get_number_limit(admin, RESELLER_ID).unwrap().max_virtual_numbers == 25

    def test_approve_without_balance_skips_wallet(self, service, admin, pending_reseller, storage):
        outcome = service.approve(admin, RESELLER_ID, ApproveResellerRequest(wallet_balance=Decimal("0"))).unwrap()

        assert outcome.posting is None
        assert outcome.validity is None
        assert service.get_wallet(admin, RESELLER_ID).error == ErrorKind.NOT_FOUND
        assert storage.count(VALIDITY_HISTORY) == 0

    def test_double_approval_conflicts(self, service, admin, approved_reseller):
        result = service.approve(admin, RESELLER_ID)
        assert not result.success
        assert result.error == ErrorKind.STATE_CONFLICT
        assert result.data is None

    def test_approve_unknown_reseller(self, service, admin):
        result = service.approve(admin, OTHER_RESELLER_ID)
        assert result.error == ErrorKind.NOT_FOUND

    def test_approve_malformed_id(self, service, admin):
        result = service.approve(admin, "R1")
        assert result.error == ErrorKind.VALIDATION
        assert result.message == "Invalid reseller ID format"

    @pytest.mark.parametrize("request_data", [
        {"wallet_balance": Decimal("-1")},
        {"grace_period_days": -3},
        {"number_limit_count": -1},
        {"validity_date": date(2025, 1, 1)},
    ])
    def test_invalid_approval_input_writes_nothing(self, service, admin, pending_reseller, storage, request_data):
        result = service.approve(admin, RESELLER_ID, ApproveResellerRequest(**request_data))

        assert result.error == ErrorKind.VALIDATION
        assert service.get_reseller(admin, RESELLER_ID).unwrap().state == ResellerState.PENDING
        assert storage.count(WALLET_TRANSACTIONS) == 0


class TestBestEffortSteps:
    """Secondary failures never undo a committed approval or recharge."""

    def test_credit_failure_keeps_approval(self, service, admin, pending_reseller, monkeypatch):
        def broken_credit(*args, **kwargs):
            raise PersistenceError("ledger store unavailable")

        monkeypatch.setattr(service.ledger, "credit_wallet", broken_credit)
        result = service.approve(admin, RESELLER_ID, ApproveResellerRequest(wallet_balance=Decimal("1000")))

        assert result.success
        assert result.has_warnings
        assert "ledger store unavailable" in result.warnings[0]
        assert "may be incomplete" in result.message
        assert result.unwrap().posting is None
        assert service.get_reseller(admin, RESELLER_ID).unwrap().state == ResellerState.APPROVED

    def test_validity_failure_keeps_credit(self, service, admin, pending_reseller, monkeypatch):
        def broken_update(*args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(service.validity, "update_on_recharge", broken_update)
        result = service.approve(admin, RESELLER_ID, ApproveResellerRequest(wallet_balance=Decimal("1000")))

        assert result.success
        assert result.warnings == ["Validity update failed: connection reset"]
        assert service.get_wallet(admin, RESELLER_ID).unwrap().balance == Decimal("1000")
        assert service.get_validity(admin, RESELLER_ID).unwrap() is None

    def test_number_limit_failure_is_a_warning(self, service, admin, pending_reseller, monkeypatch):
        def broken_upsert(*args, **kwargs):
            raise PersistenceError("number_limits table locked")

        monkeypatch.setattr(service.number_limits, "upsert", broken_upsert)
        result = service.approve(admin, RESELLER_ID, ApproveResellerRequest(number_limit_count=10))

        assert result.success
        assert len(result.warnings) == 1

    def test_approval_write_failure_aborts(self, service, admin, pending_reseller, monkeypatch):
        def broken_update(self, table, row):
            raise PersistenceError("store unavailable")

        monkeypatch.setattr("common.storage.UnitOfWork.update", broken_update)
        result = service.approve(admin, RESELLER_ID, ApproveResellerRequest(wallet_balance=Decimal("1000")))
        monkeypatch.undo()

        assert result.error == ErrorKind.PERSISTENCE
        assert service.get_reseller(admin, RESELLER_ID).unwrap().state == ResellerState.PENDING
        assert service.get_wallet(admin, RESELLER_ID).error == ErrorKind.NOT_FOUND

    def test_unexpected_error_does_not_escape(self, service, admin, pending_reseller, monkeypatch):
        def explode(*args, **kwargs):
            raise KeyError("boom")

        monkeypatch.setattr(service.storage, "get", explode)
        result = service.get_reseller(admin, RESELLER_ID)

        assert not result.success
        assert result.error == ErrorKind.PERSISTENCE


class TestRejection:
    """Tests for rejecting a reseller."""

    def test_short_reason_is_rejected(self, service, admin, storage):
        service.register_reseller(admin, ResellerCreate(reseller_id=OTHER_RESELLER_ID, business_name="Beta"))
        before = storage.get(RESELLERS, OTHER_RESELLER_ID)

        result = service.reject(admin, OTHER_RESELLER_ID, "no")

        assert result.error == ErrorKind.VALIDATION
        assert storage.get(RESELLERS, OTHER_RESELLER_ID) == before

    def test_reason_is_trimmed_before_length_check(self, service, admin, pending_reseller):
        result = service.reject(admin, RESELLER_ID, "   short    ")
        assert result.error == ErrorKind.VALIDATION

    def test_reject_then_approve(self, service, admin, pending_reseller):
        rejected = service.reject(admin, RESELLER_ID, "  Incomplete KYC documents  ").unwrap()
        assert rejected.state == ResellerState.REJECTED
        assert rejected.rejection_reason == "Incomplete KYC documents"
        assert rejected.approval_date is None
        assert rejected.status is False

        approved = service.approve(admin, RESELLER_ID).unwrap().reseller
        assert approved.rejection_reason is None
        assert approved.approval_date is not None
        assert approved.state == ResellerState.APPROVED

    def test_cannot_reject_approved_reseller(self, service, admin, approved_reseller):
        result = service.reject(admin, RESELLER_ID, "Changed our mind about this one")
        assert result.error == ErrorKind.STATE_CONFLICT


class TestSuspension:
    """Tests for suspending and reactivating a reseller."""

    def test_suspend_then_double_suspend(self, service, admin, approved_reseller, clock):
        suspended = service.suspend(admin, RESELLER_ID, SUSPENSION_REASON).unwrap()

        assert suspended.status is False
        assert suspended.suspended_at == clock.now
        assert suspended.suspended_by == ADMIN_ID
        assert suspended.suspended_reason == SUSPENSION_REASON
        assert suspended.state == ResellerState.SUSPENDED

        again = service.suspend(admin, RESELLER_ID, SUSPENSION_REASON)
        assert again.error == ErrorKind.STATE_CONFLICT
        with pytest.raises(StateConflictError):
            again.unwrap()

    def test_suspend_marks_validity(self, service, admin, approved_reseller):
        service.suspend(admin, RESELLER_ID, SUSPENSION_REASON).unwrap()
        assert service.get_validity(admin, RESELLER_ID).unwrap().status == ValidityStatus.SUSPENDED

    def test_cannot_suspend_pending_reseller(self, service, admin, pending_reseller):
        result = service.suspend(admin, RESELLER_ID, SUSPENSION_REASON)
        assert result.error == ErrorKind.STATE_CONFLICT

    def test_suspend_requires_reason(self, service, admin, approved_reseller):
        assert service.suspend(admin, RESELLER_ID, "late").error == ErrorKind.VALIDATION
        assert service.suspend(admin, RESELLER_ID, None).error == ErrorKind.VALIDATION

    def test_reactivate_then_suspend_again(self, service, admin, approved_reseller):
        service.suspend(admin, RESELLER_ID, SUSPENSION_REASON).unwrap()

        reactivated = service.reactivate(admin, RESELLER_ID).unwrap()

        assert reactivated.status is True
        assert reactivated.suspended_at is None
        assert reactivated.suspended_by is None
        assert reactivated.suspended_reason is None
        assert reactivated.state == ResellerState.APPROVED
        assert service.get_validity(admin, RESELLER_ID).unwrap().status == ValidityStatus.ACTIVE
        assert service.suspend(admin, RESELLER_ID, SUSPENSION_REASON).success

    def test_reactivate_lapsed_window_is_expired(self, service, admin, approved_reseller, clock):
        service.suspend(admin, RESELLER_ID, SUSPENSION_REASON).unwrap()
        clock.advance(days=400)

        service.reactivate(admin, RESELLER_ID).unwrap()
        assert service.get_validity(admin, RESELLER_ID).unwrap().status == ValidityStatus.EXPIRED

    def test_reactivate_requires_suspension(self, service, admin, approved_reseller):
        assert service.reactivate(admin, RESELLER_ID).error == ErrorKind.STATE_CONFLICT

    def test_status_toggle_blocked_while_suspended(self, service, admin, approved_reseller):
        service.suspend(admin, RESELLER_ID, SUSPENSION_REASON).unwrap()
        assert service.set_active(admin, RESELLER_ID, True).error == ErrorKind.STATE_CONFLICT

    def test_status_toggle_on_approved(self, service, admin, approved_reseller):
        assert service.set_active(admin, RESELLER_ID, False).unwrap().status is False
        assert service.set_active(admin, RESELLER_ID, True).unwrap().status is True

    def test_status_toggle_on_pending(self, service, admin, pending_reseller):
        assert service.set_active(admin, RESELLER_ID, True).error == ErrorKind.STATE_CONFLICT


class TestWalletOperations:
    """Recharge and charge through the lifecycle boundary."""

    def test_recharge_resets_validity(self, service, admin, approved_reseller, clock):
        clock.advance(days=30)
        outcome = service.recharge(admin, RESELLER_ID, RechargeRequest(amount=Decimal("500"))).unwrap()

        assert outcome.posting.wallet.balance == Decimal("1500")
        assert outcome.validity.validity.start_date == clock.now
        assert outcome.validity.validity.end_date == clock.now + timedelta(days=365)
        assert outcome.validity.history.action == ValidityAction.WALLET_RECHARGE_RESET
        assert len(service.get_validity_history(admin, RESELLER_ID).unwrap()) == 2

    def test_recharge_with_date(self, service, admin, approved_reseller):
        outcome = service.recharge(
            admin, RESELLER_ID, RechargeRequest(amount=Decimal("10"), validity_date=date(2026, 9, 1))
        ).unwrap()
        assert outcome.validity.history.action == ValidityAction.WALLET_RECHARGE

    def test_replayed_recharge_leaves_validity_alone(self, service, admin, approved_reseller):
        request = RechargeRequest(amount=Decimal("500"), reference="razorpay_pay_123")
        service.recharge(admin, RESELLER_ID, request).unwrap()
        result = service.recharge(admin, RESELLER_ID, request)

        assert result.message == "Recharge already applied"
        assert result.unwrap().validity is None
        assert service.get_wallet(admin, RESELLER_ID).unwrap().balance == Decimal("1500")
        assert len(service.get_validity_history(admin, RESELLER_ID).unwrap()) == 2

    def test_reused_reference_with_other_amount_is_refused(self, service, admin, approved_reseller):
        """A payment reference reused for a different amount is a conflict, not a replay."""
        service.recharge(admin, RESELLER_ID, RechargeRequest(amount=Decimal("500"), reference="pay_1")).unwrap()

        result = service.recharge(admin, RESELLER_ID, RechargeRequest(amount=Decimal("900"), reference="pay_1"))

        assert not result.success
        assert result.error == ErrorKind.STATE_CONFLICT
        assert service.get_wallet(admin, RESELLER_ID).unwrap().balance == Decimal("1500")
        assert len(service.get_validity_history(admin, RESELLER_ID).unwrap()) == 2

    @pytest.mark.parametrize("limit,offset", [(0, 0), (-1, 0), (5, -2)])
    def test_bad_page_arguments(self, service, admin, approved_reseller, limit, offset):
        result = service.get_transactions(admin, RESELLER_ID, limit=limit, offset=offset)
        assert result.error == ErrorKind.VALIDATION

    def test_history_limit_must_be_positive(self, service, admin, approved_reseller):
        assert service.get_validity_history(admin, RESELLER_ID, limit=0).error == ErrorKind.VALIDATION

    def test_overdraw_fails(self, service, admin, approved_reseller, clock):
        clock.advance(minutes=1)
        service.recharge(admin, RESELLER_ID, RechargeRequest(amount=Decimal("500"))).unwrap()

        result = service.charge(admin, RESELLER_ID, ChargeRequest(amount=Decimal("3000")))

        assert result.error == ErrorKind.INSUFFICIENT_FUNDS
        assert service.get_wallet(admin, RESELLER_ID).unwrap().balance == Decimal("1500")
        assert service.get_transactions(admin, RESELLER_ID).unwrap().total_count == 2

    def test_charge_and_reconcile(self, service, admin, approved_reseller):
        posting = service.charge(admin, RESELLER_ID, ChargeRequest(amount=Decimal("120.75"))).unwrap()

        assert posting.wallet.balance == Decimal("879.25")
        assert service.reconcile_wallet(admin, RESELLER_ID).unwrap().balanced

    def test_wallet_operations_need_approved_reseller(self, service, admin, pending_reseller):
        result = service.recharge(admin, RESELLER_ID, RechargeRequest(amount=Decimal("10")))
        assert result.error == ErrorKind.STATE_CONFLICT

    def test_update_validity_by_operator(self, service, admin, approved_reseller):
        change = service.update_validity(admin, RESELLER_ID, date(2027, 1, 31)).unwrap()

        assert change.history.action == ValidityAction.ADMIN_UPDATE
        record = service.get_validity(admin, RESELLER_ID).unwrap()
        assert record.days == -((record.start_date - record.end_date) // timedelta(days=1))

    def test_expire_validities(self, service, admin, approved_reseller, clock):
        clock.advance(days=366)
        expired = service.expire_validities(admin).unwrap()
        assert [r.reseller_id for r in expired] == [RESELLER_ID]


class TestAuthorization:
    """Operations honour the acting identity's permissions."""

    def test_missing_permission(self, service, pending_reseller):
        viewer = ActorContext(actor_id=ADMIN_ID, permissions={"RESELLER": Permission(can_view=True)})

        assert service.get_reseller(viewer, RESELLER_ID).success
        result = service.approve(viewer, RESELLER_ID)
        assert result.error == ErrorKind.AUTHORIZATION
        assert service.get_reseller(viewer, RESELLER_ID).unwrap().state == ResellerState.PENDING

    def test_wallet_permission_is_separate(self, service, admin, approved_reseller):
        operator = ActorContext(
            actor_id=ADMIN_ID,
            permissions={"RESELLER": Permission(can_view=True, can_update=True)},
        )
        result = service.charge(operator, RESELLER_ID, ChargeRequest(amount=Decimal("1")))
        assert result.error == ErrorKind.AUTHORIZATION
