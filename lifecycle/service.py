from datetime import date
from decimal import Decimal
from functools import wraps
from typing import Optional, Union
from uuid import UUID, uuid4

from common.auth import ActorContext, PermissionAction, PermissionCode
from common.clock import Clock, utcnow
from common.config import Settings, settings as default_settings
from common.errors import (
    BackofficeError,
    NotFoundError,
    PersistenceError,
    StateConflictError,
    ValidationError,
)
from common.identifiers import ensure_uuid
from common.logging import get_logger
from common.result import Result
from common.storage import RESELLERS, InMemoryStorage, UnitOfWork
from ledger.models import TransactionHistoryResponse, Wallet, LedgerReconciliation
from ledger.service import LedgerService, parse_amount
from validity.models import (
    ValidityAction,
    ValidityChange,
    ValidityHistory,
    ValidityRecord,
    ValidityStatus,
    end_of_day,
    window_days,
)
from validity.service import ValidityService

from .models import (
    ApprovalOutcome,
    ApproveResellerRequest,
    ChargeRequest,
    NumberLimit,
    RechargeOutcome,
    RechargeRequest,
    Reseller,
    ResellerCreate,
    ResellerState,
)
from .number_limits import NumberLimitRegister

logger = get_logger(__name__)

PARTIAL_WARNING = "secondary effects may be incomplete"


def boundary(success_message: str):
    """Turn a raising operation into one that always returns a Result."""

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Result:
            try:
                outcome = func(self, *args, **kwargs)
            except BackofficeError as exc:
                logger.info(
                    "operation_rejected",
                    operation=func.__name__,
                    error_code=exc.error_code,
                    reason=exc.message,
                )
                return Result.fail(exc)
            except Exception:
                logger.exception("operation_failed", operation=func.__name__)
                return Result.fail(PersistenceError(f"Failed to {func.__name__.replace('_', ' ')}"))

            if isinstance(outcome, Result):
                return outcome
            return Result.ok(outcome, message=success_message)

        return wrapper

    return decorator


def reseller_lock_key(reseller_id: UUID) -> str:
    return f"reseller:{reseller_id}"


class LifecycleService:
    """Approval, rejection, suspension and reactivation of resellers.

    This is the only entry point into the ledger and validity components.
    The state change is always committed first and is authoritative; wallet
    credits, validity windows and number limits that follow it are
    best-effort and surface as warnings when they fail.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        ledger: Optional[LedgerService] = None,
        validity: Optional[ValidityService] = None,
        number_limits: Optional[NumberLimitRegister] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or default_settings
        self.clock = clock or utcnow
        self.ledger = ledger or LedgerService(self.storage, self.clock)
        self.validity = validity or ValidityService(
            self.storage, self.clock, default_days=self.config.default_validity_days
        )
        self.number_limits = number_limits or NumberLimitRegister(self.storage, self.clock)

    # Reseller records

    @boundary("Reseller registered successfully")
    def register_reseller(self, ctx: ActorContext, request: ResellerCreate) -> Result[Reseller]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.CREATE)
        reseller_id = request.reseller_id or uuid4()
        with self.storage.atomic(reseller_lock_key(reseller_id)) as uow:
            if uow.get(RESELLERS, reseller_id) is not None:
                raise StateConflictError(f"Reseller {reseller_id} already exists")
            now = self.clock()
            data = uow.insert(RESELLERS, {
                "id": reseller_id,
                "business_name": request.business_name.strip(),
                "email": request.email,
                "status": False,
                "approval_date": None,
                "approved_by": None,
                "rejection_reason": None,
                "suspended_at": None,
                "suspended_by": None,
                "suspended_reason": None,
                "grace_period_days": None,
                "created_at": now,
                "updated_at": now,
            })
        logger.info("reseller_registered", reseller_id=str(reseller_id), actor_id=str(ctx.actor_id))
        return Reseller(**data)

    @boundary("Reseller found")
    def get_reseller(self, ctx: ActorContext, reseller_id: Union[UUID, str]) -> Result[Reseller]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.VIEW)
        return self._require_reseller(ensure_uuid(reseller_id, "reseller ID"))

    # Transitions

    @boundary("Reseller approved successfully")
    def approve(
        self,
        ctx: ActorContext,
        reseller_id: Union[UUID, str],
        request: Optional[ApproveResellerRequest] = None,
    ) -> Result[ApprovalOutcome]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        request = request or ApproveResellerRequest()
        opening_balance = self._check_approval_request(reseller_id, request)

        with self.storage.atomic(reseller_lock_key(reseller_id)) as uow:
            data = self._load(uow, reseller_id)
            state = Reseller(**data).state
            if state == ResellerState.APPROVED:
                raise StateConflictError("Reseller is already approved")
            if state == ResellerState.SUSPENDED:
                raise StateConflictError("Reseller is suspended; reactivate instead of approving")

            now = self.clock()
            data.update(
                status=True,
                approval_date=now,
                approved_by=ctx.actor_id,
                rejection_reason=None,
                updated_at=now,
            )
            if request.grace_period_days is not None:
                data["grace_period_days"] = request.grace_period_days
            data = uow.update(RESELLERS, data)

        outcome = ApprovalOutcome(reseller=Reseller(**data))
        logger.info("reseller_approved", reseller_id=str(reseller_id), actor_id=str(ctx.actor_id))

        warnings: list[str] = []
        posting = None
        if opening_balance is not None:
            try:
                posting = self.ledger.credit_wallet(
                    reseller_id,
                    opening_balance,
                    "Initial wallet balance upon approval",
                    f"APPROVAL_{reseller_id}",
                )
                outcome.posting = posting
            except Exception as exc:
                self._note_failure(warnings, "approval_credit_failed", "Wallet credit", reseller_id, exc)

        if request.validity_date is not None or (posting is not None and not posting.replayed):
            try:
                outcome.validity = self._apply_validity(
                    reseller_id,
                    request.validity_date,
                    ValidityAction.RESELLER_APPROVAL,
                    wallet_id=posting.wallet.id if posting else None,
                    amount=opening_balance if posting else None,
                )
            except Exception as exc:
                self._note_failure(warnings, "approval_validity_failed", "Validity update", reseller_id, exc)

        if request.number_limit_count is not None:
            try:
                outcome.number_limit = self.number_limits.upsert(reseller_id, request.number_limit_count)
            except Exception as exc:
                self._note_failure(warnings, "approval_number_limit_failed", "Number limit update", reseller_id, exc)

        if warnings:
            return Result.ok(outcome, message=f"Reseller approved; {PARTIAL_WARNING}", warnings=warnings)
        return Result.ok(outcome, message="Reseller approved successfully")

    @boundary("Reseller rejected successfully")
    def reject(self, ctx: ActorContext, reseller_id: Union[UUID, str], reason: str) -> Result[Reseller]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        reason = self._check_reason(reason, "Rejection reason")

        with self.storage.atomic(reseller_lock_key(reseller_id)) as uow:
            data = self._load(uow, reseller_id)
            state = Reseller(**data).state
            if state not in (ResellerState.PENDING, ResellerState.REJECTED):
                raise StateConflictError(f"Cannot reject a reseller in {state.value} state")

            data.update(
                rejection_reason=reason,
                approval_date=None,
                approved_by=None,
                status=False,
                updated_at=self.clock(),
            )
            data = uow.update(RESELLERS, data)

        logger.info("reseller_rejected", reseller_id=str(reseller_id), actor_id=str(ctx.actor_id))
        return Reseller(**data)

    @boundary("Reseller suspended successfully")
    def suspend(self, ctx: ActorContext, reseller_id: Union[UUID, str], reason: str) -> Result[Reseller]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        reason = self._check_reason(reason, "Suspension reason")

        with self.storage.atomic(reseller_lock_key(reseller_id)) as uow:
            data = self._load(uow, reseller_id)
            state = Reseller(**data).state
            if state == ResellerState.SUSPENDED:
                raise StateConflictError("Reseller is already suspended")
            if state != ResellerState.APPROVED:
                raise StateConflictError(f"Cannot suspend a reseller in {state.value} state")

            now = self.clock()
            data.update(
                suspended_at=now,
                suspended_by=ctx.actor_id,
                suspended_reason=reason,
                status=False,
                updated_at=now,
            )
            data = uow.update(RESELLERS, data)

        logger.info("reseller_suspended", reseller_id=str(reseller_id), actor_id=str(ctx.actor_id))

        warnings: list[str] = []
        self._set_validity_status(reseller_id, ValidityStatus.SUSPENDED, warnings)
        if warnings:
            return Result.ok(Reseller(**data), message=f"Reseller suspended; {PARTIAL_WARNING}", warnings=warnings)
        return Reseller(**data)

    @boundary("Reseller reactivated successfully")
    def reactivate(self, ctx: ActorContext, reseller_id: Union[UUID, str]) -> Result[Reseller]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")

        with self.storage.atomic(reseller_lock_key(reseller_id)) as uow:
            data = self._load(uow, reseller_id)
            if Reseller(**data).state != ResellerState.SUSPENDED:
                raise StateConflictError("Reseller is not suspended")

            data.update(
                suspended_at=None,
                suspended_by=None,
                suspended_reason=None,
                status=True,
                updated_at=self.clock(),
            )
            data = uow.update(RESELLERS, data)

        logger.info("reseller_reactivated", reseller_id=str(reseller_id), actor_id=str(ctx.actor_id))

        warnings: list[str] = []
        current = self.validity.get_validity(reseller_id)
        if current is not None:
            restored = ValidityStatus.EXPIRED if current.is_lapsed(self.clock()) else ValidityStatus.ACTIVE
            self._set_validity_status(reseller_id, restored, warnings)
        if warnings:
            return Result.ok(Reseller(**data), message=f"Reseller reactivated; {PARTIAL_WARNING}", warnings=warnings)
        return Reseller(**data)

    @boundary("Reseller status updated successfully")
    def set_active(self, ctx: ActorContext, reseller_id: Union[UUID, str], active: bool) -> Result[Reseller]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")

        with self.storage.atomic(reseller_lock_key(reseller_id)) as uow:
            data = self._load(uow, reseller_id)
            state = Reseller(**data).state
            if state == ResellerState.SUSPENDED:
                raise StateConflictError("Reseller is suspended; reactivate to change status")
            if state != ResellerState.APPROVED:
                raise StateConflictError(f"Cannot change status of a reseller in {state.value} state")

            data.update(status=bool(active), updated_at=self.clock())
            data = uow.update(RESELLERS, data)

        logger.info("reseller_status_set", reseller_id=str(reseller_id), active=bool(active))
        return Reseller(**data)

    # Wallet

    @boundary("Wallet credited successfully")
    def recharge(
        self, ctx: ActorContext, reseller_id: Union[UUID, str], request: RechargeRequest
    ) -> Result[RechargeOutcome]:
        ctx.require(PermissionCode.WALLET, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        amount = parse_amount(request.amount)
        self._require_wallet_holder(reseller_id)
        if request.validity_date is not None:
            self._check_validity_date(reseller_id, request.validity_date)

        posting = self.ledger.credit_wallet(reseller_id, amount, request.description, request.reference)
        outcome = RechargeOutcome(posting=posting)
        if posting.replayed:
            return Result.ok(outcome, message="Recharge already applied")

        warnings: list[str] = []
        action = ValidityAction.WALLET_RECHARGE if request.validity_date else ValidityAction.WALLET_RECHARGE_RESET
        try:
            outcome.validity = self._apply_validity(
                reseller_id, request.validity_date, action, wallet_id=posting.wallet.id, amount=amount
            )
        except Exception as exc:
            self._note_failure(warnings, "recharge_validity_failed", "Validity update", reseller_id, exc)

        if warnings:
            return Result.ok(outcome, message=f"Wallet credited; {PARTIAL_WARNING}", warnings=warnings)
        return outcome

    @boundary("Wallet debited successfully")
    def charge(self, ctx: ActorContext, reseller_id: Union[UUID, str], request: ChargeRequest):
        ctx.require(PermissionCode.WALLET, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        amount = parse_amount(request.amount)
        self._require_wallet_holder(reseller_id)
        return self.ledger.debit_wallet(reseller_id, amount, request.description, request.reference)

    @boundary("Wallet found")
    def get_wallet(self, ctx: ActorContext, reseller_id: Union[UUID, str]) -> Result[Wallet]:
        ctx.require(PermissionCode.WALLET, PermissionAction.VIEW)
        wallet = self.ledger.get_wallet(reseller_id)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        return wallet

    @boundary("Transactions retrieved successfully")
    def get_transactions(
        self,
        ctx: ActorContext,
        reseller_id: Union[UUID, str],
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Result[TransactionHistoryResponse]:
        ctx.require(PermissionCode.WALLET, PermissionAction.VIEW)
        wallet = self.ledger.get_wallet(reseller_id)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        if limit is None:
            limit = self.config.transaction_page_size
        return self.ledger.get_transactions(wallet.id, limit, offset)

    @boundary("Wallet reconciled")
    def reconcile_wallet(self, ctx: ActorContext, reseller_id: Union[UUID, str]) -> Result[LedgerReconciliation]:
        ctx.require(PermissionCode.WALLET, PermissionAction.VIEW)
        wallet = self.ledger.get_wallet(reseller_id)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        return self.ledger.reconcile(wallet.id)

    # Validity

    @boundary("Validity retrieved")
    def get_validity(self, ctx: ActorContext, reseller_id: Union[UUID, str]) -> Result[Optional[ValidityRecord]]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.VIEW)
        validity = self.validity.get_validity(reseller_id)
        if validity is None:
            return Result.ok(None, message="No validity record found")
        return validity

    @boundary("History retrieved successfully")
    def get_validity_history(
        self, ctx: ActorContext, reseller_id: Union[UUID, str], limit: Optional[int] = None
    ) -> Result[list[ValidityHistory]]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.VIEW)
        return self.validity.get_history(reseller_id, self.config.history_limit if limit is None else limit)

    @boundary("Reseller validity updated successfully")
    def update_validity(
        self, ctx: ActorContext, reseller_id: Union[UUID, str], validity_date: date
    ) -> Result[ValidityChange]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        self._require_reseller(reseller_id)
        return self.validity.set_explicit_end(reseller_id, validity_date, ValidityAction.ADMIN_UPDATE)

    @boundary("Validity statuses refreshed")
    def expire_validities(self, ctx: ActorContext) -> Result[list[ValidityRecord]]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        return self.validity.mark_expired()

    # Number limits

    @boundary("Number limits updated successfully")
    def set_number_limit(
        self, ctx: ActorContext, reseller_id: Union[UUID, str], max_virtual_numbers: int
    ) -> Result[NumberLimit]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.UPDATE)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        self._require_reseller(reseller_id)
        return self.number_limits.upsert(reseller_id, max_virtual_numbers)

    @boundary("Number limits found")
    def get_number_limit(self, ctx: ActorContext, reseller_id: Union[UUID, str]) -> Result[NumberLimit]:
        ctx.require(PermissionCode.RESELLER, PermissionAction.VIEW)
        limit = self.number_limits.get(reseller_id)
        if limit is None:
            raise NotFoundError("Number limits not found")
        return limit

    # Helpers

    def _load(self, uow: UnitOfWork, reseller_id: UUID) -> dict:
        data = uow.get(RESELLERS, reseller_id)
        if data is None:
            raise NotFoundError(f"Reseller {reseller_id} not found")
        return data

    def _require_reseller(self, reseller_id: UUID) -> Reseller:
        data = self.storage.get(RESELLERS, reseller_id)
        if data is None:
            raise NotFoundError(f"Reseller {reseller_id} not found")
        return Reseller(**data)

    def _require_wallet_holder(self, reseller_id: UUID) -> Reseller:
        reseller = self._require_reseller(reseller_id)
        if reseller.state not in (ResellerState.APPROVED, ResellerState.SUSPENDED):
            raise StateConflictError(f"Wallet operations need an approved reseller, not {reseller.state.value}")
        return reseller

    def _check_reason(self, reason: Optional[str], label: str) -> str:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(f"{label} is required")
        reason = reason.strip()
        if len(reason) < self.config.min_reason_length:
            raise ValidationError(
                f"{label} must be at least {self.config.min_reason_length} characters"
            )
        return reason

    def _check_approval_request(self, reseller_id: UUID, request: ApproveResellerRequest) -> Optional[Decimal]:
        """Validate approval inputs before anything is written.

        Returns the opening balance to credit, or None when there is none.
        """
        if request.grace_period_days is not None and request.grace_period_days < 0:
            raise ValidationError("Grace period days must not be negative")
        if request.number_limit_count is not None and request.number_limit_count < 0:
            raise ValidationError("Invalid max virtual numbers value")
        if request.validity_date is not None:
            self._check_validity_date(reseller_id, request.validity_date)
        if request.wallet_balance is None:
            return None
        if request.wallet_balance < 0:
            raise ValidationError("Wallet balance must not be negative")
        if request.wallet_balance == 0:
            return None
        return parse_amount(request.wallet_balance)

    def _check_validity_date(self, reseller_id: UUID, validity_date: date) -> None:
        current = self.validity.get_validity(reseller_id)
        start = current.start_date if current else self.clock()
        if window_days(start, end_of_day(validity_date)) <= 0:
            raise ValidationError("Validity end date must fall after the validity start date")

    def _apply_validity(
        self,
        reseller_id: UUID,
        validity_date: Optional[date],
        action: ValidityAction,
        wallet_id: Optional[UUID],
        amount: Optional[Decimal],
    ) -> ValidityChange:
        if validity_date is not None:
            return self.validity.set_explicit_end(reseller_id, validity_date, action, wallet_id, amount)
        return self.validity.update_on_recharge(reseller_id, wallet_id, amount, action)

    def _set_validity_status(self, reseller_id: UUID, status: ValidityStatus, warnings: list[str]) -> None:
        try:
            if self.validity.get_validity(reseller_id) is not None:
                self.validity.set_status(reseller_id, status)
        except Exception as exc:
            self._note_failure(warnings, "validity_status_failed", "Validity status update", reseller_id, exc)

    @staticmethod
    def _note_failure(warnings: list[str], event: str, step: str, reseller_id: UUID, exc: Exception) -> None:
        message = exc.message if isinstance(exc, BackofficeError) else str(exc) or type(exc).__name__
        logger.warning(event, reseller_id=str(reseller_id), error=message, exc_info=not isinstance(exc, BackofficeError))
        warnings.append(f"{step} failed: {message}")
