import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from .allocation import CreditAllocationCalculator
from .commission import CommissionLedger
from .config import Settings, get_settings
from .errors import (
    BelowMinimumQuantity,
    IdempotencyConflictError,
    StepFailure,
    ValidationError,
)
from .models import (
    Allocation,
    CommissionBalance,
    Customer,
    PriceQuote,
    PricingBand,
    RechargeRequest,
    RechargeResult,
    RedemptionKind,
    RedemptionRequest,
    RedemptionResult,
    ResellerPurchaseRequest,
    ResellerPurchaseResult,
    SettlementRecord,
    SettlementRequest,
    SettlementResult,
    SettlementStatus,
    SettlementStep,
    SubscriptionExtension,
    Withdrawal,
    WithdrawalDecision,
    WithdrawalRequest,
    WithdrawalStatus,
    Workflow,
)
from .pricing import TieredPricingResolver, purchase_total
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

Step = SettlementStep

RECHARGE_STEPS = (
    Step.ALLOCATE_CREDITS,
    Step.EXTEND_SUBSCRIPTIONS,
    Step.RECORD_CASH_INFLOW,
    Step.RECORD_CREDITS_SOLD,
)
CREDIT_REDEMPTION_STEPS = (
    Step.ALLOCATE_CREDITS,
    Step.EXTEND_SUBSCRIPTIONS,
    Step.RECORD_CREDITS_SOLD,
    Step.DEBIT_COMMISSION,
)
CASH_REDEMPTION_STEPS = (
    Step.RECORD_CASH_OUTFLOW,
    Step.DEBIT_COMMISSION,
)
RESELLER_PURCHASE_STEPS = (
    Step.RESOLVE_PRICE,
    Step.COMPUTE_TOTAL,
    Step.RECORD_RESELLER_RECHARGE,
    Step.RECORD_CASH_INFLOW,
    Step.RECORD_CREDITS_SOLD,
    Step.CREDIT_RESELLER_BALANCE,
)

# Steps that only compute or read; everything else writes to a ledger.
PURE_STEPS = {Step.ALLOCATE_CREDITS, Step.RESOLVE_PRICE, Step.COMPUTE_TOTAL}

# Redemption stages: 1 credit side effects, 2 cash payout, 3 debit.
REDEMPTION_STAGES = {
    Step.ALLOCATE_CREDITS: 1,
    Step.EXTEND_SUBSCRIPTIONS: 1,
    Step.RECORD_CREDITS_SOLD: 1,
    Step.RECORD_CASH_OUTFLOW: 2,
    Step.DEBIT_COMMISSION: 3,
}


class WorkflowRun:
    """Executes one workflow's steps in order and tracks what was applied.

    The first failing write stops the run with a StepFailure; nothing already
    applied is undone.
    """

    def __init__(
        self, workflow: Workflow, steps: tuple, subject_id: UUID, idempotency_key: Optional[str],
        stages: Optional[dict] = None,
    ):
        self.id = uuid4()
        self.workflow = workflow
        self.steps = steps
        self.stages = stages or {}
        self.subject_id = subject_id
        self.idempotency_key = idempotency_key
        self.completed: list[SettlementStep] = []
        self.skipped: list[SettlementStep] = []

    def index_of(self, step: SettlementStep) -> int:
        return self.steps.index(step) + 1

    def stage_of(self, step: SettlementStep) -> int:
        return self.stages.get(step, self.index_of(step))

    @property
    def has_written(self) -> bool:
        return any(step not in PURE_STEPS for step in self.completed)

    def run(self, step: SettlementStep, fn: Callable, *args, **kwargs):
        index = self.index_of(step)
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            # Rejections before the first write leave nothing to reconcile.
            if isinstance(exc, ValidationError) and not self.has_written:
                raise
            raise self._failure(index, step, exc) from exc
        self.completed.append(step)
        logger.debug("%s %s: step %d (%s) done", self.workflow.value, self.id, index, step.value)
        return result

    def skip(self, step: SettlementStep) -> None:
        self.skipped.append(step)
        logger.info("%s %s: step %d (%s) skipped", self.workflow.value, self.id, self.index_of(step), step.value)

    def _failure(self, index: int, step: SettlementStep, cause: BaseException) -> StepFailure:
        logger.error(
            "%s %s failed at step %d (%s) after %s: %s",
            self.workflow.value, self.id, index, step.value,
            [s.value for s in self.completed] or "no steps", cause,
        )
        return StepFailure(
            self.workflow, index, step, cause, self.completed,
            settlement_id=self.id, stage=self.stage_of(step),
        )

    def record(self, status: SettlementStatus, **fields) -> SettlementRecord:
        return SettlementRecord(
            id=self.id,
            workflow=self.workflow,
            status=status,
            subject_id=self.subject_id,
            idempotency_key=self.idempotency_key,
            completed_steps=self.completed,
            skipped_steps=self.skipped,
            created_at=datetime.now(timezone.utc),
            **fields,
        )


def points_label(point_count: int, duration_months: int) -> str:
    points = f"{point_count} point{'s' if point_count > 1 else ''}"
    months = f"{duration_months} month{'s' if duration_months > 1 else ''}"
    return f"{points} x {months}"


class SettlementCoordinator:
    """Entry point for the three settlement workflows.

    Validation happens before the first write. Writes then run strictly in
    the order of the workflow's step table, without a cross-store
    transaction: a failure raises StepFailure naming the failed step and the
    steps already applied, and leaves those in place for reconciliation.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(seed=self.settings.seed_data)
        self.pricing = TieredPricingResolver(self.storage)
        self.calculator = CreditAllocationCalculator()
        self.commission = CommissionLedger(self.storage)

    def settle(self, request: SettlementRequest) -> SettlementResult:
        if isinstance(request, RechargeRequest):
            return self.settle_recharge(request)
        if isinstance(request, RedemptionRequest):
            return self.settle_commission_redemption(request)
        if isinstance(request, ResellerPurchaseRequest):
            return self.settle_reseller_purchase(request)
        raise ValidationError(f"Unsupported settlement request: {type(request).__name__}")

    # (a) Recharge

    def settle_recharge(self, request: RechargeRequest) -> RechargeResult:
        replayed = self._check_idempotency(request.idempotency_key, Workflow.RECHARGE, request.customer_id)
        if replayed:
            return replayed

        customer = self.storage.get_customer(request.customer_id)
        option = None
        duration_months = request.duration_months
        if request.recharge_option_id:
            option = self.storage.get_recharge_option(request.recharge_option_id)
            duration_months = option.duration_months

        base_price = request.amount_paid
        if base_price is None:
            base_price = option.price if option else Decimal("0.00")
        amount = self.calculator.final_price(base_price, request.discount_kind, request.discount_value)

        run = WorkflowRun(Workflow.RECHARGE, RECHARGE_STEPS, customer.id, request.idempotency_key)
        logger.info("Recharge %s for customer %s: %d month(s), amount %s", run.id, customer.id, duration_months, amount)
        today = self.settings.today()
        try:
            allocation = run.run(Step.ALLOCATE_CREDITS, self._allocate, customer.id, duration_months)
            extensions = run.run(Step.EXTEND_SUBSCRIPTIONS, self._extend_subscriptions, allocation)
            if amount > 0:
                run.run(
                    Step.RECORD_CASH_INFLOW, self.storage.append_cash_entry, today,
                    request.description or f"Subscription recharge - {customer.full_name}",
                    entrada=amount,
                )
            else:
                run.skip(Step.RECORD_CASH_INFLOW)
            run.run(
                Step.RECORD_CREDITS_SOLD, self.storage.append_credits_sold, today,
                request.description or self._credits_description("Credits added", customer, allocation),
                allocation.primary_panel, allocation.credits,
            )
        except StepFailure as failure:
            self._record_failure(run, failure)
            raise

        result = RechargeResult(
            settlement_id=run.id,
            customer_id=customer.id,
            point_count=allocation.point_count,
            duration_months=allocation.duration_months,
            credits=allocation.credits,
            amount_charged=amount,
            new_expirations=extensions,
        )
        self._record_success(run, result)
        return result

    # (b) Commission redemption

    def settle_commission_redemption(self, request: RedemptionRequest) -> RedemptionResult:
        replayed = self._check_idempotency(
            request.idempotency_key, Workflow.COMMISSION_REDEMPTION, request.customer_id
        )
        if replayed:
            return replayed

        redemption = self.commission.require_valid(request)
        customer = self.storage.get_customer(request.customer_id)
        to_credit = request.redemption_kind == RedemptionKind.TO_CREDIT
        option = self.storage.get_recharge_option(request.recharge_option_id) if to_credit else None

        steps = CREDIT_REDEMPTION_STEPS if to_credit else CASH_REDEMPTION_STEPS
        run = WorkflowRun(
            Workflow.COMMISSION_REDEMPTION, steps, customer.id, request.idempotency_key, stages=REDEMPTION_STAGES,
        )
        logger.info(
            "Commission redemption %s for customer %s: %s %s",
            run.id, customer.id, request.redemption_kind.value, request.amount,
        )
        today = self.settings.today()
        allocation = None
        extensions = []
        try:
            if to_credit:
                allocation = run.run(Step.ALLOCATE_CREDITS, self._allocate, customer.id, option.duration_months)
                extensions = run.run(Step.EXTEND_SUBSCRIPTIONS, self._extend_subscriptions, allocation)
                run.run(
                    Step.RECORD_CREDITS_SOLD, self.storage.append_credits_sold, today,
                    self._credits_description("Commission redemption", customer, allocation),
                    allocation.primary_panel, allocation.credits,
                )
            else:
                description = f"Commission payout - {customer.full_name}"
                if request.pix_key:
                    description += f" - PIX key: {request.pix_key}"
                run.run(Step.RECORD_CASH_OUTFLOW, self.storage.append_cash_entry, today, description,
                        saida=request.amount)
            applied = run.run(Step.DEBIT_COMMISSION, self.commission.apply, redemption)
        except StepFailure as failure:
            self._record_failure(run, failure)
            raise

        result = RedemptionResult(
            settlement_id=run.id,
            customer_id=customer.id,
            redemption_kind=request.redemption_kind,
            amount=request.amount,
            credits=allocation.credits if allocation else 0,
            new_expirations=extensions,
            remaining_commission=applied.remaining_balance,
        )
        self._record_success(run, result)
        return result

    # (c) Reseller purchase

    def settle_reseller_purchase(self, request: ResellerPurchaseRequest) -> ResellerPurchaseResult:
        replayed = self._check_idempotency(
            request.idempotency_key, Workflow.RESELLER_PURCHASE, request.reseller_id
        )
        if replayed:
            return replayed

        reseller = self.storage.get_reseller(request.reseller_id)
        panel, quantity = request.panel_name, request.quantity
        run = WorkflowRun(Workflow.RESELLER_PURCHASE, RESELLER_PURCHASE_STEPS, reseller.id, request.idempotency_key)
        logger.info("Reseller purchase %s for reseller %s: %d credits on %s", run.id, reseller.id, quantity, panel)
        today = self.settings.today()
        try:
            price = run.run(Step.RESOLVE_PRICE, self._resolve_price, panel, quantity)
            total = run.run(Step.COMPUTE_TOTAL, purchase_total, quantity, price)
            run.run(
                Step.RECORD_RESELLER_RECHARGE, self.storage.append_reseller_recharge,
                reseller.id, panel, quantity, price, total, notes=request.notes,
            )
            run.run(
                Step.RECORD_CASH_INFLOW, self.storage.append_cash_entry, today,
                f"Reseller recharge - {reseller.name} ({quantity} credits - {panel})",
                entrada=total,
            )
            run.run(
                Step.RECORD_CREDITS_SOLD, self.storage.append_credits_sold, today,
                f"Reseller recharge - {reseller.name} ({quantity} credits)", panel, quantity,
            )
            balance = run.run(Step.CREDIT_RESELLER_BALANCE, self.storage.increment_reseller_balance,
                              reseller.id, quantity)
        except StepFailure as failure:
            self._record_failure(run, failure)
            raise

        result = ResellerPurchaseResult(
            settlement_id=run.id,
            reseller_id=reseller.id,
            panel_name=panel,
            quantity=quantity,
            price_per_credit=price,
            total=total,
            credit_balance=balance,
        )
        self._record_success(run, result)
        return result

    # Pricing and balance queries

    def validate_pricing_band(self, panel_name: str, candidate: PricingBand) -> None:
        if candidate.panel_name != panel_name:
            raise ValidationError(f"Band belongs to panel {candidate.panel_name}, not {panel_name}")
        self.pricing.validate_band(panel_name, candidate)

    def minimum_quantity(self, panel_name: str) -> int:
        return self.pricing.minimum_quantity(panel_name)

    def quote(self, panel_name: str, quantity: int) -> PriceQuote:
        self._check_minimum(panel_name, quantity)
        return self.pricing.quote(panel_name, quantity)

    def get_commission_balance(self, customer_id: UUID) -> CommissionBalance:
        return self.storage.get_commission_balance(customer_id)

    # Pending PIX withdrawals

    def request_withdrawal(self, request: WithdrawalRequest) -> Withdrawal:
        self.storage.get_customer(request.customer_id)
        return self.commission.request_withdrawal(request.customer_id, request.amount, request.pix_key)

    def approve_withdrawal(self, withdrawal_id: UUID, decision: Optional[WithdrawalDecision] = None) -> Withdrawal:
        """Pay out a pending withdrawal as a cash redemption, then mark it completed.

        The redemption runs under a key derived from the withdrawal, so an
        approval retried after the payout succeeded replays it instead of
        paying twice.
        """
        decision = decision or WithdrawalDecision()
        withdrawal = self._pending_withdrawal(withdrawal_id)
        pix_key = (decision.pix_key or withdrawal.pix_key or "").strip()
        if not pix_key:
            raise ValidationError("A PIX key is required to approve a withdrawal")

        result = self.settle_commission_redemption(RedemptionRequest(
            customer_id=withdrawal.customer_id,
            redemption_kind=RedemptionKind.TO_CASH,
            amount=withdrawal.amount,
            pix_key=pix_key,
            idempotency_key=f"withdrawal-{withdrawal.id}",
        ))
        approved = self.storage.update_withdrawal(
            withdrawal.id,
            status=WithdrawalStatus.COMPLETED,
            pix_key=pix_key,
            admin_notes=decision.admin_notes,
            settlement_id=result.settlement_id,
            resolved_at=datetime.now(timezone.utc),
        )
        logger.info("Withdrawal %s approved by settlement %s", withdrawal.id, result.settlement_id)
        return approved

    def cancel_withdrawal(self, withdrawal_id: UUID, decision: WithdrawalDecision) -> Withdrawal:
        reason = (decision.admin_notes or "").strip()
        if not reason:
            raise ValidationError("A reason is required to cancel a withdrawal")
        withdrawal = self._pending_withdrawal(withdrawal_id)
        cancelled = self.storage.update_withdrawal(
            withdrawal.id,
            status=WithdrawalStatus.CANCELLED,
            admin_notes=reason,
            resolved_at=datetime.now(timezone.utc),
        )
        logger.info("Withdrawal %s cancelled: %s", withdrawal.id, reason)
        return cancelled

    def list_pending_withdrawals(self) -> list[Withdrawal]:
        return self.storage.list_withdrawals(WithdrawalStatus.PENDING)

    # Settlement journal

    def get_settlement(self, settlement_id: UUID) -> SettlementRecord:
        return self.storage.get_settlement_record(settlement_id)

    def list_failed_settlements(self) -> list[SettlementRecord]:
        return self.storage.list_settlement_records(SettlementStatus.FAILED)

    # Helpers

    def _allocate(self, customer_id: UUID, duration_months: int) -> Allocation:
        subscriptions = self.storage.list_active_subscriptions(customer_id)
        return self.calculator.allocate(subscriptions, duration_months)

    def _extend_subscriptions(self, allocation: Allocation) -> list[SubscriptionExtension]:
        # Each point extends from the expiration the store holds at write time.
        applied = []
        for planned in allocation.extensions:
            try:
                applied.append(self.storage.extend_subscription(planned.subscription_id, allocation.duration_months))
            except Exception:
                logger.error(
                    "Extended %d of %d subscriptions before %s failed",
                    len(applied), allocation.point_count, planned.subscription_id,
                )
                raise
        return applied

    def _pending_withdrawal(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = self.storage.get_withdrawal(withdrawal_id)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise ValidationError(f"Withdrawal {withdrawal_id} is already {withdrawal.status.value}")
        return withdrawal

    def _check_minimum(self, panel_name: str, quantity: int) -> None:
        minimum = self.pricing.minimum_quantity(panel_name)
        if quantity < minimum:
            raise BelowMinimumQuantity(panel_name, quantity, minimum)

    def _resolve_price(self, panel_name: str, quantity: int) -> Decimal:
        self._check_minimum(panel_name, quantity)
        return self.pricing.resolve(panel_name, quantity)

    @staticmethod
    def _credits_description(prefix: str, customer: Customer, allocation: Allocation) -> str:
        return f"{prefix} - {customer.full_name} ({points_label(allocation.point_count, allocation.duration_months)})"

    def _check_idempotency(self, idempotency_key: Optional[str], workflow: Workflow, subject_id: UUID):
        if not idempotency_key:
            return None
        existing = self.storage.find_completed_settlement(idempotency_key)
        if not existing:
            return None
        if existing.workflow != workflow or existing.subject_id != subject_id:
            raise IdempotencyConflictError(
                f"Idempotency key {idempotency_key} already used by {existing.workflow.value} settlement {existing.id}"
            )
        logger.info("Replaying %s settlement %s for key %s", workflow.value, existing.id, idempotency_key)
        return existing.result

    def _record_success(self, run: WorkflowRun, result: SettlementResult) -> None:
        self.storage.append_settlement_record(run.record(SettlementStatus.COMPLETED, result=result))
        logger.info("%s %s completed", run.workflow.value, run.id)

    def _record_failure(self, run: WorkflowRun, failure: StepFailure) -> None:
        self.storage.append_settlement_record(run.record(
            SettlementStatus.FAILED,
            failed_step_index=failure.step_index,
            failed_step=failure.step,
            failed_stage=failure.stage,
            error=str(failure.cause),
        ))
