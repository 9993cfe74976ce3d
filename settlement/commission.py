import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .errors import RedemptionRejected
from .models import (
    CommissionBalance,
    Redemption,
    RedemptionKind,
    RedemptionRequest,
    RedemptionState,
    RejectReason,
    Withdrawal,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

MIN_CREDIT_REDEMPTION = Decimal("35.00")
MIN_CASH_REDEMPTION = Decimal("50.00")

MINIMUMS = {
    RedemptionKind.TO_CREDIT: MIN_CREDIT_REDEMPTION,
    RedemptionKind.TO_CASH: MIN_CASH_REDEMPTION,
}


class CommissionLedger:
    """Redemption lifecycle: requested -> validated -> applied, or requested -> rejected.

    Cash withdrawals may instead wait as pending until an operator approves
    them (run as a cash redemption) or cancels them (no writes).
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def validate(self, request: RedemptionRequest, balance: CommissionBalance) -> Optional[RejectReason]:
        if request.amount < MINIMUMS[request.redemption_kind]:
            return RejectReason.BELOW_MINIMUM
        if request.redemption_kind == RedemptionKind.TO_CREDIT and request.recharge_option_id is None:
            return RejectReason.MISSING_OPTION
        if request.amount > balance.total_commission:
            return RejectReason.INSUFFICIENT_BALANCE
        return None

    def review(self, request: RedemptionRequest) -> Redemption:
        balance = self.storage.get_commission_balance(request.customer_id)
        reason = self.validate(request, balance)
        state = RedemptionState.REJECTED if reason else RedemptionState.VALIDATED
        if reason:
            logger.info(
                "Rejected %s redemption of %s for customer %s: %s",
                request.redemption_kind.value, request.amount, request.customer_id, reason.value,
            )
        return Redemption(
            request=request,
            state=state,
            reject_reason=reason,
            balance_at_review=balance.total_commission,
        )

    def require_valid(self, request: RedemptionRequest) -> Redemption:
        redemption = self.review(request)
        if redemption.state == RedemptionState.REJECTED:
            raise RedemptionRejected(redemption.reject_reason, self.reject_message(redemption))
        return redemption

    def apply(self, redemption: Redemption) -> Redemption:
        if redemption.state != RedemptionState.VALIDATED:
            raise RedemptionRejected(
                redemption.reject_reason or RejectReason.INSUFFICIENT_BALANCE,
                f"Cannot apply redemption in {redemption.state.value} state",
            )
        request = redemption.request
        remaining = self.storage.decrement_commission(request.customer_id, request.amount)
        return redemption.model_copy(update={"state": RedemptionState.APPLIED, "remaining_balance": remaining})

    def request_withdrawal(self, customer_id: UUID, amount: Decimal, pix_key: Optional[str] = None) -> Withdrawal:
        """Queue a cash redemption for operator approval without touching the balance."""
        self.require_valid(RedemptionRequest(
            customer_id=customer_id, redemption_kind=RedemptionKind.TO_CASH, amount=amount, pix_key=pix_key,
        ))
        withdrawal = self.storage.add_withdrawal(customer_id, amount, pix_key)
        logger.info("Withdrawal %s of %s requested by customer %s", withdrawal.id, amount, customer_id)
        return withdrawal

    @staticmethod
    def reject_message(redemption: Redemption) -> str:
        request = redemption.request
        if redemption.reject_reason == RejectReason.BELOW_MINIMUM:
            minimum = MINIMUMS[request.redemption_kind]
            return f"Minimum amount for {request.redemption_kind.value} redemption is {minimum}"
        if redemption.reject_reason == RejectReason.MISSING_OPTION:
            return "A recharge option is required to redeem commission as credit"
        return (
            f"Requested amount {request.amount} exceeds available commission "
            f"{redemption.balance_at_review}"
        )
