from typing import Optional

from .models import RejectReason, SettlementStep, Workflow


class SettlementError(Exception):
    pass


class ValidationError(SettlementError):
    pass


class NotFoundError(SettlementError):
    pass


class IdempotencyConflictError(SettlementError):
    pass


class NoPricingBand(ValidationError):
    pass


class BelowMinimumQuantity(ValidationError):
    def __init__(self, panel: str, quantity: int, minimum: int):
        self.panel = panel
        self.quantity = quantity
        self.minimum = minimum
        super().__init__(f"Minimum purchase for panel {panel} is {minimum} credits, got {quantity}")


class NoActiveSubscriptions(ValidationError):
    pass


class InsufficientBalance(ValidationError):
    pass


class RedemptionRejected(ValidationError):
    def __init__(self, reason: RejectReason, message: str):
        self.reason = reason
        super().__init__(message)


class OverlapError(SettlementError):
    def __init__(self, panel: str, conflicting_band_id, message: str):
        self.panel = panel
        self.conflicting_band_id = conflicting_band_id
        super().__init__(message)


class StepFailure(SettlementError):
    """An external write failed partway through a workflow.

    Steps listed in ``completed_steps`` were applied and are NOT rolled back;
    the operator completes or compensates the rest by hand. ``stage`` groups
    redemption steps as credit side effects (1), cash payout (2) and debit (3);
    in the other workflows it equals ``step_index``.
    """

    def __init__(
        self,
        workflow: Workflow,
        step_index: int,
        step: SettlementStep,
        cause: BaseException,
        completed_steps: list[SettlementStep],
        settlement_id: Optional[object] = None,
        stage: Optional[int] = None,
    ):
        self.workflow = workflow
        self.step_index = step_index
        self.step = step
        self.cause = cause
        self.completed_steps = list(completed_steps)
        self.settlement_id = settlement_id
        self.stage = stage if stage is not None else step_index
        super().__init__(f"{workflow.value} failed at step {step_index} ({step.value}): {cause}")
