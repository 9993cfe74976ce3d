from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class RedemptionKind(str, Enum):
    TO_CREDIT = "to_credit"
    TO_CASH = "to_cash"


class RedemptionState(str, Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    APPLIED = "applied"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    BELOW_MINIMUM = "below_minimum"
    MISSING_OPTION = "missing_option"
    INSUFFICIENT_BALANCE = "insufficient_balance"


class Workflow(str, Enum):
    RECHARGE = "recharge"
    COMMISSION_REDEMPTION = "commission_redemption"
    RESELLER_PURCHASE = "reseller_purchase"


class SettlementStep(str, Enum):
    ALLOCATE_CREDITS = "allocate_credits"
    EXTEND_SUBSCRIPTIONS = "extend_subscriptions"
    RECORD_CASH_INFLOW = "record_cash_inflow"
    RECORD_CASH_OUTFLOW = "record_cash_outflow"
    RECORD_CREDITS_SOLD = "record_credits_sold"
    DEBIT_COMMISSION = "debit_commission"
    RESOLVE_PRICE = "resolve_price"
    COMPUTE_TOTAL = "compute_total"
    RECORD_RESELLER_RECHARGE = "record_reseller_recharge"
    CREDIT_RESELLER_BALANCE = "credit_reseller_balance"


class SettlementStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Record store entities

class Customer(BaseModel):
    id: UUID
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Reseller(BaseModel):
    id: UUID
    name: str
    status: str = "active"

    model_config = ConfigDict(from_attributes=True)


class Subscription(BaseModel):
    id: UUID
    customer_id: UUID
    expiration_date: date
    panel_name: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    monthly_value: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class RechargeOption(BaseModel):
    id: UUID
    plan_tier: str
    period: str
    display_name: str
    duration_months: int = Field(..., gt=0)
    price: Decimal
    active: bool = True

    model_config = ConfigDict(from_attributes=True)


class PricingBand(BaseModel):
    id: Optional[UUID] = None
    panel_name: str
    min_quantity: int = Field(..., ge=1)
    max_quantity: Optional[int] = None
    price_per_credit: Decimal = Field(..., gt=0)
    active: bool = True

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _check_range(self) -> "PricingBand":
        if self.max_quantity is not None and self.max_quantity < self.min_quantity:
            raise ValueError("max_quantity must be greater than or equal to min_quantity")
        return self

    @property
    def upper_bound(self) -> float:
        return float("inf") if self.max_quantity is None else self.max_quantity

    def contains(self, quantity: int) -> bool:
        return quantity >= self.min_quantity and (self.max_quantity is None or quantity <= self.max_quantity)

    def describe_range(self) -> str:
        if self.max_quantity is None:
            return f"{self.min_quantity}+"
        return f"{self.min_quantity}-{self.max_quantity}"


class CommissionBalance(BaseModel):
    customer_id: UUID
    total_commission: Decimal = Field(..., ge=0)


class ResellerBalance(BaseModel):
    reseller_id: UUID
    credit_balance: int = 0


class CashLedgerEntry(BaseModel):
    id: UUID
    date: date
    description: str
    entrada: Decimal = Decimal("0.00")
    saida: Decimal = Decimal("0.00")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreditsSoldEntry(BaseModel):
    id: UUID
    date: date
    description: str
    panel: Optional[str] = None
    quantidade_creditos: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResellerRecharge(BaseModel):
    id: UUID
    reseller_id: UUID
    panel_name: str
    quantity: int
    price_per_credit: Decimal
    total_amount: Decimal
    status: Literal["completed"] = "completed"
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Settlement requests

class RechargeRequest(BaseModel):
    kind: Literal["recharge"] = "recharge"
    customer_id: UUID
    recharge_option_id: Optional[UUID] = None
    duration_months: Optional[int] = Field(default=None, gt=0)
    amount_paid: Optional[Decimal] = Field(default=None, ge=0)
    discount_kind: Optional[DiscountKind] = None
    discount_value: Decimal = Decimal("0")
    description: Optional[str] = None
    idempotency_key: Optional[str] = None

    @model_validator(mode="after")
    def _check_option(self) -> "RechargeRequest":
        if self.recharge_option_id is None and self.duration_months is None:
            raise ValueError("recharge_option_id or duration_months is required")
        return self


class RedemptionRequest(BaseModel):
    kind: Literal["commission_redemption"] = "commission_redemption"
    customer_id: UUID
    redemption_kind: RedemptionKind
    amount: Decimal
    recharge_option_id: Optional[UUID] = None
    pix_key: Optional[str] = None
    idempotency_key: Optional[str] = None


class ResellerPurchaseRequest(BaseModel):
    kind: Literal["reseller_purchase"] = "reseller_purchase"
    reseller_id: UUID
    panel_name: str
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


SettlementRequest = Annotated[
    Union[RechargeRequest, RedemptionRequest, ResellerPurchaseRequest],
    Field(discriminator="kind"),
]


# Computation and settlement results

class SubscriptionExtension(BaseModel):
    subscription_id: UUID
    panel_name: Optional[str] = None
    old_expiration: date
    new_expiration: date


class Allocation(BaseModel):
    point_count: int
    duration_months: int
    credits: int
    extensions: list[SubscriptionExtension]

    @property
    def primary_panel(self) -> Optional[str]:
        return self.extensions[0].panel_name if self.extensions else None


class PriceQuote(BaseModel):
    panel_name: str
    quantity: int
    price_per_credit: Decimal
    total: Decimal


class Redemption(BaseModel):
    request: RedemptionRequest
    state: RedemptionState = RedemptionState.REQUESTED
    reject_reason: Optional[RejectReason] = None
    balance_at_review: Optional[Decimal] = None
    remaining_balance: Optional[Decimal] = None


class RechargeResult(BaseModel):
    workflow: Literal["recharge"] = "recharge"
    settlement_id: UUID
    customer_id: UUID
    point_count: int
    duration_months: int
    credits: int
    amount_charged: Decimal
    new_expirations: list[SubscriptionExtension]


class RedemptionResult(BaseModel):
    workflow: Literal["commission_redemption"] = "commission_redemption"
    settlement_id: UUID
    customer_id: UUID
    redemption_kind: RedemptionKind
    amount: Decimal
    credits: int = 0
    new_expirations: list[SubscriptionExtension] = Field(default_factory=list)
    remaining_commission: Decimal


class ResellerPurchaseResult(BaseModel):
    workflow: Literal["reseller_purchase"] = "reseller_purchase"
    settlement_id: UUID
    reseller_id: UUID
    panel_name: str
    quantity: int
    price_per_credit: Decimal
    total: Decimal
    credit_balance: int


SettlementResult = Annotated[
    Union[RechargeResult, RedemptionResult, ResellerPurchaseResult],
    Field(discriminator="workflow"),
]


class SettlementRecord(BaseModel):
    id: UUID
    workflow: Workflow
    status: SettlementStatus
    subject_id: UUID
    idempotency_key: Optional[str] = None
    completed_steps: list[SettlementStep] = Field(default_factory=list)
    skipped_steps: list[SettlementStep] = Field(default_factory=list)
    failed_step_index: Optional[int] = None
    failed_stage: Optional[int] = None
    failed_step: Optional[SettlementStep] = None
    error: Optional[str] = None
    result: Optional[SettlementResult] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BandValidationResponse(BaseModel):
    panel_name: str
    valid: bool
    message: str


# Pending PIX withdrawals

class WithdrawalRequest(BaseModel):
    customer_id: UUID
    amount: Decimal
    pix_key: Optional[str] = None


class WithdrawalDecision(BaseModel):
    pix_key: Optional[str] = None
    admin_notes: Optional[str] = None


class Withdrawal(BaseModel):
    """A cash redemption waiting for an operator to pay it out or cancel it."""

    id: UUID
    customer_id: UUID
    amount: Decimal
    pix_key: Optional[str] = None
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    admin_notes: Optional[str] = None
    settlement_id: Optional[UUID] = None
    requested_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
