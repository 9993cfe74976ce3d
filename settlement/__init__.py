"""
Settlement Engine for Subscriptions, Commissions and Reseller Credits

This module provides:
- Tiered reseller pricing with band overlap validation
- Credit allocation: points x months, calendar-month expiration extension
- Commission redemption (to credit / to cash) with fixed minimums
- Pending PIX withdrawals approved or cancelled by an operator
- Ordered, step-indexed settlement workflows across independent ledgers
- A settlement journal for manual reconciliation of partial failures
"""

from .allocation import CreditAllocationCalculator
from .commission import CommissionLedger
from .errors import (
    OverlapError,
    SettlementError,
    StepFailure,
    ValidationError,
)
from .models import (
    RechargeRequest,
    RedemptionKind,
    RedemptionRequest,
    ResellerPurchaseRequest,
    SettlementStep,
    WithdrawalRequest,
    Workflow,
)
from .pricing import TieredPricingResolver
from .service import SettlementCoordinator
from .storage import InMemoryStorage

__all__ = [
    "CreditAllocationCalculator",
    "CommissionLedger",
    "TieredPricingResolver",
    "SettlementCoordinator",
    "InMemoryStorage",
    "RechargeRequest",
    "RedemptionRequest",
    "ResellerPurchaseRequest",
    "RedemptionKind",
    "SettlementStep",
    "WithdrawalRequest",
    "Workflow",
    "SettlementError",
    "ValidationError",
    "OverlapError",
    "StepFailure",
]
