from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from .errors import NoActiveSubscriptions
from .models import Allocation, DiscountKind, RechargeOption, Subscription, SubscriptionExtension

CENTS = Decimal("0.01")


def add_months(start: date, months: int) -> date:
    # Day 31 + 1 month lands on the last day of the shorter month.
    return start + relativedelta(months=months)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class CreditAllocationCalculator:
    """Pure arithmetic for customer recharges; touches no storage."""

    def allocate(self, subscriptions: list[Subscription], duration_months: int) -> Allocation:
        point_count = len(subscriptions)
        if point_count == 0:
            raise NoActiveSubscriptions("Customer has no active subscriptions")

        # Each point extends from its own stored expiration, even if already lapsed.
        extensions = [
            SubscriptionExtension(
                subscription_id=sub.id,
                panel_name=sub.panel_name,
                old_expiration=sub.expiration_date,
                new_expiration=add_months(sub.expiration_date, duration_months),
            )
            for sub in subscriptions
        ]
        return Allocation(
            point_count=point_count,
            duration_months=duration_months,
            credits=point_count * duration_months,
            extensions=extensions,
        )

    def allocate_option(self, subscriptions: list[Subscription], option: RechargeOption) -> Allocation:
        return self.allocate(subscriptions, option.duration_months)

    def final_price(
        self, base_price: Decimal, discount_kind: Optional[DiscountKind], discount_value: Decimal,
    ) -> Decimal:
        if discount_kind is None or discount_value <= 0:
            return base_price
        if discount_kind == DiscountKind.PERCENTAGE:
            price = base_price * (1 - discount_value / Decimal(100))
        else:
            price = base_price - discount_value
        return quantize_money(max(Decimal("0"), price))
