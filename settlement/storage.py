import logging
import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .allocation import add_months
from .errors import InsufficientBalance, NotFoundError
from .models import (
    CashLedgerEntry,
    CommissionBalance,
    CreditsSoldEntry,
    Customer,
    PricingBand,
    RechargeOption,
    Reseller,
    ResellerRecharge,
    SettlementRecord,
    SettlementStatus,
    Subscription,
    SubscriptionExtension,
    SubscriptionStatus,
    Withdrawal,
    WithdrawalStatus,
)

logger = logging.getLogger(__name__)

SEED_CUSTOMER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
SEED_RESELLER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
SEED_PANEL = "Unitv"

SEED_OPTION_IDS = {
    1: UUID("11111111-1111-1111-1111-111111111111"),
    3: UUID("33333333-3333-3333-3333-333333333333"),
    6: UUID("66666666-6666-6666-6666-666666666666"),
    12: UUID("12121212-1212-1212-1212-121212121212"),
}


class InMemoryStorage:
    """Process-local record store.

    Rows are kept as plain dicts and handed out as fresh models, so callers
    never hold a live reference into the store. Counter columns change only
    through the atomic increment/decrement methods.
    """

    def __init__(self, seed: bool = True):
        self.customers: dict[UUID, dict] = {}
        self.resellers: dict[UUID, dict] = {}
        self.subscriptions: dict[UUID, dict] = {}
        self.recharge_options: dict[UUID, dict] = {}
        self.pricing_bands: dict[UUID, dict] = {}
        self.commission_balances: dict[UUID, Decimal] = {}
        self.reseller_balances: dict[UUID, int] = {}
        self.cash_entries: dict[UUID, dict] = {}
        self.credits_sold: dict[UUID, dict] = {}
        self.reseller_recharges: dict[UUID, dict] = {}
        self.settlements: dict[UUID, dict] = {}
        self.idempotency_index: dict[str, UUID] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self._lock = threading.Lock()
        if seed:
            self._seed_data()

    def _seed_data(self):
        self.add_customer(Customer(id=SEED_CUSTOMER_ID, full_name="Maria Souza", phone="11999990000"))
        self.commission_balances[SEED_CUSTOMER_ID] = Decimal("120.00")
        self.add_subscription(Subscription(
            id=uuid4(), customer_id=SEED_CUSTOMER_ID, expiration_date=date(2026, 1, 15),
            panel_name=SEED_PANEL, monthly_value=Decimal("30.00"),
        ))
        self.add_subscription(Subscription(
            id=uuid4(), customer_id=SEED_CUSTOMER_ID, expiration_date=date(2026, 2, 1),
            panel_name="Blade", monthly_value=Decimal("25.00"),
        ))

        prices = {1: "30.00", 3: "85.00", 6: "160.00", 12: "300.00"}
        periods = {1: "mensal", 3: "trimestral", 6: "semestral", 12: "anual"}
        for months, option_id in SEED_OPTION_IDS.items():
            self.add_recharge_option(RechargeOption(
                id=option_id, plan_tier="ponto_unico", period=periods[months],
                display_name=f"Ponto Unico - {months} month(s)", duration_months=months,
                price=Decimal(prices[months]),
            ))

        self.add_reseller(Reseller(id=SEED_RESELLER_ID, name="Revenda Centro"))
        self.add_pricing_band(PricingBand(panel_name=SEED_PANEL, min_quantity=10, max_quantity=49,
                                          price_per_credit=Decimal("1.00")))
        self.add_pricing_band(PricingBand(panel_name=SEED_PANEL, min_quantity=50, max_quantity=None,
                                          price_per_credit=Decimal("0.80")))

    # Catalog and profile records (owned by external CRUD)

    def add_customer(self, customer: Customer) -> Customer:
        self.customers[customer.id] = customer.model_dump()
        self.commission_balances.setdefault(customer.id, Decimal("0.00"))
        return customer

    def add_reseller(self, reseller: Reseller) -> Reseller:
        self.resellers[reseller.id] = reseller.model_dump()
        self.reseller_balances.setdefault(reseller.id, 0)
        return reseller

    def add_subscription(self, subscription: Subscription) -> Subscription:
        self.subscriptions[subscription.id] = subscription.model_dump()
        return subscription

    def add_recharge_option(self, option: RechargeOption) -> RechargeOption:
        self.recharge_options[option.id] = option.model_dump()
        return option

    def add_pricing_band(self, band: PricingBand) -> PricingBand:
        if band.id is None:
            band = band.model_copy(update={"id": uuid4()})
        self.pricing_bands[band.id] = band.model_dump()
        return band

    def get_customer(self, customer_id: UUID) -> Customer:
        data = self.customers.get(customer_id)
        if not data:
            raise NotFoundError(f"Customer {customer_id} not found")
        return Customer(**data)

    def get_reseller(self, reseller_id: UUID) -> Reseller:
        data = self.resellers.get(reseller_id)
        if not data:
            raise NotFoundError(f"Reseller {reseller_id} not found")
        return Reseller(**data)

    def get_recharge_option(self, option_id: UUID) -> RechargeOption:
        data = self.recharge_options.get(option_id)
        if not data or not data["active"]:
            raise NotFoundError(f"Recharge option {option_id} not found")
        return RechargeOption(**data)

    # Reads consumed by the settlement engine

    def list_active_subscriptions(self, customer_id: UUID) -> list[Subscription]:
        return [
            Subscription(**s) for s in self.subscriptions.values()
            if s["customer_id"] == customer_id and s["status"] == SubscriptionStatus.ACTIVE
        ]

    def get_subscription(self, subscription_id: UUID) -> Subscription:
        data = self.subscriptions.get(subscription_id)
        if not data:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return Subscription(**data)

    def list_active_pricing_bands(self, panel_name: str) -> list[PricingBand]:
        bands = [
            PricingBand(**b) for b in self.pricing_bands.values()
            if b["panel_name"] == panel_name and b["active"]
        ]
        bands.sort(key=lambda b: b.min_quantity)
        return bands

    def get_commission_balance(self, customer_id: UUID) -> CommissionBalance:
        if customer_id not in self.commission_balances:
            raise NotFoundError(f"Commission balance for customer {customer_id} not found")
        return CommissionBalance(customer_id=customer_id, total_commission=self.commission_balances[customer_id])

    def get_reseller_balance(self, reseller_id: UUID) -> int:
        if reseller_id not in self.reseller_balances:
            raise NotFoundError(f"Reseller {reseller_id} not found")
        return self.reseller_balances[reseller_id]

    # Writes

    def extend_subscription(self, subscription_id: UUID, months: int) -> SubscriptionExtension:
        """Move an expiration forward by whole months, reading and writing under the lock."""
        with self._lock:
            data = self.subscriptions.get(subscription_id)
            if not data:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            old_expiration = data["expiration_date"]
            data["expiration_date"] = add_months(old_expiration, months)
            return SubscriptionExtension(
                subscription_id=subscription_id,
                panel_name=data["panel_name"],
                old_expiration=old_expiration,
                new_expiration=data["expiration_date"],
            )

    def append_cash_entry(
        self, entry_date: date, description: str,
        entrada: Decimal = Decimal("0.00"), saida: Decimal = Decimal("0.00"),
    ) -> CashLedgerEntry:
        entry_data = {
            "id": uuid4(),
            "date": entry_date,
            "description": description,
            "entrada": entrada,
            "saida": saida,
            "created_at": datetime.now(timezone.utc),
        }
        self.cash_entries[entry_data["id"]] = entry_data
        return CashLedgerEntry(**entry_data)

    def append_credits_sold(
        self, entry_date: date, description: str, panel: Optional[str], quantidade_creditos: int,
    ) -> CreditsSoldEntry:
        entry_data = {
            "id": uuid4(),
            "date": entry_date,
            "description": description,
            "panel": panel,
            "quantidade_creditos": quantidade_creditos,
            "created_at": datetime.now(timezone.utc),
        }
        self.credits_sold[entry_data["id"]] = entry_data
        return CreditsSoldEntry(**entry_data)

    def append_reseller_recharge(
        self, reseller_id: UUID, panel_name: str, quantity: int,
        price_per_credit: Decimal, total_amount: Decimal, notes: Optional[str] = None,
    ) -> ResellerRecharge:
        recharge_data = {
            "id": uuid4(),
            "reseller_id": reseller_id,
            "panel_name": panel_name,
            "quantity": quantity,
            "price_per_credit": price_per_credit,
            "total_amount": total_amount,
            "status": "completed",
            "notes": notes,
            "created_at": datetime.now(timezone.utc),
        }
        self.reseller_recharges[recharge_data["id"]] = recharge_data
        return ResellerRecharge(**recharge_data)

    def decrement_commission(self, customer_id: UUID, amount: Decimal) -> Decimal:
        with self._lock:
            if customer_id not in self.commission_balances:
                raise NotFoundError(f"Commission balance for customer {customer_id} not found")
            current = self.commission_balances[customer_id]
            if amount > current:
                raise InsufficientBalance(
                    f"Cannot debit {amount} from commission balance {current} of customer {customer_id}"
                )
            self.commission_balances[customer_id] = current - amount
            return self.commission_balances[customer_id]

    def accrue_commission(self, customer_id: UUID, amount: Decimal) -> Decimal:
        with self._lock:
            if customer_id not in self.commission_balances:
                raise NotFoundError(f"Commission balance for customer {customer_id} not found")
            self.commission_balances[customer_id] += amount
            return self.commission_balances[customer_id]

    def increment_reseller_balance(self, reseller_id: UUID, quantity: int) -> int:
        with self._lock:
            if reseller_id not in self.reseller_balances:
                raise NotFoundError(f"Reseller {reseller_id} not found")
            self.reseller_balances[reseller_id] += quantity
            return self.reseller_balances[reseller_id]

    # Settlement journal

    def append_settlement_record(self, record: SettlementRecord) -> SettlementRecord:
        self.settlements[record.id] = record.model_dump()
        if record.status == SettlementStatus.COMPLETED and record.idempotency_key:
            self.idempotency_index[record.idempotency_key] = record.id
        return record

    def get_settlement_record(self, settlement_id: UUID) -> SettlementRecord:
        data = self.settlements.get(settlement_id)
        if not data:
            raise NotFoundError(f"Settlement {settlement_id} not found")
        return SettlementRecord(**data)

    def find_completed_settlement(self, idempotency_key: str) -> Optional[SettlementRecord]:
        settlement_id = self.idempotency_index.get(idempotency_key)
        if settlement_id:
            data = self.settlements.get(settlement_id)
            if data:
                return SettlementRecord(**data)
        return None

    def list_settlement_records(self, status: Optional[SettlementStatus] = None) -> list[SettlementRecord]:
        records = [SettlementRecord(**r) for r in self.settlements.values()]
        if status:
            records = [r for r in records if r.status == status]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    # Pending withdrawals

    def add_withdrawal(self, customer_id: UUID, amount: Decimal, pix_key: Optional[str] = None) -> Withdrawal:
        withdrawal_data = {
            "id": uuid4(),
            "customer_id": customer_id,
            "amount": amount,
            "pix_key": pix_key,
            "status": WithdrawalStatus.PENDING,
            "admin_notes": None,
            "settlement_id": None,
            "requested_at": datetime.now(timezone.utc),
            "resolved_at": None,
        }
        self.withdrawals[withdrawal_data["id"]] = withdrawal_data
        return Withdrawal(**withdrawal_data)

    def get_withdrawal(self, withdrawal_id: UUID) -> Withdrawal:
        data = self.withdrawals.get(withdrawal_id)
        if not data:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return Withdrawal(**data)

    def update_withdrawal(self, withdrawal_id: UUID, **fields) -> Withdrawal:
        data = self.withdrawals.get(withdrawal_id)
        if not data:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        data.update(fields)
        return Withdrawal(**data)

    def list_withdrawals(self, status: Optional[WithdrawalStatus] = None) -> list[Withdrawal]:
        withdrawals = [Withdrawal(**w) for w in self.withdrawals.values()]
        if status:
            withdrawals = [w for w in withdrawals if w.status == status]
        withdrawals.sort(key=lambda w: w.requested_at)
        return withdrawals
