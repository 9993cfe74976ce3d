from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from settlement.config import Settings
from settlement.models import Customer, PricingBand, RechargeOption, Reseller, Subscription
from settlement.service import SettlementCoordinator
from settlement.storage import InMemoryStorage

CUSTOMER_ID = UUID("aaaaaaaa-0000-0000-0000-000000000001")
RESELLER_ID = UUID("bbbbbbbb-0000-0000-0000-000000000001")
SUB_A_ID = UUID("cccccccc-0000-0000-0000-00000000000a")
SUB_B_ID = UUID("cccccccc-0000-0000-0000-00000000000b")
OPTION_3M_ID = UUID("dddddddd-0000-0000-0000-000000000003")
OPTION_6M_ID = UUID("dddddddd-0000-0000-0000-000000000006")
PANEL = "Unitv"


@pytest.fixture
def settings() -> Settings:
    return Settings(timezone="UTC", log_level="DEBUG", seed_data=False)


@pytest.fixture
def storage() -> InMemoryStorage:
    """Customer with two active points on different panels and R$ 1000 of commission."""
    store = InMemoryStorage(seed=False)
    store.add_customer(Customer(id=CUSTOMER_ID, full_name="Ana Lima"))
    store.commission_balances[CUSTOMER_ID] = Decimal("1000.00")
    store.add_subscription(Subscription(
        id=SUB_A_ID, customer_id=CUSTOMER_ID, expiration_date=date(2026, 1, 31), panel_name=PANEL,
    ))
    store.add_subscription(Subscription(
        id=SUB_B_ID, customer_id=CUSTOMER_ID, expiration_date=date(2025, 11, 10), panel_name="Blade",
    ))
    store.add_recharge_option(RechargeOption(
        id=OPTION_3M_ID, plan_tier="ponto_duplo", period="trimestral",
        display_name="Ponto Duplo - 3 months", duration_months=3, price=Decimal("85.00"),
    ))
    store.add_recharge_option(RechargeOption(
        id=OPTION_6M_ID, plan_tier="ponto_duplo", period="semestral",
        display_name="Ponto Duplo - 6 months", duration_months=6, price=Decimal("160.00"),
    ))
    store.add_reseller(Reseller(id=RESELLER_ID, name="Revenda Norte"))
    store.add_pricing_band(PricingBand(panel_name=PANEL, min_quantity=10, max_quantity=49,
                                       price_per_credit=Decimal("1.00")))
    store.add_pricing_band(PricingBand(panel_name=PANEL, min_quantity=50, max_quantity=None,
                                       price_per_credit=Decimal("0.80")))
    return store


@pytest.fixture
def coordinator(storage: InMemoryStorage, settings: Settings) -> SettlementCoordinator:
    return SettlementCoordinator(storage=storage, settings=settings)
