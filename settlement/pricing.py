import logging
from decimal import Decimal

from .errors import NoPricingBand, OverlapError
from .models import PriceQuote, PricingBand
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


def bands_overlap(a: PricingBand, b: PricingBand) -> bool:
    """Integer ranges intersect; an unbounded band runs to +infinity."""
    return a.min_quantity <= b.upper_bound and b.min_quantity <= a.upper_bound


def purchase_total(quantity: int, price_per_credit: Decimal) -> Decimal:
    """Amount charged for a reseller purchase; the quote and the settlement both use it."""
    return quantity * price_per_credit


class TieredPricingResolver:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def resolve(self, panel_name: str, quantity: int) -> Decimal:
        bands = self._active_bands(panel_name)
        lowest = bands[0].min_quantity
        if quantity < lowest:
            raise NoPricingBand(
                f"Quantity {quantity} is below the minimum of {lowest} credits for panel {panel_name}"
            )
        for band in bands:
            if band.contains(quantity):
                return band.price_per_credit
        raise NoPricingBand(f"No pricing band covers {quantity} credits on panel {panel_name}")

    def minimum_quantity(self, panel_name: str) -> int:
        return self._active_bands(panel_name)[0].min_quantity

    def quote(self, panel_name: str, quantity: int) -> PriceQuote:
        price = self.resolve(panel_name, quantity)
        return PriceQuote(
            panel_name=panel_name,
            quantity=quantity,
            price_per_credit=price,
            total=purchase_total(quantity, price),
        )

    def validate_band(self, panel_name: str, candidate: PricingBand) -> None:
        if not candidate.active:
            return
        for existing in self.storage.list_active_pricing_bands(panel_name):
            if candidate.id is not None and existing.id == candidate.id:
                continue
            if bands_overlap(candidate, existing):
                logger.info(
                    "Rejected band %s on panel %s: overlaps band %s (%s)",
                    candidate.describe_range(), panel_name, existing.id, existing.describe_range(),
                )
                raise OverlapError(
                    panel_name,
                    existing.id,
                    f"Band {candidate.describe_range()} overlaps existing band "
                    f"{existing.describe_range()} on panel {panel_name}",
                )

    def _active_bands(self, panel_name: str) -> list[PricingBand]:
        bands = self.storage.list_active_pricing_bands(panel_name)
        if not bands:
            raise NoPricingBand(f"No pricing configured for panel {panel_name}")
        return bands
