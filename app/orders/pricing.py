"""
Server-side pricing for orders.

- DeliveryZoneTable: Deterministic delivery fee from the shipping address
- PriceIntegrityValidator: Recomputes an order's money fields before any
  gateway collect() and overwrites them if they were tampered with
- commission_rate(): Current platform commission percent

Usage:
    from orders.pricing import PriceIntegrityValidator

    check = PriceIntegrityValidator().validate(order)
    if check.corrected:
        ...  # order was saved with server-computed values
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from core.money import to_money
from orders.exceptions import OrderValidationError

logger = logging.getLogger(__name__)

METRO_ZONE = "metro"
STANDARD_ZONE = "standard"


def commission_rate() -> Decimal:
    """Platform commission percent from settings, as a Decimal."""
    return to_money(settings.PLATFORM_COMMISSION_PERCENT)


@dataclass(frozen=True)
class DeliveryQuote:
    zone: str
    fee: Decimal


class DeliveryZoneTable:
    """
    Maps a shipping address to a delivery zone and fee.

    An address is metro when any configured keyword appears in its county,
    city, or first address line (case-insensitive). Everything else is
    standard.
    """

    def __init__(self, metro_keywords=None, metro_fee=None, standard_fee=None):
        keywords = settings.DELIVERY_METRO_KEYWORDS if metro_keywords is None else metro_keywords
        self.metro_keywords = [k.strip().lower() for k in keywords if k and k.strip()]
        self.metro_fee = to_money(settings.DELIVERY_METRO_FEE if metro_fee is None else metro_fee)
        self.standard_fee = to_money(
            settings.DELIVERY_STANDARD_FEE if standard_fee is None else standard_fee
        )

    def quote(self, address) -> DeliveryQuote:
        haystack = " ".join(
            (getattr(address, name, "") or "").lower()
            for name in ("county", "city", "address_line1")
        )
        if any(keyword in haystack for keyword in self.metro_keywords):
            return DeliveryQuote(zone=METRO_ZONE, fee=self.metro_fee)
        return DeliveryQuote(zone=STANDARD_ZONE, fee=self.standard_fee)


@dataclass(frozen=True)
class PriceCheckResult:
    """
    Outcome of a price integrity check.

    Attributes:
        corrected: True if stored totals were overwritten
        submitted_total: Total stored before the check
        expected_total: Server-computed subtotal + delivery fee
        shipping_fee: Server-computed delivery fee
        zone: Delivery zone used
    """

    corrected: bool
    submitted_total: Decimal
    expected_total: Decimal
    shipping_fee: Decimal
    zone: str

    @property
    def discrepancy(self) -> Decimal:
        return self.submitted_total - self.expected_total


class PriceIntegrityValidator:
    """
    Re-derives an order's shipping fee, total, commission and payout.

    Runs immediately before every order-kind collect(). The computed fee and
    the totals derived from it always replace the stored values. A stored
    total or fee that is off by more than PRICE_TOLERANCE is logged as
    potential tampering.
    """

    def __init__(self, zones: DeliveryZoneTable | None = None, tolerance=None):
        self.zones = zones or DeliveryZoneTable()
        self.tolerance = to_money(settings.PRICE_TOLERANCE if tolerance is None else tolerance)

    def quote_for(self, order) -> DeliveryQuote:
        from orders.models import ShippingAddress

        address = ShippingAddress.objects.filter(order=order).first()
        if address is None:
            raise OrderValidationError(
                "Order has no shipping address",
                error_code="MISSING_SHIPPING_ADDRESS",
                details={"order_id": str(order.pk)},
            )
        return self.zones.quote(address)

    def validate(self, order) -> PriceCheckResult:
        """
        Check and, if needed, correct the order's money fields.

        Saves the order when anything changed.
        """
        quote = self.quote_for(order)
        submitted_total = to_money(order.total)
        expected_total = to_money(order.subtotal) + quote.fee
        submitted_fee = to_money(order.shipping_fee)
        tampered = (
            abs(submitted_total - expected_total) > self.tolerance
            or abs(submitted_fee - quote.fee) > self.tolerance
        )

        before = (
            submitted_fee,
            submitted_total,
            to_money(order.commission_amount),
            to_money(order.payout_amount),
            order.delivery_zone,
        )

        if tampered:
            logger.warning(
                "Order pricing mismatch, overwriting with server-computed values",
                extra={
                    "order_id": str(order.pk),
                    "reference": order.reference,
                    "submitted_total": str(submitted_total),
                    "expected_total": str(expected_total),
                    "submitted_shipping_fee": str(before[0]),
                    "computed_shipping_fee": str(quote.fee),
                    "zone": quote.zone,
                },
            )
        order.apply_pricing(quote.fee)
        order.delivery_zone = quote.zone

        after = (order.shipping_fee, order.total, order.commission_amount, order.payout_amount, order.delivery_zone)
        if after != before:
            order.save(
                update_fields=[
                    "shipping_fee",
                    "total",
                    "commission_amount",
                    "payout_amount",
                    "delivery_zone",
                    "updated_at",
                ]
            )

        return PriceCheckResult(
            corrected=tampered,
            submitted_total=submitted_total,
            expected_total=expected_total,
            shipping_fee=quote.fee,
            zone=quote.zone,
        )
