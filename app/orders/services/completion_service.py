"""
Order completion: buyer confirmation and escrow auto-release.

Completing an order is a financial transition followed by ancillary side
effects:

    Financial (one transaction, all or nothing):
        order -> COMPLETED
        escrow HELD -> RELEASED
        pending Payout entitlement for payout_amount
        vendor balance credit + commission ledger entry

    Ancillary (each on its own, never rolls back the above):
        stock decrement, floored at zero
        optional vendor rating

Usage:
    from orders.services import OrderCompletionService

    result = OrderCompletionService.complete_order(order_id, buyer=request.user, rating=5)
    if result.success and result.data.warnings:
        ...  # completed, but stock or rating could not be recorded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.db import DatabaseError, models, transaction
from django.db.models import F
from django.db.models.functions import Greatest
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult
from orders.exceptions import InvalidStateTransitionError
from orders.models import Order, Product, VendorRating
from orders.state_machines import OrderStatus
from payments.models import CommissionLedgerEntry, Payout
from payments.services import BalanceService, EscrowService, PayoutService

if TYPE_CHECKING:
    from authentication.models import User


STOCK_WARNING = "stock_update_failed"
RATING_WARNING = "rating_not_recorded"


@dataclass
class CompletionResult:
    """
    Result of completing an order.

    Attributes:
        order: The completed order
        payout: The pending order-release entitlement
        warnings: Ancillary steps that failed (the order is still completed)
    """

    order: Order
    payout: Payout
    warnings: list[str] = field(default_factory=list)


class OrderCompletionService(BaseService):
    """Completes orders and releases their escrow to the vendor balance."""

    @classmethod
    def complete_order(
        cls,
        order_id,
        buyer: User | None = None,
        rating: int | None = None,
        review: str = "",
        auto: bool = False,
    ) -> ServiceResult[CompletionResult]:
        """
        Complete a shipped or delivered order.

        Args:
            order_id: Order to complete
            buyer: Confirming user; must be the order's buyer unless auto
            rating: Optional 1-5 vendor rating
            review: Optional review text, stored with the rating
            auto: True when the auto-release sweep completes the order

        Returns:
            ServiceResult with CompletionResult, or a failure with
            ORDER_NOT_FOUND, NOT_ORDER_PARTICIPANT, INVALID_STATE_TRANSITION,
            ESCROW_FROZEN, ESCROW_NOT_HELD, or VALIDATION_ERROR
        """
        if rating is not None and not 1 <= int(rating) <= 5:
            return ServiceResult.failure(
                "Rating must be between 1 and 5",
                error_code="VALIDATION_ERROR",
                errors={"rating": ["Must be between 1 and 5."]},
            )

        log_context = {"order_id": str(order_id), "auto": auto}

        try:
            with cls.atomic():
                order = Order.objects.select_for_update().filter(pk=order_id).first()
                if order is None:
                    return ServiceResult.failure(f"Order {order_id} not found", error_code="ORDER_NOT_FOUND")

                if not auto and (buyer is None or order.buyer_id != buyer.pk):
                    return ServiceResult.failure(
                        "Only the buyer who placed this order can confirm it",
                        error_code="NOT_ORDER_PARTICIPANT",
                    )

                try:
                    order.complete(buyer_confirmed=not auto)
                except TransitionNotAllowed:
                    return ServiceResult.from_exception(InvalidStateTransitionError.for_order(order, "complete"))
                order.save()
                payout = cls.release_funds(order)
        except ConflictError as e:
            return cls.handle_exception(e, "Order completion refused", log_level=logging.WARNING)

        cls.get_logger().info(
            "Order completed",
            extra={**log_context, "vendor_id": str(order.vendor_id), "payout_id": str(payout.pk)},
        )

        warnings = []
        if not cls._decrement_stock(order):
            warnings.append(STOCK_WARNING)
        if rating is not None and not cls._record_rating(order, int(rating), review):
            warnings.append(RATING_WARNING)

        return ServiceResult.success(CompletionResult(order=order, payout=payout, warnings=warnings))

    @classmethod
    def release_funds(cls, order: Order) -> Payout:
        """
        Release the order's escrow to the vendor.

        Must run inside the transaction that moved the order to COMPLETED.

        Raises:
            ConflictError: Escrow missing, frozen, or not held
        """
        escrow = EscrowService.release(order)
        payout = PayoutService.record_entitlement(order, escrow.release_amount)
        BalanceService.credit(order.vendor, escrow.release_amount)
        CommissionLedgerEntry.objects.get_or_create(
            order=order,
            defaults={
                "vendor_id": order.vendor_id,
                "commission_rate": order.commission_rate,
                "commission_amount": escrow.commission_amount,
                "notes": f"Commission on order {order.reference}",
            },
        )
        return payout

    # =========================================================================
    # Ancillary Steps
    # =========================================================================

    @classmethod
    def _decrement_stock(cls, order: Order) -> bool:
        try:
            with transaction.atomic():
                for item in order.items.exclude(product__isnull=True):
                    Product.objects.filter(pk=item.product_id, stock__isnull=False).update(
                        stock=Greatest(F("stock") - item.quantity, 0, output_field=models.PositiveIntegerField()),
                        updated_at=timezone.now(),
                    )
        except DatabaseError:
            cls.get_logger().exception("Stock decrement failed", extra={"order_id": str(order.pk)})
            return False
        return True

    @classmethod
    def _record_rating(cls, order: Order, rating: int, review: str) -> bool:
        try:
            with transaction.atomic():
                VendorRating.objects.create(
                    order=order,
                    vendor_id=order.vendor_id,
                    buyer_id=order.buyer_id,
                    rating=rating,
                    review=review or "",
                )
        except DatabaseError:
            cls.get_logger().exception("Vendor rating not recorded", extra={"order_id": str(order.pk)})
            return False
        return True

    # =========================================================================
    # Auto-release
    # =========================================================================

    @classmethod
    def run_auto_release_sweep(cls) -> dict:
        """
        Complete shipped/delivered orders whose auto_release_at has passed.

        Disputed orders are never picked up: their status excludes them.
        """
        stats = {"checked": 0, "completed": 0, "failed": 0, "errors": 0}
        due = Order.objects.filter(
            status__in=[OrderStatus.SHIPPED, OrderStatus.DELIVERED],
            auto_release_at__lte=timezone.now(),
        ).values_list("pk", flat=True)

        for order_id in list(due):
            stats["checked"] += 1
            try:
                result = cls.complete_order(order_id, auto=True)
            except Exception:
                stats["errors"] += 1
                cls.get_logger().exception("Auto-release crashed", extra={"order_id": str(order_id)})
                continue

            if result.success:
                stats["completed"] += 1
            else:
                stats["failed"] += 1
                cls.get_logger().warning(
                    "Auto-release skipped order",
                    extra={"order_id": str(order_id), "error_code": result.error_code},
                )

        cls.get_logger().info("Auto-release sweep finished", extra=stats)
        return stats
