"""
Order lifecycle outside buyer confirmation: vendor actions, disputes,
admin resolution, and the stale-order sweeps.

Order rows are locked with select_for_update() only for the database part
of each step. Gateway refunds are requested after that transaction has
committed.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult
from orders.exceptions import InvalidStateTransitionError
from orders.models import Order
from orders.services.completion_service import OrderCompletionService
from orders.state_machines import DisputeResolution, OrderStatus, VendorAction
from payments.services import EscrowService

if TYPE_CHECKING:
    from authentication.models import User


class OrderLifecycleService(BaseService):
    """Vendor, buyer, admin, and scheduled transitions on orders."""

    # =========================================================================
    # Vendor Actions
    # =========================================================================

    @classmethod
    def vendor_action(
        cls,
        order_id,
        vendor: User,
        action: str,
        tracking_number: str = "",
        reason: str = "",
    ) -> ServiceResult[Order]:
        """
        Apply a vendor action: confirm, ship, deliver, or decline.

        Declining a paid order cancels it and refunds the buyer.
        """
        if action not in VendorAction.values:
            return ServiceResult.failure(f"Unknown vendor action '{action}'", error_code="VALIDATION_ERROR")

        refunds = None
        with cls.atomic():
            order = Order.objects.select_for_update().filter(pk=order_id).first()
            if order is None:
                return ServiceResult.failure(f"Order {order_id} not found", error_code="ORDER_NOT_FOUND")
            if order.vendor_id != vendor.pk:
                return ServiceResult.failure(
                    "Only the vendor selling this order can act on it",
                    error_code="NOT_ORDER_PARTICIPANT",
                )

            status_before = order.status
            try:
                if action == VendorAction.CONFIRM:
                    order.confirm_by_vendor()
                elif action == VendorAction.SHIP:
                    order.ship(tracking_number=tracking_number)
                elif action == VendorAction.DELIVER:
                    order.mark_delivered()
                else:
                    refunds = cls._cancel(order, reason or "Declined by vendor")
            except TransitionNotAllowed:
                return ServiceResult.from_exception(
                    InvalidStateTransitionError.for_order(order, action, status=status_before)
                )
            order.save()

        EscrowService.request_gateway_refunds(refunds, reason or "Declined by vendor")
        cls.get_logger().info(
            "Vendor action applied",
            extra={
                "order_id": str(order.pk),
                "vendor_id": str(vendor.pk),
                "action": action,
                "from_status": status_before,
                "to_status": order.status,
            },
        )
        return ServiceResult.success(order)

    @staticmethod
    def _cancel(order: Order, reason: str):
        """
        Cancel the order and, if it was paid, refund it.

        Runs inside the caller's transaction. Returns the payments whose
        gateway refunds still have to be requested.
        """
        was_paid = order.paid_at is not None
        order.cancel(reason=reason)
        if not was_paid:
            return None
        order.refund()
        return EscrowService.mark_refunded(order)

    # =========================================================================
    # Disputes
    # =========================================================================

    @classmethod
    def dispute(cls, order_id, buyer: User, reason: str) -> ServiceResult[Order]:
        """Open a dispute on a shipped or delivered order and freeze its escrow."""
        if not (reason or "").strip():
            return ServiceResult.failure(
                "A reason is required to open a dispute",
                error_code="VALIDATION_ERROR",
                errors={"reason": ["This field is required."]},
            )

        with cls.atomic():
            order = Order.objects.select_for_update().filter(pk=order_id).first()
            if order is None:
                return ServiceResult.failure(f"Order {order_id} not found", error_code="ORDER_NOT_FOUND")
            if order.buyer_id != buyer.pk:
                return ServiceResult.failure(
                    "Only the buyer who placed this order can dispute it",
                    error_code="NOT_ORDER_PARTICIPANT",
                )
            try:
                order.dispute(reason=reason.strip())
            except TransitionNotAllowed:
                return ServiceResult.from_exception(InvalidStateTransitionError.for_order(order, "dispute"))
            order.save()
            EscrowService.freeze(order)

        cls.get_logger().info("Order disputed", extra={"order_id": str(order.pk), "buyer_id": str(buyer.pk)})
        return ServiceResult.success(order)

    @classmethod
    def resolve_dispute(cls, order_id, resolution: str, notes: str = "") -> ServiceResult[Order]:
        """
        Admin resolution of a disputed order.

        release: escrow unfrozen and released to the vendor, order completed
        refund: escrow refunded, order refunded, gateway asked to refund
        """
        if resolution not in DisputeResolution.values:
            return ServiceResult.failure(f"Unknown resolution '{resolution}'", error_code="VALIDATION_ERROR")

        refunds = None
        try:
            with cls.atomic():
                order = Order.objects.select_for_update().filter(pk=order_id).first()
                if order is None:
                    return ServiceResult.failure(f"Order {order_id} not found", error_code="ORDER_NOT_FOUND")

                try:
                    if resolution == DisputeResolution.RELEASE:
                        order.resolve_release(notes=notes)
                    else:
                        order.resolve_refund(notes=notes)
                except TransitionNotAllowed:
                    return ServiceResult.from_exception(InvalidStateTransitionError.for_order(order, "resolve"))
                order.save()

                if resolution == DisputeResolution.RELEASE:
                    EscrowService.unfreeze(order)
                    OrderCompletionService.release_funds(order)
                else:
                    refunds = EscrowService.mark_refunded(order)
        except ConflictError as e:
            return cls.handle_exception(e, "Dispute resolution refused", log_level=logging.WARNING)

        EscrowService.request_gateway_refunds(refunds, notes or "Dispute resolved in favour of the buyer")
        cls.get_logger().info(
            "Dispute resolved",
            extra={"order_id": str(order.pk), "resolution": resolution},
        )
        return ServiceResult.success(order)

    # =========================================================================
    # Sweeps
    # =========================================================================

    @classmethod
    def cancel_stale_orders(cls) -> dict:
        """
        Cancel orders nobody acted on within VENDOR_CONFIRMATION_TIMEOUT_HOURS.

        - Paid orders the vendor never confirmed are cancelled and refunded.
        - Unpaid orders are cancelled.
        """
        cutoff = timezone.now() - timedelta(hours=settings.VENDOR_CONFIRMATION_TIMEOUT_HOURS)
        stats = {"unconfirmed": 0, "unpaid": 0, "errors": 0}

        unconfirmed = Order.objects.filter(
            status=OrderStatus.PENDING_VENDOR_CONFIRMATION,
            paid_at__lte=cutoff,
        ).values_list("pk", flat=True)
        for order_id in list(unconfirmed):
            cancelled = cls._sweep_cancel(
                order_id,
                OrderStatus.PENDING_VENDOR_CONFIRMATION,
                "Vendor did not confirm in time",
                stats,
            )
            if cancelled:
                stats["unconfirmed"] += 1

        unpaid = Order.objects.filter(
            status=OrderStatus.PENDING_PAYMENT,
            created_at__lte=cutoff,
        ).values_list("pk", flat=True)
        for order_id in list(unpaid):
            if cls._sweep_cancel(order_id, OrderStatus.PENDING_PAYMENT, "Payment not received in time", stats):
                stats["unpaid"] += 1

        cls.get_logger().info("Stale order sweep finished", extra=stats)
        return stats

    @classmethod
    def refund_unshipped_orders(cls) -> dict:
        """Cancel and refund confirmed orders not shipped within UNSHIPPED_ORDER_REFUND_DAYS."""
        cutoff = timezone.now() - timedelta(days=settings.UNSHIPPED_ORDER_REFUND_DAYS)
        stats = {"refunded": 0, "errors": 0}

        unshipped = Order.objects.filter(
            status=OrderStatus.VENDOR_CONFIRMED,
            confirmed_at__lte=cutoff,
        ).values_list("pk", flat=True)
        for order_id in list(unshipped):
            if cls._sweep_cancel(order_id, OrderStatus.VENDOR_CONFIRMED, "Order not shipped in time", stats):
                stats["refunded"] += 1

        cls.get_logger().info("Unshipped order sweep finished", extra=stats)
        return stats

    @classmethod
    def _sweep_cancel(cls, order_id, expected_status: str, reason: str, stats: dict) -> bool:
        """Cancel (and refund) one order if it is still in expected_status."""
        try:
            with cls.atomic():
                order = Order.objects.select_for_update().filter(pk=order_id).first()
                if order is None or order.status != expected_status:
                    return False
                refunds = cls._cancel(order, reason)
                order.save()
            EscrowService.request_gateway_refunds(refunds, reason)
        except Exception:
            stats["errors"] += 1
            cls.get_logger().exception("Order sweep failed for order", extra={"order_id": str(order_id)})
            return False

        cls.get_logger().info(
            "Order cancelled by sweep",
            extra={"order_id": str(order_id), "from_status": expected_status, "reason": reason},
        )
        return True
