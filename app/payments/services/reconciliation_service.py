"""
Reconciliation service: turns gateway-verified payment state into order
and escrow transitions.

Callbacks are only triggers. Every path here re-asks the gateway through
verify_status() and applies the result with guarded writes, so replaying
the same callback any number of times leaves the same state as once.

Flow for a verified capture (all in one transaction):
    1. Payment PENDING/FAILED -> CAPTURED   (filter(status__in=...).update)
    2. Order -> PENDING_VENDOR_CONFIRMATION (skipped if already past it)
    3. EscrowTransaction get_or_create      (held = order total)

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService.reconcile("mpesa", checkout_request_id)
    if result.action == CAPTURED:
        ...

    # Periodic sweep over stale pending payments
    stats = ReconciliationService.reconcile_pending_payments()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.money import to_money
from core.services import BaseService
from orders.models import Order
from orders.state_machines import AWAITING_PAYMENT_STATES, PAID_ORDER_STATES, OrderStatus
from payments.exceptions import GatewayConfigurationError, GatewayError
from payments.gateways import get_gateway
from payments.models import Payment
from payments.services.escrow_service import EscrowService
from payments.state_machines import PaymentKind, PaymentStatus

if TYPE_CHECKING:
    from payments.gateways import PaymentStatusResult


# =============================================================================
# Outcomes
# =============================================================================

CAPTURED = "captured"
FAILED = "failed"
STILL_PENDING = "pending"
NOT_FOUND = "not_found"
ALREADY_FINAL = "already_final"
AMOUNT_MISMATCH = "amount_mismatch"


@dataclass
class ReconcileResult:
    """
    What a reconciliation pass did.

    Attributes:
        action: One of the outcome constants in this module
        payment: The Payment, or None when the reference matched nothing
        gateway_state: State reported by verify_status (empty if not called)
    """

    action: str
    payment: Payment | None = None
    gateway_state: str = ""

    @property
    def changed_state(self) -> bool:
        return self.action in (CAPTURED, FAILED)


class ReconciliationService(BaseService):
    """Applies authoritative gateway status to payments, orders, and escrow."""

    @classmethod
    def reconcile(cls, gateway: str, reference: str, verify_reference: str | None = None) -> ReconcileResult:
        """
        Reconcile the payment a callback refers to.

        Args:
            gateway: Rail the callback came from
            reference: Merchant or transaction reference from the callback
            verify_reference: Id to query verify_status with, when it differs
                from the stored references (IntaSend invoice ids)

        Raises:
            GatewayError: verify_status failed; the caller should answer 5xx
                so the gateway retries
        """
        payment = Payment.objects.for_reference(gateway, reference)
        if payment is None:
            cls.get_logger().info(
                "No payment for callback reference",
                extra={"gateway": gateway, "reference": reference},
            )
            return ReconcileResult(action=NOT_FOUND)
        return cls.reconcile_payment(payment, verify_reference=verify_reference)

    @classmethod
    def reconcile_payment(cls, payment: Payment, verify_reference: str | None = None) -> ReconcileResult:
        if payment.status in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            return ReconcileResult(action=ALREADY_FINAL, payment=payment)

        reference = verify_reference or payment.reference
        log_context = {
            "payment_id": str(payment.pk),
            "order_id": str(payment.order_id),
            "gateway": payment.gateway,
            "reference": reference,
        }

        status = get_gateway(payment.gateway).verify_status(reference)
        Payment.objects.filter(pk=payment.pk).update(last_verified_at=timezone.now())

        cls.get_logger().info(
            "Payment status verified",
            extra={**log_context, "state": status.state, "provider_status": status.provider_status},
        )

        if status.is_completed:
            if cls._is_underpaid(payment, status):
                return cls._flag_amount_mismatch(payment, status, log_context)
            return cls._apply_capture(payment, status, verify_reference, log_context)
        if status.is_failed:
            return cls._apply_failure(payment, status, log_context)
        return ReconcileResult(action=STILL_PENDING, payment=payment, gateway_state=status.state)

    # =========================================================================
    # Transitions
    # =========================================================================

    @classmethod
    def _apply_capture(
        cls,
        payment: Payment,
        status: PaymentStatusResult,
        verify_reference: str | None,
        log_context: dict,
    ) -> ReconcileResult:
        now = timezone.now()
        fields = {"status": PaymentStatus.CAPTURED, "captured_at": now, "updated_at": now}
        if verify_reference:
            fields["transaction_reference"] = verify_reference

        with transaction.atomic():
            updated = Payment.objects.filter(
                pk=payment.pk,
                status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED],
            ).update(**fields)
            if updated != 1:
                return ReconcileResult(action=ALREADY_FINAL, payment=payment, gateway_state=status.state)

            payment = Payment.objects.get(pk=payment.pk)
            order = Order.objects.select_for_update().get(pk=payment.order_id)

            if payment.kind == PaymentKind.DELIVERY_FEE:
                cls._apply_delivery_fee(order, payment, log_context)
            elif order.status in AWAITING_PAYMENT_STATES:
                order.mark_paid()
                order.save()
                EscrowService.hold(order, payment)
            elif order.status == OrderStatus.CANCELLED:
                cls._flag_for_refund(payment, "Payment captured for a cancelled order, refund required", log_context)
            elif order.status in PAID_ORDER_STATES:
                escrow, _ = EscrowService.hold(order, payment)
                if escrow.payment_id != payment.pk:
                    # Paid twice, e.g. on two rails; the escrow keeps the first
                    cls._flag_for_refund(
                        payment,
                        "Second payment captured for a paid order, refund required",
                        {**log_context, "escrow_payment_id": str(escrow.payment_id)},
                    )
            else:
                cls._flag_for_refund(
                    payment,
                    "Payment captured for an order that is no longer payable, refund required",
                    {**log_context, "order_status": order.status},
                )

        cls.get_logger().info("Payment captured", extra={**log_context, "kind": payment.kind})
        return ReconcileResult(action=CAPTURED, payment=payment, gateway_state=status.state)

    @classmethod
    def _flag_for_refund(cls, payment: Payment, message: str, log_context: dict) -> None:
        cls.get_logger().warning(message, extra=log_context)
        Payment.objects.filter(pk=payment.pk).update(
            metadata={**payment.metadata, "requires_refund": True},
        )

    @classmethod
    def _apply_delivery_fee(cls, order: Order, payment: Payment, log_context: dict) -> None:
        """
        Fold a captured delivery-fee top-up into the order and its escrow.

        Only while the escrow is still held. Once it has been released or
        refunded the order totals are left alone and the top-up is flagged
        for refund.
        """
        if not EscrowService.is_held(order):
            cls._flag_for_refund(
                payment,
                "Delivery fee captured after escrow left HELD, refund required",
                {**log_context, "order_status": order.status},
            )
            return

        order.apply_pricing(order.shipping_fee + payment.amount)
        order.save(update_fields=["shipping_fee", "total", "commission_amount", "payout_amount", "updated_at"])
        EscrowService.sync_to_order(order)
        cls.get_logger().info(
            "Delivery fee added to order",
            extra={
                "order_id": str(order.pk),
                "payment_id": str(payment.pk),
                "amount": str(payment.amount),
                "total": str(order.total),
            },
        )

    @classmethod
    def _apply_failure(cls, payment: Payment, status: PaymentStatusResult, log_context: dict) -> ReconcileResult:
        now = timezone.now()
        with transaction.atomic():
            updated = Payment.objects.filter(pk=payment.pk, status=PaymentStatus.PENDING).update(
                status=PaymentStatus.FAILED,
                failed_at=now,
                updated_at=now,
            )
            if updated != 1:
                return ReconcileResult(action=ALREADY_FINAL, payment=payment, gateway_state=status.state)

            if payment.kind == PaymentKind.ORDER:
                order = Order.objects.select_for_update().get(pk=payment.order_id)
                if order.status == OrderStatus.PENDING_PAYMENT:
                    order.mark_payment_failed()
                    order.save()

        cls.get_logger().info(
            "Payment failed",
            extra={**log_context, "provider_status": status.provider_status},
        )
        return ReconcileResult(action=FAILED, payment=payment, gateway_state=status.state)

    # =========================================================================
    # Amount Checks
    # =========================================================================

    @staticmethod
    def _is_underpaid(payment: Payment, status: PaymentStatusResult) -> bool:
        if status.amount is None:
            return False
        tolerance = to_money(settings.PRICE_TOLERANCE)
        return to_money(status.amount) + tolerance < to_money(payment.amount)

    @classmethod
    def _flag_amount_mismatch(cls, payment: Payment, status: PaymentStatusResult, log_context: dict) -> ReconcileResult:
        cls.get_logger().warning(
            "Gateway reported less than the payment amount, not capturing",
            extra={**log_context, "expected": str(payment.amount), "reported": str(status.amount)},
        )
        Payment.objects.filter(pk=payment.pk).update(
            metadata={
                **payment.metadata,
                "amount_mismatch": {"expected": str(payment.amount), "reported": str(status.amount)},
            },
        )
        return ReconcileResult(action=AMOUNT_MISMATCH, payment=payment, gateway_state=status.state)

    # =========================================================================
    # Sweeps
    # =========================================================================

    @classmethod
    def reconcile_pending_payments(cls, older_than_minutes: int | None = None) -> dict[str, int]:
        """
        Re-verify pending payments whose callback never arrived.

        Covers timed-out collects (outcome unknown) as well as lost
        callbacks. Each payment is independent.
        """
        minutes = settings.PAYMENT_RECONCILE_AFTER_MINUTES if older_than_minutes is None else older_than_minutes
        cutoff = timezone.now() - timedelta(minutes=minutes)
        stats = {"checked": 0, "captured": 0, "failed": 0, "pending": 0, "errors": 0}

        candidates = (
            Payment.objects.pending()
            .filter(updated_at__lte=cutoff)
            .exclude(merchant_reference="", transaction_reference="")
            .order_by("created_at")
        )
        for payment in candidates.iterator():
            stats["checked"] += 1
            try:
                result = cls.reconcile_payment(payment)
            except (GatewayError, GatewayConfigurationError) as e:
                stats["errors"] += 1
                cls.get_logger().warning(
                    "Pending payment verification failed",
                    extra={"payment_id": str(payment.pk), "gateway": payment.gateway, "error": str(e)},
                )
                continue
            except Exception:
                stats["errors"] += 1
                cls.get_logger().exception(
                    "Pending payment reconciliation crashed",
                    extra={"payment_id": str(payment.pk), "gateway": payment.gateway},
                )
                continue

            if result.action == CAPTURED:
                stats["captured"] += 1
            elif result.action == FAILED:
                stats["failed"] += 1
            else:
                stats["pending"] += 1

        cls.get_logger().info("Pending payment reconciliation finished", extra=stats)
        return stats
