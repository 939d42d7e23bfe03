"""
Escrow service: hold, release, freeze, and refund order funds.

An EscrowTransaction leaves HELD exactly once. Both exits (release and
refund) are status-guarded UPDATEs, so concurrent callers cannot both win.
Gateway refunds run after the refund transaction commits, so no row lock
is held across gateway I/O.

Usage:
    from payments.services import EscrowService

    escrow, created = EscrowService.hold(order, payment)
    EscrowService.freeze(order)           # dispute opened
    EscrowService.release(order)          # buyer confirmed or dispute released
    with transaction.atomic():
        payments = EscrowService.mark_refunded(order)
    EscrowService.request_gateway_refunds(payments, "Vendor declined")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.utils import timezone

from core.exceptions import ConflictError
from core.services import BaseService
from payments.exceptions import GatewayConfigurationError, GatewayError
from payments.gateways import get_gateway
from payments.models import EscrowTransaction, Payment
from payments.state_machines import EscrowStatus, PaymentStatus

if TYPE_CHECKING:
    from orders.models import Order


class EscrowService(BaseService):
    """Guarded transitions on EscrowTransaction rows."""

    @classmethod
    def hold(cls, order: Order, payment: Payment) -> tuple[EscrowTransaction, bool]:
        """
        Create the escrow hold for a captured order payment.

        Safe to call for every duplicate callback: only the first call
        creates the row.
        """
        escrow, created = EscrowTransaction.objects.get_or_create(
            order=order,
            defaults={
                "payment": payment,
                "status": EscrowStatus.HELD,
                "held_amount": order.total,
                "commission_amount": order.commission_amount,
                "release_amount": order.payout_amount,
            },
        )
        if created:
            cls.get_logger().info(
                "Escrow hold created",
                extra={
                    "order_id": str(order.pk),
                    "payment_id": str(payment.pk),
                    "held_amount": str(escrow.held_amount),
                },
            )
        return escrow, created

    @staticmethod
    def is_held(order: Order) -> bool:
        return EscrowTransaction.objects.filter(order=order, status=EscrowStatus.HELD).exists()

    @classmethod
    def sync_to_order(cls, order: Order) -> bool:
        """
        Copy the order's money fields onto a held escrow.

        Used after a delivery-fee top-up changes the order totals.
        """
        updated = EscrowTransaction.objects.filter(order=order, status=EscrowStatus.HELD).update(
            held_amount=order.total,
            commission_amount=order.commission_amount,
            release_amount=order.payout_amount,
            updated_at=timezone.now(),
        )
        return updated == 1

    @classmethod
    def release(cls, order: Order) -> EscrowTransaction:
        """
        Move a held, unfrozen escrow to RELEASED.

        Raises:
            ConflictError: Escrow missing, frozen, or already left HELD
        """
        now = timezone.now()
        updated = EscrowTransaction.objects.filter(
            order=order,
            status=EscrowStatus.HELD,
            frozen=False,
        ).update(status=EscrowStatus.RELEASED, released_at=now, updated_at=now)

        escrow = EscrowTransaction.objects.filter(order=order).first()
        if updated != 1:
            if escrow is None:
                raise ConflictError(
                    "Order has no escrow to release",
                    error_code="ESCROW_NOT_FOUND",
                    details={"order_id": str(order.pk)},
                )
            if escrow.frozen:
                raise ConflictError(
                    "Escrow is frozen by an open dispute",
                    error_code="ESCROW_FROZEN",
                    details={"order_id": str(order.pk)},
                )
            raise ConflictError(
                f"Escrow already {escrow.status}",
                error_code="ESCROW_NOT_HELD",
                details={"order_id": str(order.pk), "status": escrow.status},
            )

        cls.get_logger().info(
            "Escrow released",
            extra={"order_id": str(order.pk), "release_amount": str(escrow.release_amount)},
        )
        return escrow

    @classmethod
    def freeze(cls, order: Order) -> bool:
        updated = EscrowTransaction.objects.filter(order=order, status=EscrowStatus.HELD).update(
            frozen=True,
            updated_at=timezone.now(),
        )
        if updated:
            cls.get_logger().info("Escrow frozen", extra={"order_id": str(order.pk)})
        return updated == 1

    @classmethod
    def unfreeze(cls, order: Order) -> bool:
        updated = EscrowTransaction.objects.filter(order=order, status=EscrowStatus.HELD).update(
            frozen=False,
            updated_at=timezone.now(),
        )
        return updated == 1

    @classmethod
    def mark_refunded(cls, order: Order) -> list[Payment] | None:
        """
        Move a held escrow and its captured payments to REFUNDED.

        Database only. Returns the payments this call refunded, or None if
        the escrow was not held.
        """
        now = timezone.now()
        updated = EscrowTransaction.objects.filter(order=order, status=EscrowStatus.HELD).update(
            status=EscrowStatus.REFUNDED,
            frozen=False,
            refunded_at=now,
            updated_at=now,
        )
        if updated != 1:
            cls.get_logger().info(
                "Escrow not held, skipping refund",
                extra={"order_id": str(order.pk)},
            )
            return None

        refunded = []
        captured = Payment.objects.filter(order=order, status=PaymentStatus.CAPTURED).order_by("kind", "created_at")
        for payment in captured:
            moved = Payment.objects.filter(pk=payment.pk, status=PaymentStatus.CAPTURED).update(
                status=PaymentStatus.REFUNDED,
                refunded_at=now,
                updated_at=now,
            )
            if moved:
                refunded.append(payment)

        cls.get_logger().info(
            "Escrow refunded",
            extra={"order_id": str(order.pk), "payments": len(refunded)},
        )
        return refunded

    @classmethod
    def request_gateway_refunds(cls, payments: list[Payment] | None, reason: str) -> None:
        """
        Ask each payment's gateway to return the money.

        A rail without a refund API, or a refused refund, is logged and
        recorded on the payment metadata for manual follow-up. The local
        refund stands either way.
        """
        for payment in payments or []:
            cls._request_gateway_refund(payment, reason)

    @classmethod
    def _request_gateway_refund(cls, payment: Payment, reason: str) -> None:
        log_context = {
            "order_id": str(payment.order_id),
            "payment_id": str(payment.pk),
            "gateway": payment.gateway,
            "kind": payment.kind,
        }
        metadata = dict(payment.metadata or {})
        try:
            result = get_gateway(payment.gateway).refund(payment, payment.amount, reason)
        except (GatewayError, GatewayConfigurationError) as e:
            cls.get_logger().warning(
                "Gateway refund not completed, manual refund required",
                extra={**log_context, "error": e.message, "error_code": e.error_code},
            )
            metadata["refund"] = {
                "status": "manual_required",
                "error_code": e.error_code,
                "error": e.message,
                "raw_response": getattr(e, "raw_response", None),
            }
        else:
            metadata["refund"] = {
                "status": result.status,
                "refund_id": result.refund_id,
            }
            cls.get_logger().info("Gateway refund requested", extra={**log_context, "refund_id": result.refund_id})

        metadata["refund"]["reason"] = reason
        Payment.objects.filter(pk=payment.pk).update(metadata=metadata)
