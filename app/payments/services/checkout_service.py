"""
Checkout service: starts payment collection for an order.

Collection is an upsert on (order, gateway, kind), which is what makes
collect() idempotent per order:
- a captured payment is rejected;
- a pending payment that is still pending returns the stored collect
  response instead of prompting the customer again;
- a pending payment whose collect timed out is verified first and only
  retried once the gateway reports it failed;
- only a failed or absent attempt calls collect() again, under a fresh
  merchant reference.

Order-kind payments always go through PriceIntegrityValidator first, so the
amount sent to the gateway is server-computed.

Usage:
    from payments.services import CheckoutService

    result = CheckoutService.start_checkout(order_id, "mpesa", billing, request.user)
    if result.success:
        return Response(result.data.collect)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.db.models import F
from django.utils import timezone

from core.money import ZERO, to_money
from core.services import BaseService, ServiceResult
from orders.exceptions import OrderValidationError
from orders.models import Order
from orders.pricing import PriceCheckResult, PriceIntegrityValidator
from orders.state_machines import OrderStatus
from payments.exceptions import (
    GatewayConfigurationError,
    GatewayError,
    GatewayTimeoutError,
)
from payments.gateways import BillingInfo, get_gateway
from payments.models import Payment
from payments.services.reconciliation_service import CAPTURED, FAILED, ReconciliationService
from payments.state_machines import Gateway, PaymentKind, PaymentStatus

if TYPE_CHECKING:
    from authentication.models import User


# Orders that can take a delivery-fee top-up: paid, not yet shipped
DELIVERY_FEE_STATES = (
    OrderStatus.PENDING_VENDOR_CONFIRMATION,
    OrderStatus.VENDOR_CONFIRMED,
)


@dataclass
class CheckoutResult:
    """
    Result of a checkout request.

    Attributes:
        payment: The upserted Payment row
        collect: Collect response for the client (reference, redirect_url,
            prompt, client_secret)
        reused: True if a still-pending earlier attempt was returned
        price_check: Price validation outcome (order-kind payments only)
    """

    payment: Payment
    collect: dict = field(default_factory=dict)
    reused: bool = False
    price_check: PriceCheckResult | None = None


class CheckoutService(BaseService):
    """Creates or resumes the Payment for an order and calls collect()."""

    @classmethod
    def start_checkout(
        cls,
        order_id,
        gateway: str,
        billing: BillingInfo,
        user: User,
    ) -> ServiceResult[CheckoutResult]:
        """
        Start (or resume) collection of an order's total.

        Returns:
            ServiceResult with CheckoutResult, or a failure with one of
            ORDER_NOT_FOUND, NOT_ORDER_PARTICIPANT, ORDER_NOT_PAYABLE,
            PAYMENT_ALREADY_CAPTURED, CHECKOUT_IN_PROGRESS, or a gateway code
        """
        order = Order.objects.filter(pk=order_id).first()
        failure = cls._check_order(order, order_id, user)
        if failure:
            return failure

        if not order.is_awaiting_payment:
            return ServiceResult.failure(
                f"Order cannot be paid in '{order.status}' state",
                error_code="ORDER_NOT_PAYABLE",
            )

        try:
            price_check = PriceIntegrityValidator().validate(order)
        except OrderValidationError as e:
            return ServiceResult.from_exception(e)

        result = cls._collect(order, gateway, PaymentKind.ORDER, order.total, billing)
        if result.success:
            result.data.price_check = price_check
        return result

    @classmethod
    def start_delivery_fee(
        cls,
        order_id,
        amount,
        gateway: str,
        billing: BillingInfo,
        user: User,
    ) -> ServiceResult[CheckoutResult]:
        """
        Collect an extra delivery fee on a paid, unshipped order.

        The captured amount is folded into the order total and the held
        escrow by the reconciliation handler.
        """
        order = Order.objects.filter(pk=order_id).first()
        failure = cls._check_order(order, order_id, user)
        if failure:
            return failure

        amount = to_money(amount)
        if amount <= ZERO:
            return ServiceResult.failure(
                "Delivery fee must be greater than zero",
                error_code="VALIDATION_ERROR",
                errors={"amount": ["Must be greater than zero."]},
            )

        if order.status not in DELIVERY_FEE_STATES:
            return ServiceResult.failure(
                f"Delivery fee cannot be added in '{order.status}' state",
                error_code="ORDER_NOT_PAYABLE",
            )

        return cls._collect(order, gateway, PaymentKind.DELIVERY_FEE, amount, billing)

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _check_order(order: Order | None, order_id, user: User) -> ServiceResult | None:
        if order is None:
            return ServiceResult.failure(f"Order {order_id} not found", error_code="ORDER_NOT_FOUND")
        if order.buyer_id != user.pk:
            return ServiceResult.failure(
                "Only the buyer can pay for this order",
                error_code="NOT_ORDER_PARTICIPANT",
            )
        return None

    @staticmethod
    def merchant_reference_for(order: Order, kind: str, attempt: int) -> str:
        if kind == PaymentKind.DELIVERY_FEE:
            return f"{order.reference}-DF{attempt}"
        return f"{order.reference}-{attempt}"

    @classmethod
    def _collect(
        cls,
        order: Order,
        gateway_name: str,
        kind: str,
        amount,
        billing: BillingInfo,
    ) -> ServiceResult[CheckoutResult]:
        log_context = {"order_id": str(order.pk), "gateway": gateway_name, "kind": kind}

        if gateway_name == Gateway.MPESA and not billing.phone:
            return ServiceResult.failure(
                "A phone number is required for M-Pesa",
                error_code="VALIDATION_ERROR",
                errors={"phone": ["This field is required."]},
            )

        try:
            gateway = get_gateway(gateway_name)
        except GatewayConfigurationError as e:
            return cls.handle_exception(e, f"Checkout on {gateway_name}")

        payment, _ = Payment.objects.get_or_create(
            order=order,
            gateway=gateway_name,
            kind=kind,
            defaults={
                "amount": amount,
                "status": PaymentStatus.PENDING,
                "merchant_reference": cls.merchant_reference_for(order, kind, 1),
            },
        )

        # Existing attempt: captured is final, pending may be resumable
        if payment.status in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            return ServiceResult.failure(
                "This order has already been paid",
                error_code="PAYMENT_ALREADY_CAPTURED",
            )
        if payment.status == PaymentStatus.PENDING and payment.metadata.get("outcome_unknown"):
            unresolved = cls._resolve_unknown_outcome(payment, gateway, log_context)
            if unresolved is not None:
                return unresolved
            payment = Payment.objects.get(pk=payment.pk)
        elif payment.status == PaymentStatus.PENDING and payment.collect_response:
            resumed = cls._resume_pending(payment, amount, log_context)
            if resumed is not None:
                return resumed

        # New attempt under a fresh merchant reference
        attempt = payment.attempts + 1
        merchant_reference = cls.merchant_reference_for(order, kind, attempt)
        claimed = Payment.objects.filter(
            pk=payment.pk,
            attempts=payment.attempts,
            status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED],
        ).update(
            attempts=F("attempts") + 1,
            status=PaymentStatus.PENDING,
            amount=amount,
            merchant_reference=merchant_reference,
            transaction_reference="",
            collect_response={},
            failed_at=None,
            updated_at=timezone.now(),
        )
        if claimed != 1:
            return ServiceResult.failure(
                "A payment attempt for this order is already in progress",
                error_code="CHECKOUT_IN_PROGRESS",
            )

        log_context["merchant_reference"] = merchant_reference
        cls.get_logger().info("Starting payment collection", extra={**log_context, "amount": str(amount)})

        try:
            collected = gateway.collect(order, billing, merchant_reference, amount=amount)
        except GatewayTimeoutError as e:
            # The prompt may have gone out; reconcile instead of charging again
            Payment.objects.filter(pk=payment.pk, merchant_reference=merchant_reference).update(
                metadata={**payment.metadata, "outcome_unknown": True, "last_error": e.message},
            )
            cls.get_logger().warning("Collection timed out, outcome unknown", extra=log_context)
            return ServiceResult.from_exception(e)
        except GatewayError as e:
            Payment.objects.filter(
                pk=payment.pk,
                merchant_reference=merchant_reference,
                status=PaymentStatus.PENDING,
            ).update(
                status=PaymentStatus.FAILED,
                failed_at=timezone.now(),
                metadata={**payment.metadata, "last_error": e.message, "last_error_code": e.error_code},
            )
            return cls.handle_exception(e, "Payment collection failed")

        collect_response = collected.to_dict()
        metadata = {k: v for k, v in payment.metadata.items() if k not in ("outcome_unknown", "last_error")}
        Payment.objects.filter(pk=payment.pk, merchant_reference=merchant_reference).update(
            transaction_reference=collected.reference,
            collect_response=collect_response,
            metadata=metadata,
            updated_at=timezone.now(),
        )

        cls.get_logger().info(
            "Payment collection started",
            extra={**log_context, "transaction_reference": collected.reference},
        )
        payment = Payment.objects.get(pk=payment.pk)
        return ServiceResult.success(CheckoutResult(payment=payment, collect=collect_response))

    @classmethod
    def _resolve_unknown_outcome(cls, payment: Payment, gateway, log_context: dict) -> ServiceResult | None:
        """
        Settle a timed-out attempt before anything new is sent.

        Returns a result to return, or None once the gateway has confirmed
        the earlier attempt failed.
        """
        verification_pending = ServiceResult.failure(
            "Payment verification in progress, try again shortly or use another payment method",
            error_code="PAYMENT_VERIFICATION_PENDING",
        )
        if not (payment.transaction_reference or gateway.verifies_merchant_reference):
            cls.get_logger().warning(
                "Timed-out attempt cannot be verified yet, refusing to collect again",
                extra={**log_context, "merchant_reference": payment.merchant_reference},
            )
            return verification_pending

        try:
            outcome = ReconciliationService.reconcile_payment(payment)
        except GatewayError as e:
            cls.get_logger().warning(
                "Could not verify timed-out attempt, refusing to collect again",
                extra={**log_context, "error": e.message},
            )
            return ServiceResult.from_exception(e)

        if outcome.action == CAPTURED:
            return ServiceResult.failure(
                "This order has already been paid",
                error_code="PAYMENT_ALREADY_CAPTURED",
            )
        if outcome.action == FAILED:
            return None
        return verification_pending

    @classmethod
    def _resume_pending(cls, payment: Payment, amount, log_context: dict) -> ServiceResult | None:
        """
        Decide whether a pending attempt can be handed back as-is.

        Returns a result to return, or None to start a new attempt.
        """
        if to_money(payment.amount) != to_money(amount):
            return None

        stored = payment.collect_response
        if stored.get("redirect_url") or stored.get("client_secret"):
            # Re-showing the same hosted page or intent cannot charge twice
            return ServiceResult.success(CheckoutResult(payment=payment, collect=stored, reused=True))

        # Push prompts: ask the gateway whether the last one is still live
        try:
            outcome = ReconciliationService.reconcile_payment(payment)
        except GatewayError as e:
            cls.get_logger().warning(
                "Could not verify pending attempt, refusing to prompt again",
                extra={**log_context, "error": e.message},
            )
            return ServiceResult.from_exception(e)

        if outcome.action == CAPTURED:
            return ServiceResult.failure(
                "This order has already been paid",
                error_code="PAYMENT_ALREADY_CAPTURED",
            )
        if outcome.action == FAILED:
            return None
        return ServiceResult.success(CheckoutResult(payment=payment, collect=stored, reused=True))
