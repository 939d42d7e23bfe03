"""
Tests for the scheduled order sweeps: escrow auto-release, stale order
cancellation, and refunds for confirmed orders that never shipped.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from freezegun import freeze_time

from orders.models import Order
from orders.services import OrderCompletionService, OrderLifecycleService
from orders.state_machines import OrderStatus
from orders.tests.factories import OrderFactory
from payments.models import EscrowTransaction, Payment, VendorBalance
from payments.state_machines import EscrowStatus, PaymentStatus
from payments.tests.factories import create_paid_order


@pytest.mark.django_db
class TestAutoReleaseSweep:
    """Tests for OrderCompletionService.run_auto_release_sweep()."""

    def test_releases_orders_past_deadline(self, buyer, vendor):
        """Should complete shipped orders whose window passed, without buyer confirmation."""
        order, _, _ = create_paid_order(
            status=OrderStatus.SHIPPED,
            buyer=buyer,
            vendor=vendor,
            auto_release_at=timezone.now() - timedelta(minutes=5),
        )

        stats = OrderCompletionService.run_auto_release_sweep()

        assert stats == {"checked": 1, "completed": 1, "failed": 0, "errors": 0}
        order = Order.objects.get(pk=order.pk)
        assert order.status == OrderStatus.COMPLETED
        assert order.buyer_confirmed is False
        assert VendorBalance.objects.get(vendor=vendor).pending_balance == Decimal("4860.00")

    def test_leaves_orders_inside_window(self, shipped_order):
        stats = OrderCompletionService.run_auto_release_sweep()

        assert stats["checked"] == 0
        assert Order.objects.get(pk=shipped_order.pk).status == OrderStatus.SHIPPED

    def test_window_expires_after_three_days(self, shipped_order):
        """Should pick the order up once the auto-release time arrives."""
        with freeze_time(timezone.now() + timedelta(days=3, seconds=1)):
            stats = OrderCompletionService.run_auto_release_sweep()

        assert stats["completed"] == 1

    def test_never_releases_disputed_orders(self, buyer, vendor):
        order, _, _ = create_paid_order(
            status=OrderStatus.DISPUTED,
            buyer=buyer,
            vendor=vendor,
            auto_release_at=timezone.now() - timedelta(days=1),
        )

        stats = OrderCompletionService.run_auto_release_sweep()

        assert stats["checked"] == 0
        assert EscrowTransaction.objects.get(order=order).status == EscrowStatus.HELD

    def test_counts_refusals_as_failed(self, buyer, vendor):
        """Should keep sweeping past an order whose escrow cannot be released."""
        blocked, _, _ = create_paid_order(
            status=OrderStatus.SHIPPED,
            buyer=buyer,
            vendor=vendor,
            auto_release_at=timezone.now() - timedelta(hours=2),
        )
        EscrowTransaction.objects.filter(order=blocked).update(frozen=True)
        create_paid_order(
            status=OrderStatus.DELIVERED,
            buyer=buyer,
            vendor=vendor,
            auto_release_at=timezone.now() - timedelta(hours=1),
        )

        stats = OrderCompletionService.run_auto_release_sweep()

        assert stats == {"checked": 2, "completed": 1, "failed": 1, "errors": 0}
        assert Order.objects.get(pk=blocked.pk).status == OrderStatus.SHIPPED

    def test_counts_crashes_as_errors(self, shipped_order, mocker):
        Order.objects.filter(pk=shipped_order.pk).update(auto_release_at=timezone.now() - timedelta(hours=1))
        mocker.patch.object(OrderCompletionService, "complete_order", side_effect=RuntimeError("boom"))

        stats = OrderCompletionService.run_auto_release_sweep()

        assert stats["errors"] == 1


@pytest.mark.django_db
class TestCancelStaleOrders:
    """Tests for OrderLifecycleService.cancel_stale_orders()."""

    def test_refunds_paid_orders_vendor_never_confirmed(self, buyer, vendor, gateways):
        order, _, _ = create_paid_order(buyer=buyer, vendor=vendor, paid_at=timezone.now() - timedelta(hours=25))

        stats = OrderLifecycleService.cancel_stale_orders()

        assert stats == {"unconfirmed": 1, "unpaid": 0, "errors": 0}
        order = Order.objects.get(pk=order.pk)
        assert order.status == OrderStatus.REFUNDED
        assert order.status_notes == "Vendor did not confirm in time"
        assert EscrowTransaction.objects.get(order=order).status == EscrowStatus.REFUNDED
        assert Payment.objects.get(order=order).status == PaymentStatus.REFUNDED
        assert len(gateways["mpesa"].refund_calls) == 1

    def test_keeps_recently_paid_orders(self, paid_order, gateways):
        stats = OrderLifecycleService.cancel_stale_orders()

        assert stats["unconfirmed"] == 0
        assert Order.objects.get(pk=paid_order.pk).status == OrderStatus.PENDING_VENDOR_CONFIRMATION

    def test_cancels_old_unpaid_orders(self, buyer, gateways):
        """Should cancel unpaid orders without touching any gateway."""
        with freeze_time(timezone.now() - timedelta(hours=30)):
            stale = OrderFactory(buyer=buyer)
        fresh = OrderFactory(buyer=buyer)

        stats = OrderLifecycleService.cancel_stale_orders()

        assert stats["unpaid"] == 1
        assert Order.objects.get(pk=stale.pk).status == OrderStatus.CANCELLED
        assert Order.objects.get(pk=fresh.pk).status == OrderStatus.PENDING_PAYMENT
        assert gateways["mpesa"].refund_calls == []

    def test_skips_orders_that_moved_on(self, buyer, vendor, gateways, mocker):
        """Should leave an order the vendor confirmed after the candidate query."""
        order, _, _ = create_paid_order(buyer=buyer, vendor=vendor, paid_at=timezone.now() - timedelta(days=2))
        stats = {"unconfirmed": 0, "unpaid": 0, "errors": 0}
        fresh = Order.objects.get(pk=order.pk)
        fresh.confirm_by_vendor()
        fresh.save()

        cancelled = OrderLifecycleService._sweep_cancel(
            order.pk, OrderStatus.PENDING_VENDOR_CONFIRMATION, "late", stats
        )

        assert cancelled is False
        assert Order.objects.get(pk=order.pk).status == OrderStatus.VENDOR_CONFIRMED


@pytest.mark.django_db
class TestRefundUnshippedOrders:
    """Tests for OrderLifecycleService.refund_unshipped_orders()."""

    def test_refunds_confirmed_orders_past_deadline(self, buyer, vendor, gateways):
        order, _, _ = create_paid_order(
            status=OrderStatus.VENDOR_CONFIRMED,
            buyer=buyer,
            vendor=vendor,
            confirmed_at=timezone.now() - timedelta(days=4),
        )

        stats = OrderLifecycleService.refund_unshipped_orders()

        assert stats == {"refunded": 1, "errors": 0}
        order = Order.objects.get(pk=order.pk)
        assert order.status == OrderStatus.REFUNDED
        assert order.status_notes == "Order not shipped in time"

    def test_keeps_recently_confirmed_orders(self, confirmed_order, gateways):
        stats = OrderLifecycleService.refund_unshipped_orders()

        assert stats["refunded"] == 0
        assert Order.objects.get(pk=confirmed_order.pk).status == OrderStatus.VENDOR_CONFIRMED

    def test_gateway_refund_failure_keeps_local_refund(self, buyer, vendor, gateways):
        """Should still refund locally and flag the payment for manual refund."""
        from payments.exceptions import GatewayError

        gateways["mpesa"].refund_error = GatewayError("Refund window closed", gateway="mpesa")
        order, payment, _ = create_paid_order(
            status=OrderStatus.VENDOR_CONFIRMED,
            buyer=buyer,
            vendor=vendor,
            confirmed_at=timezone.now() - timedelta(days=5),
        )

        stats = OrderLifecycleService.refund_unshipped_orders()

        assert stats["refunded"] == 1
        payment = Payment.objects.get(pk=payment.pk)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.metadata["refund"]["status"] == "manual_required"
