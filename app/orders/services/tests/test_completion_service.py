"""
Tests for OrderCompletionService.

Buyer confirmation is the end of the escrow flow: the order completes, the
escrow is released, the vendor is credited the payout amount, commission
is booked once, and stock and rating problems come back as warnings
without undoing any of it.
"""

from decimal import Decimal

import pytest
from django.db import DatabaseError

from orders.models import Order, Product, VendorRating
from orders.services import OrderCompletionService
from orders.services.completion_service import RATING_WARNING, STOCK_WARNING
from orders.state_machines import OrderStatus
from orders.tests.factories import OrderItemFactory, ProductFactory
from payments.models import CommissionLedgerEntry, EscrowTransaction, Payout, VendorBalance
from payments.state_machines import EscrowStatus, PayoutState, PayoutTrigger


@pytest.mark.django_db
class TestCompleteOrder:
    """Tests for OrderCompletionService.complete_order()."""

    def test_buyer_confirmation_releases_escrow(self, shipped_order, buyer, vendor):
        """Should complete the order and move the payout amount to the vendor."""
        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.success
        assert result.data.warnings == []

        order = Order.objects.get(pk=shipped_order.pk)
        assert order.status == OrderStatus.COMPLETED
        assert order.buyer_confirmed is True

        escrow = EscrowTransaction.objects.get(order=order)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.released_at is not None

        balance = VendorBalance.objects.get(vendor=vendor)
        assert balance.pending_balance == Decimal("4860.00")
        assert balance.total_earned == Decimal("4860.00")

    def test_records_pending_entitlement(self, shipped_order, buyer, vendor):
        """Should create one pending order-release payout for the order."""
        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        payout = Payout.objects.get(pk=result.data.payout.pk)
        assert payout.trigger == PayoutTrigger.ORDER_RELEASE
        assert payout.status == PayoutState.PENDING
        assert payout.order_id == shipped_order.pk
        assert payout.vendor == vendor
        assert payout.amount == Decimal("4860.00")

    def test_books_commission_once(self, shipped_order, buyer):
        OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        entry = CommissionLedgerEntry.objects.get(order=shipped_order)
        assert entry.commission_amount == Decimal("540.00")
        assert entry.commission_rate == Decimal("10.00")

    def test_delivered_order_can_be_confirmed(self, buyer, vendor):
        from payments.tests.factories import create_paid_order

        order, _, _ = create_paid_order(status=OrderStatus.DELIVERED, buyer=buyer, vendor=vendor)

        result = OrderCompletionService.complete_order(order.pk, buyer=buyer)

        assert result.success

    def test_second_confirmation_is_refused(self, shipped_order, buyer, vendor):
        """Should never credit the vendor twice."""
        OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert VendorBalance.objects.get(vendor=vendor).pending_balance == Decimal("4860.00")
        assert Payout.objects.filter(order=shipped_order).count() == 1

    def test_only_buyer_can_confirm(self, shipped_order, vendor):
        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=vendor)

        assert result.error_code == "NOT_ORDER_PARTICIPANT"
        assert Order.objects.get(pk=shipped_order.pk).status == OrderStatus.SHIPPED

    def test_unknown_order(self, buyer):
        import uuid

        result = OrderCompletionService.complete_order(uuid.uuid4(), buyer=buyer)

        assert result.error_code == "ORDER_NOT_FOUND"

    def test_unshipped_order_cannot_complete(self, confirmed_order, buyer):
        """Should not skip the shipping step."""
        result = OrderCompletionService.complete_order(confirmed_order.pk, buyer=buyer)

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_frozen_escrow_rolls_back_completion(self, shipped_order, buyer, vendor):
        """Should leave the order shipped when escrow cannot be released."""
        EscrowTransaction.objects.filter(order=shipped_order).update(frozen=True)

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.error_code == "ESCROW_FROZEN"
        assert Order.objects.get(pk=shipped_order.pk).status == OrderStatus.SHIPPED
        assert not VendorBalance.objects.filter(vendor=vendor, pending_balance__gt=0).exists()
        assert not Payout.objects.filter(order=shipped_order).exists()

    def test_released_escrow_is_refused(self, shipped_order, buyer):
        EscrowTransaction.objects.filter(order=shipped_order).update(status=EscrowStatus.RELEASED)

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.error_code == "ESCROW_NOT_HELD"

    def test_missing_escrow_is_refused(self, shipped_order, buyer):
        EscrowTransaction.objects.filter(order=shipped_order).delete()

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.error_code == "ESCROW_NOT_FOUND"

    def test_rating_out_of_range(self, shipped_order, buyer):
        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer, rating=6)

        assert result.error_code == "VALIDATION_ERROR"
        assert "rating" in result.errors


@pytest.mark.django_db
class TestCompletionSideEffects:
    """Stock and rating steps run after the money moved."""

    def test_decrements_stock(self, shipped_order, buyer):
        item = OrderItemFactory(order=shipped_order, quantity=2, product__stock=5)

        OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert Product.objects.get(pk=item.product_id).stock == 3

    def test_stock_floors_at_zero(self, shipped_order, buyer):
        """Should never drive stock negative when it was oversold."""
        item = OrderItemFactory(order=shipped_order, quantity=4, product__stock=1)

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.data.warnings == []
        assert Product.objects.get(pk=item.product_id).stock == 0

    def test_untracked_stock_is_untouched(self, shipped_order, buyer):
        item = OrderItemFactory(order=shipped_order, product__stock=None)

        OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert Product.objects.get(pk=item.product_id).stock is None

    def test_stock_failure_is_a_warning(self, shipped_order, buyer, mocker):
        """Should complete the order even when stock cannot be updated."""
        OrderItemFactory(order=shipped_order)
        mocker.patch("orders.services.completion_service.Product.objects.filter", side_effect=DatabaseError("locked"))

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert result.success
        assert result.data.warnings == [STOCK_WARNING]
        assert Order.objects.get(pk=shipped_order.pk).status == OrderStatus.COMPLETED

    def test_records_rating(self, shipped_order, buyer, vendor):
        OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer, rating=5, review="Fast delivery")

        rating = VendorRating.objects.get(order=shipped_order)
        assert rating.rating == 5
        assert rating.vendor == vendor
        assert rating.review == "Fast delivery"

    def test_duplicate_rating_is_a_warning(self, shipped_order, buyer, vendor):
        """Should keep the completion when a rating already exists."""
        VendorRating.objects.create(order=shipped_order, vendor=vendor, buyer=buyer, rating=3)

        result = OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer, rating=5)

        assert result.success
        assert result.data.warnings == [RATING_WARNING]
        assert VendorRating.objects.get(order=shipped_order).rating == 3
        assert EscrowTransaction.objects.get(order=shipped_order).status == EscrowStatus.RELEASED

    def test_no_rating_no_row(self, shipped_order, buyer):
        OrderCompletionService.complete_order(shipped_order.pk, buyer=buyer)

        assert not VendorRating.objects.filter(order=shipped_order).exists()
