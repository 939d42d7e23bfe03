"""
Tests for the Order state machine.

Covers the happy path, the dispute and cancellation branches, and the
transitions django-fsm must refuse.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from django_fsm import TransitionNotAllowed
from freezegun import freeze_time

from core.exceptions import ConflictError
from orders.exceptions import InvalidStateTransitionError
from orders.models import Order
from orders.state_machines import OrderStatus
from orders.tests.factories import OrderFactory


@pytest.mark.django_db
class TestOrderHappyPath:
    """Tests for PENDING_PAYMENT through COMPLETED."""

    def test_mark_paid_records_time(self):
        """Should move to pending_vendor_confirmation and stamp paid_at."""
        order = OrderFactory()

        order.mark_paid()
        order.save()

        assert order.status == OrderStatus.PENDING_VENDOR_CONFIRMATION
        assert order.paid_at is not None
        assert order.is_paid is True

    def test_late_success_after_failed_attempt(self):
        """Should accept a capture after an earlier attempt failed."""
        order = OrderFactory(status=OrderStatus.PAYMENT_FAILED)

        order.mark_paid()

        assert order.status == OrderStatus.PENDING_VENDOR_CONFIRMATION

    def test_vendor_confirm(self):
        """Should record when the vendor accepted."""
        order = OrderFactory(status=OrderStatus.PENDING_VENDOR_CONFIRMATION, paid_at=timezone.now())

        order.confirm_by_vendor()

        assert order.status == OrderStatus.VENDOR_CONFIRMED
        assert order.confirmed_at is not None

    @freeze_time("2026-03-02 09:00:00")
    def test_ship_schedules_auto_release(self):
        """Should set tracking and an auto-release three days out."""
        order = OrderFactory(status=OrderStatus.VENDOR_CONFIRMED)

        order.ship(tracking_number="G4S-12345")

        assert order.status == OrderStatus.SHIPPED
        assert order.tracking_number == "G4S-12345"
        assert order.auto_release_at == timezone.now() + timedelta(days=3)

    def test_complete_from_shipped_backfills_delivery(self):
        """Should treat completion without a delivery scan as delivered."""
        order = OrderFactory(status=OrderStatus.SHIPPED)

        order.complete(buyer_confirmed=False)

        assert order.status == OrderStatus.COMPLETED
        assert order.buyer_confirmed is False
        assert order.delivered_at == order.completed_at

    def test_complete_from_delivered_keeps_delivery_time(self):
        """Should keep the recorded delivery time."""
        delivered_at = timezone.now() - timedelta(days=1)
        order = OrderFactory(status=OrderStatus.DELIVERED, delivered_at=delivered_at)

        order.complete()

        assert order.buyer_confirmed is True
        assert order.delivered_at == delivered_at


@pytest.mark.django_db
class TestOrderDisputeAndCancel:
    def test_dispute_from_delivered(self):
        """Should record the buyer's reason."""
        order = OrderFactory(status=OrderStatus.DELIVERED)

        order.dispute(reason="Wrong size")

        assert order.status == OrderStatus.DISPUTED
        assert order.dispute_reason == "Wrong size"
        assert order.disputed_at is not None

    def test_resolve_release(self):
        """Should complete a disputed order in the vendor's favour."""
        order = OrderFactory(status=OrderStatus.DISPUTED)

        order.resolve_release(notes="Photos show item intact")

        assert order.status == OrderStatus.COMPLETED
        assert order.status_notes == "Photos show item intact"

    def test_resolve_refund(self):
        """Should refund a disputed order in the buyer's favour."""
        order = OrderFactory(status=OrderStatus.DISPUTED)

        order.resolve_refund(notes="Courier lost parcel")

        assert order.status == OrderStatus.REFUNDED
        assert order.refunded_at is not None

    @pytest.mark.parametrize(
        "status",
        [
            OrderStatus.PENDING_PAYMENT,
            OrderStatus.PENDING_VENDOR_CONFIRMATION,
            OrderStatus.VENDOR_CONFIRMED,
        ],
    )
    def test_cancel_before_shipment(self, status):
        """Should allow cancellation until the order ships."""
        order = OrderFactory(status=status)

        order.cancel(reason="Vendor out of stock")

        assert order.status == OrderStatus.CANCELLED
        assert order.status_notes == "Vendor out of stock"

    def test_refund_after_cancel(self):
        order = OrderFactory(status=OrderStatus.CANCELLED)

        order.refund()

        assert order.status == OrderStatus.REFUNDED


@pytest.mark.django_db
class TestOrderInvalidTransitions:
    """Transitions the state machine must refuse."""

    def test_cannot_ship_before_vendor_confirms(self):
        order = OrderFactory(status=OrderStatus.PENDING_VENDOR_CONFIRMATION)

        with pytest.raises(TransitionNotAllowed):
            order.ship()

    def test_cannot_complete_unshipped_order(self):
        """Should never skip shipment on the way to completion."""
        order = OrderFactory(status=OrderStatus.VENDOR_CONFIRMED)

        with pytest.raises(TransitionNotAllowed):
            order.complete()

    def test_cannot_cancel_shipped_order(self):
        order = OrderFactory(status=OrderStatus.SHIPPED)

        with pytest.raises(TransitionNotAllowed):
            order.cancel()

    def test_cannot_dispute_completed_order(self):
        order = OrderFactory(status=OrderStatus.COMPLETED)

        with pytest.raises(TransitionNotAllowed):
            order.dispute(reason="Changed my mind")

    def test_cannot_fail_paid_order(self):
        """Should ignore a late failure for an order that was already paid."""
        order = OrderFactory(status=OrderStatus.PENDING_VENDOR_CONFIRMATION)

        with pytest.raises(TransitionNotAllowed):
            order.mark_payment_failed()

    def test_status_cannot_be_assigned_directly(self):
        """Should only change status through transitions."""
        order = OrderFactory()

        with pytest.raises(AttributeError):
            order.status = OrderStatus.COMPLETED

    def test_refusal_is_reported_as_conflict(self):
        """Should describe the refused action with the 409 state-transition code."""
        order = OrderFactory(status=OrderStatus.COMPLETED)

        error = InvalidStateTransitionError.for_order(order, "confirm")

        assert isinstance(error, ConflictError)
        assert error.error_code == "INVALID_STATE_TRANSITION"
        assert error.message == "Cannot confirm order in 'completed' state"
        assert error.details["order_id"] == str(order.pk)


@pytest.mark.django_db
class TestOrderPricingAndProperties:
    def test_apply_pricing_keeps_money_invariants(self):
        """Should keep total = subtotal + fee and payout = total - commission."""
        order = OrderFactory()

        order.apply_pricing(Decimal("200"), commission_rate="12.5")

        assert order.total == Decimal("5200.00")
        assert order.commission_amount == Decimal("650.00")
        assert order.payout_amount == Decimal("4550.00")

    def test_reference_format(self):
        order = OrderFactory()

        assert order.reference.startswith("ORD-")
        assert len(order.reference) == 14

    def test_is_auto_release_due(self):
        """Should only be due for shipped or delivered orders past the deadline."""
        past = timezone.now() - timedelta(minutes=1)
        due = OrderFactory(status=OrderStatus.SHIPPED, auto_release_at=past)
        disputed = OrderFactory(status=OrderStatus.DISPUTED, auto_release_at=past)
        future = OrderFactory(status=OrderStatus.DELIVERED, auto_release_at=timezone.now() + timedelta(days=1))

        assert due.is_auto_release_due is True
        assert disputed.is_auto_release_due is False
        assert future.is_auto_release_due is False

    def test_subtotal_must_be_positive(self):
        """Should reject a zero subtotal at the database level."""
        from django.db import IntegrityError

        with pytest.raises(IntegrityError):
            OrderFactory(subtotal=Decimal("0.00"))

    def test_version_increments_on_save(self):
        order = OrderFactory()
        assert order.version == 1

        order.mark_paid()
        order.save()

        assert Order.objects.get(pk=order.pk).version == 2
