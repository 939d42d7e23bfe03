"""
End-to-end settlement journeys through the services.

Each test walks an order from cart to vendor payout with in-memory
gateways, checking the money at every hand-off.
"""

from decimal import Decimal

import pytest

from orders.models import Order, Product
from orders.services import CartLine, OrderCompletionService, OrderLifecycleService, OrderService
from orders.state_machines import OrderStatus
from orders.tests.factories import ProductFactory
from payments.gateways import COMPLETED, BillingInfo, DisburseResult
from payments.models import CommissionLedgerEntry, EscrowTransaction, Payment, Payout, VendorBalance
from payments.services import CheckoutService, PayoutService, ReconciliationService
from payments.services.reconciliation_service import CAPTURED
from payments.state_machines import EscrowStatus, Gateway, PaymentStatus, PayoutState, PayoutTrigger

NAKURU = {
    "recipient_name": "Wanjiku Kamau",
    "phone": "0712345678",
    "address_line1": "Plot 12, Moi Avenue",
    "city": "Nakuru",
    "county": "Nakuru",
}

BILLING = BillingInfo(phone="0712345678", email="wanjiku@example.com", first_name="Wanjiku", last_name="Kamau")


def place_and_pay(buyer, product, gateways, gateway=Gateway.MPESA) -> Order:
    order = OrderService.create_order(buyer, [CartLine(str(product.pk), 2)], NAKURU).data
    checkout = CheckoutService.start_checkout(order.pk, gateway, BILLING, buyer)
    assert checkout.success

    gateways[gateway].complete()
    result = ReconciliationService.reconcile(gateway, checkout.data.payment.transaction_reference)
    assert result.action == CAPTURED
    return Order.objects.get(pk=order.pk)


@pytest.mark.django_db
class TestCheckoutToPayout:
    def test_buyer_confirmation_pays_vendor(self, gateways, buyer, vendor, payout_account):
        """Should move 4,860 of a 5,400 order to the vendor and 540 to the platform."""
        product = ProductFactory(vendor=vendor, price=Decimal("2500.00"), stock=10)

        order = place_and_pay(buyer, product, gateways)
        assert order.status == OrderStatus.PENDING_VENDOR_CONFIRMATION
        escrow = EscrowTransaction.objects.get(order=order)
        assert escrow.status == EscrowStatus.HELD
        assert escrow.held_amount == Decimal("5400.00")

        assert OrderLifecycleService.vendor_action(order.pk, vendor, "confirm").success
        assert OrderLifecycleService.vendor_action(order.pk, vendor, "ship", tracking_number="G4S-99812").success

        completion = OrderCompletionService.complete_order(order.pk, buyer=buyer, rating=5, review="Fast delivery")
        assert completion.success
        assert completion.data.warnings == []

        order = Order.objects.get(pk=order.pk)
        assert order.status == OrderStatus.COMPLETED
        assert order.buyer_confirmed is True
        assert EscrowTransaction.objects.get(order=order).status == EscrowStatus.RELEASED
        assert Product.objects.get(pk=product.pk).stock == 8
        assert CommissionLedgerEntry.objects.get(order=order).commission_amount == Decimal("540.00")
        assert VendorBalance.objects.get(vendor=vendor).pending_balance == Decimal("4860.00")

        gateways["intasend"].disburse_result = DisburseResult(tracking_id="TRK-7731", status=COMPLETED)
        stats = PayoutService.run_auto_payout_sweep()

        assert stats["paid"] == 1
        assert stats["total_disbursed"] == "4860.00"
        assert gateways["intasend"].disburse_calls[0]["amount"] == Decimal("4860.00")

        entitlement = Payout.objects.get(order=order, trigger=PayoutTrigger.ORDER_RELEASE)
        assert entitlement.status == PayoutState.PAID
        assert entitlement.settled_by.tracking_reference == "TRK-7731"

        balance = VendorBalance.objects.get(vendor=vendor)
        assert balance.pending_balance == Decimal("0.00")
        assert balance.total_earned == Decimal("4860.00")
        assert balance.total_paid_out == Decimal("4860.00")

    def test_vendor_decline_refunds_buyer(self, gateways, buyer, vendor):
        """Should refund the captured payment and never credit the vendor."""
        product = ProductFactory(vendor=vendor, price=Decimal("2500.00"), stock=10)
        order = place_and_pay(buyer, product, gateways, gateway=Gateway.PAYSTACK)

        result = OrderLifecycleService.vendor_action(order.pk, vendor, "decline", reason="Out of stock at the shop")

        assert result.success
        assert Order.objects.get(pk=order.pk).status == OrderStatus.REFUNDED
        assert EscrowTransaction.objects.get(order=order).status == EscrowStatus.REFUNDED
        assert Payment.objects.get(order=order).status == PaymentStatus.REFUNDED
        assert len(gateways["paystack"].refund_calls) == 1
        assert not VendorBalance.objects.filter(vendor=vendor, pending_balance__gt=0).exists()
        assert Product.objects.get(pk=product.pk).stock == 10

    def test_dispute_resolved_for_vendor(self, gateways, buyer, vendor):
        """Should release a disputed order to the vendor once an admin rules for them."""
        product = ProductFactory(vendor=vendor, price=Decimal("2500.00"), stock=10)
        order = place_and_pay(buyer, product, gateways)
        OrderLifecycleService.vendor_action(order.pk, vendor, "confirm")
        OrderLifecycleService.vendor_action(order.pk, vendor, "ship")

        assert OrderLifecycleService.dispute(order.pk, buyer, "Wrong colour").success
        assert EscrowTransaction.objects.get(order=order).frozen is True
        assert not OrderCompletionService.complete_order(order.pk, buyer=buyer).success

        assert OrderLifecycleService.resolve_dispute(order.pk, "release", notes="Photos match listing").success

        assert Order.objects.get(pk=order.pk).status == OrderStatus.COMPLETED
        assert VendorBalance.objects.get(vendor=vendor).pending_balance == Decimal("4860.00")
