"""
DRF serializers for payments app.

This module provides serializers for:
- Checkout and delivery-fee requests
- Payment, payout, and vendor balance responses
- Pesapal IPN registration (admin)

Related files:
    - views.py: Payment API views
    - webhooks/schemas.py: Strict serializers for inbound gateway payloads

Usage:
    serializer = CheckoutRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    billing = serializer.billing_info(request.user)
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.exceptions import PayoutRejectedError
from payments.fees import manual_payout_policy
from payments.gateways import BillingInfo
from payments.models import Payment, Payout, VendorBalance
from payments.services import PayoutService
from payments.state_machines import Gateway


# =============================================================================
# Requests
# =============================================================================


class BillingFieldsMixin(serializers.Serializer):
    """Customer details forwarded to the gateway's collect call."""

    phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    first_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    last_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    callback_url = serializers.URLField(required=False, allow_blank=True, default="")

    def billing_info(self, user=None) -> BillingInfo:
        """Build BillingInfo, falling back to the user's own details."""
        data = self.validated_data
        first_name, _, last_name = (getattr(user, "full_name", "") or "").partition(" ")
        return BillingInfo(
            phone=data["phone"] or getattr(user, "phone_number", ""),
            email=data["email"] or getattr(user, "email", ""),
            first_name=data["first_name"] or first_name,
            last_name=data["last_name"] or last_name,
            callback_url=data["callback_url"],
        )


class CheckoutRequestSerializer(BillingFieldsMixin):
    order_id = serializers.UUIDField()
    gateway = serializers.ChoiceField(choices=Gateway.choices)


class DeliveryFeeRequestSerializer(BillingFieldsMixin):
    order_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    gateway = serializers.ChoiceField(choices=Gateway.choices)


class RegisterIpnSerializer(serializers.Serializer):
    url = serializers.URLField(required=False, allow_blank=True, default="")
    notification_type = serializers.ChoiceField(choices=["GET", "POST"], default="GET")


# =============================================================================
# Responses
# =============================================================================


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "order",
            "gateway",
            "kind",
            "status",
            "amount",
            "currency",
            "merchant_reference",
            "transaction_reference",
            "attempts",
            "captured_at",
            "created_at",
        ]
        read_only_fields = fields


class CheckoutResponseSerializer(serializers.Serializer):
    """
    Checkout result returned to the client.

    collect carries what the client needs to finish paying: a redirect_url
    for hosted pages, a client_secret for Stripe, or a prompt message for
    push payments.
    """

    payment = PaymentSerializer()
    collect = serializers.DictField()
    reused = serializers.BooleanField()
    price_corrected = serializers.SerializerMethodField()

    def get_price_corrected(self, obj) -> bool:
        return bool(obj.price_check and obj.price_check.corrected)


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = [
            "id",
            "amount",
            "transfer_fee",
            "fee_paid_by",
            "balance_before",
            "status",
            "trigger",
            "method",
            "gateway",
            "tracking_reference",
            "paid_at",
            "failed_at",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class VendorBalanceSerializer(serializers.ModelSerializer):
    """
    Vendor balance with a preview of a manual "withdraw all".

    withdrawal.amount is what the vendor would receive after the manual
    transfer fee.
    """

    withdrawal = serializers.SerializerMethodField()

    class Meta:
        model = VendorBalance
        fields = [
            "pending_balance",
            "total_earned",
            "total_paid_out",
            "last_payout_at",
            "withdrawal",
        ]
        read_only_fields = fields

    def get_withdrawal(self, obj) -> dict:
        policy = manual_payout_policy()
        quote = policy.quote(obj.pending_balance)
        preview = {
            "minimum": str(policy.threshold),
            "fee": str(quote.fee),
            "amount": str(quote.amount),
            "fee_paid_by": quote.fee_paid_by,
            "eligible": True,
            "reason": "",
        }
        try:
            PayoutService.check_policy(quote.balance, policy)
        except PayoutRejectedError as e:
            preview.update(eligible=False, reason=e.message)
        return preview
