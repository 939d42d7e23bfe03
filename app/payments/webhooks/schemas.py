"""
Webhook payload schemas.

Every inbound delivery is validated by a strict per-gateway DRF serializer
and turned into exactly one variant of WebhookPayload. Anything without a
usable reference, or with a shape we do not act on, becomes IgnoredPayload
so the view can answer 200 without touching the database.

    WebhookPayload = (
        MpesaStkCallback | MpesaB2CResult | PesapalNotification
        | IntaSendInvoiceEvent | PaystackChargeEvent
        | StripePaymentIntentEvent | IgnoredPayload
    )

Usage:
    from payments.webhooks.schemas import IgnoredPayload, parse_payload

    payload = parse_payload(Gateway.PESAPAL, request.GET.dict())
    if isinstance(payload, IgnoredPayload):
        return HttpResponse(status=200)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Union

from rest_framework import serializers

from payments.state_machines import Gateway


# =============================================================================
# Payload Variants
# =============================================================================


@dataclass(frozen=True)
class MpesaStkCallback:
    """Lipa na M-Pesa Online (STK push) result."""

    gateway: ClassVar[str] = Gateway.MPESA
    event_type: ClassVar[str] = "stk_callback"

    checkout_request_id: str
    merchant_request_id: str
    result_code: int
    result_desc: str

    @property
    def reference(self) -> str:
        return self.checkout_request_id

    @property
    def verify_reference(self) -> str | None:
        return None


@dataclass(frozen=True)
class MpesaB2CResult:
    """Result of a B2C disbursement (vendor payout)."""

    gateway: ClassVar[str] = Gateway.MPESA
    event_type: ClassVar[str] = "b2c_result"

    conversation_id: str
    originator_conversation_id: str
    result_code: int
    result_desc: str

    @property
    def reference(self) -> str:
        return self.conversation_id

    @property
    def verify_reference(self) -> str | None:
        return None


@dataclass(frozen=True)
class PesapalNotification:
    """Pesapal IPN or browser callback parameters."""

    gateway: ClassVar[str] = Gateway.PESAPAL
    event_type: ClassVar[str] = "ipn"

    order_tracking_id: str
    merchant_reference: str
    notification_type: str

    @property
    def reference(self) -> str:
        return self.order_tracking_id

    @property
    def verify_reference(self) -> str | None:
        return self.order_tracking_id


@dataclass(frozen=True)
class IntaSendInvoiceEvent:
    """
    IntaSend collection webhook.

    Payments are stored under our api_ref; the status endpoint is queried
    by invoice id.
    """

    gateway: ClassVar[str] = Gateway.INTASEND
    event_type: ClassVar[str] = "invoice"

    invoice_id: str
    api_ref: str
    state: str
    challenge: str

    @property
    def reference(self) -> str:
        return self.api_ref

    @property
    def verify_reference(self) -> str | None:
        return self.invoice_id


@dataclass(frozen=True)
class PaystackChargeEvent:
    gateway: ClassVar[str] = Gateway.PAYSTACK

    event: str
    transaction_reference: str

    @property
    def event_type(self) -> str:
        return self.event

    @property
    def reference(self) -> str:
        return self.transaction_reference

    @property
    def verify_reference(self) -> str | None:
        return None


@dataclass(frozen=True)
class StripePaymentIntentEvent:
    gateway: ClassVar[str] = Gateway.STRIPE

    event_id: str
    stripe_event_type: str
    payment_intent_id: str

    @property
    def event_type(self) -> str:
        return self.stripe_event_type

    @property
    def reference(self) -> str:
        return self.payment_intent_id

    @property
    def verify_reference(self) -> str | None:
        return None


@dataclass(frozen=True)
class IgnoredPayload:
    """A delivery we acknowledge but do not act on."""

    event_type: ClassVar[str] = "ignored"

    gateway: str
    reason: str

    @property
    def reference(self) -> str:
        return ""

    @property
    def verify_reference(self) -> str | None:
        return None


WebhookPayload = Union[
    MpesaStkCallback,
    MpesaB2CResult,
    PesapalNotification,
    IntaSendInvoiceEvent,
    PaystackChargeEvent,
    StripePaymentIntentEvent,
    IgnoredPayload,
]


# =============================================================================
# Serializers
# =============================================================================


class MpesaStkCallbackSerializer(serializers.Serializer):
    MerchantRequestID = serializers.CharField(required=False, allow_blank=True, default="")
    CheckoutRequestID = serializers.CharField()
    ResultCode = serializers.IntegerField()
    ResultDesc = serializers.CharField(required=False, allow_blank=True, default="")


class MpesaStkBodySerializer(serializers.Serializer):
    stkCallback = MpesaStkCallbackSerializer()


class MpesaStkEnvelopeSerializer(serializers.Serializer):
    """{"Body": {"stkCallback": {...}}}"""

    Body = MpesaStkBodySerializer()


class MpesaB2CResultSerializer(serializers.Serializer):
    ConversationID = serializers.CharField()
    OriginatorConversationID = serializers.CharField(required=False, allow_blank=True, default="")
    ResultCode = serializers.IntegerField()
    ResultDesc = serializers.CharField(required=False, allow_blank=True, default="")


class MpesaB2CEnvelopeSerializer(serializers.Serializer):
    """{"Result": {...}}"""

    Result = MpesaB2CResultSerializer()


class PesapalNotificationSerializer(serializers.Serializer):
    OrderTrackingId = serializers.CharField()
    OrderMerchantReference = serializers.CharField(required=False, allow_blank=True, default="")
    OrderNotificationType = serializers.CharField(required=False, allow_blank=True, default="")


class IntaSendInvoiceSerializer(serializers.Serializer):
    invoice_id = serializers.CharField()
    api_ref = serializers.CharField()
    state = serializers.CharField(required=False, allow_blank=True, default="")
    challenge = serializers.CharField(required=False, allow_blank=True, default="")


class PaystackDataSerializer(serializers.Serializer):
    reference = serializers.CharField()


class PaystackEventSerializer(serializers.Serializer):
    event = serializers.CharField()
    data = PaystackDataSerializer()


class StripeObjectSerializer(serializers.Serializer):
    id = serializers.CharField()
    object = serializers.CharField()


class StripeDataSerializer(serializers.Serializer):
    object = StripeObjectSerializer()


class StripeEventSerializer(serializers.Serializer):
    id = serializers.CharField()
    type = serializers.CharField()
    data = StripeDataSerializer()


# =============================================================================
# Parsers
# =============================================================================


def _validated(serializer_class: type[serializers.Serializer], data: dict) -> dict | None:
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        return None
    return serializer.validated_data


def _parse_mpesa(data: dict) -> WebhookPayload:
    if "Result" in data:
        validated = _validated(MpesaB2CEnvelopeSerializer, data)
        if validated is None:
            return IgnoredPayload(gateway=Gateway.MPESA, reason="Malformed B2C result")
        result = validated["Result"]
        return MpesaB2CResult(
            conversation_id=result["ConversationID"],
            originator_conversation_id=result["OriginatorConversationID"],
            result_code=result["ResultCode"],
            result_desc=result["ResultDesc"],
        )

    validated = _validated(MpesaStkEnvelopeSerializer, data)
    if validated is None:
        return IgnoredPayload(gateway=Gateway.MPESA, reason="Malformed STK callback")
    callback = validated["Body"]["stkCallback"]
    return MpesaStkCallback(
        checkout_request_id=callback["CheckoutRequestID"],
        merchant_request_id=callback["MerchantRequestID"],
        result_code=callback["ResultCode"],
        result_desc=callback["ResultDesc"],
    )


def _parse_pesapal(data: dict) -> WebhookPayload:
    validated = _validated(PesapalNotificationSerializer, data)
    if validated is None:
        return IgnoredPayload(gateway=Gateway.PESAPAL, reason="Missing OrderTrackingId")
    return PesapalNotification(
        order_tracking_id=validated["OrderTrackingId"],
        merchant_reference=validated["OrderMerchantReference"],
        notification_type=validated["OrderNotificationType"],
    )


def _parse_intasend(data: dict) -> WebhookPayload:
    validated = _validated(IntaSendInvoiceSerializer, data)
    if validated is None:
        return IgnoredPayload(gateway=Gateway.INTASEND, reason="Missing invoice_id or api_ref")
    return IntaSendInvoiceEvent(
        invoice_id=validated["invoice_id"],
        api_ref=validated["api_ref"],
        state=validated["state"],
        challenge=validated["challenge"],
    )


def _parse_paystack(data: dict) -> WebhookPayload:
    validated = _validated(PaystackEventSerializer, data)
    if validated is None:
        return IgnoredPayload(gateway=Gateway.PAYSTACK, reason="Missing event or data.reference")
    if not validated["event"].startswith("charge."):
        # transfer.* events are resolved by the payout status refresh
        return IgnoredPayload(gateway=Gateway.PAYSTACK, reason=f"Unhandled event {validated['event']}")
    return PaystackChargeEvent(
        event=validated["event"],
        transaction_reference=validated["data"]["reference"],
    )


def _parse_stripe(data: dict) -> WebhookPayload:
    validated = _validated(StripeEventSerializer, data)
    if validated is None:
        return IgnoredPayload(gateway=Gateway.STRIPE, reason="Malformed event")
    obj = validated["data"]["object"]
    if obj["object"] != "payment_intent":
        return IgnoredPayload(gateway=Gateway.STRIPE, reason=f"Unhandled event {validated['type']}")
    return StripePaymentIntentEvent(
        event_id=validated["id"],
        stripe_event_type=validated["type"],
        payment_intent_id=obj["id"],
    )


PARSERS: dict[str, Callable[[dict], WebhookPayload]] = {
    Gateway.MPESA: _parse_mpesa,
    Gateway.PESAPAL: _parse_pesapal,
    Gateway.INTASEND: _parse_intasend,
    Gateway.PAYSTACK: _parse_paystack,
    Gateway.STRIPE: _parse_stripe,
}


def parse_payload(gateway: str, data: Any) -> WebhookPayload:
    """
    Parse a decoded delivery body into a payload variant.

    Never raises for bad input: unknown gateways, non-object bodies and
    schema failures all come back as IgnoredPayload.
    """
    parser = PARSERS.get(gateway)
    if parser is None:
        return IgnoredPayload(gateway=gateway, reason=f"Unknown gateway {gateway}")
    if not isinstance(data, dict) or not data:
        return IgnoredPayload(gateway=gateway, reason="Empty or non-object body")
    return parser(data)
