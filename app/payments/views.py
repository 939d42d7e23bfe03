"""
DRF views for payments app.

Endpoints:
    POST /api/v1/payments/checkout/              - Start (or resume) paying an order
    POST /api/v1/payments/delivery-fee/          - Collect an extra delivery fee
    GET  /api/v1/payments/balance/               - Vendor balance
    POST /api/v1/payments/payouts/withdraw/      - Manual "withdraw all"
    POST /api/v1/payments/pesapal/register-ipn/  - Register the Pesapal IPN (admin)
    GET/POST /api/v1/payments/jobs/<job>/        - Scheduled job triggers

Security:
    - User endpoints authenticate with SimpleJWT access tokens
    - Job triggers take no user and require X-Scheduler-Token
    - Webhooks live in payments.webhooks.views
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.views import failure_response, failure_status
from orders import tasks as order_tasks
from payments import tasks as payment_tasks
from payments.exceptions import GatewayConfigurationError, GatewayError
from payments.gateways import get_gateway
from payments.permissions import HasSchedulerToken
from payments.serializers import (
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    DeliveryFeeRequestSerializer,
    PayoutSerializer,
    RegisterIpnSerializer,
    VendorBalanceSerializer,
)
from payments.services import BalanceService, CheckoutService, PayoutService
from payments.state_machines import Gateway

logger = logging.getLogger(__name__)


# =============================================================================
# Collection
# =============================================================================


class CheckoutView(APIView):
    """
    Start collection of an order's total.

    POST /api/v1/payments/checkout/

    Calling again for the same order and gateway returns the pending
    attempt instead of charging twice.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="start_checkout",
        summary="Start checkout",
        request=CheckoutRequestSerializer,
        responses={
            201: OpenApiResponse(response=CheckoutResponseSerializer, description="Collection started"),
            400: OpenApiResponse(description="Validation error"),
            404: OpenApiResponse(description="Order not found"),
            409: OpenApiResponse(description="Order not payable or already paid"),
            502: OpenApiResponse(description="Gateway error"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = CheckoutService.start_checkout(
            data["order_id"],
            data["gateway"],
            serializer.billing_info(request.user),
            request.user,
        )
        if not result.success:
            return failure_response(result)

        return Response(
            CheckoutResponseSerializer(result.data).data,
            status=status.HTTP_200_OK if result.data.reused else status.HTTP_201_CREATED,
        )


class DeliveryFeeView(APIView):
    """
    Collect a delivery-fee top-up on a paid, unshipped order.

    POST /api/v1/payments/delivery-fee/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="start_delivery_fee",
        summary="Pay delivery fee",
        request=DeliveryFeeRequestSerializer,
        responses={
            201: OpenApiResponse(response=CheckoutResponseSerializer, description="Collection started"),
            400: OpenApiResponse(description="Validation error"),
            404: OpenApiResponse(description="Order not found"),
            409: OpenApiResponse(description="Order not in a state that takes a delivery fee"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = DeliveryFeeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = CheckoutService.start_delivery_fee(
            data["order_id"],
            data["amount"],
            data["gateway"],
            serializer.billing_info(request.user),
            request.user,
        )
        if not result.success:
            return failure_response(result)

        return Response(
            CheckoutResponseSerializer(result.data).data,
            status=status.HTTP_200_OK if result.data.reused else status.HTTP_201_CREATED,
        )


# =============================================================================
# Balance and Payouts
# =============================================================================


class VendorBalanceView(APIView):
    """
    GET /api/v1/payments/balance/

    Balance of the authenticated vendor, with a manual withdrawal preview.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_vendor_balance",
        summary="Vendor balance",
        responses={200: VendorBalanceSerializer},
        tags=["Payouts"],
    )
    def get(self, request):
        balance = BalanceService.get_or_create(request.user)
        return Response(VendorBalanceSerializer(balance).data)


class WithdrawView(APIView):
    """
    Withdraw the whole balance.

    POST /api/v1/payments/payouts/withdraw/

    No body: the vendor is the authenticated user and the amount is always
    the full pending balance.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="withdraw_balance",
        summary="Withdraw all",
        request=None,
        responses={
            201: OpenApiResponse(response=PayoutSerializer, description="Payout sent or processing"),
            400: OpenApiResponse(description="Below minimum, fee exceeds balance, or no payout account"),
            409: OpenApiResponse(description="Balance changed concurrently"),
            502: OpenApiResponse(description="Gateway rejected the transfer; balance restored"),
        },
        tags=["Payouts"],
    )
    def post(self, request):
        result = PayoutService.request_manual_payout(request.user)
        if not result.success:
            return failure_response(result)
        return Response(PayoutSerializer(result.data).data, status=status.HTTP_201_CREATED)


# =============================================================================
# Admin
# =============================================================================


class RegisterPesapalIpnView(APIView):
    """
    POST /api/v1/payments/pesapal/register-ipn/

    Registers PESAPAL_IPN_URL (or the given url) and stores the ipn_id used
    by every SubmitOrderRequest.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="register_pesapal_ipn",
        summary="Register Pesapal IPN",
        request=RegisterIpnSerializer,
        responses={
            200: OpenApiResponse(description="IPN registered"),
            502: OpenApiResponse(description="Pesapal error"),
        },
        tags=["Payments - Admin"],
    )
    def post(self, request):
        serializer = RegisterIpnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            ipn_id = get_gateway(Gateway.PESAPAL).register_ipn(
                url=data["url"] or None,
                notification_type=data["notification_type"],
            )
        except (GatewayError, GatewayConfigurationError) as e:
            logger.warning("Pesapal IPN registration failed", extra={"error": str(e)})
            return Response(e.to_dict(), status=failure_status(e.error_code))

        return Response({"ipn_id": ipn_id, "notification_type": data["notification_type"]})


# =============================================================================
# Scheduled Job Triggers
# =============================================================================


class JobTriggerView(APIView):
    """
    Runs one scheduled job synchronously and returns its stats.

    Each job is also a Celery beat task; both paths share the sweep lock,
    so overlapping runs are skipped.
    """

    authentication_classes = []
    permission_classes = [HasSchedulerToken]
    job_name: str = ""
    task = None

    def run(self, request):
        logger.info("Scheduled job triggered over HTTP", extra={"job": self.job_name})
        stats = self.task()
        return Response({"job": self.job_name, "stats": stats})

    @extend_schema(request=None, responses={200: OpenApiResponse(description="Job stats")}, tags=["Jobs"])
    def get(self, request):
        return self.run(request)

    @extend_schema(request=None, responses={200: OpenApiResponse(description="Job stats")}, tags=["Jobs"])
    def post(self, request):
        return self.run(request)


class AutoPayoutJobView(JobTriggerView):
    job_name = "auto-payout"
    task = staticmethod(payment_tasks.run_auto_payout_sweep)


class AutoReleaseJobView(JobTriggerView):
    job_name = "auto-release"
    task = staticmethod(order_tasks.run_auto_release_sweep)


class CancelStaleOrdersJobView(JobTriggerView):
    job_name = "cancel-stale-orders"
    task = staticmethod(order_tasks.cancel_stale_orders)


class RefundUnshippedOrdersJobView(JobTriggerView):
    job_name = "refund-unshipped-orders"
    task = staticmethod(order_tasks.refund_unshipped_orders)
