"""
API views for orders.

Provides:
- OrderCreateView: Create an order from cart items
- OrderConfirmView: Buyer confirms receipt, releasing escrow
- OrderDisputeView: Buyer opens a dispute, freezing escrow
- VendorActionView: Vendor confirms, ships, delivers, or declines
- ResolveDisputeView: Admin releases or refunds a disputed order
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.views import failure_response
from orders.serializers import (
    CompletionSerializer,
    ConfirmOrderSerializer,
    CreateOrderSerializer,
    DisputeOrderSerializer,
    OrderSerializer,
    ResolveDisputeSerializer,
    VendorActionSerializer,
)
from orders.services import OrderCompletionService, OrderLifecycleService, OrderService
from orders.state_machines import VendorAction

TRANSITION_RESPONSES = {
    400: OpenApiResponse(description="Validation error"),
    403: OpenApiResponse(description="Not a participant in this order"),
    404: OpenApiResponse(description="Order not found"),
    409: OpenApiResponse(description="Order is not in a state that allows this"),
}


class OrderCreateView(APIView):
    """
    Create an order.

    POST /api/v1/orders/

    Authentication:
        Requires valid JWT token. The buyer is the authenticated user.

    Response:
        201 Created: Order in pending_payment with server-computed totals
        400 Bad Request: Empty cart, unknown or unavailable products,
            mixed vendors, or insufficient stock
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_order",
        summary="Create order",
        request=CreateOrderSerializer,
        responses={
            201: OpenApiResponse(response=OrderSerializer, description="Order created"),
            400: OpenApiResponse(description="Cart or address invalid"),
        },
        tags=["Orders"],
    )
    def post(self, request):
        serializer = CreateOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderService.create_order(
            buyer=request.user,
            lines=serializer.cart_lines(),
            shipping=dict(serializer.validated_data["shipping_address"]),
        )
        if not result.success:
            return failure_response(result)

        return Response(OrderSerializer(result.data).data, status=status.HTTP_201_CREATED)


class OrderConfirmView(APIView):
    """
    Buyer confirmation.

    POST /api/v1/orders/{order_id}/confirm/

    Completes the order, releases escrow to the vendor balance, and
    optionally records a rating. Stock or rating problems never undo the
    completion; they come back as warnings.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_order",
        summary="Confirm receipt",
        request=ConfirmOrderSerializer,
        responses={200: CompletionSerializer, **TRANSITION_RESPONSES},
        tags=["Orders"],
    )
    def post(self, request, order_id):
        serializer = ConfirmOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderCompletionService.complete_order(
            order_id,
            buyer=request.user,
            rating=serializer.validated_data["rating"],
            review=serializer.validated_data["review"],
        )
        if not result.success:
            return failure_response(result)

        return Response(CompletionSerializer(result.data).data)


class OrderDisputeView(APIView):
    """POST /api/v1/orders/{order_id}/dispute/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="dispute_order",
        summary="Open dispute",
        request=DisputeOrderSerializer,
        responses={200: OrderSerializer, **TRANSITION_RESPONSES},
        tags=["Orders"],
    )
    def post(self, request, order_id):
        serializer = DisputeOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderLifecycleService.dispute(order_id, request.user, serializer.validated_data["reason"])
        if not result.success:
            return failure_response(result)

        return Response(OrderSerializer(result.data).data)


class VendorActionView(APIView):
    """
    Vendor actions.

    POST /api/v1/orders/{order_id}/vendor/{action}/

    action is one of confirm, ship, deliver, decline. Declining a paid
    order refunds the buyer.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="vendor_order_action",
        summary="Vendor action",
        request=VendorActionSerializer,
        responses={200: OrderSerializer, **TRANSITION_RESPONSES},
        tags=["Orders - Vendor"],
    )
    def post(self, request, order_id, action):
        if action not in VendorAction.values:
            return Response(
                {"success": False, "error": f"Unknown vendor action '{action}'", "error_code": "NOT_FOUND"},
                status=status.HTTP_404_NOT_FOUND,
            )

        serializer = VendorActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderLifecycleService.vendor_action(
            order_id,
            request.user,
            action,
            tracking_number=serializer.validated_data["tracking_number"],
            reason=serializer.validated_data["reason"],
        )
        if not result.success:
            return failure_response(result)

        return Response(OrderSerializer(result.data).data)


class ResolveDisputeView(APIView):
    """
    Admin dispute resolution.

    POST /api/v1/orders/{order_id}/resolve/

    release: escrow goes to the vendor and the order completes.
    refund: escrow is refunded and the gateway is asked to refund the buyer.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="resolve_dispute",
        summary="Resolve dispute",
        request=ResolveDisputeSerializer,
        responses={200: OrderSerializer, **TRANSITION_RESPONSES},
        tags=["Orders - Admin"],
    )
    def post(self, request, order_id):
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderLifecycleService.resolve_dispute(
            order_id,
            serializer.validated_data["resolution"],
            notes=serializer.validated_data["notes"],
        )
        if not result.success:
            return failure_response(result)

        return Response(OrderSerializer(result.data).data)
