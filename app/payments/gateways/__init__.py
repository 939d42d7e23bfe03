"""
Payment gateway adapters.

One PaymentGateway implementation per rail. Adapters are built lazily and
cached per process; a rail with missing credentials fails on first use
with GatewayConfigurationError without affecting the others.

Usage:
    from payments.gateways import get_gateway

    gateway = get_gateway("paystack")

    # In tests
    set_gateway("mpesa", fake_gateway)
    ...
    reset_gateways()
"""

from __future__ import annotations

import threading

from payments.exceptions import GatewayConfigurationError
from payments.gateways.base import (
    COMPLETED,
    FAILED,
    PENDING,
    BillingInfo,
    CollectResult,
    DisburseResult,
    PaymentGateway,
    PaymentStatusResult,
    RefundResult,
)
from payments.gateways.phone import normalize_phone
from payments.state_machines import Gateway


def _build(name: str) -> PaymentGateway:
    if name == Gateway.MPESA:
        from payments.gateways.mpesa import MpesaGateway

        return MpesaGateway()
    if name == Gateway.PESAPAL:
        from payments.gateways.pesapal import PesapalGateway

        return PesapalGateway()
    if name == Gateway.INTASEND:
        from payments.gateways.intasend import IntaSendGateway

        return IntaSendGateway()
    if name == Gateway.PAYSTACK:
        from payments.gateways.paystack import PaystackGateway

        return PaystackGateway()
    if name == Gateway.STRIPE:
        from payments.gateways.stripe_gateway import StripeGateway

        return StripeGateway()
    raise GatewayConfigurationError(f"Unknown gateway '{name}'", details={"gateway": name})


_instances: dict[str, PaymentGateway] = {}
_lock = threading.Lock()


def get_gateway(name: str) -> PaymentGateway:
    """Return the adapter for a rail, building it on first use."""
    with _lock:
        gateway = _instances.get(name)
        if gateway is None:
            gateway = _build(name)
            _instances[name] = gateway
        return gateway


def set_gateway(name: str, gateway: PaymentGateway | None) -> None:
    """Replace (or with None, drop) the adapter for a rail."""
    with _lock:
        if gateway is None:
            _instances.pop(name, None)
        else:
            _instances[name] = gateway


def reset_gateways() -> None:
    with _lock:
        _instances.clear()


__all__ = [
    "COMPLETED",
    "FAILED",
    "PENDING",
    "BillingInfo",
    "CollectResult",
    "DisburseResult",
    "PaymentGateway",
    "PaymentStatusResult",
    "RefundResult",
    "get_gateway",
    "normalize_phone",
    "reset_gateways",
    "set_gateway",
]
