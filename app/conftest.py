"""
Project-wide pytest configuration.

pytest-django loads config.settings_test (see pyproject.toml). This module
auto-marks tests by filename and provides the fixtures shared by every app:
users, authenticated API clients, in-memory gateways, mocked Redis, and
orders in the states the settlement flow produces.

App-specific fixtures live in each app's tests/conftest.py.
"""

from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import UserFactory
from orders.state_machines import OrderStatus
from payments.gateways import reset_gateways, set_gateway
from payments.state_machines import Gateway
from payments.tests.factories import PayoutAccountFactory, create_paid_order
from payments.tests.fakes import FakeGateway


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (checkout-to-payout journeys)
    - test_views.py, test_*_service.py, test_tasks.py, etc. → integration
    - test_fees.py, test_schemas.py, test_pricing.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_service.py",
        "_service.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_sweeps.py",
        "test_completion.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_fees.py",
        "test_money.py",
        "test_pricing.py",
        "test_phone.py",
        "test_schemas.py",
        "test_locks.py",
        "test_state_transitions.py",
        "test_http.py",
        "test_tokens.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Users and API Clients
# =============================================================================


@pytest.fixture
def buyer(db):
    return UserFactory(full_name="Wanjiku Kamau", phone_number="0712345678")


@pytest.fixture
def vendor(db):
    return UserFactory(full_name="Mama Mboga Stores", phone_number="0722000111")


@pytest.fixture
def staff_user(db):
    return UserFactory(is_staff=True)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    """
    Build an APIClient authenticated with a real SimpleJWT access token.

    Usage:
        response = client_for(buyer).post(url, data, format="json")
    """

    def _client_for(user):
        client = APIClient()
        token = RefreshToken.for_user(user).access_token
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return _client_for


# =============================================================================
# Gateways and Redis
# =============================================================================


@pytest.fixture
def gateways():
    """
    Install a FakeGateway for every rail.

    Returns a dict of rail name -> FakeGateway.
    """
    fakes = {name: FakeGateway(name) for name in Gateway.values}
    for name, fake in fakes.items():
        set_gateway(name, fake)
    yield fakes
    reset_gateways()


@pytest.fixture
def mock_redis(mocker):
    """
    Mock the Redis connection used by DistributedLock.

    set() succeeds (lock free) and eval() reports a successful release.
    """
    redis_instance = MagicMock()
    redis_instance.set.return_value = True
    redis_instance.eval.return_value = 1
    mocker.patch("payments.locks.get_redis_connection", return_value=redis_instance)
    return redis_instance


# =============================================================================
# Orders in Settlement States
# =============================================================================


@pytest.fixture
def paid_order(buyer, vendor):
    """Paid order awaiting vendor confirmation, escrow HELD."""
    order, _, _ = create_paid_order(buyer=buyer, vendor=vendor)
    return order


@pytest.fixture
def confirmed_order(buyer, vendor):
    order, _, _ = create_paid_order(status=OrderStatus.VENDOR_CONFIRMED, buyer=buyer, vendor=vendor)
    return order


@pytest.fixture
def shipped_order(buyer, vendor):
    """Shipped order with auto-release three days out, escrow HELD."""
    order, _, _ = create_paid_order(status=OrderStatus.SHIPPED, buyer=buyer, vendor=vendor)
    return order


@pytest.fixture
def disputed_order(buyer, vendor):
    """Disputed order, escrow HELD and frozen."""
    order, _, _ = create_paid_order(
        status=OrderStatus.DISPUTED,
        buyer=buyer,
        vendor=vendor,
        dispute_reason="Item arrived damaged",
    )
    return order


@pytest.fixture
def payout_account(vendor):
    return PayoutAccountFactory(vendor=vendor)
