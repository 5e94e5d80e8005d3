"""
Pytest fixtures for Stripe adapter tests.

Sections:
    - Request Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

import uuid
from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe

from payments.adapters import ChargeRequest, get_processor_circuit


# =============================================================================
# Request Fixtures
# =============================================================================


@pytest.fixture
def charge_request():
    return ChargeRequest(
        payment_method_id="pm_test_card",
        amount_cents=5000,
        currency="usd",
        idempotency_key=f"recurring_charge:{uuid.uuid4()}:1:abcd1234",
        customer_id="cus_test_customer",
        metadata={"payment_record_id": "rec_1"},
    )


@pytest.fixture
def processor_circuit():
    circuit = get_processor_circuit()
    circuit.reset()
    return circuit


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    def _create(
        id: str = "pi_test123456",
        status: str = "succeeded",
        amount: int = 5000,
        currency: str = "usd",
        amount_received: int | None = None,
    ) -> MockStripeObject:
        if amount_received is None:
            amount_received = amount if status == "succeeded" else 0
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "amount_received": amount_received,
                "currency": currency,
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": "usd",
                "status": status,
                "payment_intent": payment_intent,
                "metadata": metadata or {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    return stripe.InvalidRequestError(
        message="No such PaymentMethod: 'pm_detached'",
        param="payment_method",
        code="resource_missing",
    )


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def timeout_error():
    return stripe.APIConnectionError(message="Request timed out after 10 seconds.")


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.retrieve.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock
