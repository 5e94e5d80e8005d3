"""
API tests for payment endpoints.

Test Classes:
    TestPaymentRecordList: GET /api/v1/payments/payment-records/
    TestPaymentRecordActions: retry, cancel and stats
    TestAgreementActions: payment method replacement and resume
    TestBookingEndpoints: booking payment and completion
    TestRefundEndpoints: refund eligibility, requests and withdrawal
    TestPayoutEndpoints: early payout and wallet
"""

from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework import status

from bookings.tests.factories import BookingFactory, UserFactory
from payments.adapters import PaymentIntentResult
from payments.services.escrow_settlement import EscrowSettlementService
from payments.services.refund_eligibility import NO_REFUND_REASON
from payments.state_machines import (
    EscrowHoldStatus,
    PaymentRecordStatus,
    PayoutStatus,
    RefundRequestStatus,
)
from payments.tests.factories import PaymentRecordFactory, RefundRequestFactory


@pytest.fixture
def customer_client(authenticated_client_factory, customer):
    return authenticated_client_factory(customer)


@pytest.fixture
def provider_client(authenticated_client_factory, provider):
    return authenticated_client_factory(provider)


@pytest.fixture
def mock_tasks(mocker):
    mocker.patch("payments.tasks.process_refund_request.delay")
    mocker.patch("payments.tasks.settle_early_payout.delay")


@pytest.mark.django_db
class TestPaymentRecordList:
    def test_returns_only_own_records(self, customer_client, agreement):
        own = PaymentRecordFactory(agreement=agreement)
        PaymentRecordFactory()

        response = customer_client.get(reverse("payments:payment-record-list"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 1
        assert response.data["results"][0]["id"] == str(own.id)

    def test_filters_by_status(self, customer_client, agreement):
        today = timezone.localdate()
        PaymentRecordFactory(agreement=agreement, billing_date=today)
        failed = PaymentRecordFactory(
            agreement=agreement, billing_date=today - timedelta(days=7), failed=True
        )

        response = customer_client.get(
            reverse("payments:payment-record-list"), {"status": PaymentRecordStatus.FAILED}
        )

        assert [r["id"] for r in response.data["results"]] == [str(failed.id)]

    def test_detail_hides_internal_fields(self, customer_client, agreement):
        record = PaymentRecordFactory(agreement=agreement)

        response = customer_client.get(
            reverse("payments:payment-record-detail", kwargs={"pk": record.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PaymentRecordStatus.PENDING
        assert "attempt_count" not in response.data
        assert "metadata" not in response.data

    def test_other_users_record_is_not_found(self, customer_client):
        record = PaymentRecordFactory()

        response = customer_client.get(
            reverse("payments:payment-record-detail", kwargs={"pk": record.id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_requires_authentication(self, db, api_client):
        response = api_client.get(reverse("payments:payment-record-list"))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestPaymentRecordActions:
    def test_retry_failed_record(self, customer_client, agreement, fake_processor):
        record = PaymentRecordFactory(agreement=agreement, failed=True)

        response = customer_client.post(
            reverse("payments:payment-record-retry", kwargs={"pk": record.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PaymentRecordStatus.SUCCEEDED
        assert response.data["retry_count"] == 0

    def test_retry_succeeded_record_conflicts(self, customer_client, agreement, fake_processor):
        record = PaymentRecordFactory(agreement=agreement, succeeded=True)

        response = customer_client.post(
            reverse("payments:payment-record-retry", kwargs={"pk": record.id})
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["success"] is False
        assert response.data["error_code"] == "INVALID_STATE_TRANSITION"

    def test_cancel(self, customer_client, agreement):
        record = PaymentRecordFactory(agreement=agreement)

        response = customer_client.post(
            reverse("payments:payment-record-cancel", kwargs={"pk": record.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PaymentRecordStatus.CANCELLED

    def test_stats(self, customer_client, agreement):
        PaymentRecordFactory(agreement=agreement, succeeded=True)

        response = customer_client.get(reverse("payments:payment-record-stats"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total_paid_cents"] == 5000
        assert response.data["success_rate"] == 100.0


@pytest.mark.django_db
class TestAgreementActions:
    def test_replace_payment_method(self, customer_client, agreement):
        response = customer_client.post(
            reverse("payments:agreement-payment-method", kwargs={"pk": agreement.id}),
            {"payment_method_id": "pm_new_card"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["payment_method_id"] == "pm_new_card"

    def test_rejects_malformed_payment_method(self, customer_client, agreement):
        response = customer_client.post(
            reverse("payments:agreement-payment-method", kwargs={"pk": agreement.id}),
            {"payment_method_id": "card_123"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_resume(self, customer_client, agreement):
        agreement.pause("Your card was declined.")
        agreement.save()

        response = customer_client.post(
            reverse("payments:agreement-resume", kwargs={"pk": agreement.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_active"] is True

    def test_provider_cannot_touch_customer_agreement(self, provider_client, agreement):
        response = provider_client.post(
            reverse("payments:agreement-resume", kwargs={"pk": agreement.id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.fixture
def paid_intent(mocker):
    intent = PaymentIntentResult(
        id="pi_booking_paid",
        status="succeeded",
        amount_cents=10000,
        currency="usd",
        amount_received_cents=10000,
    )
    mocker.patch(
        "payments.services.escrow_settlement.StripeAdapter.retrieve_payment_intent",
        return_value=intent,
    )
    return intent


@pytest.mark.django_db
class TestBookingEndpoints:
    def test_record_payment(self, customer_client, booking, paid_intent):
        response = customer_client.post(
            reverse("payments:booking-payment", kwargs={"pk": booking.id}),
            {"payment_intent_id": paid_intent.id},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == EscrowHoldStatus.HELD
        assert response.data["amount_cents"] == 10000
        assert response.data["booking_id"] == str(booking.id)

    def test_payment_id_must_be_a_payment_intent(self, customer_client, booking, paid_intent):
        response = customer_client.post(
            reverse("payments:booking-payment", kwargs={"pk": booking.id}),
            {"payment_intent_id": "ch_123"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "payment_intent_id" in response.data

    def test_second_payment_conflicts(self, customer_client, paid_booking, paid_intent):
        response = customer_client.post(
            reverse("payments:booking-payment", kwargs={"pk": paid_booking.id}),
            {"payment_intent_id": paid_intent.id},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "ALREADY_PAID"

    def test_paid_booking_can_be_cancelled_for_a_refund(
        self, customer_client, booking, paid_intent, mock_tasks
    ):
        customer_client.post(
            reverse("payments:booking-payment", kwargs={"pk": booking.id}),
            {"payment_intent_id": paid_intent.id},
            format="json",
        )

        response = customer_client.post(
            reverse("payments:booking-refund-requests", kwargs={"pk": booking.id}),
            {"reason": "Plans changed"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["refund_amount_cents"] == 10000

    def test_complete_booking(self, provider_client, customer, provider):
        booking = BookingFactory(
            customer=customer,
            provider=provider,
            scheduled_date=timezone.localdate() - timedelta(days=1),
        )
        EscrowSettlementService.hold_funds(booking)

        response = provider_client.post(
            reverse("payments:booking-complete", kwargs={"pk": booking.id})
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["booking_id"] == str(booking.id)
        assert response.data["payout_status"] == PayoutStatus.PENDING
        assert response.data["payout_amount_cents"] == 8500

    def test_customer_cannot_complete(self, customer_client, paid_booking):
        response = customer_client.post(
            reverse("payments:booking-complete", kwargs={"pk": paid_booking.id})
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "NOT_OWNER"

    def test_future_booking_cannot_be_completed(self, provider_client, paid_booking):
        response = provider_client.post(
            reverse("payments:booking-complete", kwargs={"pk": paid_booking.id})
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "BOOKING_NOT_STARTED"


@pytest.mark.django_db
class TestRefundEndpoints:
    def test_eligibility_defaults_to_callers_role(self, customer_client, booking):
        response = customer_client.get(
            reverse("payments:booking-refund-eligibility", kwargs={"pk": booking.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["eligible"] is True
        assert response.data["refund_percentage"] == 100
        assert response.data["days_until_service"] == 10

    def test_eligibility_same_day_for_customer(self, customer_client, customer, provider):
        booking = BookingFactory(
            customer=customer, provider=provider, scheduled_date=timezone.localdate()
        )

        response = customer_client.get(
            reverse("payments:booking-refund-eligibility", kwargs={"pk": booking.id})
        )

        assert response.data["eligible"] is False
        assert response.data["reason"] == NO_REFUND_REASON

    def test_eligibility_as_provider(self, provider_client, customer, provider):
        booking = BookingFactory(
            customer=customer, provider=provider, scheduled_date=timezone.localdate()
        )

        response = provider_client.get(
            reverse("payments:booking-refund-eligibility", kwargs={"pk": booking.id})
        )

        assert response.data["refund_percentage"] == 100

    def test_eligibility_rejects_unknown_party(self, customer_client, booking):
        response = customer_client.get(
            reverse("payments:booking-refund-eligibility", kwargs={"pk": booking.id}),
            {"as": "platform"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_eligibility_hidden_from_strangers(self, authenticated_client_factory, booking):
        client = authenticated_client_factory(UserFactory())

        response = client.get(
            reverse("payments:booking-refund-eligibility", kwargs={"pk": booking.id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_create_refund_request(self, customer_client, paid_booking, mock_tasks):
        response = customer_client.post(
            reverse("payments:booking-refund-requests", kwargs={"pk": paid_booking.id}),
            {"reason": "Plans changed"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == RefundRequestStatus.PENDING
        assert response.data["refund_amount_cents"] == 10000
        assert response.data["reason"] == "Plans changed"

    def test_ineligible_refund_request(self, customer_client, customer, provider, mock_tasks):
        booking = BookingFactory(
            customer=customer, provider=provider, scheduled_date=timezone.localdate()
        )

        response = customer_client.post(
            reverse("payments:booking-refund-requests", kwargs={"pk": booking.id}),
            {},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "REFUND_NOT_ELIGIBLE"
        assert response.data["error"] == NO_REFUND_REASON

    def test_withdraw_refund_request(self, customer_client, booking, customer):
        refund = RefundRequestFactory(booking=booking, requested_by=customer)

        response = customer_client.post(
            reverse("payments:refund-request-cancel", kwargs={"pk": refund.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == RefundRequestStatus.CANCELLED

    def test_refund_request_detail(self, customer_client, booking, customer):
        refund = RefundRequestFactory(booking=booking, requested_by=customer)

        response = customer_client.get(
            reverse("payments:refund-request-detail", kwargs={"pk": refund.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["booking_id"] == str(booking.id)


@pytest.mark.django_db
class TestPayoutEndpoints:
    def test_request_early_payout(self, provider_client, payout_schedule, mock_tasks):
        response = provider_client.post(
            reverse("payments:payout-schedule-early-payout", kwargs={"pk": payout_schedule.id})
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["payout_status"] == PayoutStatus.PROCESSING
        assert response.data["early_payout_requested"] is True

    def test_second_request_conflicts(self, provider_client, payout_schedule, mock_tasks):
        url = reverse("payments:payout-schedule-early-payout", kwargs={"pk": payout_schedule.id})
        provider_client.post(url)

        response = provider_client.post(url)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_PAYOUT_STATE"

    def test_customer_cannot_see_payout(self, customer_client, payout_schedule):
        response = customer_client.get(
            reverse("payments:payout-schedule-detail", kwargs={"pk": payout_schedule.id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_wallet(self, provider_client):
        response = provider_client.get(reverse("payments:wallet"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {
            "balance_cents": 0,
            "currency": "usd",
            "balance_display": "$0.00 USD",
        }
