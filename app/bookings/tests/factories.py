"""
Factory Boy factories for booking-side test data.

Usage:
    from bookings.tests.factories import BookingFactory, RecurringAgreementFactory

    booking = BookingFactory(scheduled_date=date(2025, 3, 20))
    agreement = RecurringAgreementFactory(customer=user)
"""

from datetime import timedelta

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone

from bookings.models import (
    BillingFrequency,
    Booking,
    BookingStatus,
    Dispute,
    DisputeStatus,
    RecurringAgreement,
    TransactionType,
)


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = get_user_model()
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class RecurringAgreementFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = RecurringAgreement

    customer = factory.SubFactory(UserFactory)
    provider = factory.SubFactory(UserFactory)
    payment_method_id = factory.Sequence(lambda n: f"pm_test_{n:08d}")
    stripe_customer_id = factory.Sequence(lambda n: f"cus_test_{n:08d}")
    amount_cents = 5000
    currency = "usd"
    frequency = BillingFrequency.WEEKLY
    next_billing_date = factory.LazyFunction(lambda: timezone.localdate())
    is_active = True


class BookingFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Booking

    customer = factory.SubFactory(UserFactory)
    provider = factory.SubFactory(UserFactory)
    transaction_type = TransactionType.SERVICE
    scheduled_date = factory.LazyFunction(
        lambda: timezone.localdate() + timedelta(days=10)
    )
    price_cents = 10000
    currency = "usd"
    stripe_payment_intent_id = factory.Sequence(lambda n: f"pi_test_{n:08d}")
    status = BookingStatus.CONFIRMED


class DisputeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Dispute

    booking = factory.SubFactory(BookingFactory)
    opened_by = factory.LazyAttribute(lambda o: o.booking.customer)
    status = DisputeStatus.OPEN
    reason = "Provider did not show up"
