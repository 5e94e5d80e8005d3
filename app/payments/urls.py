"""
URL configuration for payments app.

Routes are registered on a DRF router under /api/v1/payments/.
See payments/views.py for the endpoint list.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from payments.views import (
    BookingViewSet,
    PaymentRecordViewSet,
    PayoutScheduleViewSet,
    RecurringAgreementViewSet,
    RefundRequestViewSet,
    WalletView,
)

app_name = "payments"

router = DefaultRouter()
router.register(r"payment-records", PaymentRecordViewSet, basename="payment-record")
router.register(r"agreements", RecurringAgreementViewSet, basename="agreement")
router.register(r"bookings", BookingViewSet, basename="booking")
router.register(r"refund-requests", RefundRequestViewSet, basename="refund-request")
router.register(r"payout-schedules", PayoutScheduleViewSet, basename="payout-schedule")

urlpatterns = [
    path("wallet/", WalletView.as_view(), name="wallet"),
    path("", include(router.urls)),
]
