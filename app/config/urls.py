"""
URL configuration for the recurring payments backend.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint
    /schema/                       - OpenAPI schema
    /api/v1/auth/token/            - Obtain JWT pair
    /api/v1/auth/token/refresh/    - Refresh JWT
    /api/v1/payments/              - Payment endpoints
        payment-records/                       - List own payment records
        payment-records/stats/                 - Payment totals for the caller
        payment-records/{id}/                  - Payment record detail
        payment-records/{id}/retry/            - Manual retry
        payment-records/{id}/cancel/           - Cancel pending/failed record
        agreements/{id}/payment-method/        - Replace payment method
        agreements/{id}/resume/                - Resume paused agreement
        bookings/{id}/payment/                 - Confirm payment, hold funds
        bookings/{id}/complete/                - Complete booking, schedule payout
        bookings/{id}/refund-eligibility/      - Refund quote
        bookings/{id}/refund-requests/         - Submit refund request
        refund-requests/{id}/cancel/           - Withdraw refund request
        payout-schedules/{id}/early-payout/    - Request early payout
        wallet/                                - Provider wallet balance
    /api/v1/notifications/         - In-app notifications
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

api_v1_patterns = [
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("notifications/", include("notifications.urls")),
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Recurring Payments Admin"
admin.site.site_title = "Payments Admin"
admin.site.index_title = "Payments administration"
