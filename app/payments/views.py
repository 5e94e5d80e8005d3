"""
Views for payments API.

Endpoints:
    GET  /api/v1/payments/payment-records/                       - List own payment records
    GET  /api/v1/payments/payment-records/stats/                 - Totals and success rate
    GET  /api/v1/payments/payment-records/{id}/                  - Payment record detail
    POST /api/v1/payments/payment-records/{id}/retry/            - Manual retry
    POST /api/v1/payments/payment-records/{id}/cancel/           - Cancel pending/failed record
    POST /api/v1/payments/agreements/{id}/payment-method/        - Replace payment method
    POST /api/v1/payments/agreements/{id}/resume/                - Resume paused agreement
    POST /api/v1/payments/bookings/{id}/payment/                 - Confirm payment, hold funds
    POST /api/v1/payments/bookings/{id}/complete/                - Complete booking, schedule payout
    GET  /api/v1/payments/bookings/{id}/refund-eligibility/      - Refund quote (?as=customer|provider)
    POST /api/v1/payments/bookings/{id}/refund-requests/         - Cancel booking and request refund
    POST /api/v1/payments/refund-requests/{id}/cancel/           - Withdraw refund request
    POST /api/v1/payments/payout-schedules/{id}/early-payout/    - Request early payout
    GET  /api/v1/payments/wallet/                                - Wallet balance

Service failures are returned as {"success": false, "error": ..., "error_code": ...}
with a status code derived from the error code.
"""

from __future__ import annotations

from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
    OpenApiResponse,
)

from bookings.models import Booking, RecurringAgreement
from core.exceptions import BaseApplicationError
from core.services import ServiceResult
from payments.ledger.services import LedgerService
from payments.models import PaymentRecord, PayoutSchedule, RefundRequest
from payments.serializers import (
    BookingPaymentSerializer,
    EscrowHoldSerializer,
    PaymentMethodUpdateSerializer,
    PaymentRecordSerializer,
    PaymentStatsSerializer,
    PayoutScheduleSerializer,
    RecurringAgreementSerializer,
    RefundEligibilitySerializer,
    RefundRequestCreateSerializer,
    RefundRequestSerializer,
    WalletSerializer,
)
from payments.services.escrow_settlement import EscrowSettlementService
from payments.services.payment_record_store import PaymentRecordStore
from payments.services.reconciliation_service import ReconciliationService
from payments.services.recurring_billing import RecurringBillingService
from payments.services.refund_service import RefundService
from payments.state_machines import CancellingParty

ERROR_STATUS = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_OWNER": status.HTTP_403_FORBIDDEN,
    "PERMISSION_DENIED": status.HTTP_403_FORBIDDEN,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "INVALID_PAYOUT_STATE": status.HTTP_409_CONFLICT,
    "LOCK_ACQUISITION_FAILED": status.HTTP_409_CONFLICT,
    "ACTIVE_DISPUTES": status.HTTP_409_CONFLICT,
    "ALREADY_PAID": status.HTTP_409_CONFLICT,
    "INVALID_BOOKING_STATE": status.HTTP_409_CONFLICT,
    "ESCROW_NOT_HELD": status.HTTP_409_CONFLICT,
}


def failure_response(result: ServiceResult) -> Response:
    return Response(
        result.to_response(),
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def error_response(error: BaseApplicationError) -> Response:
    return Response(error.to_dict(), status=error.http_status)


# =============================================================================
# Payment Records
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_payment_records",
        summary="List payment records",
        description="Recurring charges billed to the authenticated user, newest first.",
        parameters=[
            OpenApiParameter(
                name="status",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by status",
                required=False,
            ),
        ],
        tags=["Payments"],
    ),
    retrieve=extend_schema(
        operation_id="get_payment_record",
        summary="Get payment record",
        tags=["Payments"],
    ),
)
class PaymentRecordViewSet(viewsets.ReadOnlyModelViewSet):
    """Users can only see payment records they pay."""

    permission_classes = [IsAuthenticated]
    serializer_class = PaymentRecordSerializer

    def get_queryset(self):
        queryset = PaymentRecord.objects.filter(payer=self.request.user).order_by("-billing_date")

        record_status = self.request.query_params.get("status")
        if record_status:
            queryset = queryset.filter(status=record_status)

        return queryset

    @extend_schema(
        operation_id="retry_payment_record",
        summary="Retry payment now",
        description=(
            "Reset the automatic retry window and charge the payment method immediately. "
            "Allowed for pending and failed records."
        ),
        request=None,
        responses={
            200: PaymentRecordSerializer,
            404: OpenApiResponse(description="Payment record not found"),
            409: OpenApiResponse(description="Record cannot be retried in its current state"),
        },
        tags=["Payments"],
    )
    @action(detail=True, methods=["post"])
    def retry(self, request, pk=None):
        record = self.get_object()
        result = ReconciliationService.manual_retry(record.id, requested_by=request.user)
        if not result.success:
            return failure_response(result)
        return Response(self.get_serializer(result.data).data)

    @extend_schema(
        operation_id="cancel_payment_record",
        summary="Cancel payment record",
        description="Cancel a pending or failed record. Cancelling twice is a no-op.",
        request=None,
        responses={
            200: PaymentRecordSerializer,
            409: OpenApiResponse(description="Record is processing or already succeeded"),
        },
        tags=["Payments"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        record = self.get_object()
        result = ReconciliationService.cancel(record.id)
        if not result.success:
            return failure_response(result)
        return Response(self.get_serializer(result.data).data)

    @extend_schema(
        operation_id="get_payment_stats",
        summary="Payment statistics",
        responses={200: PaymentStatsSerializer},
        tags=["Payments"],
    )
    @action(detail=False, methods=["get"])
    def stats(self, request):
        stats = PaymentRecordStore.stats_for_payer(request.user)
        return Response(PaymentStatsSerializer(stats).data)


# =============================================================================
# Recurring Agreements
# =============================================================================


class RecurringAgreementViewSet(viewsets.GenericViewSet):
    """Customer actions on their own recurring agreements."""

    permission_classes = [IsAuthenticated]
    serializer_class = RecurringAgreementSerializer

    def get_queryset(self):
        return RecurringAgreement.objects.filter(customer=self.request.user)

    @extend_schema(
        operation_id="update_agreement_payment_method",
        summary="Replace payment method",
        description="Use a new payment method for this agreement and its pending charges.",
        request=PaymentMethodUpdateSerializer,
        responses={200: RecurringAgreementSerializer},
        tags=["Recurring Agreements"],
    )
    @action(detail=True, methods=["post"], url_path="payment-method")
    def payment_method(self, request, pk=None):
        agreement = self.get_object()
        serializer = PaymentMethodUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RecurringBillingService.update_payment_method(
            agreement.id,
            serializer.validated_data["payment_method_id"],
            requested_by=request.user,
        )
        if not result.success:
            return failure_response(result)
        return Response(RecurringAgreementSerializer(result.data).data)

    @extend_schema(
        operation_id="resume_agreement",
        summary="Resume agreement",
        description="Re-activate an agreement paused after a failed payment.",
        request=None,
        responses={200: RecurringAgreementSerializer},
        tags=["Recurring Agreements"],
    )
    @action(detail=True, methods=["post"])
    def resume(self, request, pk=None):
        agreement = self.get_object()
        result = RecurringBillingService.resume_agreement(agreement.id, requested_by=request.user)
        if not result.success:
            return failure_response(result)
        return Response(RecurringAgreementSerializer(result.data).data)


# =============================================================================
# Bookings & Refunds
# =============================================================================


class BookingViewSet(viewsets.GenericViewSet):
    """Payment, completion and refunds for bookings the user is a party to."""

    permission_classes = [IsAuthenticated]
    serializer_class = RefundRequestSerializer

    def get_queryset(self):
        user = self.request.user
        return Booking.objects.filter(Q(customer=user) | Q(provider=user))

    @extend_schema(
        operation_id="record_booking_payment",
        summary="Confirm booking payment",
        description=(
            "Confirm the booking's PaymentIntent with Stripe and hold the funds in escrow. "
            "Sending the same PaymentIntent again returns the existing hold."
        ),
        request=BookingPaymentSerializer,
        responses={
            200: EscrowHoldSerializer,
            400: OpenApiResponse(description="PaymentIntent is not paid in full"),
            409: OpenApiResponse(description="Booking is already paid or not payable"),
        },
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"])
    def payment(self, request, pk=None):
        booking = self.get_object()
        serializer = BookingPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EscrowSettlementService.record_booking_payment(
            booking.id,
            serializer.validated_data["payment_intent_id"],
            requested_by=request.user,
        )
        if not result.success:
            return failure_response(result)
        return Response(EscrowHoldSerializer(result.data).data)

    @extend_schema(
        operation_id="complete_booking",
        summary="Complete booking",
        description=(
            "Mark the booking as delivered and schedule the provider payout. "
            "Only the provider can complete, and not before the booked slot starts."
        ),
        request=None,
        responses={
            201: PayoutScheduleSerializer,
            400: OpenApiResponse(description="Booking has not started yet"),
            409: OpenApiResponse(description="Booking is not paid or not open"),
        },
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        booking = self.get_object()
        result = EscrowSettlementService.complete_booking(booking.id, requested_by=request.user)
        if not result.success:
            return failure_response(result)
        return Response(PayoutScheduleSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="get_refund_eligibility",
        summary="Refund eligibility",
        description=(
            "Quote the refund for cancelling this booking now. Customers get 100% at 7+ days, "
            "50% at 3-6 days, 25% at 1-2 days and nothing within 24 hours. Provider "
            "cancellations are always refunded in full."
        ),
        parameters=[
            OpenApiParameter(
                name="as",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Cancelling party (customer or provider). Defaults to the caller's role.",
                required=False,
                enum=CancellingParty.values,
            ),
        ],
        responses={200: RefundEligibilitySerializer},
        tags=["Refunds"],
    )
    @action(detail=True, methods=["get"], url_path="refund-eligibility")
    def refund_eligibility(self, request, pk=None):
        booking = self.get_object()

        default_party = (
            CancellingParty.PROVIDER
            if booking.provider_id == request.user.pk
            else CancellingParty.CUSTOMER
        )
        cancelling_party = request.query_params.get("as", default_party)
        if cancelling_party not in CancellingParty.values:
            return Response(
                {"as": [f"Must be one of: {', '.join(CancellingParty.values)}."]},
                status=status.HTTP_400_BAD_REQUEST,
            )

        eligibility = RefundService.check_eligibility(booking, cancelling_party)
        return Response(RefundEligibilitySerializer(eligibility).data)

    @extend_schema(
        operation_id="create_refund_request",
        summary="Cancel booking and request refund",
        request=RefundRequestCreateSerializer,
        responses={
            201: RefundRequestSerializer,
            400: OpenApiResponse(description="Booking is not eligible for a refund"),
        },
        tags=["Refunds"],
    )
    @action(detail=True, methods=["post"], url_path="refund-requests")
    def refund_requests(self, request, pk=None):
        booking = self.get_object()
        serializer = RefundRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = RefundService.submit_refund_request(
                booking,
                request.user,
                reason=serializer.validated_data["reason"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(RefundRequestSerializer(result.data).data, status=status.HTTP_201_CREATED)


class RefundRequestViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = RefundRequestSerializer

    def get_queryset(self):
        return RefundRequest.objects.filter(requested_by=self.request.user)

    @extend_schema(
        operation_id="cancel_refund_request",
        summary="Withdraw refund request",
        request=None,
        responses={200: RefundRequestSerializer},
        tags=["Refunds"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        refund = self.get_object()
        result = RefundService.cancel_refund_request(refund.id, request.user)
        if not result.success:
            return failure_response(result)
        return Response(self.get_serializer(result.data).data)


# =============================================================================
# Payouts & Wallet
# =============================================================================


class PayoutScheduleViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = PayoutScheduleSerializer

    def get_queryset(self):
        return PayoutSchedule.objects.filter(provider=self.request.user)

    @extend_schema(
        operation_id="request_early_payout",
        summary="Request early payout",
        description=(
            "Ask for this payout before its scheduled date. Settlement runs in the "
            "background and is rejected if the booking has an open dispute."
        ),
        request=None,
        responses={
            202: PayoutScheduleSerializer,
            400: OpenApiResponse(description="Early payout window not open yet"),
            409: OpenApiResponse(description="Payout is not pending or scheduled"),
        },
        tags=["Payouts"],
    )
    @action(detail=True, methods=["post"], url_path="early-payout")
    def early_payout(self, request, pk=None):
        schedule = self.get_object()
        result = EscrowSettlementService.request_early_payout(
            schedule.id,
            requested_by=request.user,
        )
        if not result.success:
            return failure_response(result)
        return Response(self.get_serializer(result.data).data, status=status.HTTP_202_ACCEPTED)


class WalletView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_wallet",
        summary="Wallet balance",
        responses={200: WalletSerializer},
        tags=["Payouts"],
    )
    def get(self, request):
        wallet = LedgerService.get_wallet(request.user.pk)
        balance = LedgerService.get_balance(wallet.id)
        return Response(
            WalletSerializer(
                {
                    "balance_cents": balance.cents,
                    "currency": balance.currency,
                    "balance_display": str(balance),
                }
            ).data
        )
