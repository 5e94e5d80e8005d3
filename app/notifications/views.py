"""
Views for notification API.

Endpoints:
    GET  /api/v1/notifications/            - Caller's notifications, newest first
    POST /api/v1/notifications/{id}/read/  - Mark one notification read
"""

from __future__ import annotations

from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiResponse

from notifications.models import Notification
from notifications.serializers import NotificationSerializer
from notifications.services import NotificationService


@extend_schema_view(
    list=extend_schema(
        operation_id="list_notifications",
        summary="List notifications",
        description="Payment notifications sent to the authenticated user.",
        parameters=[
            OpenApiParameter(
                name="unread",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Only unread notifications when true",
                required=False,
            ),
        ],
        tags=["Notifications"],
    ),
)
class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer

    def get_queryset(self):
        queryset = Notification.objects.for_recipient(self.request.user)
        if self.request.query_params.get("unread", "").lower() == "true":
            queryset = queryset.unread()
        return queryset

    @extend_schema(
        operation_id="mark_notification_read",
        summary="Mark notification read",
        description="Marking an already-read notification succeeds.",
        request=None,
        responses={
            200: NotificationSerializer,
            404: OpenApiResponse(description="No such notification for this user"),
        },
        tags=["Notifications"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        # Scoped queryset: other users' notifications are a 404
        notification = self.get_object()
        result = NotificationService.mark_as_read(notification, request.user)
        return Response(self.get_serializer(result.data).data)
