"""
Django admin configuration for notification models.

Notifications are read-only in the admin; it is used for support and
debugging only.
"""

from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "notification_type",
        "recipient",
        "title",
        "is_read",
        "created_at",
    ]
    list_filter = ["is_read", "notification_type", "created_at"]
    search_fields = ["title", "recipient__email", "reference_id", "idempotency_key"]
    ordering = ["-created_at"]
    readonly_fields = [
        "notification_type",
        "recipient",
        "title",
        "body",
        "data",
        "reference_id",
        "idempotency_key",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["recipient"]
