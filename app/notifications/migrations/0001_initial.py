import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "notification_type",
                    models.CharField(
                        choices=[
                            ("payment_retry_scheduled", "Payment Retry Scheduled"),
                            ("payment_failed", "Payment Failed"),
                            ("payment_action_required", "Payment Action Required"),
                            ("payment_succeeded", "Payment Succeeded"),
                            ("early_payout_approved", "Early Payout Approved"),
                            ("early_payout_rejected", "Early Payout Rejected"),
                            ("refund_requested", "Refund Requested"),
                            ("refund_processed", "Refund Processed"),
                            ("system", "System"),
                        ],
                        default="system",
                        help_text="Payment event that produced the message",
                        max_length=64,
                    ),
                ),
                (
                    "title",
                    models.CharField(max_length=500),
                ),
                (
                    "body",
                    models.TextField(blank=True, default=""),
                ),
                (
                    "data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Amounts, dates and flags the client renders alongside the text",
                    ),
                ),
                (
                    "reference_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Payment record, payout schedule or refund request id",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "is_read",
                    models.BooleanField(db_index=True, default=False),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Sender-chosen key; a second send with the same key is dropped",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        help_text="User the message is addressed to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "notifications_notification",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["recipient", "is_read", "-created_at"],
                        name="notif_recipient_unread_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key__isnull", False)),
                        fields=("idempotency_key",),
                        name="notif_idempotency_key_unique",
                    )
                ],
            },
        ),
    ]
