import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models

import payments.models.payment_record


def _timestamps():
    return [
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
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # ---------------------------------------------------------------------
        # Ledger
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="LedgerAccount",
            fields=[
                _uuid_pk(),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("user_balance", "User Balance"),
                            ("platform_escrow", "Platform Escrow"),
                            ("platform_revenue", "Platform Revenue"),
                            ("external_stripe", "External Stripe"),
                        ],
                        max_length=50,
                    ),
                ),
                (
                    "owner_id",
                    models.BigIntegerField(
                        blank=True,
                        db_index=True,
                        null=True,
                    ),
                ),
                (
                    "currency",
                    models.CharField(default="usd", max_length=3),
                ),
                (
                    "balance_cents",
                    models.BigIntegerField(default=0),
                ),
                (
                    "allow_negative",
                    models.BooleanField(default=False),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["type", "currency"], name="ledger_account_type_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("type", "owner_id", "currency"),
                        name="unique_account_per_owner",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("allow_negative", True), ("balance_cents__gte", 0), _connector="OR"),
                        name="ledger_account_balance_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                _uuid_pk(),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("amount_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "entry_type",
                    models.CharField(
                        choices=[
                            ("payment_received", "Payment Received"),
                            ("payout", "Payout"),
                            ("refund", "Refund"),
                            ("fee_collected", "Fee Collected"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=50,
                    ),
                ),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("reference_type", models.CharField(blank=True, max_length=50, null=True)),
                ("description", models.TextField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "created_by",
                    models.CharField(
                        blank=True,
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(max_length=255, unique=True),
                ),
                (
                    "credit_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_entries",
                        to="payments.ledgeraccount",
                    ),
                ),
                (
                    "debit_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="debit_entries",
                        to="payments.ledgeraccount",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Ledger entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["reference_type", "reference_id"], name="ledger_entry_reference_idx"),
                    models.Index(fields=["entry_type"], name="ledger_entry_type_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="ledger_entry_amount_cents_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("debit_account", models.F("credit_account")), _negated=True),
                        name="ledger_entry_distinct_accounts",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Recurring payments
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="PaymentRecord",
            fields=[
                *_timestamps(),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Flexible key-value metadata storage",
                    ),
                ),
                _uuid_pk(),
                (
                    "payment_method_id",
                    models.CharField(
                        help_text="Stripe PaymentMethod ID (pm_xxx) to charge",
                        max_length=255,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Charge amount in smallest currency unit (fixed at creation)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "billing_date",
                    models.DateField(
                        db_index=True,
                        help_text="Billing cycle date this record charges for",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payment record (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Automatic retries scheduled in the current retry window",
                    ),
                ),
                (
                    "max_retries",
                    models.PositiveSmallIntegerField(
                        default=payments.models.payment_record.default_max_retries,
                        help_text="Automatic attempts allowed before the record fails",
                    ),
                ),
                (
                    "attempt_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Charge attempts ever made. Never reset; part of the idempotency key",
                    ),
                ),
                (
                    "next_retry_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the next automatic attempt is due",
                        null=True,
                    ),
                ),
                (
                    "failure_code",
                    models.CharField(
                        blank=True,
                        help_text="Processor failure code of the last failed attempt",
                        max_length=32,
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Human-readable reason of the last failed attempt",
                        null=True,
                    ),
                ),
                (
                    "charged_at",
                    models.DateTimeField(blank=True, help_text="When the charge succeeded", null=True),
                ),
                (
                    "external_transaction_reference",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent ID (pi_xxx) of the successful charge",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "agreement",
                    models.ForeignKey(
                        help_text="Agreement this charge belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_records",
                        to="bookings.recurringagreement",
                    ),
                ),
                (
                    "payer",
                    models.ForeignKey(
                        help_text="Customer being charged",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_records",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Record",
                "verbose_name_plural": "Payment Records",
                "ordering": ["billing_date", "created_at"],
                "indexes": [
                    models.Index(fields=["status", "next_retry_at"], name="payment_record_due_idx"),
                    models.Index(fields=["payer", "status"], name="payment_record_payer_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("agreement", "billing_date"),
                        name="payment_record_unique_cycle",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="payment_record_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("retry_count__lte", models.F("max_retries"))),
                        name="payment_record_retry_count_bounded",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("next_retry_at__isnull", False),
                                ("retry_count__gt", 0),
                                ("status", "pending"),
                            ),
                            models.Q(
                                models.Q(("retry_count__gt", 0), ("status", "pending"), _negated=True),
                                ("next_retry_at__isnull", True),
                            ),
                            _connector="OR",
                        ),
                        name="payment_record_next_retry_only_when_retrying",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("charged_at__isnull", False), ("status", "succeeded")),
                            models.Q(
                                models.Q(("status", "succeeded"), _negated=True),
                                ("charged_at__isnull", True),
                            ),
                            _connector="OR",
                        ),
                        name="payment_record_charged_at_only_when_succeeded",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Escrow
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="EscrowHold",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("amount_cents", models.PositiveBigIntegerField()),
                ("platform_fee_cents", models.PositiveBigIntegerField(default=0)),
                ("provider_payout_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[("held", "Held"), ("released", "Released"), ("refunded", "Refunded")],
                        db_index=True,
                        default="held",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("held_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(db_index=True)),
                (
                    "booking",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_hold",
                        to="bookings.booking",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_holds_paid",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_holds_earned",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow Hold",
                "verbose_name_plural": "Escrow Holds",
                "ordering": ["-held_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="escrow_hold_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("amount_cents", models.F("platform_fee_cents") + models.F("provider_payout_cents"))
                        ),
                        name="escrow_hold_split_matches_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutSchedule",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("transaction_type", models.CharField(max_length=32)),
                ("completed_at", models.DateTimeField()),
                ("eligible_for_payout_at", models.DateTimeField()),
                ("scheduled_payout_date", models.DateField(db_index=True)),
                ("early_payout_eligible_at", models.DateTimeField()),
                ("early_payout_requested", models.BooleanField(default=False)),
                ("early_payout_requested_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payout_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("scheduled", "Scheduled"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("payout_amount_cents", models.PositiveBigIntegerField()),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, null=True)),
                (
                    "booking",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_schedule",
                        to="bookings.booking",
                    ),
                ),
                (
                    "escrow_hold",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_schedule",
                        to="payments.escrowhold",
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_schedules",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Schedule",
                "verbose_name_plural": "Payout Schedules",
                "ordering": ["scheduled_payout_date"],
            },
        ),
        # ---------------------------------------------------------------------
        # Refunds
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="RefundRequest",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "cancelling_party",
                    models.CharField(
                        choices=[("customer", "Customer"), ("provider", "Provider")],
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("refund_percentage", models.PositiveSmallIntegerField()),
                ("refund_amount_cents", models.PositiveBigIntegerField()),
                ("original_amount_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("days_until_service", models.IntegerField()),
                ("policy_text", models.CharField(max_length=255)),
                (
                    "evaluated_at",
                    models.DateTimeField(help_text="Moment the eligibility quote was computed for"),
                ),
                ("reason", models.TextField(blank=True, default="")),
                (
                    "stripe_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Refund ID (re_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("failure_reason", models.TextField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_requests",
                        to="bookings.booking",
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Request",
                "verbose_name_plural": "Refund Requests",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("refund_percentage__lte", 100)),
                        name="refund_request_percentage_bounded",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("refund_amount_cents__lte", models.F("original_amount_cents"))),
                        name="refund_request_amount_bounded",
                    ),
                ],
            },
        ),
    ]
