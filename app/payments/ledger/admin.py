"""
Django admin configuration for ledger models.

Ledger entries are read-only in the admin: corrections are new
adjustment entries recorded through LedgerService.
"""

from django.contrib import admin

from .models import LedgerAccount, LedgerEntry


@admin.register(LedgerAccount)
class LedgerAccountAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "type",
        "owner_id",
        "currency",
        "balance_display",
        "is_active",
        "allow_negative",
    ]
    list_filter = ["type", "currency", "is_active"]
    search_fields = ["id", "owner_id"]
    readonly_fields = ["id", "created_at", "balance_cents", "computed_balance_display"]
    ordering = ["-created_at"]

    @admin.display(description="Balance")
    def balance_display(self, obj: LedgerAccount) -> str:
        return f"${obj.balance_cents / 100:.2f}"

    @admin.display(description="Balance from entries")
    def computed_balance_display(self, obj: LedgerAccount) -> str:
        return f"${obj.get_balance() / 100:.2f}"


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "created_at",
        "entry_type",
        "amount_cents",
        "debit_account",
        "credit_account",
        "reference_type",
        "created_by",
    ]
    list_filter = ["entry_type", "reference_type"]
    search_fields = ["id", "idempotency_key", "reference_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
