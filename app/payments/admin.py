"""
Payment admin.

Money rows are view-only: payments, escrow, balances, payouts and
commission only change through the services, where the guarded updates
live. Disputes are resolved through the orders API. Payout accounts and
gateway configuration stay editable for support staff.
"""

from django.contrib import admin, messages

from payments.models import (
    CommissionLedgerEntry,
    EscrowTransaction,
    GatewayConfig,
    Payment,
    Payout,
    PayoutAccount,
    VendorBalance,
    WebhookEvent,
)
from payments.state_machines import WebhookEventStatus
from payments.tasks import process_webhook_event


class LedgerAdmin(admin.ModelAdmin):
    """Every field read-only, no add or delete."""

    ordering = ["-created_at"]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(LedgerAdmin):
    list_display = ["id", "order", "gateway", "kind", "amount", "status", "attempts", "captured_at", "created_at"]
    list_filter = ["gateway", "kind", "status"]
    search_fields = ["id", "merchant_reference", "transaction_reference", "order__id"]
    date_hierarchy = "created_at"


@admin.register(EscrowTransaction)
class EscrowTransactionAdmin(LedgerAdmin):
    list_display = ["order", "status", "held_amount", "commission_amount", "release_amount", "frozen", "released_at"]
    list_filter = ["status", "frozen"]
    search_fields = ["id", "order__id"]


@admin.register(VendorBalance)
class VendorBalanceAdmin(LedgerAdmin):
    list_display = ["vendor", "pending_balance", "total_earned", "total_paid_out", "last_payout_at"]
    search_fields = ["vendor__email"]
    ordering = ["-pending_balance"]


@admin.register(CommissionLedgerEntry)
class CommissionLedgerEntryAdmin(LedgerAdmin):
    list_display = ["order", "vendor", "commission_rate", "commission_amount", "recorded_at"]
    search_fields = ["order__id", "vendor__email"]
    date_hierarchy = "recorded_at"
    ordering = ["-recorded_at"]


@admin.register(Payout)
class PayoutAdmin(LedgerAdmin):
    list_display = ["id", "vendor", "trigger", "amount", "transfer_fee", "fee_paid_by", "status", "gateway", "paid_at"]
    list_filter = ["status", "trigger", "gateway", "fee_paid_by"]
    search_fields = ["id", "tracking_reference", "vendor__email", "order__id"]
    date_hierarchy = "created_at"
    fieldsets = (
        (None, {"fields": ("id", "vendor", "order", "trigger", "status")}),
        ("Money", {"fields": ("amount", "transfer_fee", "fee_paid_by", "balance_before")}),
        ("Disbursement", {"fields": ("method", "gateway", "destination_account", "tracking_reference", "settled_by")}),
        ("Outcome", {"fields": ("paid_at", "failed_at", "failure_reason")}),
        ("Provider data", {"fields": ("metadata", "version", "created_at", "updated_at"), "classes": ("collapse",)}),
    )


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ["vendor", "method", "account_number", "account_name", "is_active", "updated_at"]
    list_filter = ["method", "is_active"]
    search_fields = ["vendor__email", "account_number", "account_name", "stripe_account_id"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(GatewayConfig)
class GatewayConfigAdmin(admin.ModelAdmin):
    list_display = ["gateway", "token_expires_at", "ipn_id", "ipn_notification_type", "updated_at"]
    readonly_fields = ["auth_token", "token_expires_at", "created_at", "updated_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(LedgerAdmin):
    list_display = ["id", "gateway", "event_type", "reference", "status", "retry_count", "processed_at", "created_at"]
    list_filter = ["gateway", "status", "event_type"]
    search_fields = ["id", "reference", "delivery_key"]
    date_hierarchy = "created_at"
    actions = ["retry_deliveries"]

    @admin.action(description="Retry selected failed deliveries")
    def retry_deliveries(self, request, queryset):
        failed = list(queryset.filter(status=WebhookEventStatus.FAILED).values_list("pk", flat=True))
        for pk in failed:
            process_webhook_event.delay(str(pk))
        skipped = queryset.count() - len(failed)
        self.message_user(request, f"Queued {len(failed)} deliveries for retry.", messages.SUCCESS)
        if skipped:
            self.message_user(request, f"Skipped {skipped} that are not FAILED.", messages.WARNING)
