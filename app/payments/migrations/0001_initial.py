import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GatewayConfig",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("mpesa", "M-Pesa"),
                            ("pesapal", "Pesapal"),
                            ("intasend", "IntaSend"),
                            ("paystack", "Paystack"),
                            ("stripe", "Stripe"),
                        ],
                        help_text="Gateway this configuration belongs to",
                        max_length=20,
                        unique=True,
                    ),
                ),
                ("auth_token", models.TextField(blank=True, default="", help_text="Cached provider access token")),
                ("token_expires_at", models.DateTimeField(blank=True, help_text="When the cached token expires", null=True)),
                ("ipn_id", models.CharField(blank=True, default="", help_text="Registered IPN id (Pesapal notification_id)", max_length=100)),
                ("ipn_notification_type", models.CharField(blank=True, default="GET", help_text="HTTP method the provider uses for IPN calls", max_length=10)),
            ],
            options={
                "verbose_name": "Gateway Config",
                "verbose_name_plural": "Gateway Configs",
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("mpesa", "M-Pesa"),
                            ("pesapal", "Pesapal"),
                            ("intasend", "IntaSend"),
                            ("paystack", "Paystack"),
                            ("stripe", "Stripe"),
                        ],
                        help_text="Gateway that sent the delivery",
                        max_length=20,
                    ),
                ),
                ("delivery_key", models.CharField(help_text="sha256 of the raw delivery - unique per gateway", max_length=64)),
                ("event_type", models.CharField(blank=True, db_index=True, default="", help_text="Payload variant or provider event type", max_length=100)),
                ("reference", models.CharField(blank=True, db_index=True, default="", help_text="Reference extracted from the payload", max_length=255)),
                ("payload", models.JSONField(blank=True, default=dict, help_text="Parsed delivery body or query parameters")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("ignored", "Ignored"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, help_text="When the delivery was successfully processed", null=True)),
                ("error_message", models.TextField(blank=True, default="", help_text="Error message if processing failed")),
                ("retry_count", models.PositiveSmallIntegerField(default=0, help_text="Number of processing attempts")),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
                    models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("gateway", "delivery_key"), name="unique_webhook_delivery_per_gateway"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("mpesa", "M-Pesa"),
                            ("pesapal", "Pesapal"),
                            ("intasend", "IntaSend"),
                            ("paystack", "Paystack"),
                            ("stripe", "Stripe"),
                        ],
                        help_text="Payment rail used for collection",
                        max_length=20,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("order", "Order"), ("delivery_fee", "Delivery Fee")],
                        default="order",
                        help_text="Whether this collects the order total or a delivery-fee top-up",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("captured", "Captured"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current payment status (changed only by guarded updates)",
                        max_length=20,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, help_text="Amount requested in KES", max_digits=12)),
                ("currency", models.CharField(default="KES", help_text="ISO currency code", max_length=3)),
                ("merchant_reference", models.CharField(db_index=True, help_text="Reference sent to the gateway", max_length=100)),
                ("transaction_reference", models.CharField(blank=True, db_index=True, default="", help_text="Gateway-assigned transaction id", max_length=255)),
                ("collect_response", models.JSONField(blank=True, default=dict, help_text="Stored collect() result (redirect URL or prompt details)")),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Raw provider responses and flags (outcome_unknown, amount_mismatch)")),
                ("attempts", models.PositiveSmallIntegerField(default=0, help_text="Number of collect() calls for this payment")),
                ("captured_at", models.DateTimeField(blank=True, help_text="When capture was verified", null=True)),
                ("failed_at", models.DateTimeField(blank=True, help_text="When failure was verified", null=True)),
                ("refunded_at", models.DateTimeField(blank=True, help_text="When the payment was refunded", null=True)),
                ("last_verified_at", models.DateTimeField(blank=True, help_text="Last time verify_status() was called for this payment", null=True)),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order this payment is for",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
                    models.Index(fields=["gateway", "transaction_reference"], name="payment_gateway_txref_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("order", "gateway", "kind"), name="unique_payment_per_order_gateway_kind"),
                    models.UniqueConstraint(fields=("gateway", "merchant_reference"), name="unique_payment_merchant_reference"),
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="payment_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowTransaction",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[("held", "Held"), ("released", "Released"), ("refunded", "Refunded")],
                        db_index=True,
                        default="held",
                        help_text="Escrow status (leaves HELD exactly once)",
                        max_length=20,
                    ),
                ),
                ("held_amount", models.DecimalField(decimal_places=2, help_text="Amount held in KES", max_digits=12)),
                ("commission_amount", models.DecimalField(decimal_places=2, help_text="Platform commission kept on release", max_digits=12)),
                ("release_amount", models.DecimalField(decimal_places=2, help_text="Amount credited to the vendor on release", max_digits=12)),
                ("frozen", models.BooleanField(default=False, help_text="Set while the order is disputed; release is refused")),
                ("released_at", models.DateTimeField(blank=True, help_text="When funds were released", null=True)),
                ("refunded_at", models.DateTimeField(blank=True, help_text="When funds were refunded", null=True)),
                (
                    "order",
                    models.OneToOneField(
                        help_text="Order whose funds are held",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow",
                        to="orders.order",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Captured payment that funded the escrow",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrows",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow Transaction",
                "verbose_name_plural": "Escrow Transactions",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("held_amount__gte", 0), ("release_amount__gte", 0)),
                        name="escrow_amounts_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="VendorBalance",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("pending_balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Released funds awaiting disbursement in KES", max_digits=12)),
                ("total_earned", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Lifetime released funds in KES", max_digits=12)),
                ("total_paid_out", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Lifetime disbursed funds in KES", max_digits=12)),
                ("last_payout_at", models.DateTimeField(blank=True, help_text="When the balance was last claimed for a payout", null=True)),
                (
                    "vendor",
                    models.OneToOneField(
                        help_text="Vendor owning this balance",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="vendor_balance",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Vendor Balance",
                "verbose_name_plural": "Vendor Balances",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["pending_balance"], name="vendor_balance_pending_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("pending_balance__gte", 0)), name="vendor_balance_pending_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionLedgerEntry",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("commission_rate", models.DecimalField(decimal_places=2, help_text="Commission percent applied", max_digits=5)),
                ("commission_amount", models.DecimalField(decimal_places=2, help_text="Commission in KES", max_digits=12)),
                ("notes", models.TextField(blank=True, default="", help_text="Free-form notes")),
                ("recorded_at", models.DateTimeField(auto_now_add=True, help_text="When the entry was recorded")),
                (
                    "order",
                    models.OneToOneField(
                        help_text="Order the commission was earned on",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission_entry",
                        to="orders.order",
                    ),
                ),
                (
                    "vendor",
                    models.ForeignKey(
                        help_text="Vendor the commission was taken from",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Commission Ledger Entry",
                "verbose_name_plural": "Commission Ledger Entries",
                "ordering": ["-recorded_at"],
            },
        ),
        migrations.CreateModel(
            name="PayoutAccount",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                (
                    "method",
                    models.CharField(
                        choices=[("mpesa", "M-Pesa"), ("stripe", "Stripe")],
                        default="mpesa",
                        help_text="How the vendor is paid",
                        max_length=20,
                    ),
                ),
                ("account_number", models.CharField(blank=True, default="", help_text="Phone number for mobile-money payouts", max_length=50)),
                ("account_name", models.CharField(blank=True, default="", help_text="Registered account holder name", max_length=150)),
                ("stripe_account_id", models.CharField(blank=True, default="", help_text="Stripe connected account id (acct_xxx)", max_length=255)),
                ("is_active", models.BooleanField(default=True, help_text="Whether payouts may be sent to this account")),
                (
                    "vendor",
                    models.OneToOneField(
                        help_text="Vendor owning this payout account",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payout_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Account",
                "verbose_name_plural": "Payout Accounts",
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("version", models.PositiveIntegerField(default=1, help_text="Version for optimistic locking - incremented on each save")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, help_text="Amount the vendor receives in KES", max_digits=12)),
                ("transfer_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Disbursement fee in KES", max_digits=12)),
                (
                    "fee_paid_by",
                    models.CharField(
                        choices=[("platform", "Platform"), ("vendor", "Vendor")],
                        default="platform",
                        help_text="Who absorbed the transfer fee",
                        max_length=20,
                    ),
                ),
                ("balance_before", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Vendor balance claimed for this disbursement", max_digits=12)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payout (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "trigger",
                    models.CharField(
                        choices=[
                            ("order_release", "Order Release"),
                            ("automatic", "Automatic Sweep"),
                            ("manual", "Manual Withdrawal"),
                        ],
                        help_text="Why this payout was created",
                        max_length=20,
                    ),
                ),
                (
                    "method",
                    models.CharField(
                        choices=[("mpesa", "M-Pesa"), ("stripe", "Stripe")],
                        default="mpesa",
                        help_text="Payout method",
                        max_length=20,
                    ),
                ),
                ("gateway", models.CharField(blank=True, default="", help_text="Gateway used to disburse", max_length=20)),
                ("destination_account", models.CharField(blank=True, default="", help_text="Normalized phone number or connected account id", max_length=255)),
                ("tracking_reference", models.CharField(blank=True, db_index=True, default="", help_text="Gateway disbursement id", max_length=255)),
                ("paid_at", models.DateTimeField(blank=True, help_text="When payout completed", null=True)),
                ("failed_at", models.DateTimeField(blank=True, help_text="When payout failed", null=True)),
                ("failure_reason", models.TextField(blank=True, default="", help_text="Provider error if the payout failed")),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Provider responses and flags such as outcome_unknown")),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        help_text="Order this entitlement is for. Null for disbursements.",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to="orders.order",
                    ),
                ),
                (
                    "settled_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Disbursement that paid this entitlement",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="settled_entitlements",
                        to="payments.payout",
                    ),
                ),
                (
                    "vendor",
                    models.ForeignKey(
                        help_text="Vendor receiving the payout",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["vendor", "status"], name="payout_vendor_status_idx"),
                    models.Index(fields=["trigger", "status"], name="payout_trigger_status_idx"),
                    models.Index(fields=["status", "created_at"], name="payout_status_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="payout_amount_positive"),
                    models.UniqueConstraint(
                        condition=models.Q(("trigger", "order_release")),
                        fields=("order",),
                        name="unique_entitlement_per_order",
                    ),
                ],
            },
        ),
    ]
