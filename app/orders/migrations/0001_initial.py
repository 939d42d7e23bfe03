import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models

import orders.models.order


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("name", models.CharField(help_text="Product display name", max_length=255)),
                ("price", models.DecimalField(decimal_places=2, help_text="Unit price in KES", max_digits=12)),
                ("stock", models.PositiveIntegerField(blank=True, help_text="Units in stock. Null means stock is not tracked.", null=True)),
                ("is_active", models.BooleanField(default=True, help_text="Whether the product can be ordered")),
                (
                    "vendor",
                    models.ForeignKey(
                        help_text="Vendor selling this product",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="products",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Product",
                "verbose_name_plural": "Products",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["vendor", "is_active"], name="product_vendor_active_idx")],
                "constraints": [models.CheckConstraint(condition=models.Q(("price__gt", 0)), name="product_price_positive")],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("version", models.PositiveIntegerField(default=1, help_text="Version for optimistic locking - incremented on each save")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                (
                    "reference",
                    models.CharField(
                        default=orders.models.order.generate_order_reference,
                        editable=False,
                        help_text="Short unique reference sent to gateways (e.g. ORD-7F3A9C21B0)",
                        max_length=20,
                        unique=True,
                    ),
                ),
                ("subtotal", models.DecimalField(decimal_places=2, help_text="Sum of line totals in KES", max_digits=12)),
                ("shipping_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Delivery fee in KES (server-computed)", max_digits=12)),
                ("total", models.DecimalField(decimal_places=2, help_text="Amount charged to the buyer: subtotal + shipping_fee", max_digits=12)),
                ("commission_rate", models.DecimalField(decimal_places=2, help_text="Platform commission percent applied to the total", max_digits=5)),
                ("commission_amount", models.DecimalField(decimal_places=2, help_text="Platform commission in KES", max_digits=12)),
                ("payout_amount", models.DecimalField(decimal_places=2, help_text="Vendor share in KES: total - commission_amount", max_digits=12)),
                ("delivery_zone", models.CharField(blank=True, default="", help_text="Delivery zone the shipping fee was computed for", max_length=20)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending_payment", "Pending Payment"),
                            ("payment_failed", "Payment Failed"),
                            ("pending_vendor_confirmation", "Pending Vendor Confirmation"),
                            ("vendor_confirmed", "Vendor Confirmed"),
                            ("shipped", "Shipped"),
                            ("delivered", "Delivered"),
                            ("completed", "Completed"),
                            ("disputed", "Disputed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending_payment",
                        help_text="Current state of the order (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, help_text="When payment was verified", null=True)),
                ("confirmed_at", models.DateTimeField(blank=True, help_text="When the vendor accepted the order", null=True)),
                ("shipped_at", models.DateTimeField(blank=True, help_text="When the vendor shipped", null=True)),
                ("delivered_at", models.DateTimeField(blank=True, help_text="When delivery was recorded", null=True)),
                ("completed_at", models.DateTimeField(blank=True, help_text="When escrow was released", null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, help_text="When the order was cancelled", null=True)),
                ("disputed_at", models.DateTimeField(blank=True, help_text="When the buyer opened a dispute", null=True)),
                ("refunded_at", models.DateTimeField(blank=True, help_text="When the buyer was refunded", null=True)),
                (
                    "auto_release_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Escrow auto-releases after this time unless disputed",
                        null=True,
                    ),
                ),
                ("buyer_confirmed", models.BooleanField(default=False, help_text="Whether the buyer confirmed receipt (vs. auto-release)")),
                ("dispute_reason", models.TextField(blank=True, default="", help_text="Buyer's reason for disputing the order")),
                ("status_notes", models.TextField(blank=True, default="", help_text="Why the order was cancelled, refunded, or resolved")),
                ("tracking_number", models.CharField(blank=True, default="", help_text="Courier tracking number provided when shipping", max_length=100)),
                (
                    "buyer",
                    models.ForeignKey(
                        help_text="User paying for the order",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchases",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "vendor",
                    models.ForeignKey(
                        help_text="User fulfilling the order and receiving the payout",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sales",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["buyer", "status"], name="order_buyer_status_idx"),
                    models.Index(fields=["vendor", "status"], name="order_vendor_status_idx"),
                    models.Index(fields=["status", "auto_release_at"], name="order_status_release_idx"),
                    models.Index(fields=["status", "paid_at"], name="order_status_paid_idx"),
                    models.Index(fields=["status", "confirmed_at"], name="order_status_confirmed_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("subtotal__gt", 0)), name="order_subtotal_positive"),
                    models.CheckConstraint(condition=models.Q(("shipping_fee__gte", 0)), name="order_shipping_fee_non_negative"),
                    models.CheckConstraint(condition=models.Q(("payout_amount__gte", 0)), name="order_payout_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("product_name", models.CharField(help_text="Product name at checkout", max_length=255)),
                ("unit_price", models.DecimalField(decimal_places=2, help_text="Unit price at checkout", max_digits=12)),
                ("quantity", models.PositiveIntegerField(help_text="Units ordered")),
                ("line_total", models.DecimalField(decimal_places=2, help_text="unit_price * quantity", max_digits=12)),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order this line belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.order",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        help_text="Product sold (null if the product was later removed)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="order_items",
                        to="orders.product",
                    ),
                ),
            ],
            options={
                "verbose_name": "Order Item",
                "verbose_name_plural": "Order Items",
                "ordering": ["created_at"],
                "constraints": [models.CheckConstraint(condition=models.Q(("quantity__gt", 0)), name="order_item_quantity_positive")],
            },
        ),
        migrations.CreateModel(
            name="ShippingAddress",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("recipient_name", models.CharField(help_text="Who receives the parcel", max_length=150)),
                ("phone", models.CharField(help_text="Recipient phone number", max_length=20)),
                ("email", models.EmailField(blank=True, default="", help_text="Recipient email", max_length=254)),
                ("address_line1", models.CharField(help_text="Street / building", max_length=255)),
                ("address_line2", models.CharField(blank=True, default="", help_text="Apartment, floor, landmark", max_length=255)),
                ("city", models.CharField(help_text="City or town", max_length=100)),
                ("county", models.CharField(blank=True, default="", help_text="County", max_length=100)),
                ("postal_code", models.CharField(blank=True, default="", help_text="Postal code", max_length=20)),
                ("country", models.CharField(default="Kenya", help_text="Country", max_length=100)),
                ("delivery_notes", models.TextField(blank=True, default="", help_text="Instructions for the courier")),
                (
                    "order",
                    models.OneToOneField(
                        help_text="Order being delivered",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="shipping_address",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Shipping Address",
                "verbose_name_plural": "Shipping Addresses",
            },
        ),
        migrations.CreateModel(
            name="VendorRating",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("rating", models.PositiveSmallIntegerField(help_text="Stars, 1 to 5")),
                ("review", models.TextField(blank=True, default="", help_text="Optional review text")),
                (
                    "buyer",
                    models.ForeignKey(
                        help_text="Buyer leaving the rating",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ratings_given",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.OneToOneField(
                        help_text="Order being rated",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rating",
                        to="orders.order",
                    ),
                ),
                (
                    "vendor",
                    models.ForeignKey(
                        help_text="Vendor being rated",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ratings_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Vendor Rating",
                "verbose_name_plural": "Vendor Ratings",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("rating__gte", 1), ("rating__lte", 5)),
                        name="vendor_rating_between_1_and_5",
                    )
                ],
            },
        ),
    ]
