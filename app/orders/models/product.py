"""
Product model.

The catalog itself is managed elsewhere; the settlement engine only needs
a vendor, a server-side price, and stock to build and complete orders.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Product(UUIDPrimaryKeyMixin, BaseModel):
    """
    A sellable item owned by one vendor.

    Fields:
        vendor: User who sells the product and receives the payout
        name: Display name, snapshotted onto order items
        price: Unit price in KES; the only price checkout trusts
        stock: Units available, or null for untracked stock
        is_active: Inactive products cannot be ordered
    """

    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="products",
        help_text="Vendor selling this product",
    )

    name = models.CharField(
        max_length=255,
        help_text="Product display name",
    )

    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Unit price in KES",
    )

    stock = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Units in stock. Null means stock is not tracked.",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether the product can be ordered",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Product"
        verbose_name_plural = "Products"
        indexes = [
            models.Index(fields=["vendor", "is_active"], name="product_vendor_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="product_price_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Product({self.name}, {self.price} KES)"

    def has_stock_for(self, quantity: int) -> bool:
        """Check whether quantity units can be sold."""
        return self.stock is None or self.stock >= quantity
