"""
EscrowTransaction model for funds held against an order.

Created once the order payment is verified captured, with the commission
split precomputed. Leaves HELD exactly once through a status-guarded
update (see EscrowService).

Usage:
    from payments.models import EscrowTransaction

    escrow, created = EscrowTransaction.objects.get_or_create(
        order=order,
        defaults={...},
    )
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import EscrowStatus


class EscrowTransaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money held by the platform for one order.

    Fields:
        order: The order (one escrow per order)
        payment: The captured payment that funded it
        status: held, released, refunded
        held_amount: Amount captured from the buyer
        commission_amount: Platform share kept on release
        release_amount: Vendor share credited on release
        frozen: True while the order is disputed; release is refused
    """

    order = models.OneToOneField(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="escrow",
        help_text="Order whose funds are held",
    )

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="escrows",
        help_text="Captured payment that funded the escrow",
    )

    status = models.CharField(
        max_length=20,
        choices=EscrowStatus.choices,
        default=EscrowStatus.HELD,
        db_index=True,
        help_text="Escrow status (leaves HELD exactly once)",
    )

    held_amount = models.DecimalField(max_digits=12, decimal_places=2, help_text="Amount held in KES")
    commission_amount = models.DecimalField(
        max_digits=12, decimal_places=2, help_text="Platform commission kept on release"
    )
    release_amount = models.DecimalField(
        max_digits=12, decimal_places=2, help_text="Amount credited to the vendor on release"
    )

    frozen = models.BooleanField(
        default=False,
        help_text="Set while the order is disputed; release is refused",
    )

    released_at = models.DateTimeField(null=True, blank=True, help_text="When funds were released")
    refunded_at = models.DateTimeField(null=True, blank=True, help_text="When funds were refunded")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Escrow Transaction"
        verbose_name_plural = "Escrow Transactions"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(held_amount__gte=0) & models.Q(release_amount__gte=0),
                name="escrow_amounts_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowTransaction({self.order_id}, {self.status}, {self.held_amount} KES)"

    @property
    def is_held(self) -> bool:
        return self.status == EscrowStatus.HELD
