"""
Core base model shared by all domain models.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Payout(UUIDPrimaryKeyMixin, BaseModel):
        amount = models.DecimalField(max_digits=12, decimal_places=2)

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model providing creation and modification timestamps.

    Fields:
        created_at: Set when the row is first created
        updated_at: Updated on every save()

    Note:
        QuerySet.update() does not touch updated_at. Guarded status
        updates that must record it pass updated_at explicitly.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
