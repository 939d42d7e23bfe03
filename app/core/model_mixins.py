"""
Reusable model mixins.

Mixins:
    UUIDPrimaryKeyMixin: UUID primary key
    VersionedMixin: Optimistic-locking version counter bumped on save()
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID primary key instead of an auto-increment integer.

    Order and payment ids travel through gateway references and
    callback URLs, so they must not be guessable or reveal volume.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier (UUID v4)",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Adds a version column incremented on every save() of an existing row.

    The increment uses F() so concurrent saves never lose a bump, then
    reloads only the version column (a full refresh_from_db() would trip
    over protected django-fsm fields).
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = bool(self.pk) and not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
