"""
The marketplace user.

Buyers, vendors and admins share one model. Staff users resolve disputes
and can use the admin; everything else is decided per order by who the
buyer and vendor are.
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin):
    """Logs in with email; ``phone_number`` pre-fills mobile-money prompts."""

    email = models.EmailField(
        unique=True, db_index=True, max_length=254, help_text="User's email address (primary identifier)"
    )
    full_name = models.CharField(
        max_length=150, blank=True, default="", help_text="Display name used on receipts and payout narratives"
    )
    phone_number = models.CharField(
        max_length=20, blank=True, default="", help_text="Default phone number for mobile-money prompts"
    )

    is_active = models.BooleanField(
        default=True, help_text="Whether this user account is active. Deselect instead of deleting."
    )
    is_staff = models.BooleanField(default=False, help_text="Whether the user can access the admin site.")

    date_joined = models.DateTimeField(auto_now_add=True, help_text="When the user account was created")
    updated_at = models.DateTimeField(auto_now=True, help_text="When the user record was last modified")

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"

    def __str__(self) -> str:
        return self.email

    @property
    def display_name(self) -> str:
        """Full name, or the local part of the email when none is set."""
        return self.full_name or self.email.split("@")[0]
