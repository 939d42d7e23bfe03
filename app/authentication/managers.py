"""Manager creating users keyed by email instead of username."""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    def create_user(self, email, password=None, **extra_fields):
        """
        Create a user with a normalized email.

        Without a password the account gets an unusable one, which is how
        test fixtures and seeded vendors are created.
        """
        if not email:
            raise ValueError("The Email field must be set")

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        for flag in ("is_staff", "is_superuser"):
            if extra_fields[flag] is not True:
                raise ValueError(f"Superuser must have {flag}=True.")
        return self.create_user(email, password, **extra_fields)
