from django.db import migrations, models

import authentication.managers


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                (
                    "is_superuser",
                    models.BooleanField(
                        default=False,
                        help_text="Designates that this user has all permissions without explicitly assigning them.",
                        verbose_name="superuser status",
                    ),
                ),
                ("email", models.EmailField(db_index=True, help_text="User's email address (primary identifier)", max_length=254, unique=True)),
                ("full_name", models.CharField(blank=True, default="", help_text="Display name used on receipts and payout narratives", max_length=150)),
                ("phone_number", models.CharField(blank=True, default="", help_text="Default phone number for mobile-money prompts", max_length=20)),
                ("is_active", models.BooleanField(default=True, help_text="Whether this user account is active. Deselect instead of deleting.")),
                ("is_staff", models.BooleanField(default=False, help_text="Whether the user can access the admin site.")),
                ("date_joined", models.DateTimeField(auto_now_add=True, help_text="When the user account was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="When the user record was last modified")),
                (
                    "groups",
                    models.ManyToManyField(
                        blank=True,
                        help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.group",
                        verbose_name="groups",
                    ),
                ),
                (
                    "user_permissions",
                    models.ManyToManyField(
                        blank=True,
                        help_text="Specific permissions for this user.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.permission",
                        verbose_name="user permissions",
                    ),
                ),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
            },
            managers=[
                ("objects", authentication.managers.UserManager()),
            ],
        ),
    ]
