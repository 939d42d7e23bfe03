"""
Add celery-beat schedules for the settlement sweeps.

Each sweep is also reachable over HTTP under /api/v1/payments/jobs/;
both paths share a Redis lock, so a beat run and an HTTP run never
overlap.
"""

from django.db import migrations

# (name, task, every, period, description)
PERIODIC_TASKS = [
    (
        "Auto Payout Sweep",
        "payments.tasks.run_auto_payout_sweep",
        1,
        "hours",
        "Disburses vendor balances at or above AUTO_PAYOUT_THRESHOLD.",
    ),
    (
        "Reconcile Pending Payments",
        "payments.tasks.reconcile_pending_payments",
        10,
        "minutes",
        "Verifies pending payments with their gateway in case a callback was lost.",
    ),
    (
        "Refresh Processing Payouts",
        "payments.tasks.refresh_processing_payouts",
        15,
        "minutes",
        "Asks the gateway for the final state of disbursements still processing.",
    ),
    (
        "Retry Failed Webhooks",
        "payments.tasks.retry_failed_webhooks",
        5,
        "minutes",
        "Requeues failed webhook deliveries and resets ones stuck in processing.",
    ),
    (
        "Cleanup Old Webhooks",
        "payments.tasks.cleanup_old_webhooks",
        1,
        "days",
        "Deletes processed webhook deliveries older than WEBHOOK_RETENTION_DAYS.",
    ),
    (
        "Auto Release Escrow",
        "orders.tasks.run_auto_release_sweep",
        15,
        "minutes",
        "Completes shipped orders whose auto-release window has passed.",
    ),
    (
        "Cancel Stale Orders",
        "orders.tasks.cancel_stale_orders",
        1,
        "hours",
        "Cancels orders left unpaid or unconfirmed past their window.",
    ),
    (
        "Refund Unshipped Orders",
        "orders.tasks.refund_unshipped_orders",
        1,
        "hours",
        "Cancels and refunds confirmed orders the vendor never shipped.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the settlement sweeps."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, every, period, description in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(every=every, period=period)
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[entry[0] for entry in PERIODIC_TASKS]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
