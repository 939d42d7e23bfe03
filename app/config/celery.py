"""
Celery configuration for the settlement engine.

Workers run the settlement sweeps and reconciliation jobs defined in
orders.tasks and payments.tasks. Schedules live in the database
(django-celery-beat) and are seeded by a payments data migration; the
same jobs are also reachable over HTTP for an external scheduler.

Usage:
    from payments.tasks import run_auto_payout_sweep

    run_auto_payout_sweep.delay()
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
