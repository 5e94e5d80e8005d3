"""
Celery configuration for the recurring payments backend.

Workers run the reconciliation sweeps, individual payment attempts,
early payout settlement and refund processing. Periodic schedules are
stored in the database (django-celery-beat) and installed by migrations.

Usage:
    from payments.tasks import process_payment_record

    process_payment_record.delay(str(record.id))
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
