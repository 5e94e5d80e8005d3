"""
Add celery-beat schedules for recurring payment processing.

- generate_due_payment_records: daily at 00:05, creates the day's records
- process_due_payment_records: every 15 minutes, charges due records
- release_stale_payment_claims: every 10 minutes, returns records stuck
  in processing after a worker crash
"""

from django.db import migrations

INTERVAL_TASKS = [
    {
        "name": "Process Due Payment Records",
        "task": "payments.tasks.process_due_payment_records",
        "every": 15,
        "description": "Charges pending payment records whose retry time has arrived.",
    },
    {
        "name": "Release Stale Payment Claims",
        "task": "payments.tasks.release_stale_payment_claims",
        "every": 10,
        "description": "Returns payment records abandoned in processing to pending.",
    },
]

DAILY_TASK_NAME = "Generate Due Payment Records"


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in INTERVAL_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )

    crontab, _ = CrontabSchedule.objects.get_or_create(
        minute="5",
        hour="0",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )
    PeriodicTask.objects.get_or_create(
        name=DAILY_TASK_NAME,
        defaults={
            "task": "payments.tasks.generate_due_payment_records",
            "crontab": crontab,
            "enabled": True,
            "description": "Creates payment records for recurring agreements due today.",
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    names = [entry["name"] for entry in INTERVAL_TASKS] + [DAILY_TASK_NAME]
    PeriodicTask.objects.filter(name__in=names).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
