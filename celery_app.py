from celery import Celery

from config import Settings

settings = Settings.from_file_or_default()

celery = Celery(
    "sangeet_worker",
    broker=settings.celery.broker,
    backend=settings.celery.backend,
    include=["tasks"],
)

celery.conf.task_routes = {
    "tasks.reconcile": {"queue": "maintenance"}
}

celery.conf.beat_schedule = {
    "reconcile-aggregates": {
        "task": "tasks.reconcile",
        "schedule": settings.celery.reconcile_interval_minutes * 60,
    }
}
