"""Celery application for running import jobs out of process."""
from celery import Celery

from app.config import get_settings

settings = get_settings()

IMPORT_QUEUE = "imports"

celery_app = Celery(
    "hospital_imports",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks.import_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_routes={"app.tasks.import_tasks.*": {"queue": IMPORT_QUEUE}},
    # one import job per worker process at a time
    worker_prefetch_multiplier=1,
    result_expires=60 * 60 * 24,
)
