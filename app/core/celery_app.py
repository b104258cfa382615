# app/core/celery_app.py
from celery import Celery
from app.config import settings

celery_app = Celery(
    "serviceflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Maintenance tasks only; delivery runs in the in-process pollers
celery_app.conf.update(
    task_time_limit=60*15,          # 15 min hard limit
    task_soft_time_limit=60*10,
    worker_max_tasks_per_child=100,
    worker_prefetch_multiplier=1,
    result_expires=3600,            # 1h
    task_track_started=True,
    timezone="UTC",
    include=["app.workers.scheduled_tasks"],
)
