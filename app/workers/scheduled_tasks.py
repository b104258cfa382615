import asyncio
import logging

from celery.schedules import crontab

from app.config import settings
from app.core.celery_app import celery_app
from app.database import AsyncSessionLocal
from app.services.job_queue import JobQueue
from app.services.sms_queue import SmsQueue

logger = logging.getLogger(__name__)

# Configure periodic tasks
celery_app.conf.beat_schedule = {
	'cleanup-delayed-jobs': {
		'task': 'app.workers.scheduled_tasks.cleanup_delayed_jobs',
		'schedule': crontab(hour=3, minute=0),  # Daily at 3 AM
	},
	'cleanup-queued-sms': {
		'task': 'app.workers.scheduled_tasks.cleanup_queued_sms',
		'schedule': crontab(hour=3, minute=15),
	},
	'report-exhausted-jobs': {
		'task': 'app.workers.scheduled_tasks.report_exhausted_jobs',
		'schedule': crontab(hour=6, minute=0),  # Daily at 6 AM
	},
}


def _run(coro):
	loop = asyncio.new_event_loop()
	asyncio.set_event_loop(loop)
	try:
		return loop.run_until_complete(coro)
	finally:
		loop.close()


@celery_app.task(name="app.workers.scheduled_tasks.cleanup_delayed_jobs")
def cleanup_delayed_jobs(older_than_days: int = settings.JOB_RETENTION_DAYS):
	"""Delete delayed jobs processed more than older_than_days ago"""
	deleted = _run(JobQueue(AsyncSessionLocal).cleanup(older_than_days))
	return {"deleted": deleted}


@celery_app.task(name="app.workers.scheduled_tasks.cleanup_queued_sms")
def cleanup_queued_sms(older_than_days: int = settings.SMS_RETENTION_DAYS):
	"""Delete queued SMS processed more than older_than_days ago"""
	deleted = _run(SmsQueue(AsyncSessionLocal).cleanup(older_than_days))
	return {"deleted": deleted}


@celery_app.task(name="app.workers.scheduled_tasks.report_exhausted_jobs")
def report_exhausted_jobs():
	"""Log delayed jobs that used every attempt without succeeding"""
	counts = _run(JobQueue(AsyncSessionLocal).count_exhausted_by_type())

	if counts:
		logger.error(f"Exhausted delayed jobs by type: {counts}")
	else:
		logger.info("No exhausted delayed jobs")

	return {"exhausted": counts}
