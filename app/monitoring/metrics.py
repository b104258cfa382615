import logging

from prometheus_client import Counter, Histogram, Gauge, generate_latest
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

logger = logging.getLogger(__name__)

router = APIRouter()

# Define metrics
request_count = Counter(
	'http_requests_total',
	'Total HTTP requests',
	['method', 'endpoint', 'status']
)

request_duration = Histogram(
	'http_request_duration_seconds',
	'HTTP request duration',
	['method', 'endpoint'],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

jobs_processed = Counter(
	'jobs_processed_total',
	'Delayed job handler invocations',
	['type', 'outcome']
)

jobs_exhausted = Counter(
	'jobs_exhausted_total',
	'Delayed jobs that used their last attempt without succeeding',
	['type']
)

job_duration = Histogram(
	'job_duration_seconds',
	'Delayed job handler duration',
	['type'],
	buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

queued_sms = Counter(
	'queued_sms_total',
	'Quiet-hours SMS queue outcomes',
	['outcome']
)

domain_events = Counter(
	'domain_events_total',
	'Domain events emitted',
	['type']
)

queue_pending = Gauge(
	'queue_pending',
	'Rows waiting in a background queue',
	['queue']
)


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(request: Request):
	"""Prometheus metrics endpoint"""
	# Update dynamic metrics
	services = getattr(request.app.state, "services", None)
	if services is not None:
		try:
			stats = await services.job_queue.get_stats()
			queue_pending.labels(queue="jobs").set(stats.get("pending", 0) + stats.get("scheduled", 0))
			queue_pending.labels(queue="sms").set(await services.sms_queue.get_pending_count())
		except Exception as e:
			logger.warning(f"Failed to refresh queue gauges: {e}")

	return generate_latest()
