import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import select, update, delete, and_, or_, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import HandlerTimeoutError
from app.database import AsyncSessionLocal
from app.models.base import as_naive_utc, utcnow, new_id
from app.models.delayed_job import DelayedJob, JobStatus, CANCELED_ERROR
from app.monitoring.metrics import jobs_processed, jobs_exhausted, job_duration
from app.schemas.jobs import JobPayload
from app.workers.poller import PollingWorker

logger = logging.getLogger(__name__)

JobHandler = Callable[[DelayedJob], Awaitable[Any]]

_UNSET = object()


@dataclass
class HandlerRegistration:
	handler: JobHandler
	timeout: Optional[float]


class JobQueue(PollingWorker[DelayedJob]):
	"""
	Database-backed delayed job queue with at-least-once delivery.

	One handler per job type. Jobs are retried on every poll until they
	succeed or use up max_attempts; there is no backoff between attempts.
	"""

	name = "job-queue"

	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
			poll_interval_seconds: float = settings.JOB_QUEUE_POLL_INTERVAL_SECONDS,
			batch_size: int = settings.JOB_QUEUE_BATCH_SIZE,
			default_max_attempts: int = settings.JOB_DEFAULT_MAX_ATTEMPTS,
			default_timeout_seconds: Optional[float] = settings.JOB_HANDLER_TIMEOUT_SECONDS,
	):
		super().__init__(poll_interval_seconds)
		self.session_factory = session_factory
		self.batch_size = batch_size
		self.default_max_attempts = default_max_attempts
		self.default_timeout_seconds = default_timeout_seconds
		self._handlers: Dict[str, HandlerRegistration] = {}

	# ------------------------------------------------------------
	# Registry
	# ------------------------------------------------------------

	def register(self, job_type: str, handler: JobHandler, timeout: Any = _UNSET) -> None:
		"""Register the handler for a job type; a later registration replaces it.

		timeout overrides the queue default for this type; pass None to disable it.
		"""
		key = _type_key(job_type)
		if timeout is _UNSET:
			timeout = self.default_timeout_seconds
		self._handlers[key] = HandlerRegistration(handler=handler, timeout=timeout)
		logger.debug(f"Registered job handler for {key}")

	def handler_for(self, job_type: str) -> Optional[JobHandler]:
		registration = self._handlers.get(_type_key(job_type))
		return registration.handler if registration else None

	# ------------------------------------------------------------
	# Producer API
	# ------------------------------------------------------------

	async def enqueue(
			self,
			job_type: str,
			organization_id: str,
			payload: Union[Dict[str, Any], JobPayload],
			delay_ms: Optional[int] = None,
			process_after: Optional[datetime] = None,
			max_attempts: Optional[int] = None,
			reference_id: Optional[str] = None,
	) -> str:
		"""Persist a job and return its id; an explicit process_after wins over delay_ms."""
		if isinstance(payload, JobPayload):
			if reference_id is None:
				reference_id = payload.reference_id()
			payload = payload.model_dump(mode="json")

		if process_after is None:
			process_after = utcnow() + timedelta(milliseconds=delay_ms or 0)
		else:
			process_after = as_naive_utc(process_after)

		job = DelayedJob(
			id=new_id(),
			type=_type_key(job_type),
			organization_id=organization_id,
			payload=payload,
			reference_id=reference_id,
			process_after=process_after,
			attempts=0,
			max_attempts=max_attempts if max_attempts is not None else self.default_max_attempts,
		)

		async with self.session_factory() as db:
			db.add(job)
			await db.commit()

		logger.info(f"Enqueued {job.type} job {job.id} for {process_after.isoformat()}")
		return job.id

	async def cancel(self, job_id: str) -> bool:
		try:
			async with self.session_factory() as db:
				result = await db.execute(
					update(DelayedJob)
					.where(DelayedJob.id == job_id)
					.values(processed_at=utcnow(), last_error=CANCELED_ERROR)
				)
				await db.commit()
		except Exception as e:
			logger.error(f"Failed to cancel job {job_id}: {e}")
			return False

		if result.rowcount == 0:
			return False

		logger.info(f"Canceled job {job_id}")
		return True

	async def cleanup(self, older_than_days: int = settings.JOB_RETENTION_DAYS, include_exhausted: bool = False) -> int:
		"""Delete jobs processed before the cutoff; unprocessed jobs stay unless include_exhausted."""
		cutoff = utcnow() - timedelta(days=older_than_days)

		condition = and_(DelayedJob.processed_at.is_not(None), DelayedJob.processed_at < cutoff)
		if include_exhausted:
			condition = or_(
				condition,
				and_(
					DelayedJob.processed_at.is_(None),
					DelayedJob.attempts >= DelayedJob.max_attempts,
					DelayedJob.created_at < cutoff,
				),
			)

		async with self.session_factory() as db:
			result = await db.execute(delete(DelayedJob).where(condition))
			await db.commit()

		deleted = result.rowcount or 0
		logger.info(f"Cleaned up {deleted} delayed jobs older than {older_than_days} days")
		return deleted

	# ------------------------------------------------------------
	# Inspection
	# ------------------------------------------------------------

	async def get_job(self, job_id: str) -> Optional[DelayedJob]:
		async with self.session_factory() as db:
			return await db.get(DelayedJob, job_id)

	async def list_jobs(
			self,
			organization_id: Optional[str] = None,
			status: Optional[JobStatus] = None,
			job_type: Optional[str] = None,
			reference_id: Optional[str] = None,
			limit: int = 100,
			offset: int = 0,
	) -> List[DelayedJob]:
		query = select(DelayedJob)
		if organization_id:
			query = query.where(DelayedJob.organization_id == organization_id)
		if job_type:
			query = query.where(DelayedJob.type == _type_key(job_type))
		if reference_id:
			query = query.where(DelayedJob.reference_id == reference_id)
		if status is not None:
			query = query.where(_status_condition(JobStatus(status), utcnow()))

		query = query.order_by(DelayedJob.process_after.desc()).offset(offset).limit(limit)

		async with self.session_factory() as db:
			result = await db.execute(query)
			return list(result.scalars().all())

	async def list_exhausted(self, organization_id: Optional[str] = None, limit: int = 100) -> List[DelayedJob]:
		return await self.list_jobs(organization_id=organization_id, status=JobStatus.EXHAUSTED, limit=limit)

	async def get_stats(self, organization_id: Optional[str] = None) -> Dict[str, int]:
		now = utcnow()
		stats = {}

		async with self.session_factory() as db:
			for status in JobStatus:
				query = select(func.count(DelayedJob.id)).where(_status_condition(status, now))
				if organization_id:
					query = query.where(DelayedJob.organization_id == organization_id)
				stats[status.value] = (await db.execute(query)).scalar_one()

		return stats

	async def count_exhausted_by_type(self) -> Dict[str, int]:
		query = (
			select(DelayedJob.type, func.count(DelayedJob.id))
			.where(_status_condition(JobStatus.EXHAUSTED, utcnow()))
			.group_by(DelayedJob.type)
		)
		async with self.session_factory() as db:
			result = await db.execute(query)
			return {job_type: count for job_type, count in result.all()}

	# ------------------------------------------------------------
	# Poll cycle
	# ------------------------------------------------------------

	async def process_jobs(self) -> int:
		return await self.run_once()

	async def fetch_candidates(self) -> List[DelayedJob]:
		async with self.session_factory() as db:
			result = await db.execute(
				select(DelayedJob)
				.where(
					and_(
						DelayedJob.processed_at.is_(None),
						DelayedJob.process_after <= utcnow(),
					)
				)
				.order_by(DelayedJob.process_after)
				.limit(self.batch_size)
			)
			jobs = result.scalars().all()

		return [job for job in jobs if not job.is_exhausted]

	async def is_still_eligible(self, job: DelayedJob) -> bool:
		if job.type not in self._handlers:
			logger.warning(f"No handler registered for job type: {job.type}")
			return False
		return True

	async def execute(self, job: DelayedJob) -> Any:
		registration = self._handlers[job.type]

		async with self.session_factory() as db:
			await db.execute(
				update(DelayedJob)
				.where(DelayedJob.id == job.id)
				.values(attempts=DelayedJob.attempts + 1)
			)
			await db.commit()
		job.attempts += 1

		started = time.perf_counter()
		try:
			if registration.timeout:
				try:
					return await asyncio.wait_for(registration.handler(job), timeout=registration.timeout)
				except asyncio.TimeoutError:
					raise HandlerTimeoutError(job.type, registration.timeout)
			return await registration.handler(job)
		finally:
			job_duration.labels(type=job.type).observe(time.perf_counter() - started)

	async def record_success(self, job: DelayedJob, result: Any) -> None:
		async with self.session_factory() as db:
			await db.execute(
				update(DelayedJob)
				.where(DelayedJob.id == job.id)
				.values(processed_at=utcnow())
			)
			await db.commit()

		jobs_processed.labels(type=job.type, outcome="success").inc()
		logger.info(f"Processed {job.type} job {job.id}")

	async def record_failure(self, job: DelayedJob, error: Exception) -> None:
		message = str(error) or error.__class__.__name__

		async with self.session_factory() as db:
			await db.execute(
				update(DelayedJob)
				.where(DelayedJob.id == job.id)
				.values(last_error=message)
			)
			await db.commit()

		jobs_processed.labels(type=job.type, outcome="failure").inc()

		if job.attempts >= job.max_attempts:
			jobs_exhausted.labels(type=job.type).inc()
			logger.error(
				f"Job {job.id} ({job.type}) exhausted after {job.attempts} attempts: {message}"
			)
		else:
			logger.warning(
				f"Job {job.id} ({job.type}) failed attempt {job.attempts}/{job.max_attempts}: {message}"
			)


def _type_key(job_type: Any) -> str:
	return job_type.value if hasattr(job_type, "value") else str(job_type)


def _status_condition(status: JobStatus, now: datetime):
	unprocessed = DelayedJob.processed_at.is_(None)
	live = DelayedJob.attempts < DelayedJob.max_attempts

	if status == JobStatus.CANCELED:
		return and_(DelayedJob.processed_at.is_not(None), DelayedJob.last_error == CANCELED_ERROR)
	if status == JobStatus.COMPLETED:
		return and_(
			DelayedJob.processed_at.is_not(None),
			or_(DelayedJob.last_error.is_(None), DelayedJob.last_error != CANCELED_ERROR),
		)
	if status == JobStatus.EXHAUSTED:
		return and_(unprocessed, DelayedJob.attempts >= DelayedJob.max_attempts)
	if status == JobStatus.SCHEDULED:
		return and_(unprocessed, live, DelayedJob.process_after > now)
	return and_(unprocessed, live, DelayedJob.process_after <= now)
