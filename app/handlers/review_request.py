"""
Review request flow.

A completed service job creates a ReviewRequest and a delayed review_request
job. When the job runs the customer gets the review link by SMS; a single
follow-up goes out a day later unless the customer has already clicked.
"""

import logging
from datetime import timedelta
from typing import Optional, TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import SmsDeliveryError
from app.database import AsyncSessionLocal
from app.models.base import utcnow, new_id
from app.models.customer import Customer
from app.models.delayed_job import DelayedJob, JobType
from app.models.domain_event import DomainEventType
from app.models.organization import Organization
from app.models.review_request import ReviewRequest, ReviewRequestStatus
from app.models.service_job import ServiceJob
from app.schemas.events import Event, JobCompletedEventData
from app.schemas.jobs import ReviewRequestPayload
from app.schemas.sms import SendTemplatedSmsOptions
from app.services.organization_settings import review_settings_for

if TYPE_CHECKING:
	from app.services.event_bus import EventBus
	from app.services.job_queue import JobQueue
	from app.services.sms_service import SmsService

logger = logging.getLogger(__name__)


def review_link(review_request_id: str) -> str:
	return f"{settings.APP_URL.rstrip('/')}/r/{review_request_id}"


class ReviewRequestHandler:
	def __init__(
			self,
			job_queue: "JobQueue",
			sms_service: "SmsService",
			event_bus: "EventBus",
			session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
			reminder_delay: timedelta = timedelta(hours=settings.REVIEW_REMINDER_DELAY_HOURS),
	):
		self.job_queue = job_queue
		self.sms_service = sms_service
		self.event_bus = event_bus
		self.session_factory = session_factory
		self.reminder_delay = reminder_delay

	def register(self) -> None:
		self.event_bus.on(DomainEventType.JOB_COMPLETED, self.handle_job_completed)
		self.job_queue.register(JobType.REVIEW_REQUEST, self.handle_job)
		logger.info("Review request handler registered")

	async def handle_job_completed(self, event: Event) -> Optional[str]:
		"""Create the review request and schedule its first send; returns the request id."""
		data = JobCompletedEventData.model_validate(event.data)

		async with self.session_factory() as db:
			job = await db.get(ServiceJob, data.job_id)
			if job is None or job.customer_id is None:
				logger.info(f"Job or customer not found: {data.job_id}")
				return None

			existing = await db.execute(select(ReviewRequest.id).where(ReviewRequest.job_id == job.id))
			if existing.scalar_one_or_none() is not None:
				logger.info(f"Review request already exists for job {job.id}")
				return None

			organization = await db.get(Organization, event.organization_id)
			review_settings = review_settings_for(organization)
			if not review_settings.enabled:
				logger.info(f"Review automation disabled for org {event.organization_id}")
				return None

			review_request = ReviewRequest(
				id=new_id(),
				organization_id=event.organization_id,
				customer_id=job.customer_id,
				job_id=job.id,
				status=ReviewRequestStatus.PENDING.value,
			)
			db.add(review_request)
			await db.commit()

		await self.job_queue.enqueue(
			JobType.REVIEW_REQUEST,
			event.organization_id,
			ReviewRequestPayload(
				review_request_id=review_request.id,
				job_id=job.id,
				customer_id=job.customer_id,
				stage="initial",
			),
			delay_ms=review_settings.delay_minutes * 60 * 1000,
		)

		logger.info(f"Review request {review_request.id} created for job {job.id}")
		return review_request.id

	async def handle_job(self, job: DelayedJob) -> None:
		payload = ReviewRequestPayload.model_validate(job.payload)
		expected = ReviewRequestStatus.PENDING if payload.stage == "initial" else ReviewRequestStatus.SENT

		async with self.session_factory() as db:
			review_request = await db.get(ReviewRequest, payload.review_request_id)
			if review_request is None or review_request.status != expected.value:
				logger.info(f"Review request {payload.review_request_id} no longer {expected.value}, skipping")
				return

			service_job = await db.get(ServiceJob, review_request.job_id)
			customer = await db.get(Customer, review_request.customer_id)
			organization = await db.get(Organization, review_request.organization_id)

		if customer is None or not customer.phone:
			logger.warning(f"Customer {review_request.customer_id} has no phone number")
			return

		template_type = "review_request" if payload.stage == "initial" else "review_request_followup"
		result = await self.sms_service.send_templated(SendTemplatedSmsOptions(
			organization_id=review_request.organization_id,
			customer_id=customer.id,
			to=customer.phone,
			template_type=template_type,
			variables={
				"business_name": organization.name if organization else "",
				"customer_name": customer.first_name or "there",
				"job_type": (service_job.type if service_job else None) or "",
				"review_link": review_link(review_request.id),
			},
		))

		if not result.success:
			error = result.error
			raise SmsDeliveryError(
				error.message if error else "Failed to send review request",
				code=error.code if error else None,
			)

		if payload.stage == "followup":
			logger.info(f"Review reminder sent for request {review_request.id}")
			return

		# Status flips to sent last; until then a retry redoes the remaining steps
		if review_settings_for(organization).send_reminder and not await self._followup_pending(review_request.id):
			await self.job_queue.enqueue(
				JobType.REVIEW_REQUEST,
				review_request.organization_id,
				payload.model_copy(update={"stage": "followup"}),
				delay_ms=int(self.reminder_delay.total_seconds() * 1000),
			)

		await self.event_bus.emit(Event(
			type=DomainEventType.REVIEW_REQUEST_SENT,
			organization_id=review_request.organization_id,
			aggregate_type="review_request",
			aggregate_id=review_request.id,
			data={
				"review_request_id": review_request.id,
				"job_id": review_request.job_id,
				"customer_id": review_request.customer_id,
			},
		))

		await self._mark_sent(review_request.id)

		logger.info(f"Review request sent for job {review_request.job_id}")

	async def _followup_pending(self, review_request_id: str) -> bool:
		jobs = await self.job_queue.list_jobs(job_type=JobType.REVIEW_REQUEST, reference_id=review_request_id)
		return any(job.processed_at is None and job.payload.get("stage") == "followup" for job in jobs)

	async def _mark_sent(self, review_request_id: str) -> None:
		async with self.session_factory() as db:
			review_request = await db.get(ReviewRequest, review_request_id)
			if review_request is not None:
				review_request.status = ReviewRequestStatus.SENT.value
				review_request.sent_at = utcnow()
				await db.commit()
