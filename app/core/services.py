"""
Explicit construction of the background delivery services.

Every component receives its collaborators here; nothing is a module-level
singleton, so tests build an isolated set against their own database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import AsyncSessionLocal
from app.handlers.review_request import ReviewRequestHandler
from app.services.event_bus import EventBus
from app.services.job_queue import JobQueue
from app.services.reminder_scheduler import ReminderScheduler
from app.services.sms_queue import SmsQueue
from app.services.sms_service import SmsService
from app.services.twilio_client import TwilioClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
	session_factory: async_sessionmaker[AsyncSession]
	event_bus: EventBus
	job_queue: JobQueue
	sms_service: SmsService
	sms_queue: SmsQueue
	reminder_scheduler: ReminderScheduler
	review_requests: ReviewRequestHandler

	def start_workers(self) -> None:
		self.job_queue.start()
		self.sms_queue.start()

	async def stop_workers(self) -> None:
		await self.job_queue.stop()
		await self.sms_queue.stop()
		await self.event_bus.drain()

	def worker_status(self) -> dict:
		return {
			"job_queue": self.job_queue.get_status(),
			"sms_queue": self.sms_queue.get_status(),
		}


def build_services(
		session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
		twilio: Optional[TwilioClient] = None,
		job_poll_interval: float = settings.JOB_QUEUE_POLL_INTERVAL_SECONDS,
		sms_poll_interval: float = settings.SMS_QUEUE_POLL_INTERVAL_SECONDS,
) -> Services:
	event_bus = EventBus(session_factory)
	job_queue = JobQueue(session_factory, poll_interval_seconds=job_poll_interval)

	sms_service = SmsService(session_factory, twilio=twilio, event_bus=event_bus)
	sms_queue = SmsQueue(session_factory, sms_service=sms_service, poll_interval_seconds=sms_poll_interval)
	sms_service.sms_queue = sms_queue

	reminder_scheduler = ReminderScheduler(job_queue, sms_service, event_bus, session_factory)
	reminder_scheduler.register()

	review_requests = ReviewRequestHandler(job_queue, sms_service, event_bus, session_factory)
	review_requests.register()

	logger.info("Background services initialized")

	return Services(
		session_factory=session_factory,
		event_bus=event_bus,
		job_queue=job_queue,
		sms_service=sms_service,
		sms_queue=sms_queue,
		reminder_scheduler=reminder_scheduler,
		review_requests=review_requests,
	)
