import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.exceptions import ReminderDeliveryError
from app.database import AsyncSessionLocal
from app.models.appointment import Appointment, ACTIVE_APPOINTMENT_STATUSES
from app.models.base import as_naive_utc, utcnow
from app.models.delayed_job import DelayedJob, JobType
from app.models.domain_event import DomainEventType
from app.models.user import User
from app.schemas.events import Event
from app.schemas.jobs import AppointmentReminderPayload
from app.schemas.sms import SendTemplatedSmsOptions
from app.utils.quiet_hours import get_timezone, to_local

if TYPE_CHECKING:
	from app.services.event_bus import EventBus
	from app.services.job_queue import JobQueue
	from app.services.sms_service import SmsService

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = {
	"24h": timedelta(hours=24),
	"2h": timedelta(hours=2),
}
REMINDER_MAX_ATTEMPTS = 2
DEFAULT_TECHNICIAN_NAME = "Our technician"


@dataclass
class ReminderScheduleResult:
	reminder_24h: bool = False
	reminder_2h: bool = False
	job_ids: List[str] = field(default_factory=list)


def format_appointment_time(scheduled_at: datetime, tz_name: Optional[str]) -> tuple:
	"""("Monday, March 3", "2:30 PM") in the organization's timezone."""
	local = to_local(scheduled_at, get_timezone(tz_name))
	date_str = f"{local:%A}, {local:%B} {local.day}"
	time_str = f"{local.hour % 12 or 12}:{local:%M} {local:%p}"
	return date_str, time_str


class ReminderScheduler:
	"""Schedules and sends the 24h / 2h appointment reminders."""

	def __init__(
			self,
			job_queue: "JobQueue",
			sms_service: "SmsService",
			event_bus: Optional["EventBus"] = None,
			session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
	):
		self.job_queue = job_queue
		self.sms_service = sms_service
		self.event_bus = event_bus
		self.session_factory = session_factory

	def register(self, job_queue: Optional["JobQueue"] = None) -> None:
		(job_queue or self.job_queue).register(JobType.APPOINTMENT_REMINDER, self.handle_job)

	async def schedule_reminders(
			self,
			appointment_id: str,
			organization_id: str,
			customer_id: str,
			scheduled_at: datetime,
			technician_id: Optional[str] = None,
	) -> ReminderScheduleResult:
		"""Replace any pending reminders for the appointment with fresh ones."""
		scheduled_at = as_naive_utc(scheduled_at)
		await self.cancel_reminders(appointment_id)

		technician_name = await self._technician_name(technician_id) if technician_id else None

		result = ReminderScheduleResult()
		now = utcnow()

		for reminder_type, offset in REMINDER_OFFSETS.items():
			send_at = scheduled_at - offset
			if send_at <= now:
				continue

			payload = AppointmentReminderPayload(
				appointment_id=appointment_id,
				organization_id=organization_id,
				customer_id=customer_id,
				reminder_type=reminder_type,
				scheduled_at=scheduled_at,
				technician_id=technician_id,
				technician_name=technician_name,
			)
			job_id = await self.job_queue.enqueue(
				JobType.APPOINTMENT_REMINDER,
				organization_id,
				payload,
				process_after=send_at,
				max_attempts=REMINDER_MAX_ATTEMPTS,
			)
			result.job_ids.append(job_id)
			setattr(result, f"reminder_{reminder_type}", True)

		logger.info(
			f"Scheduled {len(result.job_ids)} reminders for appointment {appointment_id} "
			f"(24h={result.reminder_24h}, 2h={result.reminder_2h})"
		)
		return result

	async def cancel_reminders(self, appointment_id: str) -> int:
		async with self.session_factory() as db:
			result = await db.execute(
				delete(DelayedJob).where(
					and_(
						DelayedJob.type == JobType.APPOINTMENT_REMINDER.value,
						DelayedJob.reference_id == appointment_id,
						DelayedJob.processed_at.is_(None),
					)
				)
			)
			await db.commit()

		canceled = result.rowcount or 0
		if canceled:
			logger.info(f"Canceled {canceled} reminders for appointment {appointment_id}")
		return canceled

	async def handle_job(self, job: DelayedJob) -> None:
		await self.process_reminder(AppointmentReminderPayload.model_validate(job.payload))

	async def process_reminder(self, payload: AppointmentReminderPayload) -> None:
		appointment = await self._load_appointment(payload.appointment_id)

		if appointment is None:
			logger.info(f"Appointment {payload.appointment_id} not found, skipping reminder")
			return

		if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
			logger.info(f"Appointment {appointment.id} is {appointment.status}, skipping reminder")
			return

		customer = appointment.customer
		if not customer or not customer.phone:
			logger.warning(f"Customer {payload.customer_id} has no phone number")
			return

		template_type = "appointment_reminder_24h" if payload.reminder_type == "24h" else "appointment_reminder_2h"
		date_str, time_str = format_appointment_time(appointment.scheduled_at, appointment.organization.timezone)

		result = await self.sms_service.send_templated(SendTemplatedSmsOptions(
			organization_id=appointment.organization_id,
			customer_id=appointment.customer_id,
			to=customer.phone,
			template_type=template_type,
			variables={
				"customer_name": customer.first_name or "there",
				"business_name": appointment.organization.name,
				"technician_name": payload.technician_name or DEFAULT_TECHNICIAN_NAME,
				"date": date_str,
				"time": time_str,
			},
			# Reminders bypass quiet hours
			urgent=True,
		))

		if not result.success:
			error = result.error
			logger.error(f"Failed to send {payload.reminder_type} reminder for appointment {appointment.id}: {error}")
			raise ReminderDeliveryError(
				error.message if error else "Failed to send reminder",
				code=error.code if error else None,
			)

		await self._stamp_metadata(appointment.id, f"reminder_{payload.reminder_type}_sent_at")
		logger.info(f"Sent {payload.reminder_type} reminder for appointment {appointment.id}")

		if self.event_bus is not None:
			await self.event_bus.emit(Event(
				type=DomainEventType.APPOINTMENT_REMINDER_SENT,
				organization_id=appointment.organization_id,
				aggregate_type="appointment",
				aggregate_id=appointment.id,
				data={
					"appointment_id": appointment.id,
					"customer_id": appointment.customer_id,
					"reminder_type": payload.reminder_type,
				},
			))

	async def send_confirmation_request(self, appointment_id: str) -> bool:
		appointment = await self._load_appointment(appointment_id)
		if appointment is None or not appointment.customer or not appointment.customer.phone:
			return False

		date_str, time_str = format_appointment_time(appointment.scheduled_at, appointment.organization.timezone)

		result = await self.sms_service.send_templated(SendTemplatedSmsOptions(
			organization_id=appointment.organization_id,
			customer_id=appointment.customer_id,
			to=appointment.customer.phone,
			template_type="appointment_confirm_request",
			variables={
				"customer_name": appointment.customer.first_name or "there",
				"business_name": appointment.organization.name,
				"date": date_str,
				"time": time_str,
			},
		))

		if result.success:
			await self._stamp_metadata(appointment.id, "confirmation_request_sent_at")

		return result.success

	async def _load_appointment(self, appointment_id: str) -> Optional[Appointment]:
		async with self.session_factory() as db:
			result = await db.execute(
				select(Appointment)
				.options(selectinload(Appointment.customer), selectinload(Appointment.organization))
				.where(Appointment.id == appointment_id)
			)
			return result.scalar_one_or_none()

	async def _stamp_metadata(self, appointment_id: str, key: str) -> None:
		async with self.session_factory() as db:
			appointment = await db.get(Appointment, appointment_id)
			if appointment is None:
				return
			# Reassign so the JSON column is flagged dirty
			metadata = dict(appointment.appointment_metadata or {})
			metadata[key] = utcnow().isoformat()
			appointment.appointment_metadata = metadata
			await db.commit()

	async def _technician_name(self, technician_id: str) -> Optional[str]:
		try:
			async with self.session_factory() as db:
				technician = await db.get(User, technician_id)
		except Exception as e:
			logger.warning(f"Could not load technician {technician_id}: {e}")
			return None

		if technician is None:
			return None
		return technician.display_name or DEFAULT_TECHNICIAN_NAME
