import pytest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from app.core.exceptions import ReminderDeliveryError
from app.models.appointment import Appointment
from app.models.base import utcnow
from app.models.delayed_job import DelayedJob, JobType, JobStatus
from app.models.domain_event import DomainEvent
from app.schemas.jobs import AppointmentReminderPayload
from app.services.reminder_scheduler import format_appointment_time


async def reminder_jobs(session_factory, appointment_id):
	async with session_factory() as db:
		result = await db.execute(
			select(DelayedJob)
			.where(DelayedJob.reference_id == appointment_id)
			.order_by(DelayedJob.process_after)
		)
		return list(result.scalars().all())


@pytest.mark.asyncio
async def test_schedule_creates_24h_and_2h_reminders(services, session_factory, appointment):
	result = await services.reminder_scheduler.schedule_reminders(
		appointment.id,
		appointment.organization_id,
		appointment.customer_id,
		appointment.scheduled_at,
		appointment.assigned_to_id,
	)

	assert result.reminder_24h is True
	assert result.reminder_2h is True
	assert len(result.job_ids) == 2

	jobs = await reminder_jobs(session_factory, appointment.id)
	assert [job.process_after for job in jobs] == [
		appointment.scheduled_at - timedelta(hours=24),
		appointment.scheduled_at - timedelta(hours=2),
	]
	assert all(job.type == JobType.APPOINTMENT_REMINDER.value for job in jobs)
	assert all(job.max_attempts == 2 for job in jobs)
	assert [job.payload["reminder_type"] for job in jobs] == ["24h", "2h"]
	assert jobs[0].payload["technician_name"] == "Bob Smith"


@pytest.mark.asyncio
async def test_reschedule_replaces_pending_reminders(services, session_factory, appointment):
	scheduler = services.reminder_scheduler
	await scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, appointment.scheduled_at
	)

	new_time = appointment.scheduled_at + timedelta(days=1)
	result = await scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, new_time
	)

	jobs = await reminder_jobs(session_factory, appointment.id)
	assert len(jobs) == 2
	assert {job.id for job in jobs} == set(result.job_ids)
	assert jobs[0].process_after == new_time - timedelta(hours=24)


@pytest.mark.asyncio
async def test_reminders_in_the_past_are_skipped(services, session_factory, appointment):
	soon = utcnow() + timedelta(hours=3)

	result = await services.reminder_scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, soon
	)

	assert result.reminder_24h is False
	assert result.reminder_2h is True
	assert len(result.job_ids) == 1

	result = await services.reminder_scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, utcnow() + timedelta(minutes=30)
	)
	assert result.job_ids == []
	assert await reminder_jobs(session_factory, appointment.id) == []


@pytest.mark.asyncio
async def test_cancel_reminders_deletes_only_pending(services, session_factory, appointment):
	scheduler = services.reminder_scheduler
	result = await scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, appointment.scheduled_at
	)

	# One reminder already went out
	async with session_factory() as db:
		await db.execute(
			update(DelayedJob).where(DelayedJob.id == result.job_ids[0]).values(processed_at=utcnow())
		)
		await db.commit()

	assert await scheduler.cancel_reminders(appointment.id) == 1

	jobs = await reminder_jobs(session_factory, appointment.id)
	assert [job.id for job in jobs] == [result.job_ids[0]]


async def make_due(session_factory, appointment_id):
	async with session_factory() as db:
		await db.execute(
			update(DelayedJob)
			.where(DelayedJob.reference_id == appointment_id)
			.values(process_after=utcnow() - timedelta(seconds=1))
		)
		await db.commit()


@pytest.mark.asyncio
async def test_due_reminder_is_sent_and_stamped(services, session_factory, appointment):
	await services.job_queue.enqueue(
		JobType.APPOINTMENT_REMINDER,
		appointment.organization_id,
		AppointmentReminderPayload(
			appointment_id=appointment.id,
			organization_id=appointment.organization_id,
			customer_id=appointment.customer_id,
			reminder_type="24h",
			scheduled_at=appointment.scheduled_at,
		),
		max_attempts=2,
	)

	assert await services.job_queue.run_once() == 1
	await services.event_bus.drain()

	async with session_factory() as db:
		refreshed = await db.get(Appointment, appointment.id)
		assert "reminder_24h_sent_at" in refreshed.appointment_metadata

		events = (await db.execute(
			select(DomainEvent.type).where(DomainEvent.aggregate_id == appointment.id)
		)).scalars().all()
		assert "appointment.reminder_sent" in events


@pytest.mark.asyncio
async def test_reminder_for_canceled_appointment_is_noop(services, session_factory, appointment):
	await services.reminder_scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, appointment.scheduled_at
	)

	async with session_factory() as db:
		await db.execute(update(Appointment).where(Appointment.id == appointment.id).values(status="canceled"))
		await db.commit()
	await make_due(session_factory, appointment.id)

	assert await services.job_queue.run_once() == 2

	jobs = await reminder_jobs(session_factory, appointment.id)
	assert all(job.status == JobStatus.COMPLETED for job in jobs)

	async with session_factory() as db:
		refreshed = await db.get(Appointment, appointment.id)
		assert refreshed.appointment_metadata == {}


@pytest.mark.asyncio
async def test_reminder_for_deleted_appointment_is_noop(services):
	payload = AppointmentReminderPayload(
		appointment_id="gone",
		organization_id="org-1",
		customer_id="cust-1",
		reminder_type="2h",
		scheduled_at=utcnow() + timedelta(hours=2),
	)

	assert await services.reminder_scheduler.process_reminder(payload) is None


@pytest.mark.asyncio
async def test_failed_send_raises_and_exhausts_after_two_attempts(services, session_factory, appointment, customer):
	await services.sms_service.record_opt_out(appointment.organization_id, customer.phone, "test")

	await services.reminder_scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, appointment.scheduled_at
	)
	await make_due(session_factory, appointment.id)

	payload = AppointmentReminderPayload(
		appointment_id=appointment.id,
		organization_id=appointment.organization_id,
		customer_id=appointment.customer_id,
		reminder_type="2h",
		scheduled_at=appointment.scheduled_at,
	)
	with pytest.raises(ReminderDeliveryError):
		await services.reminder_scheduler.process_reminder(payload)

	await services.job_queue.run_once()
	await services.job_queue.run_once()

	jobs = await reminder_jobs(session_factory, appointment.id)
	assert all(job.attempts == 2 for job in jobs)
	assert all(job.status == JobStatus.EXHAUSTED for job in jobs)
	assert all("opted out" in job.last_error for job in jobs)


@pytest.mark.asyncio
async def test_confirmation_request_stamps_metadata(services, session_factory, appointment):
	assert await services.reminder_scheduler.send_confirmation_request(appointment.id) is True

	async with session_factory() as db:
		refreshed = await db.get(Appointment, appointment.id)
		assert "confirmation_request_sent_at" in refreshed.appointment_metadata


def test_format_appointment_time_uses_local_timezone():
	# 19:30 UTC on 3 March 2025 is 14:30 in New York (EST)
	date_str, time_str = format_appointment_time(datetime(2025, 3, 3, 19, 30), "America/New_York")

	assert date_str == "Monday, March 3"
	assert time_str == "2:30 PM"


@pytest.mark.asyncio
async def test_schedule_accepts_timezone_aware_time(services, session_factory, appointment):
	scheduled_at = datetime.now(timezone.utc) + timedelta(days=3)

	result = await services.reminder_scheduler.schedule_reminders(
		appointment.id, appointment.organization_id, appointment.customer_id, scheduled_at
	)

	assert len(result.job_ids) == 2

	naive = scheduled_at.replace(tzinfo=None)
	jobs = await reminder_jobs(session_factory, appointment.id)
	assert [job.process_after for job in jobs] == [
		naive - timedelta(hours=24),
		naive - timedelta(hours=2),
	]
