import pytest
from datetime import timedelta

from sqlalchemy import select, update

from app.models.base import utcnow
from app.models.queued_sms import QueuedSms
from app.schemas.sms import SendSmsOptions
from app.services.twilio_client import TwilioError


def sms_options(organization, customer, **overrides) -> SendSmsOptions:
	values = dict(
		organization_id=organization.id,
		customer_id=customer.id,
		to=customer.phone,
		message="Your estimate is ready",
		metadata={"source": "test"},
	)
	values.update(overrides)
	return SendSmsOptions(**values)


async def make_due(session_factory, queued_id):
	async with session_factory() as db:
		await db.execute(
			update(QueuedSms).where(QueuedSms.id == queued_id).values(process_after=utcnow() - timedelta(minutes=1))
		)
		await db.commit()


@pytest.mark.asyncio
async def test_send_during_quiet_hours_is_queued(services, session_factory, organization, customer, quiet_now):
	await quiet_now(organization.id)

	result = await services.sms_service.send(sms_options(organization, customer))

	assert result.success is True
	assert result.queued is True
	assert result.error.code == "QUEUED"

	async with session_factory() as db:
		queued = await db.get(QueuedSms, result.message_id)

	assert queued is not None
	assert queued.process_after > utcnow()
	assert queued.attempts == 0
	assert queued.sms_metadata == {"source": "test"}


@pytest.mark.asyncio
async def test_urgent_send_ignores_quiet_hours(services, organization, customer, quiet_now):
	await quiet_now(organization.id)

	result = await services.sms_service.send(sms_options(organization, customer, urgent=True))

	assert result.success is True
	assert result.queued is False
	assert result.twilio_sid.startswith("MOCK_")


@pytest.mark.asyncio
async def test_queued_message_is_sent_after_quiet_hours(services, session_factory, organization, customer):
	queued_id = await services.sms_queue.queue(sms_options(organization, customer))
	await make_due(session_factory, queued_id)

	assert await services.sms_queue.process_queue() == 1
	await services.event_bus.drain()

	async with session_factory() as db:
		queued = await db.get(QueuedSms, queued_id)

	assert queued.processed_at is not None
	assert queued.twilio_sid.startswith("MOCK_")
	assert queued.message_id == queued.twilio_sid
	assert await services.sms_queue.get_pending_count(organization.id) == 0


@pytest.mark.asyncio
async def test_queued_message_carries_queue_metadata(make_services, session_factory, organization, customer):
	services = make_services()
	sent_events = []

	async def capture(event):
		sent_events.append(event)

	services.event_bus.on("sms.sent", capture)

	queued_id = await services.sms_queue.queue(sms_options(organization, customer))
	await make_due(session_factory, queued_id)
	await services.sms_queue.process_queue()
	await services.event_bus.drain()

	assert len(sent_events) == 1
	assert sent_events[0].metadata["queued_message_id"] == queued_id
	assert sent_events[0].metadata["was_queued"] is True
	assert services.sms_service.twilio.sent[0]["from"] == organization.phone_number


@pytest.mark.asyncio
async def test_still_quiet_message_is_skipped_without_mutation(services, session_factory, organization, customer, quiet_now):
	queued_id = await services.sms_queue.queue(sms_options(organization, customer))
	await make_due(session_factory, queued_id)
	await quiet_now(organization.id)

	assert await services.sms_queue.process_queue() == 0

	async with session_factory() as db:
		queued = await db.get(QueuedSms, queued_id)

	assert queued.processed_at is None
	assert queued.attempts == 0
	assert queued.last_error is None


@pytest.mark.asyncio
async def test_failed_send_counts_attempt(make_services, session_factory, organization, customer):
	services = make_services(error=TwilioError("Service unavailable", code=30001))

	queued_id = await services.sms_queue.queue(sms_options(organization, customer))
	await make_due(session_factory, queued_id)

	for _ in range(4):
		await services.sms_queue.process_queue()

	async with session_factory() as db:
		queued = await db.get(QueuedSms, queued_id)

	# Capped at three attempts
	assert queued.attempts == 3
	assert queued.last_error == "Service unavailable"
	assert queued.processed_at is None
	assert await services.sms_queue.get_pending_count() == 0


@pytest.mark.asyncio
async def test_messages_processed_in_creation_order(make_services, session_factory, organization, customer):
	services = make_services()

	first = await services.sms_queue.queue(sms_options(organization, customer, message="first"))
	second = await services.sms_queue.queue(sms_options(organization, customer, message="second"))
	await make_due(session_factory, first)
	await make_due(session_factory, second)

	assert await services.sms_queue.process_queue() == 2

	bodies = [sent["body"] for sent in services.sms_service.twilio.sent]
	assert bodies == ["first", "second"]


@pytest.mark.asyncio
async def test_cancel_queued_message(services, session_factory, organization, customer):
	queued_id = await services.sms_queue.queue(sms_options(organization, customer))

	assert await services.sms_queue.cancel(queued_id) is True
	assert await services.sms_queue.cancel(queued_id) is False

	async with session_factory() as db:
		queued = await db.get(QueuedSms, queued_id)
	assert queued.last_error == "Canceled by user"
	assert queued.processed_at is not None


@pytest.mark.asyncio
async def test_cleanup_removes_old_processed_messages(services, session_factory, organization, customer):
	old = await services.sms_queue.queue(sms_options(organization, customer))
	recent = await services.sms_queue.queue(sms_options(organization, customer))
	pending = await services.sms_queue.queue(sms_options(organization, customer))

	async with session_factory() as db:
		await db.execute(
			update(QueuedSms).where(QueuedSms.id == old).values(processed_at=utcnow() - timedelta(days=31))
		)
		await db.execute(update(QueuedSms).where(QueuedSms.id == recent).values(processed_at=utcnow()))
		await db.commit()

	assert await services.sms_queue.cleanup(30) == 1

	async with session_factory() as db:
		remaining = (await db.execute(select(QueuedSms.id))).scalars().all()
	assert set(remaining) == {recent, pending}
