import pytest

from httpx import AsyncClient
from sqlalchemy import select
from twilio.request_validator import RequestValidator

from app.config import settings
from app.models.customer import Customer
from app.models.domain_event import DomainEvent


async def events_of_type(session_factory, event_type):
	async with session_factory() as db:
		result = await db.execute(select(DomainEvent).where(DomainEvent.type == event_type))
		return list(result.scalars().all())


@pytest.mark.asyncio
async def test_stop_keyword_opts_out_and_replies(client: AsyncClient, services, organization, customer):
	response = await client.post("/webhooks/twilio/sms", data={
		"MessageSid": "SM1",
		"From": customer.phone,
		"To": organization.phone_number,
		"Body": " stop ",
	})

	assert response.status_code == 200
	assert response.headers["content-type"].startswith("application/xml")
	assert "unsubscribed" in response.text
	assert await services.sms_service.is_opted_out(organization.id, customer.phone) is True


@pytest.mark.asyncio
async def test_inbound_message_creates_customer_and_emits_event(client: AsyncClient, services, session_factory, organization):
	response = await client.post("/webhooks/twilio/sms", data={
		"MessageSid": "SM2",
		"From": "+15557778888",
		"To": organization.phone_number,
		"Body": "Can you come Tuesday?",
	})
	assert response.status_code == 200
	assert "<Message>" not in response.text

	await services.event_bus.drain()

	async with session_factory() as db:
		customer = (await db.execute(
			select(Customer).where(Customer.phone == "+15557778888")
		)).scalar_one()
	assert customer.organization_id == organization.id
	assert customer.first_name == "Unknown"

	events = await events_of_type(session_factory, "sms.received")
	assert len(events) == 1
	assert events[0].aggregate_id == "SM2"
	assert events[0].data["customer_id"] == customer.id
	assert events[0].data["content"] == "Can you come Tuesday?"


@pytest.mark.asyncio
async def test_inbound_message_for_unknown_number_is_ignored(client: AsyncClient, session_factory):
	response = await client.post("/webhooks/twilio/sms", data={
		"MessageSid": "SM3",
		"From": "+15557778888",
		"To": "+15550000000",
		"Body": "Hello",
	})

	assert response.status_code == 200
	assert await events_of_type(session_factory, "sms.received") == []


@pytest.mark.asyncio
async def test_signature_is_checked_when_auth_token_set(client: AsyncClient, organization, customer, monkeypatch):
	monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "webhook-secret")
	params = {
		"MessageSid": "SM4",
		"From": customer.phone,
		"To": organization.phone_number,
		"Body": "HELP",
	}
	url = f"{settings.API_URL.rstrip('/')}/webhooks/twilio/sms"

	response = await client.post("/webhooks/twilio/sms", data=params)
	assert response.status_code == 401

	response = await client.post("/webhooks/twilio/sms", data=params, headers={"X-Twilio-Signature": "bogus"})
	assert response.status_code == 403

	signature = RequestValidator("webhook-secret").compute_signature(url, params)
	response = await client.post("/webhooks/twilio/sms", data=params, headers={"X-Twilio-Signature": signature})
	assert response.status_code == 200
	assert "Reply STOP to unsubscribe" in response.text


@pytest.mark.asyncio
async def test_delivery_status_emits_event(client: AsyncClient, services, session_factory, organization, customer):
	response = await client.post("/webhooks/twilio/sms/status", data={
		"MessageSid": "SM5",
		"MessageStatus": "undelivered",
		"From": organization.phone_number,
		"To": customer.phone,
		"ErrorCode": "30003",
	})
	assert response.status_code == 200

	response = await client.post("/webhooks/twilio/sms/status", data={
		"MessageSid": "SM6",
		"MessageStatus": "sending",
		"From": organization.phone_number,
		"To": customer.phone,
	})
	assert response.status_code == 200

	await services.event_bus.drain()

	failed = await events_of_type(session_factory, "sms.failed")
	assert [event.aggregate_id for event in failed] == ["SM5"]
	assert failed[0].data["error_code"] == "30003"
	assert await events_of_type(session_factory, "sms.delivered") == []
