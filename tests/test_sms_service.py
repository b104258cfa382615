import pytest

from sqlalchemy import select

from app.models.base import new_id
from app.models.messaging import MessageTemplate, SmsOptOut
from app.models.organization import Organization
from app.schemas.sms import SendSmsOptions, SendTemplatedSmsOptions
from app.services.sms_service import interpolate
from app.services.twilio_client import TwilioError


def options(organization, customer, **overrides) -> SendSmsOptions:
	values = dict(
		organization_id=organization.id,
		customer_id=customer.id,
		to=customer.phone,
		message="Hello from Acme",
	)
	values.update(overrides)
	return SendSmsOptions(**values)


def test_interpolate_replaces_known_and_keeps_unknown():
	assert interpolate("Hi {{name}}, see {{link}}", {"name": "Jane"}) == "Hi Jane, see {{link}}"
	assert interpolate("{{count}} items", {"count": 3}) == "3 items"


@pytest.mark.asyncio
async def test_opted_out_recipient_is_blocked(services, organization, customer):
	await services.sms_service.record_opt_out(organization.id, customer.phone, "stop_keyword")

	result = await services.sms_service.send(options(organization, customer, urgent=True))

	assert result.success is False
	assert result.error.code == "OPTED_OUT"


@pytest.mark.asyncio
async def test_missing_org_phone_returns_no_phone(services, session_factory, customer, organization):
	async with session_factory() as db:
		org = await db.get(Organization, organization.id)
		org.phone_number = None
		await db.commit()

	result = await services.sms_service.send(options(organization, customer))

	assert result.success is False
	assert result.error.code == "NO_PHONE"


@pytest.mark.asyncio
async def test_successful_send_emits_sms_sent(make_services, organization, customer):
	services = make_services()
	received = []

	async def capture(event):
		received.append(event)

	services.event_bus.on("sms.sent", capture)

	result = await services.sms_service.send(options(organization, customer, template_type="custom"))
	await services.event_bus.drain()

	assert result.success is True
	assert result.twilio_sid.startswith("SM")
	assert len(received) == 1
	assert received[0].data["to"] == customer.phone
	assert received[0].data["template_type"] == "custom"


@pytest.mark.asyncio
async def test_invalid_phone_error_is_mapped(make_services, organization, customer):
	services = make_services(error=TwilioError("Invalid 'To' Phone Number", code=21211))

	result = await services.sms_service.send(options(organization, customer))

	assert result.success is False
	assert result.error.code == "INVALID_PHONE"


@pytest.mark.asyncio
async def test_unsubscribed_error_records_opt_out(make_services, organization, customer):
	services = make_services(error=TwilioError("Attempt to send to unsubscribed recipient", code=21610))

	result = await services.sms_service.send(options(organization, customer))

	assert result.error.code == "OPTED_OUT"
	assert await services.sms_service.is_opted_out(organization.id, customer.phone) is True


@pytest.mark.asyncio
async def test_org_template_preferred_over_system_default(make_services, session_factory, organization, customer):
	services = make_services()

	async with session_factory() as db:
		db.add(MessageTemplate(
			id=new_id(), organization_id=None, type="review_request",
			content="Default for {{customer_name}}", is_default=True, is_active=True,
		))
		db.add(MessageTemplate(
			id=new_id(), organization_id=organization.id, type="review_request",
			content="Custom for {{customer_name}}", is_default=False, is_active=True,
		))
		await db.commit()

	result = await services.sms_service.send_templated(SendTemplatedSmsOptions(
		organization_id=organization.id,
		customer_id=customer.id,
		to=customer.phone,
		template_type="review_request",
		variables={"customer_name": "Jane"},
	))

	assert result.success is True
	assert services.sms_service.twilio.sent[0]["body"] == "Custom for Jane"


@pytest.mark.asyncio
async def test_system_default_row_used_without_org_template(services, session_factory, organization):
	async with session_factory() as db:
		db.add(MessageTemplate(
			id=new_id(), organization_id=None, type="estimate_followup",
			content="Following up, {{customer_name}}", is_default=True, is_active=True,
		))
		await db.commit()

	content = await services.sms_service.get_template(organization.id, "estimate_followup")
	assert content == "Following up, {{customer_name}}"


@pytest.mark.asyncio
async def test_unknown_template_returns_no_template(services, organization, customer):
	result = await services.sms_service.send_templated(SendTemplatedSmsOptions(
		organization_id=organization.id,
		customer_id=customer.id,
		to=customer.phone,
		template_type="does_not_exist",
	))

	assert result.success is False
	assert result.error.code == "NO_TEMPLATE"


@pytest.mark.asyncio
async def test_stop_and_start_keywords(services, session_factory, organization, customer):
	handled, response = await services.sms_service.handle_compliance_keyword(organization.id, customer.phone, " stop ")
	assert handled is True
	assert "unsubscribed" in response
	assert await services.sms_service.is_opted_out(organization.id, customer.phone)

	# A second STOP updates the existing row
	await services.sms_service.handle_compliance_keyword(organization.id, customer.phone, "QUIT")
	async with session_factory() as db:
		rows = (await db.execute(select(SmsOptOut))).scalars().all()
	assert len(rows) == 1

	handled, _ = await services.sms_service.handle_compliance_keyword(organization.id, customer.phone, "START")
	assert handled is True
	assert not await services.sms_service.is_opted_out(organization.id, customer.phone)

	assert await services.sms_service.handle_compliance_keyword(organization.id, customer.phone, "hello") == (False, None)
