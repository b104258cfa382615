import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from app.api.deps import get_services, get_session
from app.config import settings
from app.core.services import Services
from app.models.base import new_id
from app.models.customer import Customer
from app.models.domain_event import DomainEventType
from app.models.organization import Organization
from app.schemas.events import Event, SmsReceivedEventData, SmsStatusEventData

logger = logging.getLogger(__name__)

router = APIRouter()

FAILED_STATUSES = ("undelivered", "failed")


def _public_url(request: Request) -> str:
	"""URL Twilio signed: the public API_URL plus the request path"""
	path = request.url.path
	if request.url.query:
		path += f"?{request.url.query}"
	return f"{settings.API_URL.rstrip('/')}{path}"


def normalize_phone(value: Optional[str]) -> Optional[str]:
	if not value:
		return None
	value = value.strip()
	if value[0].isdigit():
		value = f"+{value}"
	return value


async def verify_twilio_request(request: Request) -> Dict[str, str]:
	"""Parse the form body and check X-Twilio-Signature against it"""
	form = await request.form()
	params = {key: str(value) for key, value in form.items()}

	auth_token = settings.TWILIO_AUTH_TOKEN
	if not auth_token:
		if settings.ENVIRONMENT == "production":
			logger.error("TWILIO_AUTH_TOKEN not set in production, rejecting webhook")
			raise HTTPException(
				status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
				detail="Webhook service misconfigured"
			)
		logger.warning("Twilio webhook signature validation skipped (no auth token)")
		return params

	signature = request.headers.get("X-Twilio-Signature")
	if not signature:
		raise HTTPException(
			status_code=status.HTTP_401_UNAUTHORIZED,
			detail="Missing webhook signature"
		)

	if not RequestValidator(auth_token).validate(_public_url(request), params, signature):
		logger.warning(f"Twilio webhook rejected: invalid signature for {request.url.path}")
		raise HTTPException(
			status_code=status.HTTP_403_FORBIDDEN,
			detail="Invalid webhook signature"
		)

	return params


def _twiml(message: Optional[str] = None) -> Response:
	response = MessagingResponse()
	if message:
		response.message(message)
	return Response(content=str(response), media_type="application/xml")


async def _organization_by_number(db: AsyncSession, number: Optional[str]) -> Optional[Organization]:
	if not number:
		return None
	result = await db.execute(select(Organization).where(Organization.phone_number == number))
	return result.scalars().first()


@router.post("/sms")
async def inbound_sms(
		params: Dict[str, str] = Depends(verify_twilio_request),
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	"""Inbound SMS: compliance keywords are answered inline, everything else becomes sms.received"""
	message_sid = params.get("MessageSid") or new_id()
	from_number = normalize_phone(params.get("From"))
	to_number = normalize_phone(params.get("To"))
	body = params.get("Body", "")

	async with session as db:
		organization = await _organization_by_number(db, to_number)
		if not organization:
			logger.warning(f"No organization found for number {to_number}")
			return _twiml()

	handled, reply = await services.sms_service.handle_compliance_keyword(organization.id, from_number, body)
	if handled:
		logger.info(f"Compliance keyword from {from_number} handled for org {organization.id}")
		return _twiml(reply)

	async with services.session_factory() as db:
		result = await db.execute(
			select(Customer).where(
				Customer.organization_id == organization.id,
				Customer.phone == from_number,
			)
		)
		customer = result.scalars().first()

		if not customer:
			customer = Customer(
				id=new_id(),
				organization_id=organization.id,
				first_name="Unknown",
				last_name="Sender",
				phone=from_number,
			)
			db.add(customer)
			await db.commit()

	await services.event_bus.emit(Event(
		type=DomainEventType.SMS_RECEIVED,
		organization_id=organization.id,
		aggregate_type="message",
		aggregate_id=message_sid,
		data=SmsReceivedEventData(
			message_id=message_sid,
			customer_id=customer.id,
			from_number=from_number,
			to_number=to_number,
			content=body,
		).model_dump(),
	))

	return _twiml()


@router.post("/sms/status")
async def sms_status(
		params: Dict[str, str] = Depends(verify_twilio_request),
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	"""Delivery status callback for outbound messages"""
	message_sid = params.get("MessageSid")
	message_status = params.get("MessageStatus", "")
	logger.info(f"SMS status: {message_sid} -> {message_status}")

	if message_status == "delivered":
		event_type = DomainEventType.SMS_DELIVERED
	elif message_status in FAILED_STATUSES:
		event_type = DomainEventType.SMS_FAILED
	else:
		return Response(status_code=status.HTTP_200_OK)

	# Outbound messages are sent from the organization's number
	async with session as db:
		organization = await _organization_by_number(db, normalize_phone(params.get("From")))

	if not organization or not message_sid:
		logger.warning(f"Status callback for {message_sid} matched no organization")
		return Response(status_code=status.HTTP_200_OK)

	await services.event_bus.emit(Event(
		type=event_type,
		organization_id=organization.id,
		aggregate_type="message",
		aggregate_id=message_sid,
		data=SmsStatusEventData(
			message_id=message_sid,
			status=message_status,
			error_code=params.get("ErrorCode"),
			error_message=params.get("ErrorMessage"),
		).model_dump(),
	))

	return Response(status_code=status.HTTP_200_OK)
