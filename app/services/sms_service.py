import logging
import re
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

from sqlalchemy import select, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal
from app.models.base import utcnow
from app.models.domain_event import DomainEventType
from app.models.messaging import MessageTemplate, SmsOptOut
from app.models.organization import Organization
from app.schemas.events import Event, SmsSentEventData
from app.schemas.sms import SendSmsOptions, SendSmsResult, SendTemplatedSmsOptions, SmsError
from app.services.organization_settings import quiet_hours_for
from app.services.twilio_client import (
	TwilioClient,
	TwilioError,
	INVALID_PHONE_CODE,
	UNSUBSCRIBED_RECIPIENT_CODE,
)

if TYPE_CHECKING:
	from app.services.event_bus import EventBus
	from app.services.sms_queue import SmsQueue

logger = logging.getLogger(__name__)

# Used when neither the organization nor the system has a template row
DEFAULT_TEMPLATES: Dict[str, str] = {
	"appointment_reminder_24h": (
		"Hi {{customer_name}}, this is a reminder from {{business_name}} about your appointment "
		"{{date}} at {{time}}. {{technician_name}} will be there to help."
	),
	"appointment_reminder_2h": (
		"Hi {{customer_name}}, {{technician_name}} from {{business_name}} will see you today at {{time}}."
	),
	"appointment_confirm_request": (
		"Hi {{customer_name}}, {{business_name}} has you scheduled for {{date}} at {{time}}. "
		"Reply C to confirm or R to reschedule."
	),
	"review_request": (
		"Thanks for choosing {{business_name}}, {{customer_name}}! "
		"We'd love your feedback - it only takes 30 seconds: {{review_link}}"
	),
	"review_request_followup": (
		"Hi {{customer_name}}, quick reminder from {{business_name}} - "
		"we'd really appreciate a review if you have a moment: {{review_link}}"
	),
}

OPT_OUT_KEYWORDS = ("STOP", "UNSUBSCRIBE", "CANCEL", "END", "QUIT")
OPT_IN_KEYWORDS = ("START", "SUBSCRIBE", "YES")

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def interpolate(template: str, variables: Dict[str, Any]) -> str:
	"""Replace {{name}} placeholders; unknown names are left as they are."""
	def replace(match):
		value = variables.get(match.group(1))
		return str(value) if value is not None else match.group(0)

	return _PLACEHOLDER.sub(replace, template)


class SmsService:
	"""Outbound SMS with opt-out and quiet-hours enforcement."""

	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
			twilio: Optional[TwilioClient] = None,
			event_bus: Optional["EventBus"] = None,
			sms_queue: Optional["SmsQueue"] = None,
	):
		self.session_factory = session_factory
		self.twilio = twilio or TwilioClient()
		self.event_bus = event_bus
		# Set after construction; the queue sends through this service
		self.sms_queue = sms_queue

	async def send(self, options: SendSmsOptions) -> SendSmsResult:
		try:
			return await self._send(options)
		except TwilioError as e:
			logger.error(f"SMS send error to {options.to}: {e}")

			if e.code == INVALID_PHONE_CODE:
				return _failure("INVALID_PHONE", "Invalid phone number")

			if e.code == UNSUBSCRIBED_RECIPIENT_CODE:
				await self.record_opt_out(options.organization_id, options.to, "twilio_error")
				return _failure("OPTED_OUT", "Recipient has opted out")

			return _failure(str(e.code) if e.code else "UNKNOWN", str(e) or "Failed to send SMS")

	async def _send(self, options: SendSmsOptions) -> SendSmsResult:
		if await self.is_opted_out(options.organization_id, options.to):
			logger.debug(f"SMS blocked - {options.to} opted out")
			return _failure("OPTED_OUT", "Recipient has opted out of SMS")

		async with self.session_factory() as db:
			organization = await db.get(Organization, options.organization_id)

		if not options.urgent and organization is not None:
			quiet_hours = quiet_hours_for(organization)
			if quiet_hours.contains(utcnow()) and self.sms_queue is not None:
				queued_id = await self.sms_queue.queue(options)
				logger.debug(f"SMS to {options.to} queued for quiet hours")
				return SendSmsResult(
					success=True,
					message_id=queued_id,
					error=SmsError(code="QUEUED", message="Message queued for delivery after quiet hours"),
				)

		if organization is None or not organization.phone_number:
			logger.error(f"No phone number for organization {options.organization_id}")
			return _failure("NO_PHONE", "No active phone number for organization")

		if not self.twilio.is_configured:
			twilio_sid = f"MOCK_{int(utcnow().timestamp() * 1000)}"
			logger.info(f"MOCK SMS sent to {options.to}: {options.message[:50]}")
		else:
			twilio_sid = await self.twilio.send_message(options.to, organization.phone_number, options.message)
			logger.info(f"SMS sent to {options.to} (SID: {twilio_sid})")

		if self.event_bus is not None:
			data = SmsSentEventData(
				message_id=twilio_sid,
				conversation_id=options.conversation_id or "",
				customer_id=options.customer_id,
				to=options.to,
				content=options.message,
				template_type=options.template_type,
			)
			await self.event_bus.emit(Event(
				type=DomainEventType.SMS_SENT,
				organization_id=options.organization_id,
				aggregate_type="message",
				aggregate_id=twilio_sid,
				data=data.model_dump(),
				metadata=options.metadata,
			))

		return SendSmsResult(success=True, message_id=twilio_sid, twilio_sid=twilio_sid)

	async def send_templated(self, options: SendTemplatedSmsOptions) -> SendSmsResult:
		content = await self.get_template(options.organization_id, options.template_type)
		if content is None:
			logger.error(f"Template not found: {options.template_type}")
			return _failure("NO_TEMPLATE", f"Template not found: {options.template_type}")

		return await self.send(SendSmsOptions(
			organization_id=options.organization_id,
			customer_id=options.customer_id,
			conversation_id=options.conversation_id,
			to=options.to,
			message=interpolate(content, options.variables),
			template_type=options.template_type,
			urgent=options.urgent,
		))

	async def get_template(self, organization_id: str, template_type: str) -> Optional[str]:
		"""Organization template, then system default row, then the built-in text."""
		async with self.session_factory() as db:
			result = await db.execute(
				select(MessageTemplate).where(
					and_(
						MessageTemplate.type == template_type,
						MessageTemplate.is_active.is_(True),
						or_(
							MessageTemplate.organization_id == organization_id,
							and_(
								MessageTemplate.organization_id.is_(None),
								MessageTemplate.is_default.is_(True),
							),
						),
					)
				)
			)
			templates = result.scalars().all()

		for template in templates:
			if template.organization_id == organization_id:
				return template.content
		if templates:
			return templates[0].content

		return DEFAULT_TEMPLATES.get(template_type)

	# ------------------------------------------------------------
	# Opt-out (TCPA)
	# ------------------------------------------------------------

	async def is_opted_out(self, organization_id: str, phone: str) -> bool:
		async with self.session_factory() as db:
			result = await db.execute(
				select(SmsOptOut.id).where(
					and_(SmsOptOut.organization_id == organization_id, SmsOptOut.phone == phone)
				)
			)
			return result.scalar_one_or_none() is not None

	async def record_opt_out(self, organization_id: str, phone: str, source: str) -> None:
		async with self.session_factory() as db:
			result = await db.execute(
				select(SmsOptOut).where(
					and_(SmsOptOut.organization_id == organization_id, SmsOptOut.phone == phone)
				)
			)
			opt_out = result.scalar_one_or_none()
			if opt_out:
				opt_out.opted_out_at = utcnow()
				opt_out.source = source
			else:
				db.add(SmsOptOut(organization_id=organization_id, phone=phone, source=source))
			await db.commit()

		logger.info(f"Opt-out recorded for {phone} ({source})")

	async def remove_opt_out(self, organization_id: str, phone: str) -> None:
		async with self.session_factory() as db:
			await db.execute(
				delete(SmsOptOut).where(
					and_(SmsOptOut.organization_id == organization_id, SmsOptOut.phone == phone)
				)
			)
			await db.commit()

		logger.info(f"Opt-out removed for {phone}")

	async def handle_compliance_keyword(self, organization_id: str, phone: str, message: str) -> Tuple[bool, Optional[str]]:
		"""Handle STOP/START/HELP replies; returns (handled, auto-response)."""
		normalized = message.strip().upper()

		if normalized in OPT_OUT_KEYWORDS:
			await self.record_opt_out(organization_id, phone, "stop_keyword")
			return True, "You have been unsubscribed and will no longer receive messages. Reply START to resubscribe."

		if normalized in OPT_IN_KEYWORDS:
			await self.remove_opt_out(organization_id, phone)
			return True, "You have been resubscribed and will now receive messages."

		if normalized == "HELP":
			return True, "Reply STOP to unsubscribe. Msg & data rates may apply. For help, call us directly."

		return False, None


def _failure(code: str, message: str) -> SendSmsResult:
	return SendSmsResult(success=False, error=SmsError(code=code, message=message))
