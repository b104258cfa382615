import enum

from sqlalchemy import Column, String, JSON, DateTime

from app.database import Base
from app.models.base import BaseModel


class DomainEventType(str, enum.Enum):
	# Call events
	CALL_STARTED = "call.started"
	CALL_ANSWERED = "call.answered"
	CALL_COMPLETED = "call.completed"
	CALL_MISSED = "call.missed"
	CALL_VOICEMAIL = "call.voicemail"
	# SMS events
	SMS_RECEIVED = "sms.received"
	SMS_SENT = "sms.sent"
	SMS_DELIVERED = "sms.delivered"
	SMS_FAILED = "sms.failed"
	# Customer events
	CUSTOMER_CREATED = "customer.created"
	CUSTOMER_UPDATED = "customer.updated"
	# Job events
	JOB_CREATED = "job.created"
	JOB_UPDATED = "job.updated"
	JOB_SCHEDULED = "job.scheduled"
	JOB_STARTED = "job.started"
	JOB_COMPLETED = "job.completed"
	JOB_CANCELED = "job.canceled"
	# Estimate events
	ESTIMATE_CREATED = "estimate.created"
	ESTIMATE_SENT = "estimate.sent"
	ESTIMATE_VIEWED = "estimate.viewed"
	ESTIMATE_SIGNED = "estimate.signed"
	ESTIMATE_DECLINED = "estimate.declined"
	ESTIMATE_EXPIRED = "estimate.expired"
	# Invoice events
	INVOICE_CREATED = "invoice.created"
	INVOICE_SENT = "invoice.sent"
	INVOICE_PAID = "invoice.paid"
	INVOICE_OVERDUE = "invoice.overdue"
	# Appointment events
	APPOINTMENT_CREATED = "appointment.created"
	APPOINTMENT_CONFIRMED = "appointment.confirmed"
	APPOINTMENT_REMINDER_SENT = "appointment.reminder_sent"
	APPOINTMENT_ON_MY_WAY = "appointment.on_my_way"
	APPOINTMENT_COMPLETED = "appointment.completed"
	APPOINTMENT_CANCELED = "appointment.canceled"
	APPOINTMENT_NO_SHOW = "appointment.no_show"
	# Review events
	REVIEW_REQUEST_SENT = "review.request_sent"
	REVIEW_SENTIMENT_RECEIVED = "review.sentiment_received"
	REVIEW_RECEIVED = "review.received"
	REVIEW_RESPONSE_SENT = "review.response_sent"
	# Conversation events
	CONVERSATION_CREATED = "conversation.created"
	CONVERSATION_MESSAGE_RECEIVED = "conversation.message_received"
	CONVERSATION_MESSAGE_SENT = "conversation.message_sent"
	CONVERSATION_RESOLVED = "conversation.resolved"


class DomainEvent(Base, BaseModel):
	"""Append-only record of a domain fact; processed_at means handlers were attempted."""

	__tablename__ = "domain_events"

	type = Column(String(64), nullable=False, index=True)
	organization_id = Column(String(36), nullable=False, index=True)
	aggregate_type = Column(String(50), nullable=False)
	aggregate_id = Column(String(64), nullable=False, index=True)
	data = Column(JSON, nullable=False, default=dict)
	event_metadata = Column(JSON)
	processed_at = Column(DateTime)

	def __repr__(self):
		return f"<DomainEvent {self.type} {self.id}>"
