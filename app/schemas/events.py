from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from app.models.domain_event import DomainEventType


class Event(BaseModel):
	"""A domain event as seen by emitters and handlers."""

	id: Optional[str] = None
	type: DomainEventType
	organization_id: str
	aggregate_type: str
	aggregate_id: str
	data: Dict[str, Any] = Field(default_factory=dict)
	metadata: Optional[Dict[str, Any]] = None
	timestamp: Optional[datetime] = None


class SmsReceivedEventData(BaseModel):
	message_id: str
	customer_id: str
	from_number: str
	to_number: str
	content: str


class SmsStatusEventData(BaseModel):
	message_id: str
	status: str
	error_code: Optional[str] = None
	error_message: Optional[str] = None


class SmsSentEventData(BaseModel):
	message_id: str
	conversation_id: str
	customer_id: str
	to: str
	content: str
	template_type: Optional[str] = None


class JobCompletedEventData(BaseModel):
	job_id: str
	customer_id: str
	actual_value: Optional[float] = None
	technician_id: Optional[str] = None


class ReplayRequest(BaseModel):
	organization_id: str
	from_date: datetime
	event_types: Optional[List[DomainEventType]] = None


class ReplayResponse(BaseModel):
	replayed: int
