from typing import Optional, Dict, Any, Union
from pydantic import BaseModel, Field

from app.models.queued_sms import SenderType


class SendSmsOptions(BaseModel):
	organization_id: str
	customer_id: str
	conversation_id: Optional[str] = None
	to: str
	message: str
	template_type: Optional[str] = None
	metadata: Optional[Dict[str, Any]] = None
	# Skip the quiet-hours check
	urgent: bool = False
	sender_type: SenderType = SenderType.AI


class SendTemplatedSmsOptions(BaseModel):
	organization_id: str
	customer_id: str
	conversation_id: Optional[str] = None
	to: str
	template_type: str
	variables: Dict[str, Union[str, int, float]] = Field(default_factory=dict)
	urgent: bool = False


class SmsError(BaseModel):
	code: str
	message: str


class SendSmsResult(BaseModel):
	success: bool
	message_id: Optional[str] = None
	twilio_sid: Optional[str] = None
	error: Optional[SmsError] = None

	@property
	def queued(self) -> bool:
		return self.error is not None and self.error.code == "QUEUED"


class PendingCountResponse(BaseModel):
	organization_id: Optional[str] = None
	pending: int
