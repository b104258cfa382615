import enum

from sqlalchemy import Column, String, JSON, Integer, Text, DateTime

from app.database import Base
from app.models.base import BaseModel, utcnow

MAX_SMS_ATTEMPTS = 3


class SenderType(str, enum.Enum):
	AI = "ai"
	USER = "user"
	SYSTEM = "system"


class QueuedSms(Base, BaseModel):
	__tablename__ = "queued_sms"

	organization_id = Column(String(36), nullable=False, index=True)
	customer_id = Column(String(36), nullable=False)
	conversation_id = Column(String(36))
	to = Column(String(20), nullable=False)
	message = Column(Text, nullable=False)
	template_type = Column(String(100))
	sender_type = Column(String(20), nullable=False, default=SenderType.AI.value)
	sms_metadata = Column(JSON)
	process_after = Column(DateTime, nullable=False, default=utcnow, index=True)
	attempts = Column(Integer, nullable=False, default=0)
	last_error = Column(Text)
	processed_at = Column(DateTime, index=True)
	twilio_sid = Column(String(64))
	message_id = Column(String(64))

	def __repr__(self):
		return f"<QueuedSms {self.id} to={self.to} attempts={self.attempts}>"
