from sqlalchemy import Column, ForeignKey, String, Text, Boolean, DateTime, UniqueConstraint

from app.database import Base
from app.models.base import BaseModel, utcnow


class MessageTemplate(Base, BaseModel):
	"""SMS template; organization_id NULL marks a system default."""

	__tablename__ = "message_templates"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), index=True)
	type = Column(String(100), nullable=False, index=True)
	content = Column(Text, nullable=False)
	is_default = Column(Boolean, default=False)
	is_active = Column(Boolean, default=True)


class SmsOptOut(Base, BaseModel):
	__tablename__ = "sms_opt_outs"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
	phone = Column(String(20), nullable=False)
	source = Column(String(50))
	opted_out_at = Column(DateTime, default=utcnow)

	__table_args__ = (
		UniqueConstraint("organization_id", "phone", name="unique_org_phone_opt_out"),
	)
