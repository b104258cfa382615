from sqlalchemy import Column, String, JSON

from app.database import Base
from app.models.base import BaseModel


class Organization(Base, BaseModel):
	__tablename__ = "organizations"

	name = Column(String(255), nullable=False)
	timezone = Column(String(64), nullable=False, default="America/New_York")
	# Outbound SMS sender number (E.164)
	phone_number = Column(String(20))
	# {"ai_settings": {"quiet_hours_start": "21:00", "quiet_hours_end": "08:00"},
	#  "review_settings": {"enabled": true, "delay_minutes": 120, "send_reminder": true}}
	settings = Column(JSON, default=dict)
