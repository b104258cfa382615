import enum

from sqlalchemy import Column, ForeignKey, String, DateTime, JSON
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel


class AppointmentStatus(str, enum.Enum):
	SCHEDULED = "scheduled"
	CONFIRMED = "confirmed"
	CANCELED = "canceled"
	COMPLETED = "completed"
	NO_SHOW = "no_show"


ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)


class Appointment(Base, BaseModel):
	__tablename__ = "appointments"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
	customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
	assigned_to_id = Column(String(36), ForeignKey("users.id"), index=True)
	scheduled_at = Column(DateTime, nullable=False, index=True)
	status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value, index=True)
	appointment_metadata = Column(JSON, default=dict)

	# Relationships
	customer = relationship("Customer")
	organization = relationship("Organization")
	assigned_to = relationship("User")
