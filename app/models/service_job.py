import enum

from sqlalchemy import Column, ForeignKey, String, DateTime, Float
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel


class ServiceJobStatus(str, enum.Enum):
	LEAD = "lead"
	SCHEDULED = "scheduled"
	IN_PROGRESS = "in_progress"
	COMPLETED = "completed"
	CANCELED = "canceled"


class ServiceJob(Base, BaseModel):
	"""A unit of field work performed for a customer."""

	__tablename__ = "service_jobs"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
	customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
	technician_id = Column(String(36), ForeignKey("users.id"))
	title = Column(String(255), nullable=False)
	type = Column(String(100))
	status = Column(String(20), nullable=False, default=ServiceJobStatus.SCHEDULED.value, index=True)
	actual_value = Column(Float)
	completed_at = Column(DateTime)

	# Relationships
	customer = relationship("Customer")
	organization = relationship("Organization")
