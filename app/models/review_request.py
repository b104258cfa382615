import enum

from sqlalchemy import Column, ForeignKey, String, DateTime

from app.database import Base
from app.models.base import BaseModel


class ReviewRequestStatus(str, enum.Enum):
	PENDING = "pending"
	SENT = "sent"
	CLICKED = "clicked"
	COMPLETED = "completed"
	CANCELED = "canceled"


class ReviewRequest(Base, BaseModel):
	__tablename__ = "review_requests"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
	customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
	job_id = Column(String(36), ForeignKey("service_jobs.id", ondelete="CASCADE"), nullable=False, unique=True)
	status = Column(String(20), nullable=False, default=ReviewRequestStatus.PENDING.value, index=True)
	sent_at = Column(DateTime)
