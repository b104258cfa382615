import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, JSON, Integer, Text, DateTime, Index

from app.database import Base
from app.models.base import BaseModel, utcnow

CANCELED_ERROR = "Canceled"


class JobType(str, enum.Enum):
	MISSED_CALL_TEXTBACK = "missed_call_textback"
	REVIEW_REQUEST = "review_request"
	ESTIMATE_FOLLOWUP = "estimate_followup"
	PAYMENT_REMINDER = "payment_reminder"
	APPOINTMENT_REMINDER = "appointment_reminder"
	SEQUENCE_STEP = "sequence_step"


class JobStatus(str, enum.Enum):
	SCHEDULED = "scheduled"
	PENDING = "pending"
	COMPLETED = "completed"
	CANCELED = "canceled"
	EXHAUSTED = "exhausted"


class DelayedJob(Base, BaseModel):
	__tablename__ = "delayed_jobs"

	type = Column(String(50), nullable=False, index=True)
	organization_id = Column(String(36), nullable=False, index=True)
	payload = Column(JSON, nullable=False, default=dict)
	# Entity the job acts on (appointment id for reminders)
	reference_id = Column(String(36), index=True)
	process_after = Column(DateTime, nullable=False, default=utcnow, index=True)
	attempts = Column(Integer, nullable=False, default=0)
	max_attempts = Column(Integer, nullable=False, default=3)
	last_error = Column(Text)
	processed_at = Column(DateTime, index=True)

	__table_args__ = (
		Index("ix_delayed_jobs_ready", "processed_at", "process_after"),
	)

	@property
	def is_exhausted(self) -> bool:
		return self.processed_at is None and self.attempts >= self.max_attempts

	def status_at(self, now: Optional[datetime] = None) -> JobStatus:
		"""Derived lifecycle state; exhausted is terminal without a processed_at stamp."""
		if self.processed_at is not None:
			if self.last_error == CANCELED_ERROR:
				return JobStatus.CANCELED
			return JobStatus.COMPLETED
		if self.attempts >= self.max_attempts:
			return JobStatus.EXHAUSTED
		if self.process_after > (now or utcnow()):
			return JobStatus.SCHEDULED
		return JobStatus.PENDING

	@property
	def status(self) -> JobStatus:
		return self.status_at()

	def __repr__(self):
		return f"<DelayedJob {self.type} {self.id} attempts={self.attempts}/{self.max_attempts}>"
