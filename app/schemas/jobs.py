# =====================================
# app/schemas/jobs.py
# =====================================
from datetime import datetime
from typing import Optional, Dict, Any, List, Literal
from pydantic import BaseModel, Field, ConfigDict

from app.models.delayed_job import JobStatus


class JobPayload(BaseModel):
	"""Typed payload envelope; subclasses name the entity the job acts on."""

	def reference_id(self) -> Optional[str]:
		return None


class AppointmentReminderPayload(JobPayload):
	appointment_id: str
	organization_id: str
	customer_id: str
	reminder_type: Literal["24h", "2h"]
	scheduled_at: datetime
	technician_id: Optional[str] = None
	technician_name: Optional[str] = None

	def reference_id(self) -> Optional[str]:
		return self.appointment_id


class ReviewRequestPayload(JobPayload):
	review_request_id: str
	job_id: str
	customer_id: str
	stage: Literal["initial", "followup"] = "initial"

	def reference_id(self) -> Optional[str]:
		return self.review_request_id


class DelayedJobResponse(BaseModel):
	id: str
	type: str
	organization_id: str
	payload: Dict[str, Any]
	reference_id: Optional[str]
	process_after: datetime
	attempts: int
	max_attempts: int
	last_error: Optional[str]
	processed_at: Optional[datetime]
	created_at: datetime
	status: JobStatus

	model_config = ConfigDict(from_attributes=True)


class DelayedJobListResponse(BaseModel):
	total: int
	data: List[DelayedJobResponse]


class JobStatsResponse(BaseModel):
	organization_id: Optional[str] = None
	counts: Dict[JobStatus, int] = Field(default_factory=dict)


class CancelResponse(BaseModel):
	id: str
	canceled: bool
