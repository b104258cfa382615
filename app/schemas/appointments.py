# =====================================
# app/schemas/appointments.py
# =====================================
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class AppointmentCreate(BaseModel):
	organization_id: str
	customer_id: str
	assigned_to_id: Optional[str] = None
	scheduled_at: datetime


class AppointmentReschedule(BaseModel):
	scheduled_at: datetime
	assigned_to_id: Optional[str] = None


class ReminderScheduleResponse(BaseModel):
	reminder_24h: bool
	reminder_2h: bool
	job_ids: List[str] = Field(default_factory=list)


class AppointmentResponse(BaseModel):
	id: str
	organization_id: str
	customer_id: str
	assigned_to_id: Optional[str]
	scheduled_at: datetime
	status: str
	appointment_metadata: Optional[Dict[str, Any]] = None
	reminders: Optional[ReminderScheduleResponse] = None

	model_config = ConfigDict(from_attributes=True)


class ConfirmationRequestResponse(BaseModel):
	appointment_id: str
	sent: bool


class ServiceJobComplete(BaseModel):
	actual_value: Optional[float] = None


class ServiceJobResponse(BaseModel):
	id: str
	organization_id: str
	customer_id: str
	technician_id: Optional[str]
	title: str
	type: Optional[str]
	status: str
	actual_value: Optional[float]
	completed_at: Optional[datetime]

	model_config = ConfigDict(from_attributes=True)
