# =====================================
# app/api/v1/appointments.py
# =====================================
from dataclasses import asdict
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_services, get_session
from app.core.services import Services
from app.models.appointment import Appointment, AppointmentStatus, ACTIVE_APPOINTMENT_STATUSES
from app.models.base import as_naive_utc, new_id
from app.models.customer import Customer
from app.models.domain_event import DomainEventType
from app.schemas.appointments import (
	AppointmentCreate,
	AppointmentReschedule,
	AppointmentResponse,
	ConfirmationRequestResponse,
	ReminderScheduleResponse,
)
from app.schemas.events import Event

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_appointment(db: AsyncSession, appointment_id: str) -> Appointment:
	appointment = await db.get(Appointment, appointment_id)
	if not appointment:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail="Appointment not found"
		)
	return appointment


def _response(appointment: Appointment, reminders=None) -> AppointmentResponse:
	response = AppointmentResponse.model_validate(appointment)
	if reminders is not None:
		response.reminders = ReminderScheduleResponse(**asdict(reminders))
	return response


@router.post("/", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
		data: AppointmentCreate,
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	"""Create an appointment and schedule its 24h / 2h reminders"""
	async with session as db:
		customer = await db.get(Customer, data.customer_id)
		if not customer or customer.organization_id != data.organization_id:
			raise HTTPException(
				status_code=status.HTTP_404_NOT_FOUND,
				detail="Customer not found"
			)

		appointment = Appointment(
			id=new_id(),
			organization_id=data.organization_id,
			customer_id=data.customer_id,
			assigned_to_id=data.assigned_to_id,
			scheduled_at=as_naive_utc(data.scheduled_at),
			status=AppointmentStatus.SCHEDULED.value,
			appointment_metadata={},
		)
		db.add(appointment)
		await db.commit()

	reminders = await services.reminder_scheduler.schedule_reminders(
		appointment.id,
		appointment.organization_id,
		appointment.customer_id,
		appointment.scheduled_at,
		appointment.assigned_to_id,
	)

	await services.event_bus.emit(Event(
		type=DomainEventType.APPOINTMENT_CREATED,
		organization_id=appointment.organization_id,
		aggregate_type="appointment",
		aggregate_id=appointment.id,
		data={"appointment_id": appointment.id, "customer_id": appointment.customer_id},
	))

	return _response(appointment, reminders)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
		appointment_id: str,
		data: AppointmentReschedule,
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	"""Move an appointment; pending reminders are replaced"""
	async with session as db:
		appointment = await _get_appointment(db, appointment_id)
		if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
			raise HTTPException(
				status_code=status.HTTP_409_CONFLICT,
				detail=f"Cannot reschedule a {appointment.status} appointment"
			)

		appointment.scheduled_at = as_naive_utc(data.scheduled_at)
		if data.assigned_to_id is not None:
			appointment.assigned_to_id = data.assigned_to_id
		await db.commit()

	reminders = await services.reminder_scheduler.schedule_reminders(
		appointment.id,
		appointment.organization_id,
		appointment.customer_id,
		appointment.scheduled_at,
		appointment.assigned_to_id,
	)

	return _response(appointment, reminders)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
		appointment_id: str,
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	async with session as db:
		appointment = await _get_appointment(db, appointment_id)
		appointment.status = AppointmentStatus.CANCELED.value
		await db.commit()

	canceled = await services.reminder_scheduler.cancel_reminders(appointment.id)
	logger.info(f"Appointment {appointment.id} canceled ({canceled} reminders removed)")

	await services.event_bus.emit(Event(
		type=DomainEventType.APPOINTMENT_CANCELED,
		organization_id=appointment.organization_id,
		aggregate_type="appointment",
		aggregate_id=appointment.id,
		data={"appointment_id": appointment.id, "customer_id": appointment.customer_id},
	))

	return _response(appointment)


@router.post("/{appointment_id}/confirmation-request", response_model=ConfirmationRequestResponse)
async def send_confirmation_request(
		appointment_id: str,
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	"""Ask the customer to confirm; deferred if sent during quiet hours"""
	async with session as db:
		await _get_appointment(db, appointment_id)

	sent = await services.reminder_scheduler.send_confirmation_request(appointment_id)
	return ConfirmationRequestResponse(appointment_id=appointment_id, sent=sent)
