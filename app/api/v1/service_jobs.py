# =====================================
# app/api/v1/service_jobs.py
# =====================================
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_services, get_session
from app.core.services import Services
from app.models.base import utcnow
from app.models.domain_event import DomainEventType
from app.models.service_job import ServiceJob, ServiceJobStatus
from app.schemas.appointments import ServiceJobComplete, ServiceJobResponse
from app.schemas.events import Event, JobCompletedEventData

router = APIRouter()


@router.post("/{job_id}/complete", response_model=ServiceJobResponse)
async def complete_service_job(
		job_id: str,
		data: ServiceJobComplete,
		session: AsyncSession = Depends(get_session),
		services: Services = Depends(get_services)
):
	"""Mark a field job complete; downstream automations react to job.completed"""
	async with session as db:
		job = await db.get(ServiceJob, job_id)
		if not job:
			raise HTTPException(
				status_code=status.HTTP_404_NOT_FOUND,
				detail="Job not found"
			)
		if job.status == ServiceJobStatus.CANCELED.value:
			raise HTTPException(
				status_code=status.HTTP_409_CONFLICT,
				detail="Cannot complete a canceled job"
			)

		job.status = ServiceJobStatus.COMPLETED.value
		job.completed_at = utcnow()
		if data.actual_value is not None:
			job.actual_value = data.actual_value
		await db.commit()

	await services.event_bus.emit(Event(
		type=DomainEventType.JOB_COMPLETED,
		organization_id=job.organization_id,
		aggregate_type="job",
		aggregate_id=job.id,
		data=JobCompletedEventData(
			job_id=job.id,
			customer_id=job.customer_id,
			actual_value=job.actual_value,
			technician_id=job.technician_id,
		).model_dump(),
	))

	return ServiceJobResponse.model_validate(job)
