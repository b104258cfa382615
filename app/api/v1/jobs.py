# =====================================
# app/api/v1/jobs.py
# =====================================
from fastapi import APIRouter, Depends, Query, HTTPException, status
from typing import Optional

from app.api.deps import get_services
from app.core.services import Services
from app.models.delayed_job import JobStatus, JobType
from app.schemas.jobs import DelayedJobResponse, DelayedJobListResponse, JobStatsResponse, CancelResponse

router = APIRouter()


@router.get("/", response_model=DelayedJobListResponse)
async def list_jobs(
		organization_id: Optional[str] = None,
		status: Optional[JobStatus] = None,
		type: Optional[JobType] = None,
		skip: int = Query(0, ge=0),
		limit: int = Query(50, ge=1, le=500),
		services: Services = Depends(get_services)
):
	"""List delayed jobs, newest process_after first"""
	jobs = await services.job_queue.list_jobs(
		organization_id=organization_id,
		status=status,
		job_type=type,
		limit=limit,
		offset=skip,
	)
	data = [DelayedJobResponse.model_validate(job) for job in jobs]
	return DelayedJobListResponse(total=len(data), data=data)


@router.get("/stats", response_model=JobStatsResponse)
async def job_stats(
		organization_id: Optional[str] = None,
		services: Services = Depends(get_services)
):
	"""Job counts per derived status"""
	counts = await services.job_queue.get_stats(organization_id)
	return JobStatsResponse(organization_id=organization_id, counts=counts)


@router.get("/{job_id}", response_model=DelayedJobResponse)
async def get_job(
		job_id: str,
		services: Services = Depends(get_services)
):
	job = await services.job_queue.get_job(job_id)
	if not job:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail="Job not found"
		)
	return DelayedJobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(
		job_id: str,
		services: Services = Depends(get_services)
):
	"""Cancel a job; it will never be picked up again"""
	canceled = await services.job_queue.cancel(job_id)
	if not canceled:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail="Job not found"
		)
	return CancelResponse(id=job_id, canceled=True)
