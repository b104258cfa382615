from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional

from app.api.deps import get_services
from app.core.services import Services
from app.schemas.jobs import CancelResponse
from app.schemas.sms import PendingCountResponse

router = APIRouter()


@router.get("/pending-count", response_model=PendingCountResponse)
async def pending_count(
		organization_id: Optional[str] = None,
		services: Services = Depends(get_services)
):
	"""Messages held for quiet hours and not yet sent"""
	pending = await services.sms_queue.get_pending_count(organization_id)
	return PendingCountResponse(organization_id=organization_id, pending=pending)


@router.post("/{queued_id}/cancel", response_model=CancelResponse)
async def cancel_queued_sms(
		queued_id: str,
		services: Services = Depends(get_services)
):
	canceled = await services.sms_queue.cancel(queued_id)
	if not canceled:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail="Queued message not found or already processed"
		)
	return CancelResponse(id=queued_id, canceled=True)
