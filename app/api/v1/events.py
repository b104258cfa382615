from fastapi import APIRouter, Depends

from app.api.deps import get_services
from app.core.services import Services
from app.models.base import as_naive_utc
from app.schemas.events import ReplayRequest, ReplayResponse

router = APIRouter()


@router.post("/replay", response_model=ReplayResponse)
async def replay_events(
		request: ReplayRequest,
		services: Services = Depends(get_services)
):
	"""Re-run handlers for stored events; handlers must tolerate duplicates"""
	replayed = await services.event_bus.replay(
		request.organization_id,
		as_naive_utc(request.from_date),
		request.event_types,
	)
	return ReplayResponse(replayed=replayed)
