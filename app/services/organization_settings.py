import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.organization import Organization
from app.utils.quiet_hours import QuietHours

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewSettings:
	enabled: bool = True
	delay_minutes: int = settings.REVIEW_REQUEST_DELAY_MINUTES
	send_reminder: bool = True


def _section(organization: Optional[Organization], key: str) -> Dict[str, Any]:
	if organization is None or not isinstance(organization.settings, dict):
		return {}
	section = organization.settings.get(key)
	return section if isinstance(section, dict) else {}


def quiet_hours_for(organization: Optional[Organization]) -> QuietHours:
	ai_settings = _section(organization, "ai_settings")
	return QuietHours(
		start=ai_settings.get("quiet_hours_start") or settings.QUIET_HOURS_START,
		end=ai_settings.get("quiet_hours_end") or settings.QUIET_HOURS_END,
		timezone=(organization.timezone if organization else None) or settings.DEFAULT_TIMEZONE,
	)


async def get_quiet_hours(session: AsyncSession, organization_id: str) -> QuietHours:
	"""Quiet-hours window for an organization; missing values fall back to the defaults."""
	organization = await session.get(Organization, organization_id)
	if organization is None:
		logger.debug(f"Organization {organization_id} not found, using default quiet hours")
	return quiet_hours_for(organization)


def review_settings_for(organization: Optional[Organization]) -> ReviewSettings:
	section = _section(organization, "review_settings")
	return ReviewSettings(
		enabled=section.get("enabled", True) is not False,
		delay_minutes=int(section.get("delay_minutes") or settings.REVIEW_REQUEST_DELAY_MINUTES),
		send_reminder=section.get("send_reminder", True) is not False,
	)
