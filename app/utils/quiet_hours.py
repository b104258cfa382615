"""
Quiet-hours arithmetic for outbound SMS.

Windows are "HH:MM" strings in the organization's local time. A window whose
start is later than its end wraps midnight (e.g. 21:00 - 08:00).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuietHours:
	start: str
	end: str
	timezone: str

	def contains(self, at: datetime) -> bool:
		return is_quiet_hours(at, self.start, self.end, self.timezone)

	def next_end(self, now: datetime) -> datetime:
		return next_quiet_end(now, self.end, self.timezone)


def get_timezone(name: str | None) -> ZoneInfo:
	"""ZoneInfo for name, falling back to the default timezone."""
	if not name:
		return ZoneInfo(settings.DEFAULT_TIMEZONE)
	try:
		return ZoneInfo(name)
	except (ZoneInfoNotFoundError, ValueError):
		logger.warning(f"Unknown timezone {name!r}, using {settings.DEFAULT_TIMEZONE}")
		return ZoneInfo(settings.DEFAULT_TIMEZONE)


def parse_hhmm(value: str) -> time:
	hour, minute = (int(part) for part in value.strip().split(":", 1))
	return time(hour, minute)


def to_local(at: datetime, tz: ZoneInfo) -> datetime:
	# Naive datetimes are UTC throughout the app
	if at.tzinfo is None:
		at = at.replace(tzinfo=timezone.utc)
	return at.astimezone(tz)


def is_quiet_hours(at: datetime, quiet_start: str, quiet_end: str, tz_name: str | None = None) -> bool:
	"""True when `at` falls inside [quiet_start, quiet_end) local time."""
	local_time = to_local(at, get_timezone(tz_name)).time().replace(second=0, microsecond=0)
	start = parse_hhmm(quiet_start)
	end = parse_hhmm(quiet_end)

	if start > end:
		return local_time >= start or local_time < end

	return start <= local_time < end


def next_quiet_end(now: datetime, quiet_end: str, tz_name: str | None = None) -> datetime:
	"""Next occurrence of quiet_end after `now`, as naive UTC."""
	tz = get_timezone(tz_name)
	local_now = to_local(now, tz)
	end = parse_hhmm(quiet_end)

	candidate = datetime.combine(local_now.date(), end, tzinfo=tz)
	if candidate <= local_now:
		candidate = datetime.combine(local_now.date() + timedelta(days=1), end, tzinfo=tz)

	return candidate.astimezone(timezone.utc).replace(tzinfo=None)
