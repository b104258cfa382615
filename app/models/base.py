import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime


def utcnow() -> datetime:
	"""Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
	return str(uuid.uuid4())


class BaseModel:
	id = Column(String(36), primary_key=True, default=new_id)
	created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


def as_naive_utc(value: datetime) -> datetime:
	"""Normalize an incoming datetime to the naive UTC form stored in the database."""
	if value.tzinfo is None:
		return value
	return value.astimezone(timezone.utc).replace(tzinfo=None)
