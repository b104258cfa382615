import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal
from app.middleware.request_id import get_request_id
from app.models.base import utcnow, new_id
from app.models.domain_event import DomainEvent, DomainEventType
from app.monitoring.metrics import domain_events
from app.schemas.events import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
	"""
	Persisted, best-effort publish/subscribe.

	Events are written before dispatch. Handlers run in the background, each
	in its own error boundary; a failing handler is logged and never retried.
	"""

	def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
		self.session_factory = session_factory
		self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
		self._tasks: Set[asyncio.Task] = set()

	def on(self, event_type: str, handler: EventHandler) -> None:
		self._handlers[_type_key(event_type)].append(handler)

	def on_many(self, event_types: Iterable[str], handler: EventHandler) -> None:
		for event_type in event_types:
			self.on(event_type, handler)

	def handler_count(self, event_type: str) -> int:
		return len(self._handlers.get(_type_key(event_type), []))

	async def emit(self, event: Event) -> str:
		"""Persist the event and dispatch it in the background; returns the event id."""
		metadata = dict(event.metadata or {})
		if "correlation_id" not in metadata:
			request_id = get_request_id()
			if request_id:
				metadata["correlation_id"] = request_id

		record = DomainEvent(
			id=new_id(),
			type=_type_key(event.type),
			organization_id=event.organization_id,
			aggregate_type=event.aggregate_type,
			aggregate_id=event.aggregate_id,
			data=event.data,
			event_metadata=metadata or None,
		)

		async with self.session_factory() as db:
			db.add(record)
			await db.commit()

		domain_events.labels(type=record.type).inc()
		logger.info(f"Event emitted: {record.type} {record.aggregate_type}/{record.aggregate_id}")

		dispatched = event.model_copy(update={
			"id": record.id,
			"metadata": record.event_metadata,
			"timestamp": record.created_at,
		})
		task = asyncio.create_task(self._dispatch(dispatched))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

		return record.id

	async def _dispatch(self, event: Event) -> None:
		"""Run every handler, then stamp processed_at (replays re-stamp it)."""
		handlers = list(self._handlers.get(_type_key(event.type), []))

		results = await asyncio.gather(
			*(handler(event) for handler in handlers),
			return_exceptions=True,
		)
		for handler, result in zip(handlers, results):
			if isinstance(result, Exception):
				logger.error(
					f"Event handler {getattr(handler, '__qualname__', handler)} failed for {event.type}: {result}"
				)

		try:
			async with self.session_factory() as db:
				await db.execute(
					update(DomainEvent)
					.where(DomainEvent.id == event.id)
					.values(processed_at=utcnow())
				)
				await db.commit()
		except Exception as e:
			logger.error(f"Failed to mark event {event.id} processed: {e}")

	async def drain(self) -> None:
		"""Wait for in-flight handler dispatches."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	async def replay(
			self,
			organization_id: str,
			from_date: datetime,
			event_types: Optional[Iterable[str]] = None,
	) -> int:
		"""Re-run handlers for stored events in creation order; returns the number replayed."""
		query = select(DomainEvent).where(
			and_(
				DomainEvent.organization_id == organization_id,
				DomainEvent.created_at >= from_date,
			)
		)
		if event_types:
			query = query.where(DomainEvent.type.in_([_type_key(t) for t in event_types]))

		query = query.order_by(DomainEvent.created_at)

		async with self.session_factory() as db:
			result = await db.execute(query)
			records = result.scalars().all()

		for record in records:
			await self._dispatch(_to_event(record))

		logger.info(f"Replayed {len(records)} events for organization {organization_id}")
		return len(records)


def _type_key(event_type) -> str:
	return event_type.value if hasattr(event_type, "value") else str(event_type)


def _to_event(record: DomainEvent) -> Event:
	return Event(
		id=record.id,
		type=DomainEventType(record.type),
		organization_id=record.organization_id,
		aggregate_type=record.aggregate_type,
		aggregate_id=record.aggregate_id,
		data=record.data or {},
		metadata=record.event_metadata,
		timestamp=record.created_at,
	)
