"""
Generic polling worker.

Both database-backed queues (delayed jobs, quiet-hours SMS) run on this loop:
fetch a batch of candidates, re-check each one, execute it, record the
outcome. Subclasses supply those steps; this class owns the timer, the
single-flight guard and per-item error containment.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Generic, List, Optional, TypeVar

from app.models.base import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollingWorker(Generic[T]):
	"""Single-process, poll-based worker with a non-overlapping cycle."""

	name = "poller"

	def __init__(self, interval_seconds: float):
		self.interval_seconds = interval_seconds
		self.is_processing = False
		self.last_run_at: Optional[datetime] = None
		self._task: Optional[asyncio.Task] = None
		# True only while the loop task itself is inside a tick
		self._loop_busy = False

	# ------------------------------------------------------------
	# Cycle steps
	# ------------------------------------------------------------

	async def fetch_candidates(self) -> List[T]:
		raise NotImplementedError

	async def is_still_eligible(self, item: T) -> bool:
		return True

	async def execute(self, item: T) -> Any:
		raise NotImplementedError

	async def record_success(self, item: T, result: Any) -> None:
		pass

	async def record_failure(self, item: T, error: Exception) -> None:
		pass

	# ------------------------------------------------------------
	# Loop control
	# ------------------------------------------------------------

	@property
	def is_running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		"""Start polling; a no-op when already running."""
		if self.is_running:
			return

		logger.info(f"{self.name} started (interval={self.interval_seconds}s)")
		self._task = asyncio.create_task(self._loop(), name=f"{self.name}-loop")

	async def stop(self) -> None:
		"""Prevent future ticks; an in-flight cycle is allowed to finish."""
		task = self._task
		if task is None:
			return

		self._task = None
		if not self._loop_busy:
			task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass
		logger.info(f"{self.name} stopped")

	async def _loop(self) -> None:
		while self._task is asyncio.current_task():
			self._loop_busy = True
			try:
				await self._tick()
			finally:
				self._loop_busy = False
			if self._task is not asyncio.current_task():
				return
			await asyncio.sleep(self.interval_seconds)

	async def _tick(self) -> None:
		try:
			await self.run_once()
		except Exception:
			logger.exception(f"{self.name} cycle failed")

	# ------------------------------------------------------------
	# Cycle
	# ------------------------------------------------------------

	async def run_once(self) -> int:
		"""Run one cycle; returns the number of items executed successfully."""
		# Checked and set before the first await
		if self.is_processing:
			return 0

		self.is_processing = True
		processed = 0

		try:
			candidates = await self.fetch_candidates()
			if not candidates:
				return 0

			logger.debug(f"{self.name} processing {len(candidates)} items")

			for item in candidates:
				if not await self.is_still_eligible(item):
					continue

				try:
					result = await self.execute(item)
				except Exception as e:
					await self.record_failure(item, e)
					continue

				await self.record_success(item, result)
				processed += 1
		finally:
			self.is_processing = False
			self.last_run_at = utcnow()

		return processed

	def get_status(self) -> dict:
		return {
			"name": self.name,
			"is_running": self.is_running,
			"is_processing": self.is_processing,
			"interval_seconds": self.interval_seconds,
			"last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
		}
