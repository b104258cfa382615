import logging
from datetime import timedelta
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import select, update, delete, and_, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import SmsDeliveryError
from app.database import AsyncSessionLocal
from app.models.base import utcnow, new_id
from app.models.queued_sms import QueuedSms, SenderType, MAX_SMS_ATTEMPTS
from app.monitoring.metrics import queued_sms
from app.schemas.sms import SendSmsOptions, SendSmsResult
from app.services.organization_settings import get_quiet_hours
from app.workers.poller import PollingWorker

if TYPE_CHECKING:
	from app.services.sms_service import SmsService

logger = logging.getLogger(__name__)

CANCELED_BY_USER = "Canceled by user"


class SmsQueue(PollingWorker[QueuedSms]):
	"""
	Holds messages composed during an organization's quiet hours and sends
	them once the window has passed.
	"""

	name = "sms-queue"

	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
			sms_service: Optional["SmsService"] = None,
			poll_interval_seconds: float = settings.SMS_QUEUE_POLL_INTERVAL_SECONDS,
			batch_size: int = settings.SMS_QUEUE_BATCH_SIZE,
	):
		super().__init__(poll_interval_seconds)
		self.session_factory = session_factory
		self.sms_service = sms_service
		self.batch_size = batch_size

	async def queue(self, options: SendSmsOptions) -> str:
		"""Persist a message for delivery at the end of the current quiet-hours window."""
		async with self.session_factory() as db:
			quiet_hours = await get_quiet_hours(db, options.organization_id)
			process_after = quiet_hours.next_end(utcnow())

			queued = QueuedSms(
				id=new_id(),
				organization_id=options.organization_id,
				customer_id=options.customer_id,
				conversation_id=options.conversation_id,
				to=options.to,
				message=options.message,
				template_type=options.template_type,
				sender_type=SenderType(options.sender_type).value,
				sms_metadata=options.metadata,
				process_after=process_after,
				attempts=0,
			)
			db.add(queued)
			await db.commit()

		queued_sms.labels(outcome="queued").inc()
		logger.info(f"SMS {queued.id} to {options.to} queued until {process_after.isoformat()}")
		return queued.id

	async def process_queue(self) -> int:
		return await self.run_once()

	async def fetch_candidates(self) -> List[QueuedSms]:
		async with self.session_factory() as db:
			result = await db.execute(
				select(QueuedSms)
				.where(
					and_(
						QueuedSms.process_after <= utcnow(),
						QueuedSms.processed_at.is_(None),
						QueuedSms.attempts < MAX_SMS_ATTEMPTS,
					)
				)
				.order_by(QueuedSms.created_at)
				.limit(self.batch_size)
			)
			return list(result.scalars().all())

	async def is_still_eligible(self, queued: QueuedSms) -> bool:
		# Settings may have changed since the message was queued
		async with self.session_factory() as db:
			quiet_hours = await get_quiet_hours(db, queued.organization_id)

		if quiet_hours.contains(utcnow()):
			logger.debug(f"Still quiet hours for SMS {queued.id}, skipping")
			return False
		return True

	async def execute(self, queued: QueuedSms) -> SendSmsResult:
		metadata = dict(queued.sms_metadata or {})
		metadata.update({"queued_message_id": queued.id, "was_queued": True})

		result = await self.sms_service.send(SendSmsOptions(
			organization_id=queued.organization_id,
			customer_id=queued.customer_id,
			conversation_id=queued.conversation_id,
			to=queued.to,
			message=queued.message,
			template_type=queued.template_type,
			sender_type=queued.sender_type,
			metadata=metadata,
			urgent=True,
		))

		if not result.success:
			error = result.error
			raise SmsDeliveryError(error.message if error else "Failed to send", code=error.code if error else None)

		return result

	async def record_success(self, queued: QueuedSms, result: SendSmsResult) -> None:
		async with self.session_factory() as db:
			await db.execute(
				update(QueuedSms)
				.where(QueuedSms.id == queued.id)
				.values(
					processed_at=utcnow(),
					twilio_sid=result.twilio_sid,
					message_id=result.message_id,
				)
			)
			await db.commit()

		queued_sms.labels(outcome="sent").inc()
		logger.info(f"Queued SMS {queued.id} sent")

	async def record_failure(self, queued: QueuedSms, error: Exception) -> None:
		async with self.session_factory() as db:
			await db.execute(
				update(QueuedSms)
				.where(QueuedSms.id == queued.id)
				.values(attempts=QueuedSms.attempts + 1, last_error=str(error) or "Failed to send")
			)
			await db.commit()

		queued_sms.labels(outcome="failed").inc()
		logger.error(f"Queued SMS {queued.id} failed (attempt {queued.attempts + 1}/{MAX_SMS_ATTEMPTS}): {error}")

	async def get_pending_count(self, organization_id: Optional[str] = None) -> int:
		query = select(func.count(QueuedSms.id)).where(
			and_(QueuedSms.processed_at.is_(None), QueuedSms.attempts < MAX_SMS_ATTEMPTS)
		)
		if organization_id:
			query = query.where(QueuedSms.organization_id == organization_id)

		async with self.session_factory() as db:
			return (await db.execute(query)).scalar_one()

	async def cancel(self, queued_id: str) -> bool:
		try:
			async with self.session_factory() as db:
				result = await db.execute(
					update(QueuedSms)
					.where(and_(QueuedSms.id == queued_id, QueuedSms.processed_at.is_(None)))
					.values(processed_at=utcnow(), last_error=CANCELED_BY_USER)
				)
				await db.commit()
		except Exception as e:
			logger.error(f"Failed to cancel queued SMS {queued_id}: {e}")
			return False

		return result.rowcount > 0

	async def cleanup(self, older_than_days: int = settings.SMS_RETENTION_DAYS) -> int:
		cutoff = utcnow() - timedelta(days=older_than_days)

		async with self.session_factory() as db:
			result = await db.execute(
				delete(QueuedSms).where(
					and_(QueuedSms.processed_at.is_not(None), QueuedSms.processed_at < cutoff)
				)
			)
			await db.commit()

		deleted = result.rowcount or 0
		logger.info(f"Cleaned up {deleted} queued SMS older than {older_than_days} days")
		return deleted
