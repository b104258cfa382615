"""
Standalone queue worker: `python -m app.workers.queue_worker`.

Runs the delayed job poller and the quiet-hours SMS poller outside the API
process (set RUN_QUEUE_WORKERS=false on the API when using it).
"""

import asyncio
import logging
import signal

from app.core.logging_config import setup_logging
from app.core.services import build_services
from app.database import init_db, close_db

logger = logging.getLogger(__name__)


async def run() -> None:
	await init_db()
	services = build_services()

	stop_event = asyncio.Event()
	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		loop.add_signal_handler(sig, stop_event.set)

	services.start_workers()
	logger.info("Queue worker running")

	await stop_event.wait()

	logger.info("Shutting down queue worker")
	await services.stop_workers()
	await close_db()


def main() -> None:
	setup_logging()
	asyncio.run(run())


if __name__ == "__main__":
	main()
