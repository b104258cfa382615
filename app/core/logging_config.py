import logging
import sys

from app.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "celery.redirected")


def setup_logging(level: str = None) -> None:
	"""Configure root logging once for the API process and the queue worker."""
	level_name = (level or settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")).upper()

	logging.basicConfig(
		level=getattr(logging, level_name, logging.INFO),
		format=LOG_FORMAT,
		handlers=[logging.StreamHandler(sys.stdout)],
		force=True,
	)

	for name in QUIET_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)
