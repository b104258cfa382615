from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
import logging
import json
import time

from app.models.base import utcnow
from app.monitoring.metrics import request_count, request_duration

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
	"""One JSON access-log line and request metrics per request"""

	async def dispatch(self, request: Request, call_next):
		start_time = time.time()

		response = await call_next(request)

		duration = time.time() - start_time

		# Route template keeps metric label cardinality bounded
		route = request.scope.get("route")
		endpoint = getattr(route, "path", request.url.path)

		if endpoint != "/internal/metrics":
			request_count.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
			request_duration.labels(method=request.method, endpoint=endpoint).observe(duration)

		log_dict = {
			"timestamp": utcnow().isoformat(),
			"level": "INFO",
			"request_id": getattr(request.state, "request_id", None),
			"method": request.method,
			"path": request.url.path,
			"query_params": dict(request.query_params),
			"client_host": request.client.host if request.client else None,
			"status_code": response.status_code,
			"duration_seconds": round(duration, 3),
		}

		if response.status_code >= 400:
			log_dict["level"] = "WARNING" if response.status_code < 500 else "ERROR"

		logger.info(json.dumps(log_dict))

		if duration > 1.0:
			logger.warning(f"Slow request detected: {request.method} {request.url.path} took {duration:.2f}s")

		return response
