from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
from typing import Optional
import uuid
import contextvars
import logging

# Context variable to store request ID; domain events pick it up as their correlation id
request_id_context = contextvars.ContextVar("request_id", default=None)

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Generate and track unique request IDs"""

	async def dispatch(self, request: Request, call_next):
		# Get or generate request ID
		request_id = request.headers.get("X-Request-ID")
		if not request_id:
			request_id = str(uuid.uuid4())

		# Store in request state and context
		request.state.request_id = request_id
		token = request_id_context.set(request_id)

		logger.debug(f"Request started: {request.method} {request.url.path} [{request_id}]")

		try:
			response = await call_next(request)
		finally:
			request_id_context.reset(token)

		response.headers["X-Request-ID"] = request_id
		response.headers["X-Correlation-ID"] = request_id

		return response


def get_request_id() -> Optional[str]:
	"""Current request ID, or None outside a request"""
	return request_id_context.get()
