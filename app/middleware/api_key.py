from datetime import datetime
import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, status
from fastapi.responses import JSONResponse
from typing import List, Optional
import logging
from app.config import settings

logger = logging.getLogger(__name__)


class APIKeyMiddleware(BaseHTTPMiddleware):
	"""X-API-Key check for the operator API"""

	def __init__(self, app, protected_prefixes: List[str] = None, exclude_paths: List[str] = None):
		super().__init__(app)
		self.protected_prefixes = protected_prefixes or [settings.API_V1_PREFIX]
		self.exclude_paths = exclude_paths or []

	async def dispatch(self, request: Request, call_next):
		path = request.url.path
		if not any(path.startswith(prefix) for prefix in self.protected_prefixes):
			return await call_next(request)
		if any(path.startswith(excluded) for excluded in self.exclude_paths):
			return await call_next(request)

		expected = settings.ADMIN_API_KEY
		# No key configured: local development
		if not expected:
			return await call_next(request)

		api_key = request.headers.get("X-API-Key")
		if not self.validate_api_key(api_key, expected):
			logger.warning(f"Invalid API key attempt from {request.client.host if request.client else 'unknown'}")
			return JSONResponse(
				status_code=status.HTTP_401_UNAUTHORIZED,
				content={
					"error": "Unauthorized",
					"message": "Invalid or missing API key",
					"timestamp": datetime.utcnow().isoformat()
				},
				headers={"WWW-Authenticate": 'ApiKey realm="API"'}
			)

		return await call_next(request)

	@staticmethod
	def validate_api_key(api_key: Optional[str], expected: str) -> bool:
		return bool(api_key) and secrets.compare_digest(api_key, expected)
