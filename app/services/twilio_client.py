"""
Thin Twilio Messages API client over httpx.
"""

import logging
from typing import Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

# Twilio error codes the SMS service maps to its own codes
INVALID_PHONE_CODE = 21211
UNSUBSCRIBED_RECIPIENT_CODE = 21610


class TwilioError(Exception):
	def __init__(self, message: str, code: Optional[int] = None, status_code: Optional[int] = None):
		super().__init__(message)
		self.code = code
		self.status_code = status_code


class TwilioClient:
	def __init__(
			self,
			account_sid: Optional[str] = settings.TWILIO_ACCOUNT_SID,
			auth_token: Optional[str] = settings.TWILIO_AUTH_TOKEN,
			timeout: float = settings.TWILIO_TIMEOUT_SECONDS,
			status_callback: Optional[str] = None,
	):
		self.account_sid = account_sid
		self.auth_token = auth_token
		self.timeout = timeout
		self.status_callback = status_callback or f"{settings.API_URL}/webhooks/twilio/sms/status"

	@property
	def is_configured(self) -> bool:
		return bool(self.account_sid and self.auth_token)

	async def send_message(self, to: str, from_number: str, body: str) -> str:
		"""Send one SMS; returns the Twilio message SID."""
		data = {
			"To": to,
			"From": from_number,
			"Body": body,
			"StatusCallback": self.status_callback,
		}

		try:
			async with httpx.AsyncClient() as client:
				response = await client.post(
					f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json",
					auth=(self.account_sid, self.auth_token),
					data=data,
					timeout=self.timeout,
				)
		except httpx.HTTPError as e:
			raise TwilioError(f"Twilio request failed: {e}") from e

		if response.status_code in (200, 201):
			return response.json().get("sid")

		try:
			body_json = response.json()
		except ValueError:
			body_json = {}

		raise TwilioError(
			body_json.get("message") or f"Twilio API error {response.status_code}",
			code=body_json.get("code"),
			status_code=response.status_code,
		)
