from typing import Optional


class QueueError(Exception):
	"""Base exception for background delivery operations."""

	def __init__(self, message: str, operation: Optional[str] = None):
		super().__init__(message)
		self.operation = operation


class HandlerTimeoutError(QueueError):
	def __init__(self, job_type: str, timeout_seconds: float):
		super().__init__(
			f"Handler timed out after {timeout_seconds:g}s",
			operation=f"handle:{job_type}",
		)
		self.timeout_seconds = timeout_seconds


class SmsDeliveryError(QueueError):
	"""An SMS send attempt returned a failed result."""

	def __init__(self, message: str, code: Optional[str] = None):
		super().__init__(message, operation="sms_send")
		self.code = code


class ReminderDeliveryError(SmsDeliveryError):
	pass
