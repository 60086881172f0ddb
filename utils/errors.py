"""Typed errors shared by the watcher, pipeline, providers and server lifecycle."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
	"""Failure kinds recorded on a ProcessedItem."""

	VALIDATION_ERROR = "VALIDATION_ERROR"
	DECODE_ERROR = "DECODE_ERROR"
	AUTH_ERROR = "AUTH_ERROR"
	RATE_LIMITED = "RATE_LIMITED"
	PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
	PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
	TIMEOUT = "TIMEOUT"


class ScreenshotRelayError(Exception):
	"""Base class for every error raised by this application."""

	# ProcessedItem recorded for the failure, when the pipeline recorded one.
	item = None


class ValidationError(ScreenshotRelayError):
	"""Bad input shape, size or mime type."""

	kind = ErrorKind.VALIDATION_ERROR

	def __init__(self, message: str, *, status_code: int = 400) -> None:
		super().__init__(message)
		self.status_code = status_code


class DecodeError(ScreenshotRelayError):
	"""The payload looks like an image but cannot be decoded."""

	kind = ErrorKind.DECODE_ERROR
	status_code = 422


class AnalysisError(ScreenshotRelayError):
	"""Failure reported by the AI analysis client."""

	kind: ErrorKind = ErrorKind.PROVIDER_UNAVAILABLE
	retryable = False

	def __init__(self, message: str, *, kind: Optional[ErrorKind] = None) -> None:
		super().__init__(message)
		if kind is not None:
			self.kind = kind


class ProviderAuthError(AnalysisError):
	kind = ErrorKind.AUTH_ERROR


class ProviderRateLimited(AnalysisError):
	kind = ErrorKind.RATE_LIMITED


class PayloadTooLarge(AnalysisError):
	kind = ErrorKind.PAYLOAD_TOO_LARGE


class ProviderUnavailable(AnalysisError):
	kind = ErrorKind.PROVIDER_UNAVAILABLE
	retryable = True


class ProviderTimeout(AnalysisError):
	kind = ErrorKind.TIMEOUT
	retryable = True


class NotificationDeliveryError(ScreenshotRelayError):
	"""Notification could not be delivered. Never fatal for an item."""


class InvalidTransitionError(ScreenshotRelayError):
	"""A ProcessedItem was asked to leave a terminal state."""


class LifecycleError(ScreenshotRelayError):
	"""Base class for errors returned to start/stop/toggle callers."""

	code = "LIFECYCLE_ERROR"


class ConfigValidationError(LifecycleError):
	code = "CONFIG_INVALID"


class PortInUseError(LifecycleError):
	code = "PORT_IN_USE"


class AlreadyRunningError(LifecycleError):
	code = "ALREADY_RUNNING"


class NotRunningError(LifecycleError):
	code = "NOT_RUNNING"
