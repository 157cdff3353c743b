"""
Exceptions raised or reported by the tracker.

Local errors (bad arguments, unserializable data) are raised from track().
Transport outcomes are never raised; they are attached to flush results.
"""
from typing import Any, Optional

TIMEOUT_STATUS = 408


class TrackerError(Exception):
    """Base exception for all tracker errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidArgumentError(TrackerError, ValueError):
    """Empty stream/data at track() time, or an invalid option."""


class SerializationError(TrackerError):
    """Data could not be converted to its text form."""


class TrackerStoppedError(TrackerError):
    """The tracker was stopped before the operation could complete."""


class TransportError(TrackerError):
    """A send to the Atom endpoint failed."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        details = {}
        if status is not None:
            details['status'] = status
        super().__init__(message, details)
        self.status = status
        self.body = body


class TransientTransportError(TransportError):
    """Server-side failure (status >= 500), eligible for retry."""


class TerminalTransportError(TransportError):
    """Any other failure (4xx, auth, validation); never retried."""


class RetryExhaustedError(TransportError):
    """Backoff reached the retry ceiling without a successful send."""

    def __init__(self, message: str, last_error: Optional[TransportError] = None):
        super().__init__(message, status=TIMEOUT_STATUS)
        self.last_error = last_error
