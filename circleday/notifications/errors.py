"""Exceptions raised by the reminder scheduling and delivery code."""


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class ReminderValidationError(ReminderError):
    """A reminder request is missing data it needs; never retried."""


class DeliveryNotFoundError(ReminderError):
    """No delivery instance exists for the given id."""

    def __init__(self, instance_id: str):
        super().__init__(f"Delivery instance {instance_id} not found")
        self.instance_id = instance_id


class ChannelSendError(ReminderError):
    """A channel provider rejected or failed a send."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSendError(ChannelSendError):
    """Timeouts, rate limits and provider 5xx; worth retrying."""

    retryable = True


class PermanentSendError(ChannelSendError):
    """Bad address, rejected credentials and other 4xx; retrying won't help."""


class ChannelNotConfiguredError(PermanentSendError):
    """No sender is configured for the requested channel."""


def classify_http_status(status_code: int | None, message: str) -> ChannelSendError:
    """Map a provider HTTP status to a transient or permanent send error."""
    if status_code is None or status_code == 429 or status_code >= 500:
        return TransientSendError(message, status_code=status_code)
    return PermanentSendError(message, status_code=status_code)
