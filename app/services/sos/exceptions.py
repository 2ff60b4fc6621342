"""Exceptions raised by the SOS fan-out services."""


class SOSError(Exception):
    """Base class for SOS pipeline errors."""

    status_code = 500

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = False):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class SOSEventCreationError(SOSError):
    """The event row could not be written; nothing downstream was started."""


class DownstreamChannelError(SOSError):
    """A notification channel failed. Logged by the orchestrator, never propagated."""

    def __init__(self, message: str, channel: str):
        super().__init__(message, operation=channel, recoverable=True)
        self.channel = channel


class AcknowledgementError(SOSError):
    """Acknowledge/resolve request that cannot be honoured."""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message, operation="acknowledge")
        self.status_code = status_code
