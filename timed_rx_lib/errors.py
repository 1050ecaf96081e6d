"""Custom exceptions for the timed RX trigger library."""


class TimedRxError(Exception):
    """Base exception for all timed RX library errors."""

    pass


class RequestParseError(TimedRxError):
    """Raised when an inbound trigger message does not match the request grammar."""

    pass


class LateDeadlineError(TimedRxError):
    """Raised when a request's start time cannot be honored given the known slack."""

    def __init__(self, message: str, margin_s: float) -> None:
        super().__init__(message)
        self.margin_s = margin_s


class LockTimeoutError(TimedRxError):
    """Raised when a lock sensor does not assert within the setup timeout."""

    pass


class DeviceError(TimedRxError):
    """Raised when the radio cannot be opened or a device call fails."""

    pass


class ControlChannelError(TimedRxError):
    """Raised when the publish/subscribe control channel cannot be established."""

    pass


class ConfigError(TimedRxError):
    """Raised when service configuration values are invalid."""

    pass


class Cancelled(TimedRxError):
    """Raised at a suspension point once the cancellation token has fired."""

    pass
