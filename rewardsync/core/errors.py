class RewardSyncError(Exception):
    """Base class for all errors raised by rewardsync."""


class ConfigError(RewardSyncError):
    """Raised when the settings file contains an invalid value."""


class RemoteServiceError(RewardSyncError):
    """
    A call to the remote channel service failed.

    Attributes:
        status: HTTP status code, or 0 when the request never got a response.
        message: Error text returned by the service or the transport.
    """

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"{status}: {message}")


class InvalidTransitionError(RewardSyncError):
    """Raised when a redemption is moved out of a terminal status."""
