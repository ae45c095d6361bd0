class ScheduleAdapterError(Exception):
    """Base exception for schedule adapter operations."""


class ConfigurationError(ScheduleAdapterError):
    """Invalid run configuration. Raised before any remote call is made."""


class MalformedScheduleError(ScheduleAdapterError):
    """Epic returned schedule data we cannot interpret."""

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response
