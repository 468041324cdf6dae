class PoolWatchError(Exception):
    """Base class for every error raised by the pool alert engine."""


class ConfigurationError(PoolWatchError):
    pass


class UnknownParameterError(PoolWatchError, KeyError):
    """Raised when a chemical parameter has no entry in the standards catalog."""

    def __init__(self, parameter):
        super().__init__(parameter)
        self.parameter = parameter

    def __str__(self):
        return f"Unknown chemical parameter: {self.parameter!r}"


class MalformedReadingError(PoolWatchError, ValueError):
    """A reading is missing a required field (facility id or timestamp)."""

    def __init__(self, message, row=None):
        super().__init__(message)
        self.row = row


class NotificationFailure(PoolWatchError):
    pass


class StoreFetchError(PoolWatchError):
    """The external reading store could not be read."""
