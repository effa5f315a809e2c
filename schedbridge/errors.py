"""Exception types raised by the scheduler client and the task model."""


class SchedulerError(Exception):
    """Base class for failures talking to the external scheduler."""


class TransportError(SchedulerError):
    """Connection refused, timeout or a non-2xx response."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SerializationError(SchedulerError):
    """The response body could not be decoded into the expected shape."""

    def __init__(self, message, body=None):
        super().__init__(message)
        self.body = body


class TaskStateError(Exception):
    """A task was asked to move backwards or out of a terminal state."""
