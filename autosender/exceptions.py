class AutoSenderError(Exception):
    """Base class for errors raised by autosender."""


class RecordNotFoundError(AutoSenderError):
    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidTransitionError(AutoSenderError):
    """A status change that the application state machine does not allow."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class CircuitOpenError(AutoSenderError):
    def __init__(self, name: str):
        super().__init__(f"Circuit breaker '{name}' is open")
        self.name = name


class SubmissionError(AutoSenderError):
    """The remote job board answered with an error."""
