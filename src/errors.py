"""Exceptions raised by the debate engine."""


class DebateError(Exception):
    """Base class for debate orchestration errors."""


class DebateSetupError(DebateError):
    """Raised when a debate cannot start (bad topic or conflicting roles)."""


class PhaseAdvanceRejected(DebateError):
    """Raised when advance_phase() is called in a state that does not allow it.

    ``reason`` is one of INACTIVE, IN_FLIGHT, PENDING, INTERJECTION or COMPLETE.
    """

    INACTIVE = "inactive"
    IN_FLIGHT = "in_flight"
    PENDING = "pending"
    INTERJECTION = "interjection"
    COMPLETE = "complete"

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class VerdictRequestRejected(DebateError):
    """Raised when a verdict is requested with no active session or a phase in flight."""


class VerdictTimeoutError(DebateError):
    """Raised when the judge does not deliver an audit block within the poll bound."""

    def __init__(self, judge: str, attempts: int) -> None:
        self.judge = judge
        self.attempts = attempts
        super().__init__(f"Judge {judge} did not submit a verdict after {attempts} polls")
