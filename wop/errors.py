from __future__ import annotations

PORT_ALLOCATED_MARKER = "provided port is already allocated"


class ClusterError(Exception):
    """A cluster call failed. ``reason`` is one of the taxonomy names below."""

    reason = "Other"

    def __init__(self, message: str = "", status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}" if self.message else self.reason


class NotFound(ClusterError):
    reason = "NotFound"


class AlreadyExists(ClusterError):
    reason = "AlreadyExists"


class Conflict(ClusterError):
    reason = "Conflict"


class Invalid(ClusterError):
    reason = "Invalid"


class Unavailable(ClusterError):
    """The API server could not be reached or the connection broke mid-call."""

    reason = "Unavailable"


def is_port_allocated(err: Exception) -> bool:
    """True for the Invalid variant the API server returns when a node port is taken."""
    return isinstance(err, Invalid) and PORT_ALLOCATED_MARKER in err.message
