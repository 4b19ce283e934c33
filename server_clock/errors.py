"""
Errors
======

Failure taxonomy for probing and synchronization.

Every error carries a short human-readable ``reason`` that is safe to show
in a status line; transport details stay in the exception chain.
"""


class ServerClockError(Exception):
    """Base class for all synchronization errors."""

    reason = "Synchronization error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)


class ProbeError(ServerClockError):
    """A single probe against the remote host failed."""

    reason = "Failed to fetch server time"
    http_status = 500


class ProbeTimeout(ProbeError):
    reason = "Request timed out"
    http_status = 504


class HostUnresolvable(ProbeError):
    reason = "Could not resolve host"
    http_status = 502


class AccessDenied(ProbeError):
    reason = "Access denied by server"
    http_status = 403


class NotFound(ProbeError):
    reason = "Server not found"
    http_status = 404


class NoValidSamples(ServerClockError):
    """Every probe in a batch failed or carried no remote time."""

    reason = "No valid time samples"


class SyncFailed(ServerClockError):
    """A synchronization cycle failed at any pipeline stage."""

    reason = "Time synchronization failed"


class SyncCancelled(SyncFailed):
    """The target was cleared while the synchronization was in flight."""

    reason = "Synchronization cancelled"
