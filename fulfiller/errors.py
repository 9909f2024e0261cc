"""
Error taxonomy for the fulfillment service.

Only FatalStartupError propagates out of the service; everything else is
contained to one job or one tick and retried by rescanning on the next tick.
"""


class FulfillerError(Exception):
    """Base class for all service errors."""


class FatalStartupError(FulfillerError):
    """Bad or missing key material / required config. Process exits before the scheduler starts."""


class ScanError(FulfillerError):
    """Ledger unreachable during job discovery. The tick is skipped."""


class AttestationError(FulfillerError):
    """Computation or signing failed for a job's input."""


class SubmissionError(FulfillerError):
    """Fulfillment transaction rejected or lost on the wire."""


class LedgerError(FulfillerError):
    """Raised by a LedgerClient."""


class ObjectNotFound(LedgerError):
    """Object no longer exists (consumed or deleted between list and fetch)."""

    def __init__(self, object_id: str, reason: str = "notExists"):
        super().__init__(f"object {object_id} not found ({reason})")
        self.object_id = object_id
        self.reason = reason


ObjectVanished = ObjectNotFound


class RejectedByLedger(LedgerError):
    """Ledger refused the request: bad arguments, stale version, insufficient funds."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class LedgerNetworkError(LedgerError):
    """Endpoint unreachable or request timed out."""
