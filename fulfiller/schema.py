"""
Data model shared by scanner, pipeline and scheduler.

JobRequest mirrors the on-ledger object; Attestation and FulfillmentOutcome
are transient and never persisted by this service.
"""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(IntEnum):
    """
    Status values published by the on-ledger protocol (`status: u8` on JobRequest).

    These are external-protocol constants, not local choices. Any value other
    than PENDING is not actionable.
    """

    PENDING = 0
    FULFILLED = 1


class JobState(str, Enum):
    """Per-job pipeline state within one tick."""

    DISCOVERED = "discovered"
    ATTESTED = "attested"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({JobState.CONFIRMED, JobState.REJECTED, JobState.FAILED, JobState.SKIPPED})


class ErrorKind(str, Enum):
    ATTESTATION = "attestation_error"
    SUBMISSION = "submission_error"
    INTERNAL = "internal_error"


class ObjectRef(BaseModel):
    """Entry from an owned-objects listing."""

    model_config = ConfigDict(frozen=True)

    object_id: str
    type: Optional[str] = None


def parse_status(raw: Any) -> Optional[int]:
    """
    A `u8` status as the ledger reports it: an int, or a string of decimal
    digits. Anything else (bool, float, other text) is None.
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.isdigit() and raw.isascii():
        return int(raw)
    return None


class JobRequest(BaseModel):
    """A job object as observed on the ledger."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Ledger object id, stable for the object's lifetime")
    status: int = Field(..., description="Raw status value; compare against JobStatus")
    input_data: List[Any] = Field(default_factory=list, description="Computation input as reported by the ledger")
    type: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == JobStatus.PENDING

    @classmethod
    def from_fields(cls, object_id: str, fields: Mapping[str, Any], type_tag: Optional[str] = None) -> Optional["JobRequest"]:
        """
        Build from an object's field snapshot. Returns None when the status
        field is absent or not an integer, which callers treat as not actionable.
        """
        status = parse_status(fields.get("status"))
        if status is None:
            return None
        raw_input = fields.get("input_data") or []
        if not isinstance(raw_input, (list, tuple)):
            raw_input = [raw_input]
        return cls(id=object_id, status=status, input_data=list(raw_input), type=type_tag)


class Attestation(BaseModel):
    """Signed computation result. Created per attempt and discarded after submission."""

    model_config = ConfigDict(frozen=True)

    proof: bytes
    signature: bytes


class TransactionResult(BaseModel):
    """What the ledger reports for a submitted transaction."""

    success: bool
    id: str = Field(..., description="Transaction digest")
    error: Optional[str] = Field(None, description="Execution failure reason when success is False")


class FulfillmentOutcome(BaseModel):
    """Operator-facing result of one job's pipeline run."""

    job_id: str
    state: JobState
    submitted: bool = False
    transaction_id: Optional[str] = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None


class TickReport(BaseModel):
    """Summary of one scheduler tick."""

    tick: int
    started_at: datetime
    jobs_found: int = 0
    outcomes: List[FulfillmentOutcome] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def confirmed(self) -> int:
        return sum(1 for o in self.outcomes if o.state == JobState.CONFIRMED)
