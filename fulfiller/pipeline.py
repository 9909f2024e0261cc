"""
Per-job fulfillment: Discovered -> Attested -> Submitted -> Confirmed | Rejected.

Each run completes inside one tick and never retries. A job that fails at
any step stays Pending on the ledger and is picked up again by the next scan.
Nothing is stored locally except the optional recently-submitted guard.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

from fulfiller.attestor import Attestor
from fulfiller.errors import AttestationError, LedgerError, SubmissionError
from fulfiller.ledger import LedgerClient
from fulfiller.schema import ErrorKind, FulfillmentOutcome, JobRequest, JobState, TransactionResult
from fulfiller.wallet import Signer

logger = logging.getLogger(__name__)

_ALLOWED = {
    JobState.DISCOVERED: {JobState.ATTESTED, JobState.FAILED, JobState.SKIPPED},
    JobState.ATTESTED: {JobState.SUBMITTED},
    JobState.SUBMITTED: {JobState.CONFIRMED, JobState.REJECTED},
}


class InvalidTransition(RuntimeError):
    pass


class JobRun:
    """State of one job within one pipeline run."""

    def __init__(self, job: JobRequest):
        self.job = job
        self.state = JobState.DISCOVERED
        self.history = [JobState.DISCOVERED]

    def advance(self, new_state: JobState) -> None:
        if new_state not in _ALLOWED.get(self.state, ()):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


class RecentSubmissions:
    """
    Jobs confirmed in the last `window_seconds`. Guards against resubmitting a
    job whose fulfillment is still propagating. A window of 0 disables it.
    """

    def __init__(self, window_seconds: float = 0, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.window_seconds > 0

    def _expire(self, now: float) -> None:
        for job_id in [j for j, t in self._seen.items() if now - t >= self.window_seconds]:
            del self._seen[job_id]

    def recently_submitted(self, job_id: str) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            self._expire(self._clock())
            return job_id in self._seen

    def record(self, job_id: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._seen[job_id] = self._clock()


class FulfillmentPipeline:
    """
    Attest and submit one job.

    Arguments to the entry point are, in protocol order: trusted-signer
    capability, job object, payment source, proof bytes, signature bytes.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        attestor: Attestor,
        signer: Signer,
        entry_point: str,
        trusted_signer_id: str,
        payment_source_id: str,
        recent: Optional[RecentSubmissions] = None,
    ):
        self.ledger = ledger
        self.attestor = attestor
        self.signer = signer
        self.entry_point = entry_point
        self.trusted_signer_id = trusted_signer_id
        self.payment_source_id = payment_source_id
        self.recent = recent or RecentSubmissions(0)

    def build_arguments(self, job: JobRequest, proof: bytes, signature: bytes) -> list:
        return [self.trusted_signer_id, job.id, self.payment_source_id, proof, signature]

    def submit(self, arguments: list) -> TransactionResult:
        """One submission attempt. Ledger rejections and network failures become SubmissionError."""
        try:
            return self.ledger.submit_entry_call(self.entry_point, arguments, self.signer)
        except LedgerError as e:
            raise SubmissionError(f"{type(e).__name__}: {e}") from e

    def _attestation_failed(self, run: JobRun, detail: str) -> FulfillmentOutcome:
        run.advance(JobState.FAILED)
        logger.warning(
            "job=%s state=%s error=%s detail=%s", run.job.id, run.state.value, ErrorKind.ATTESTATION.value, detail
        )
        return FulfillmentOutcome(job_id=run.job.id, state=run.state, error=ErrorKind.ATTESTATION, detail=detail)

    def process(self, job: JobRequest) -> FulfillmentOutcome:
        """Drive one job to a terminal state. Never raises for per-job failures."""
        run = JobRun(job)

        if self.recent.recently_submitted(job.id):
            run.advance(JobState.SKIPPED)
            logger.info("job=%s state=%s reason=recently_submitted", job.id, run.state.value)
            return FulfillmentOutcome(job_id=job.id, state=run.state, detail="submitted recently; awaiting finality")

        try:
            attestation = self.attestor.compute(job.input_data)
        except AttestationError as e:
            return self._attestation_failed(run, str(e))
        except Exception as e:
            logger.debug("job=%s attestor raised", job.id, exc_info=True)
            return self._attestation_failed(run, f"{type(e).__name__}: {e}")
        run.advance(JobState.ATTESTED)

        arguments = self.build_arguments(job, attestation.proof, attestation.signature)
        run.advance(JobState.SUBMITTED)
        try:
            result = self.submit(arguments)
        except SubmissionError as e:
            run.advance(JobState.REJECTED)
            logger.warning("job=%s state=%s error=%s detail=%s", job.id, run.state.value, ErrorKind.SUBMISSION.value, e)
            return FulfillmentOutcome(job_id=job.id, state=run.state, error=ErrorKind.SUBMISSION, detail=str(e))

        if result.success:
            run.advance(JobState.CONFIRMED)
            self.recent.record(job.id)
            logger.info("job=%s state=%s tx=%s", job.id, run.state.value, result.id)
            return FulfillmentOutcome(job_id=job.id, state=run.state, submitted=True, transaction_id=result.id)

        run.advance(JobState.REJECTED)
        logger.warning(
            "job=%s state=%s tx=%s error=%s detail=%s",
            job.id, run.state.value, result.id, ErrorKind.SUBMISSION.value, result.error,
        )
        return FulfillmentOutcome(
            job_id=job.id,
            state=run.state,
            submitted=True,
            transaction_id=result.id,
            error=ErrorKind.SUBMISSION,
            detail=result.error,
        )
