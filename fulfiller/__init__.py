"""
Fulfiller — off-chain job fulfillment for on-ledger compute requests.

Watches the ledger for JobRequest objects owned by the service address,
computes each pending job in an attestor (mock enclave or remote), and
submits one signed transaction that records the attested result and
releases payment.

Two keys: keystore index 0 submits and pays, index 1 attests.
"""

__version__ = "0.1.0"

from fulfiller.errors import (
    AttestationError,
    FatalStartupError,
    FulfillerError,
    LedgerError,
    LedgerNetworkError,
    ObjectNotFound,
    ObjectVanished,
    RejectedByLedger,
    ScanError,
    SubmissionError,
)
from fulfiller.schema import (
    Attestation,
    ErrorKind,
    FulfillmentOutcome,
    JobRequest,
    JobState,
    JobStatus,
    TickReport,
    TransactionResult,
)
from fulfiller.wallet import Ed25519Signer, Signer, verify_signature
from fulfiller.attestor import Attestor, MockEnclaveAttestor, RemoteAttestor, get_attestor, verify_attestation
from fulfiller.ledger import LedgerClient, SuiLedgerClient
from fulfiller.scanner import JobScanner
from fulfiller.pipeline import FulfillmentPipeline, RecentSubmissions
from fulfiller.scheduler import Scheduler

__all__ = [
    "__version__",
    "FulfillerError",
    "FatalStartupError",
    "ScanError",
    "AttestationError",
    "SubmissionError",
    "LedgerError",
    "ObjectNotFound",
    "ObjectVanished",
    "RejectedByLedger",
    "LedgerNetworkError",
    "Attestation",
    "ErrorKind",
    "FulfillmentOutcome",
    "JobRequest",
    "JobState",
    "JobStatus",
    "TickReport",
    "TransactionResult",
    "Signer",
    "Ed25519Signer",
    "verify_signature",
    "Attestor",
    "MockEnclaveAttestor",
    "RemoteAttestor",
    "get_attestor",
    "verify_attestation",
    "LedgerClient",
    "SuiLedgerClient",
    "JobScanner",
    "FulfillmentPipeline",
    "RecentSubmissions",
    "Scheduler",
]
