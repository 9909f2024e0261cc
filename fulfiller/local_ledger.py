"""
In-process ledger for the demo and the test-suite.

Implements LedgerClient with the on-ledger protocol's fulfillment rules:
fulfill_job_and_pay(signer_cap, job, payment_source, proof, signature)
aborts unless the cap belongs to the sender, the job is still Pending,
the attestor signature verifies and the payment source can cover the price.
A successful call pays the job's price to the job requester and marks it
Fulfilled. An aborted call changes nothing.

No network, no persistence: state lives for the life of the object.
"""

import copy
import hashlib
import itertools
import threading
from typing import Any, Dict, List, Optional, Sequence

from fulfiller.errors import LedgerNetworkError, ObjectNotFound, RejectedByLedger
from fulfiller.ledger import split_target
from fulfiller.schema import JobStatus, ObjectRef, TransactionResult
from fulfiller.wallet import Signer, verify_signature

DEMO_PACKAGE_ID = "0x" + "ab" * 32
DEFAULT_MODULE = "logic"
FULFILL_FUNCTION = "fulfill_job_and_pay"

# Move abort codes of the reference `logic` module
E_NOT_AUTHORIZED = 1
E_JOB_NOT_PENDING = 2
E_BAD_SIGNATURE = 3
E_INSUFFICIENT_FUNDS = 4


class InMemoryLedger:
    """Objects keyed by id: {"type", "owner", "fields"}."""

    def __init__(self, package_id: str = DEMO_PACKAGE_ID, module: str = DEFAULT_MODULE):
        self.package_id = package_id
        self.module = module
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.balances: Dict[str, int] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.offline = False
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def type_tag(self, struct: str) -> str:
        return f"{self.package_id}::{self.module}::{struct}"

    def _new_id(self) -> str:
        return "0x" + hashlib.blake2b(f"object-{next(self._seq)}".encode(), digest_size=32).hexdigest()

    def _new_digest(self) -> str:
        return hashlib.blake2b(f"tx-{next(self._seq)}".encode(), digest_size=32).hexdigest()

    def _check_online(self, method: str) -> None:
        if self.offline:
            raise LedgerNetworkError(f"{method}: ledger unreachable")

    def add_object(self, type_tag: str, owner: str, fields: Dict[str, Any], object_id: Optional[str] = None) -> str:
        object_id = object_id or self._new_id()
        with self._lock:
            self.objects[object_id] = {"type": type_tag, "owner": owner, "fields": dict(fields)}
        return object_id

    def create_trusted_signer(self, owner: str, attestor_public_key: bytes) -> str:
        return self.add_object(
            self.type_tag("TrustedSigner"),
            owner,
            {"attestor_pubkey": list(bytes(attestor_public_key))},
        )

    def create_payment_source(self, owner: str, balance: int) -> str:
        return self.add_object(self.type_tag("PaymentVault"), owner, {"balance": int(balance)})

    def create_job(
        self,
        owner: str,
        input_data: Sequence[int],
        price: int = 0,
        requester: str = "0x0",
        status: int = JobStatus.PENDING,
    ) -> str:
        # u64 values come back from a fullnode as strings
        return self.add_object(
            self.type_tag("JobRequest"),
            owner,
            {
                "status": int(status),
                "input_data": [str(v) for v in input_data],
                "price": str(int(price)),
                "requester": requester,
                "proof": [],
                "signature": [],
            },
        )

    def remove_object(self, object_id: str) -> None:
        with self._lock:
            self.objects.pop(object_id, None)

    def set_status(self, object_id: str, status: int) -> None:
        with self._lock:
            self.objects[object_id]["fields"]["status"] = int(status)

    # LedgerClient

    def list_owned_objects(self, owner: str) -> List[ObjectRef]:
        self._check_online("list_owned_objects")
        with self._lock:
            return [ObjectRef(object_id=oid, type=obj["type"]) for oid, obj in self.objects.items() if obj["owner"] == owner]

    def get_object_fields(self, object_id: str) -> Dict[str, Any]:
        self._check_online("get_object_fields")
        with self._lock:
            obj = self.objects.get(object_id)
            if obj is None:
                raise ObjectNotFound(object_id, reason="deleted")
            return copy.deepcopy(obj["fields"])

    def submit_entry_call(self, target: str, arguments: Sequence[Any], signer: Signer) -> TransactionResult:
        self._check_online("submit_entry_call")
        package, module, function = split_target(target)
        if package != self.package_id or module != self.module or function != FULFILL_FUNCTION:
            raise RejectedByLedger(f"function {target} not found")
        if len(arguments) != 5:
            raise RejectedByLedger(f"{function} expects 5 arguments, got {len(arguments)}")
        cap_id, job_id, source_id, proof, signature = arguments
        with self._lock:
            cap = self._expect(cap_id, "TrustedSigner")
            job = self._expect(job_id, "JobRequest")
            source = self._expect(source_id, "PaymentVault")
            digest = self._new_digest()
            abort = self._check_fulfill(cap, job, source, bytes(proof), bytes(signature), signer)
            if abort is None:
                price = int(job["fields"]["price"])
                source["fields"]["balance"] -= price
                requester = job["fields"]["requester"]
                self.balances[requester] = self.balances.get(requester, 0) + price
                job["fields"]["status"] = int(JobStatus.FULFILLED)
                job["fields"]["proof"] = list(bytes(proof))
                job["fields"]["signature"] = list(bytes(signature))
            self.transactions.append(
                {"digest": digest, "target": target, "arguments": list(arguments), "sender": signer.identity, "abort": abort}
            )
        if abort is None:
            return TransactionResult(success=True, id=digest)
        return TransactionResult(success=False, id=digest, error=f"MoveAbort in {module}::{function}, code {abort}")

    def _expect(self, object_id: Any, struct: str) -> Dict[str, Any]:
        obj = self.objects.get(object_id) if isinstance(object_id, str) else None
        if obj is None:
            raise RejectedByLedger(f"object {object_id} does not exist")
        if obj["type"] != self.type_tag(struct):
            raise RejectedByLedger(f"object {object_id} is {obj['type']}, expected {struct}")
        return obj

    def _check_fulfill(self, cap, job, source, proof: bytes, signature: bytes, signer: Signer) -> Optional[int]:
        if cap["owner"] != signer.identity:
            return E_NOT_AUTHORIZED
        if int(job["fields"]["status"]) != JobStatus.PENDING:
            return E_JOB_NOT_PENDING
        if not verify_signature(proof, signature, bytes(cap["fields"]["attestor_pubkey"])):
            return E_BAD_SIGNATURE
        if source["fields"]["balance"] < int(job["fields"]["price"]):
            return E_INSUFFICIENT_FUNDS
        return None

    def successful_transactions(self, job_id: str) -> List[Dict[str, Any]]:
        return [t for t in self.transactions if t["abort"] is None and t["arguments"][1] == job_id]
