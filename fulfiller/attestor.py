"""
Attestors: produce a signed computation result for a job's input.

The mock enclave runs in-process with its own key (keystore index 1) and signs
the proof text directly. The remote attestor calls a Nautilus enclave's
/process_data; the enclave answers with a signed intent message
({"response": {"intent", "timestamp_ms", "data"}, "signature": hex}) whose BCS
bytes become the proof. Both are pure with respect to ledger state.
"""

import logging
import struct
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

import requests
from eth_utils import decode_hex

from fulfiller.errors import AttestationError
from fulfiller.schema import Attestation
from fulfiller.wallet import Signer, address_from_public_key, verify_signature

logger = logging.getLogger(__name__)

DEFAULT_PROOF_LABEL = "Job result is"
U64_MAX = 2**64 - 1

# IntentScope::ProcessData
INTENT_PROCESS_DATA = 0
# bcs(IntentMessage<JobResult>): intent u8, timestamp_ms u64, result u64
_INTENT_MESSAGE = struct.Struct("<BQQ")


@runtime_checkable
class Attestor(Protocol):
    """Anything that turns job input into (proof, signature)."""

    @property
    def identity(self) -> str: ...

    def compute(self, input_data: Sequence[int]) -> Attestation: ...


def normalize_input(input_data: Sequence) -> list:
    """
    Coerce ledger values (u64 arrives as JSON strings) to ints.
    Raises AttestationError for anything that is not a u64.
    """
    if isinstance(input_data, (str, bytes)) or not hasattr(input_data, "__iter__"):
        raise AttestationError(f"input_data must be a sequence, got {type(input_data).__name__}")
    values = []
    for i, raw in enumerate(input_data):
        if isinstance(raw, bool):
            raise AttestationError(f"input_data[{i}] is a bool, expected an integer")
        try:
            value = int(raw, 10) if isinstance(raw, str) else int(raw)
        except (TypeError, ValueError, OverflowError) as e:
            raise AttestationError(f"input_data[{i}]={raw!r} is not an integer") from e
        if isinstance(raw, float) and raw != value:
            raise AttestationError(f"input_data[{i}]={raw!r} is not an integer")
        if value < 0 or value > U64_MAX:
            raise AttestationError(f"input_data[{i}]={value} is outside u64 range")
        values.append(value)
    return values


def encode_proof(label: str, result: int) -> bytes:
    return f"{label} {result}".encode("utf-8")


def encode_intent_message(result: int, timestamp_ms: int, intent: int = INTENT_PROCESS_DATA) -> bytes:
    """BCS bytes of the enclave's signed message for one job result."""
    return _INTENT_MESSAGE.pack(intent, timestamp_ms, result)


def decode_intent_message(message: bytes) -> Tuple[int, int, int]:
    """(intent, timestamp_ms, result). ValueError if `message` is not one."""
    if len(message) != _INTENT_MESSAGE.size:
        raise ValueError(f"intent message is {_INTENT_MESSAGE.size} bytes, got {len(message)}")
    return _INTENT_MESSAGE.unpack(bytes(message))


class MockEnclaveAttestor:
    """
    Stand-in for a trusted execution environment: sums the input and signs
    "<label> <sum>" with the attestor key.
    """

    def __init__(self, signer: Signer, label: str = DEFAULT_PROOF_LABEL):
        self._signer = signer
        self.label = label

    @property
    def identity(self) -> str:
        return self._signer.identity

    @property
    def public_key(self) -> bytes:
        return self._signer.public_key

    def compute(self, input_data: Sequence[int]) -> Attestation:
        values = normalize_input(input_data)
        total = sum(values)
        if total > U64_MAX:
            raise AttestationError(f"sum {total} overflows u64")
        proof = encode_proof(self.label, total)
        try:
            signature = self._signer.sign(proof)
        except Exception as e:
            raise AttestationError(f"signing failed: {e}") from e
        logger.debug("attestor=mock inputs=%d result=%d", len(values), total)
        return Attestation(proof=proof, signature=signature)


class RemoteAttestor:
    """
    Nautilus enclave reached over HTTP. POST {url}/process_data with
    {"payload": {"input_data": [...]}}; the enclave replies
    {"response": {"intent": 0, "timestamp_ms": ..., "data": {"result": ...}},
    "signature": hex}, an ed25519 signature over the BCS-encoded response.
    """

    def __init__(self, url: str, public_key: bytes, timeout: float = 30, session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.public_key = bytes(public_key)
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def identity(self) -> str:
        return address_from_public_key(self.public_key)

    def compute(self, input_data: Sequence[int]) -> Attestation:
        values = normalize_input(input_data)
        try:
            r = self._session.post(
                f"{self.url}/process_data",
                json={"payload": {"input_data": values}},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise AttestationError(f"enclave request failed: {e}") from e
        except ValueError as e:
            raise AttestationError(f"enclave returned non-JSON body: {e}") from e
        try:
            response = data["response"]
            intent = int(response["intent"])
            timestamp_ms = int(response["timestamp_ms"])
            result = int(response["data"]["result"])
            signature = decode_hex(data["signature"])
        except (KeyError, TypeError, ValueError) as e:
            raise AttestationError(f"enclave response missing signed intent message: {e!r}") from e
        if intent != INTENT_PROCESS_DATA:
            raise AttestationError(f"enclave response has intent {intent}, expected {INTENT_PROCESS_DATA}")
        try:
            proof = encode_intent_message(result, timestamp_ms, intent)
        except struct.error as e:
            raise AttestationError(f"enclave response out of range: {e}") from e
        if not verify_signature(proof, signature, self.public_key):
            raise AttestationError("enclave signature does not verify against the configured public key")
        return Attestation(proof=proof, signature=signature)

    def health_check(self) -> bool:
        """True if the enclave answers GET /health_check with a 2xx."""
        try:
            r = self._session.get(f"{self.url}/health_check", timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("attestor=remote url=%s unreachable: %s", self.url, e)
            return False
        return 200 <= r.status_code < 300

    def close(self) -> None:
        self._session.close()


def verify_attestation(
    attestation: Attestation,
    input_data: Sequence[int],
    public_key: bytes,
    label: str = DEFAULT_PROOF_LABEL,
) -> bool:
    """
    Check the proof encodes sum(input_data) and the signature is the
    attestor's. Accepts both proof forms: the labelled text of the mock
    enclave and the intent message of a remote one.
    """
    try:
        total = sum(normalize_input(input_data))
    except AttestationError:
        return False
    if attestation.proof != encode_proof(label, total):
        try:
            intent, _, result = decode_intent_message(attestation.proof)
        except ValueError:
            return False
        if intent != INTENT_PROCESS_DATA or result != total:
            return False
    return verify_signature(attestation.proof, attestation.signature, public_key)


def get_attestor(config, signer: Signer) -> Attestor:
    """
    Single entry point: remote enclave when FULFILLER_ATTESTOR_URL is set,
    otherwise the in-process mock enclave bound to `signer`.
    """
    if config.attestor_url:
        return RemoteAttestor(config.attestor_url, config.attestor_public_key, timeout=config.rpc_timeout)
    return MockEnclaveAttestor(signer, label=config.proof_label)
