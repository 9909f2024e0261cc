"""
Ledger capability and its Sui fullnode implementation (JSON-RPC over HTTP).

The rest of the service only sees LedgerClient: list owned objects, read an
object's fields, submit one entry call. Submission is not idempotent on the
ledger side, so nothing here retries a write.
"""

import itertools
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

import requests

from fulfiller.errors import LedgerNetworkError, ObjectNotFound, RejectedByLedger
from fulfiller.schema import ObjectRef, TransactionResult
from fulfiller.wallet import Signer

logger = logging.getLogger(__name__)

# Sui localnet fullnode
DEFAULT_RPC_URL = "http://127.0.0.1:9000"
DEFAULT_GAS_BUDGET = 10_000_000  # MIST
PAGE_LIMIT = 50
MISSING_OBJECT_CODES = ("notExists", "deleted", "dynamicFieldNotFound")


@runtime_checkable
class LedgerClient(Protocol):
    def list_owned_objects(self, owner: str) -> List[ObjectRef]: ...

    def get_object_fields(self, object_id: str) -> Dict[str, Any]: ...

    def submit_entry_call(self, target: str, arguments: Sequence[Any], signer: Signer) -> TransactionResult: ...


def split_target(target: str):
    """'0xpkg::module::function' -> (package, module, function)."""
    parts = target.split("::")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"entry point must be <package>::<module>::<function>, got {target!r}")
    return parts[0], parts[1], parts[2]


def encode_pure(value: Any) -> Any:
    """JSON form of a Move argument: bytes become vector<u8> (list of ints)."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return list(bytes(value))
    return value


class SuiLedgerClient:
    """LedgerClient backed by a Sui fullnode."""

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        gas_budget: int = DEFAULT_GAS_BUDGET,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.gas_budget = gas_budget
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self._session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise LedgerNetworkError(f"{method} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise LedgerNetworkError(f"{method} failed: {e}") from e
        if r.status_code >= 500:
            raise LedgerNetworkError(f"{method}: fullnode returned {r.status_code}")
        try:
            body = r.json()
        except ValueError as e:
            raise LedgerNetworkError(f"{method}: non-JSON response ({r.status_code})") from e
        if not isinstance(body, dict):
            raise LedgerNetworkError(f"{method}: unexpected response shape")
        err = body.get("error")
        if err:
            message = err.get("message") if isinstance(err, dict) else str(err)
            code = err.get("code") if isinstance(err, dict) else None
            raise RejectedByLedger(f"{method}: {message}", code=code)
        if r.status_code >= 400:
            raise RejectedByLedger(f"{method}: fullnode returned {r.status_code}", code=r.status_code)
        return body.get("result")

    def list_owned_objects(self, owner: str) -> List[ObjectRef]:
        """All objects owned by `owner`, following pagination."""
        refs: List[ObjectRef] = []
        cursor = None
        while True:
            page = self._call(
                "suix_getOwnedObjects",
                [owner, {"options": {"showType": True}}, cursor, PAGE_LIMIT],
            ) or {}
            for item in page.get("data") or []:
                data = item.get("data") or {}
                object_id = data.get("objectId")
                if object_id:
                    refs.append(ObjectRef(object_id=object_id, type=data.get("type")))
            if not page.get("hasNextPage") or not page.get("nextCursor"):
                break
            cursor = page["nextCursor"]
        return refs

    def get_object(self, object_id: str) -> Dict[str, Any]:
        """Raw `{type, fields}` for a Move object. Raises ObjectNotFound if gone."""
        result = self._call("sui_getObject", [object_id, {"showContent": True, "showType": True}]) or {}
        err = result.get("error")
        if err:
            code = err.get("code") if isinstance(err, dict) else str(err)
            if code in MISSING_OBJECT_CODES:
                raise ObjectNotFound(object_id, reason=code)
            raise RejectedByLedger(f"sui_getObject {object_id}: {err}", code=code)
        data = result.get("data") or {}
        content = data.get("content") or {}
        return {"type": data.get("type") or content.get("type"), "fields": content.get("fields") or {}}

    def get_object_fields(self, object_id: str) -> Dict[str, Any]:
        return self.get_object(object_id)["fields"]

    def submit_entry_call(self, target: str, arguments: Sequence[Any], signer: Signer) -> TransactionResult:
        """
        Build with unsafe_moveCall, sign locally, execute. One attempt only.

        Raises RejectedByLedger if the node refuses to build or execute, and
        LedgerNetworkError if the node cannot be reached.
        """
        package, module, function = split_target(target)
        built = self._call(
            "unsafe_moveCall",
            [
                signer.identity,
                package,
                module,
                function,
                [],
                [encode_pure(a) for a in arguments],
                None,
                str(self.gas_budget),
            ],
        ) or {}
        tx_bytes = built.get("txBytes")
        if not tx_bytes:
            raise RejectedByLedger(f"unsafe_moveCall {target}: no txBytes in response")
        signature = signer.sign_transaction(tx_bytes)
        executed = self._call(
            "sui_executeTransactionBlock",
            [tx_bytes, [signature], {"showEffects": True}, "WaitForLocalExecution"],
        ) or {}
        return parse_execution(executed)

    def close(self) -> None:
        self._session.close()


def parse_execution(result: Mapping[str, Any]) -> TransactionResult:
    digest = result.get("digest")
    if not digest:
        raise RejectedByLedger("sui_executeTransactionBlock: response has no digest")
    status = ((result.get("effects") or {}).get("status") or {})
    ok = status.get("status") == "success"
    return TransactionResult(success=ok, id=digest, error=None if ok else status.get("error") or "execution failed")
