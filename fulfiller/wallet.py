"""
Service keys: local Sui keypairs (secp256k1 or ed25519), no custody service.

Keys are loaded from FULFILLER_SERVICE_PRIVATE_KEY / FULFILLER_ATTESTOR_PRIVATE_KEY
(env or .env) or, when unset, from the Sui CLI keystore by index:
index 0 submits and pays, index 1 attests.
"""

import base64
import hashlib
import json
import os
import re
from pathlib import Path
from typing import List, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import decode_hex

from fulfiller.errors import FatalStartupError

ENV_SERVICE_KEY = "FULFILLER_SERVICE_PRIVATE_KEY"
ENV_ATTESTOR_KEY = "FULFILLER_ATTESTOR_PRIVATE_KEY"
DEFAULT_KEYSTORE_PATH = Path.home() / ".sui" / "sui_config" / "sui.keystore"

SERVICE_KEY_INDEX = 0
ATTESTOR_KEY_INDEX = 1

# Sui signature scheme flags
FLAG_ED25519 = 0x00
FLAG_SECP256K1 = 0x01
FLAG_SECP256R1 = 0x02
_SCHEME_NAMES = {FLAG_ED25519: "ed25519", FLAG_SECP256K1: "secp256k1", FLAG_SECP256R1: "secp256r1"}

ED25519_PUBLIC_KEY_SIZE = 32
SECP256K1_PUBLIC_KEY_SIZE = 33

# IntentScope::TransactionData, IntentVersion::V0, AppId::Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


def blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


class Signer:
    """
    A secp256k1 keypair that signs payloads and transactions for one identity.

    Read-only after construction; safe to share between the pipeline and
    the health endpoint.
    """

    flag = FLAG_SECP256K1

    def __init__(self, account: LocalAccount):
        self._account = account
        self._key = keys.PrivateKey(bytes(account.key))

    @property
    def account(self) -> LocalAccount:
        return self._account

    @property
    def secret(self) -> bytes:
        """Raw 32-byte private key, as stored after the flag byte in a keystore entry."""
        return bytes(self._account.key)

    @property
    def public_key(self) -> bytes:
        """33-byte compressed secp256k1 public key."""
        return self._key.public_key.to_compressed_bytes()

    @property
    def identity(self) -> str:
        """Ledger address derived from the public key (0x + 64 hex)."""
        return address_from_public_key(self.public_key, self.flag)

    def sign(self, payload: bytes) -> bytes:
        """
        Sign sha256(payload). Returns 65 bytes r||s||v with v in {0, 1},
        the recoverable form accepted by secp256k1_ecrecover on-ledger.
        """
        digest = hashlib.sha256(bytes(payload)).digest()
        return self._key.sign_msg_hash(digest).to_bytes()

    def _sign_digest(self, digest: bytes) -> bytes:
        return self._key.sign_msg_hash(hashlib.sha256(digest).digest()).to_bytes()[:64]

    def sign_transaction(self, tx_bytes: Union[bytes, str]) -> str:
        """
        Sign transaction bytes (raw or base64) under the transaction intent.
        Returns the serialized signature: base64(flag || signature || pubkey).
        """
        if isinstance(tx_bytes, str):
            tx_bytes = base64.b64decode(tx_bytes)
        digest = blake2b256(TRANSACTION_INTENT + tx_bytes)
        return base64.b64encode(bytes([self.flag]) + self._sign_digest(digest) + self.public_key).decode("ascii")

    @classmethod
    def from_key(cls, private_key: Union[str, bytes]) -> "Signer":
        """Create from a raw 32-byte key or its hex string (0x optional)."""
        try:
            if isinstance(private_key, str):
                private_key = decode_hex(private_key.strip())
            return cls(Account.from_key(private_key))
        except (ValueError, TypeError, ValidationError) as e:
            raise FatalStartupError(f"Malformed private key: {e}") from e

    @classmethod
    def generate(cls) -> "Signer":
        """Fresh random keypair. Caller must persist it if it should outlive the process."""
        return cls(Account.create())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity})"


class Ed25519Signer(Signer):
    """
    An ed25519 keypair, the Sui CLI's default scheme. Signatures are 64 bytes
    over the raw payload; transactions are signed over the intent digest itself.
    """

    flag = FLAG_ED25519

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key

    @property
    def account(self) -> LocalAccount:
        raise AttributeError("ed25519 keys have no eth_account representation")

    @property
    def secret(self) -> bytes:
        return self._private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())

    @property
    def public_key(self) -> bytes:
        """32-byte ed25519 public key."""
        return self._private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    def sign(self, payload: bytes) -> bytes:
        return self._private_key.sign(bytes(payload))

    def _sign_digest(self, digest: bytes) -> bytes:
        return self._private_key.sign(digest)

    @classmethod
    def from_key(cls, private_key: Union[str, bytes]) -> "Ed25519Signer":
        try:
            if isinstance(private_key, str):
                private_key = decode_hex(private_key.strip())
            return cls(Ed25519PrivateKey.from_private_bytes(bytes(private_key)))
        except (ValueError, TypeError) as e:
            raise FatalStartupError(f"Malformed ed25519 private key: {e}") from e

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        return cls(Ed25519PrivateKey.generate())


def scheme_for_public_key(public_key: bytes) -> int:
    """Signature scheme flag implied by a public key's length."""
    if len(public_key) == ED25519_PUBLIC_KEY_SIZE:
        return FLAG_ED25519
    if len(public_key) == SECP256K1_PUBLIC_KEY_SIZE:
        return FLAG_SECP256K1
    raise ValueError(f"unsupported public key length {len(public_key)}")


def address_from_public_key(public_key: bytes, flag: Optional[int] = None) -> str:
    if flag is None:
        flag = scheme_for_public_key(public_key)
    return "0x" + blake2b256(bytes([flag]) + bytes(public_key)).hex()


def verify_signature(payload: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    True if `signature` over `payload` was made by `public_key`. A 32-byte key
    is ed25519 (64-byte signature over the payload); a 33-byte key is
    secp256k1 (65-byte recoverable signature over sha256(payload)).
    """
    public_key = bytes(public_key)
    if len(public_key) == ED25519_PUBLIC_KEY_SIZE:
        try:
            Ed25519PublicKey.from_public_bytes(public_key).verify(bytes(signature), bytes(payload))
        except (InvalidSignature, ValueError):
            return False
        return True
    if len(signature) != 65:
        return False
    digest = hashlib.sha256(bytes(payload)).digest()
    try:
        sig = keys.Signature(signature_bytes=bytes(signature))
        recovered = sig.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError, ValueError):
        return False
    return recovered.to_compressed_bytes() == public_key


def read_keystore(path: Optional[Path] = None) -> List[str]:
    """Read the Sui CLI keystore: a JSON array of base64 `flag || secret` strings."""
    path = Path(path or DEFAULT_KEYSTORE_PATH).expanduser()
    try:
        entries = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise FatalStartupError(f"Keystore not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise FatalStartupError(f"Keystore unreadable: {path}: {e}") from e
    if not isinstance(entries, list) or not all(isinstance(x, str) for x in entries):
        raise FatalStartupError(f"Keystore {path} must be a JSON array of base64 strings")
    return entries


_SIGNER_CLASSES = {FLAG_ED25519: Ed25519Signer, FLAG_SECP256K1: Signer}
_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def signer_from_entry(entry: str, label: str = "Keystore entry") -> Signer:
    """Decode one keystore entry (base64 `flag || 32-byte secret`) by its scheme flag."""
    try:
        raw = base64.b64decode(entry.strip(), validate=True)
    except ValueError as e:
        raise FatalStartupError(f"{label} is not valid base64") from e
    if len(raw) != 33:
        raise FatalStartupError(f"{label} has {len(raw)} bytes, expected 33")
    flag = raw[0]
    signer_cls = _SIGNER_CLASSES.get(flag)
    if signer_cls is None:
        scheme = _SCHEME_NAMES.get(flag, f"unknown flag {flag}")
        raise FatalStartupError(f"{label} uses {scheme}; only ed25519 and secp256k1 keys are supported")
    return signer_cls.from_key(raw[1:])


def signer_from_keystore(index: int, path: Optional[Path] = None) -> Signer:
    entries = read_keystore(path)
    if index < 0 or len(entries) <= index:
        raise FatalStartupError(
            f"Key at index {index} not found in keystore ({len(entries)} keys). "
            "Create more with: sui client new-address ed25519"
        )
    return signer_from_entry(entries[index], f"Keystore entry {index}")


def load_signer(index: int, env_var: str, keystore_path: Optional[Path] = None) -> Signer:
    """
    Load one identity. The env var wins over the keystore: either a hex
    secp256k1 key or a keystore-style base64 entry (any supported scheme).
    Any problem is a FatalStartupError; a Signer never fails after construction.
    """
    pk = (os.getenv(env_var) or "").strip()
    if pk:
        if _HEX_KEY.match(pk):
            return Signer.from_key(pk)
        return signer_from_entry(pk, env_var)
    return signer_from_keystore(index, keystore_path)


def load_service_signers(
    keystore_path: Optional[Path] = None,
    service_index: int = SERVICE_KEY_INDEX,
    attestor_index: int = ATTESTOR_KEY_INDEX,
):
    """Return (service_signer, attestor_signer). The two identities must differ."""
    service = load_signer(service_index, ENV_SERVICE_KEY, keystore_path)
    attestor = load_signer(attestor_index, ENV_ATTESTOR_KEY, keystore_path)
    if service.identity == attestor.identity:
        raise FatalStartupError(
            "Service and attestor keys are identical; the submitting and attesting identities must be separate"
        )
    return service, attestor
