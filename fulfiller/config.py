"""
Service configuration from the environment (and .env, never overriding real env).

Every required value is checked at startup; anything missing or malformed is
a FatalStartupError naming the variable, so the scheduler never starts with
a half-valid config.
"""

import os
import re
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from eth_utils import decode_hex
from pydantic import BaseModel, Field, ValidationError, field_validator

from fulfiller.errors import FatalStartupError
from fulfiller.ledger import DEFAULT_GAS_BUDGET, DEFAULT_RPC_URL
from fulfiller.scanner import job_type_tag
from fulfiller.wallet import ATTESTOR_KEY_INDEX, DEFAULT_KEYSTORE_PATH, SERVICE_KEY_INDEX

_OBJECT_ID = re.compile(r"^0x[0-9a-fA-F]{1,64}$")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# field name -> environment variable
ENV_VARS = {
    "rpc_url": "SUI_RPC_URL",
    "package_id": "FULFILLER_PACKAGE_ID",
    "module": "FULFILLER_MODULE",
    "entry_function": "FULFILLER_ENTRY_FUNCTION",
    "trusted_signer_id": "FULFILLER_TRUSTED_SIGNER_ID",
    "payment_source_id": "FULFILLER_PAYMENT_SOURCE_ID",
    "poll_interval": "FULFILLER_POLL_INTERVAL",
    "keystore_path": "SUI_KEYSTORE_PATH",
    "service_key_index": "FULFILLER_SERVICE_KEY_INDEX",
    "attestor_key_index": "FULFILLER_ATTESTOR_KEY_INDEX",
    "gas_budget": "FULFILLER_GAS_BUDGET",
    "rpc_timeout": "FULFILLER_RPC_TIMEOUT",
    "attestor_url": "FULFILLER_ATTESTOR_URL",
    "attestor_public_key": "FULFILLER_ATTESTOR_PUBLIC_KEY",
    "proof_label": "FULFILLER_PROOF_LABEL",
    "dedup_window": "FULFILLER_DEDUP_WINDOW",
    "health_port": "FULFILLER_HEALTH_PORT",
    "log_level": "FULFILLER_LOG_LEVEL",
}


class FulfillerConfig(BaseModel):
    rpc_url: str = Field(DEFAULT_RPC_URL, description="Sui fullnode JSON-RPC endpoint")
    package_id: str = Field(..., description="Move package that publishes JobRequest")
    module: str = Field("logic", description="Module holding JobRequest and the entry point")
    entry_function: str = Field("fulfill_job_and_pay")
    trusted_signer_id: str = Field(..., description="Trusted-signer capability object id")
    payment_source_id: str = Field(..., description="Object that pays out on fulfillment")
    poll_interval: float = Field(10.0, gt=0, description="Seconds between ticks")
    keystore_path: Path = Field(DEFAULT_KEYSTORE_PATH)
    service_key_index: int = Field(SERVICE_KEY_INDEX, ge=0)
    attestor_key_index: int = Field(ATTESTOR_KEY_INDEX, ge=0)
    gas_budget: int = Field(DEFAULT_GAS_BUDGET, gt=0)
    rpc_timeout: float = Field(30.0, gt=0)
    attestor_url: Optional[str] = None
    attestor_public_key: Optional[bytes] = None
    proof_label: str = Field("Job result is", min_length=1)
    dedup_window: float = Field(0.0, ge=0)
    health_port: Optional[int] = Field(None, ge=1, le=65535)
    log_level: str = "INFO"

    @field_validator("package_id", "trusted_signer_id", "payment_source_id")
    @classmethod
    def _object_id(cls, v: str) -> str:
        v = v.strip()
        if not _OBJECT_ID.match(v):
            raise ValueError("must be a 0x-prefixed hex object id")
        return v.lower()

    @field_validator("module", "entry_function")
    @classmethod
    def _move_identifier(cls, v: str) -> str:
        v = v.strip()
        if not _IDENTIFIER.match(v):
            raise ValueError("must be a Move identifier")
        return v

    @field_validator("keystore_path")
    @classmethod
    def _expand(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @field_validator("attestor_public_key", mode="before")
    @classmethod
    def _hex_key(cls, v):
        if isinstance(v, str):
            v = decode_hex(v.strip())
        if v is not None and len(v) not in (32, 33):
            raise ValueError("must be a 32-byte ed25519 or 33-byte compressed secp256k1 public key (hex)")
        return v

    @field_validator("log_level")
    @classmethod
    def _level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("must be a logging level name")
        return v

    @property
    def job_type(self) -> str:
        return job_type_tag(self.package_id, self.module)

    @property
    def entry_point(self) -> str:
        return f"{self.package_id}::{self.module}::{self.entry_function}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FulfillerConfig":
        """
        Build from `environ` (default: os.environ after loading .env).
        Empty values count as unset.
        """
        if environ is None:
            load_env_file()
            environ = os.environ
        values = {}
        for field_name, var in ENV_VARS.items():
            raw = (environ.get(var) or "").strip()
            if raw:
                values[field_name] = raw
        try:
            config = cls(**values)
        except ValidationError as e:
            raise FatalStartupError(_describe(e)) from e
        if config.attestor_url and config.attestor_public_key is None:
            raise FatalStartupError(
                f"{ENV_VARS['attestor_public_key']} is required when {ENV_VARS['attestor_url']} is set"
            )
        return config


def _describe(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        field_name = str(err["loc"][0]) if err.get("loc") else "?"
        var = ENV_VARS.get(field_name, field_name)
        if err.get("type") == "missing":
            problems.append(f"{var} is required")
        else:
            problems.append(f"{var}: {err.get('msg')}")
    return "Invalid configuration: " + "; ".join(problems)


def load_env_file(start: Optional[Path] = None) -> Optional[Path]:
    """Load the first .env found in cwd or the repo root. Returns its path, if any."""
    for d in [start or Path.cwd(), Path(__file__).resolve().parent.parent]:
        env_file = d / ".env"
        if env_file.exists():
            load_dotenv(env_file, override=False)
            return env_file
    return None
