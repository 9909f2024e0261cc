"""Tests for environment configuration: required values, defaults, fatal validation."""

import os
from pathlib import Path

import pytest

from fulfiller.config import FulfillerConfig, load_env_file
from fulfiller.errors import FatalStartupError

PKG = "0x" + "ab" * 32

REQUIRED = {
    "FULFILLER_PACKAGE_ID": PKG,
    "FULFILLER_TRUSTED_SIGNER_ID": "0x" + "01" * 32,
    "FULFILLER_PAYMENT_SOURCE_ID": "0x" + "02" * 32,
}


class TestFromEnv:
    def test_defaults(self) -> None:
        config = FulfillerConfig.from_env(dict(REQUIRED))
        assert config.rpc_url == "http://127.0.0.1:9000"
        assert config.poll_interval == 10
        assert config.module == "logic"
        assert config.service_key_index == 0
        assert config.attestor_key_index == 1
        assert config.dedup_window == 0
        assert config.health_port is None
        assert config.job_type == f"{PKG}::logic::JobRequest"
        assert config.entry_point == f"{PKG}::logic::fulfill_job_and_pay"

    def test_overrides(self) -> None:
        env = dict(REQUIRED)
        env.update({
            "SUI_RPC_URL": "https://fullnode.testnet.sui.io:443",
            "FULFILLER_MODULE": "market",
            "FULFILLER_POLL_INTERVAL": "2.5",
            "SUI_KEYSTORE_PATH": "~/keys/sui.keystore",
            "FULFILLER_GAS_BUDGET": "20000000",
            "FULFILLER_LOG_LEVEL": "debug",
            "FULFILLER_HEALTH_PORT": "8080",
        })
        config = FulfillerConfig.from_env(env)
        assert config.rpc_url == "https://fullnode.testnet.sui.io:443"
        assert config.poll_interval == 2.5
        assert config.entry_point.endswith("::market::fulfill_job_and_pay")
        assert config.keystore_path == Path("~/keys/sui.keystore").expanduser()
        assert config.gas_budget == 20_000_000
        assert config.log_level == "DEBUG"
        assert config.health_port == 8080

    @pytest.mark.parametrize("missing", sorted(REQUIRED))
    def test_missing_required_is_fatal(self, missing) -> None:
        env = {k: v for k, v in REQUIRED.items() if k != missing}
        with pytest.raises(FatalStartupError, match=f"{missing} is required"):
            FulfillerConfig.from_env(env)

    def test_empty_value_counts_as_missing(self) -> None:
        env = dict(REQUIRED, FULFILLER_PACKAGE_ID="  ")
        with pytest.raises(FatalStartupError, match="FULFILLER_PACKAGE_ID"):
            FulfillerConfig.from_env(env)

    @pytest.mark.parametrize("var,value", [
        ("FULFILLER_PACKAGE_ID", "0xYOUR_PACKAGE_ID"),
        ("FULFILLER_POLL_INTERVAL", "0"),
        ("FULFILLER_POLL_INTERVAL", "soon"),
        ("FULFILLER_MODULE", "not a module"),
        ("FULFILLER_GAS_BUDGET", "-1"),
        ("FULFILLER_LOG_LEVEL", "LOUD"),
        ("FULFILLER_ATTESTOR_PUBLIC_KEY", "0x1234"),
    ])
    def test_malformed_is_fatal(self, var, value) -> None:
        with pytest.raises(FatalStartupError, match=var):
            FulfillerConfig.from_env(dict(REQUIRED, **{var: value}))

    def test_remote_attestor_needs_public_key(self) -> None:
        with pytest.raises(FatalStartupError, match="FULFILLER_ATTESTOR_PUBLIC_KEY"):
            FulfillerConfig.from_env(dict(REQUIRED, FULFILLER_ATTESTOR_URL="http://enclave"))

    def test_remote_attestor_accepts_ed25519_key(self) -> None:
        env = dict(REQUIRED, FULFILLER_ATTESTOR_URL="http://enclave:3000", FULFILLER_ATTESTOR_PUBLIC_KEY="0x" + "11" * 32)
        config = FulfillerConfig.from_env(env)
        assert config.attestor_public_key == bytes([0x11]) * 32

    def test_object_ids_lowercased(self) -> None:
        config = FulfillerConfig.from_env(dict(REQUIRED, FULFILLER_PACKAGE_ID="0xABCDEF"))
        assert config.package_id == "0xabcdef"


def test_load_env_file(tmp_path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("FULFILLER_TEST_ONLY_VAR=from-dotenv\n")
    monkeypatch.setenv("FULFILLER_TEST_ONLY_VAR", "")
    os.environ.pop("FULFILLER_TEST_ONLY_VAR")
    assert load_env_file(tmp_path) == tmp_path / ".env"
    assert os.environ["FULFILLER_TEST_ONLY_VAR"] == "from-dotenv"


def test_dotenv_does_not_override_real_env(tmp_path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("FULFILLER_TEST_ONLY_VAR=from-dotenv\n")
    monkeypatch.setenv("FULFILLER_TEST_ONLY_VAR", "from-shell")
    load_env_file(tmp_path)
    assert os.environ["FULFILLER_TEST_ONLY_VAR"] == "from-shell"
