"""Tests for service wiring: key loading, one end-to-end run, shutdown."""

import base64
import json
import signal

import pytest

from fulfiller.attestor import MockEnclaveAttestor, RemoteAttestor
from fulfiller.config import FulfillerConfig
from fulfiller.errors import FatalStartupError
from fulfiller.local_ledger import DEMO_PACKAGE_ID, InMemoryLedger
from fulfiller.schema import JobState, JobStatus
from fulfiller.service import FulfillerService
from fulfiller.wallet import ENV_ATTESTOR_KEY, ENV_SERVICE_KEY, Ed25519Signer


@pytest.fixture(autouse=True)
def _no_key_env(monkeypatch):
    monkeypatch.delenv(ENV_SERVICE_KEY, raising=False)
    monkeypatch.delenv(ENV_ATTESTOR_KEY, raising=False)


def _write_keystore(path, *signers):
    path.write_text(json.dumps(
        [base64.b64encode(bytes([s.flag]) + s.secret).decode() for s in signers]
    ))
    return path


def _config(ledger: InMemoryLedger, keystore_path, **overrides) -> FulfillerConfig:
    values = dict(
        package_id=DEMO_PACKAGE_ID,
        trusted_signer_id=ledger.cap_id,
        payment_source_id=ledger.vault_id,
        keystore_path=keystore_path,
        poll_interval=0.01,
    )
    values.update(overrides)
    return FulfillerConfig(**values)


class TestFromConfig:
    def test_loads_both_identities_from_keystore(self, tmp_path, ledger, service_signer, attestor_signer) -> None:
        path = _write_keystore(tmp_path / "sui.keystore", service_signer, attestor_signer)
        service = FulfillerService.from_config(_config(ledger, path), ledger=ledger)
        assert service.signer.identity == service_signer.identity
        assert isinstance(service.attestor, MockEnclaveAttestor)
        assert service.attestor.identity == attestor_signer.identity

    def test_env_keys_need_no_keystore(self, tmp_path, monkeypatch, ledger, service_signer, attestor_signer) -> None:
        monkeypatch.setenv(ENV_SERVICE_KEY, bytes(service_signer.account.key).hex())
        monkeypatch.setenv(ENV_ATTESTOR_KEY, bytes(attestor_signer.account.key).hex())
        service = FulfillerService.from_config(_config(ledger, tmp_path / "missing.keystore"), ledger=ledger)
        assert service.signer.identity == service_signer.identity
        assert service.attestor.identity == attestor_signer.identity

    def test_ed25519_keystore_fulfills_end_to_end(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(signal, "signal", lambda sig, handler: None)
        service_key, attestor_key = Ed25519Signer.generate(), Ed25519Signer.generate()
        ledger = InMemoryLedger(DEMO_PACKAGE_ID)
        ledger.cap_id = ledger.create_trusted_signer(service_key.identity, attestor_key.public_key)
        ledger.vault_id = ledger.create_payment_source(service_key.identity, balance=50)
        job_id = ledger.create_job(service_key.identity, [10, 20, 30], price=5)
        path = _write_keystore(tmp_path / "sui.keystore", service_key, attestor_key)

        service = FulfillerService.from_config(_config(ledger, path), ledger=ledger)
        assert service.signer.identity == service_key.identity
        service.run(max_ticks=1)

        assert [o.state for o in service.scheduler.last_report.outcomes] == [JobState.CONFIRMED]
        assert ledger.get_object_fields(job_id)["status"] == JobStatus.FULFILLED

    def test_single_key_keystore_is_fatal(self, tmp_path, ledger, service_signer) -> None:
        path = _write_keystore(tmp_path / "sui.keystore", service_signer)
        with pytest.raises(FatalStartupError, match="index 1"):
            FulfillerService.from_config(_config(ledger, path), ledger=ledger)

    def test_remote_attestor_only_needs_service_key(self, tmp_path, ledger, service_signer, attestor_signer) -> None:
        path = _write_keystore(tmp_path / "sui.keystore", service_signer)
        config = _config(
            ledger,
            path,
            attestor_url="http://enclave:3000",
            attestor_public_key="0x" + attestor_signer.public_key.hex(),
        )
        service = FulfillerService.from_config(config, ledger=ledger)
        assert isinstance(service.attestor, RemoteAttestor)
        assert service.attestor.identity == attestor_signer.identity
        service.close()


class TestRun:
    def test_one_tick_fulfills_pending_jobs(self, tmp_path, monkeypatch, ledger, service_signer, attestor_signer) -> None:
        installed = []
        monkeypatch.setattr(signal, "signal", lambda sig, handler: installed.append(sig))
        job_id = ledger.create_job(service_signer.identity, [4, 5], price=10, requester="0xfeed")
        config = _config(ledger, tmp_path / "unused.keystore")
        service = FulfillerService(config, service_signer, MockEnclaveAttestor(attestor_signer), ledger=ledger)

        service.run(max_ticks=1)

        report = service.scheduler.last_report
        assert [o.state for o in report.outcomes] == [JobState.CONFIRMED]
        assert ledger.get_object_fields(job_id)["status"] == JobStatus.FULFILLED
        assert ledger.balances["0xfeed"] == 10
        assert set(installed) == {signal.SIGINT, signal.SIGTERM}

    def test_stop_before_run_returns_without_ticking(self, tmp_path, monkeypatch, ledger, service_signer, attestor_signer) -> None:
        monkeypatch.setattr(signal, "signal", lambda sig, handler: None)
        service = FulfillerService(
            _config(ledger, tmp_path / "unused.keystore"), service_signer, MockEnclaveAttestor(attestor_signer), ledger=ledger
        )
        service.stop()
        service.run()
        assert service.scheduler.last_report is None

    def test_run_closes_resources(self, tmp_path, monkeypatch, ledger, service_signer, attestor_signer) -> None:
        monkeypatch.setattr(signal, "signal", lambda sig, handler: None)
        closed = []

        class ClosingAttestor(MockEnclaveAttestor):
            def close(self):
                closed.append(True)

        service = FulfillerService(
            _config(ledger, tmp_path / "unused.keystore"), service_signer, ClosingAttestor(attestor_signer), ledger=ledger
        )
        service.run(max_ticks=1)
        assert closed == [True]

    def test_close_stops_health_server(self, tmp_path, monkeypatch, ledger, service_signer, attestor_signer) -> None:
        monkeypatch.setattr(signal, "signal", lambda sig, handler: None)
        started = []

        class FakeServer:
            should_exit = False

        def serve(app, port, host="0.0.0.0"):
            server = FakeServer()
            started.append((server, port))
            return server, None

        monkeypatch.setattr("fulfiller.health.serve_in_background", serve)
        config = _config(ledger, tmp_path / "unused.keystore", health_port=18080)
        service = FulfillerService(config, service_signer, MockEnclaveAttestor(attestor_signer), ledger=ledger)
        service.run(max_ticks=1)
        [(server, port)] = started
        assert port == 18080
        assert server.should_exit
        assert service.health_server is None

    def test_unhealthy_enclave_does_not_block_start(self, tmp_path, monkeypatch, caplog, ledger, service_signer, attestor_signer) -> None:
        monkeypatch.setattr(signal, "signal", lambda sig, handler: None)

        class SickAttestor(MockEnclaveAttestor):
            def health_check(self):
                return False

        service = FulfillerService(
            _config(ledger, tmp_path / "unused.keystore"), service_signer, SickAttestor(attestor_signer), ledger=ledger
        )
        with caplog.at_level("WARNING", logger="fulfiller.service"):
            service.run(max_ticks=1)
        assert "not healthy" in caplog.text
        assert service.scheduler.last_report is not None
