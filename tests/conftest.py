"""Shared fixtures: two fresh identities and an in-memory ledger wired for fulfillment."""

import pytest

from fulfiller.attestor import MockEnclaveAttestor
from fulfiller.local_ledger import DEMO_PACKAGE_ID, InMemoryLedger
from fulfiller.pipeline import FulfillmentPipeline
from fulfiller.scanner import JobScanner, job_type_tag
from fulfiller.wallet import Signer


@pytest.fixture
def service_signer() -> Signer:
    return Signer.generate()


@pytest.fixture
def attestor_signer() -> Signer:
    return Signer.generate()


@pytest.fixture
def attestor(attestor_signer: Signer) -> MockEnclaveAttestor:
    return MockEnclaveAttestor(attestor_signer)


@pytest.fixture
def ledger(service_signer: Signer, attestor_signer: Signer) -> InMemoryLedger:
    ledger = InMemoryLedger(DEMO_PACKAGE_ID)
    ledger.cap_id = ledger.create_trusted_signer(service_signer.identity, attestor_signer.public_key)
    ledger.vault_id = ledger.create_payment_source(service_signer.identity, balance=1_000)
    return ledger


@pytest.fixture
def job_type() -> str:
    return job_type_tag(DEMO_PACKAGE_ID, "logic")


@pytest.fixture
def entry_point() -> str:
    return f"{DEMO_PACKAGE_ID}::logic::fulfill_job_and_pay"


@pytest.fixture
def scanner(ledger: InMemoryLedger) -> JobScanner:
    return JobScanner(ledger)


@pytest.fixture
def pipeline(ledger: InMemoryLedger, attestor: MockEnclaveAttestor, service_signer: Signer, entry_point: str) -> FulfillmentPipeline:
    return FulfillmentPipeline(
        ledger,
        attestor,
        service_signer,
        entry_point=entry_point,
        trusted_signer_id=ledger.cap_id,
        payment_source_id=ledger.vault_id,
    )
