"""Tests for job discovery: type filter, Pending-only, vanished objects, scan failures."""

import pytest

from fulfiller.errors import LedgerNetworkError, ObjectNotFound, RejectedByLedger, ScanError
from fulfiller.local_ledger import InMemoryLedger
from fulfiller.scanner import JobScanner, job_type_tag, matches_type
from fulfiller.schema import JobStatus
from fulfiller.wallet import Signer


class TestTypeFilter:
    def test_exact_match(self) -> None:
        assert matches_type("0x1::logic::JobRequest", "0x1::logic::JobRequest")

    def test_generic_instantiation(self) -> None:
        assert matches_type("0x1::logic::JobRequest<0x2::sui::SUI>", "0x1::logic::JobRequest")

    @pytest.mark.parametrize("tag", [None, "", "0x1::logic::JobRequestArchive", "0x9::logic::JobRequest", "0x1::other::JobRequest"])
    def test_non_matching(self, tag) -> None:
        assert not matches_type(tag, "0x1::logic::JobRequest")

    def test_job_type_tag(self) -> None:
        assert job_type_tag("0xabc") == "0xabc::logic::JobRequest"
        assert job_type_tag("0xabc", "market") == "0xabc::market::JobRequest"


class TestScan:
    def test_returns_only_pending_jobs(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str) -> None:
        owner = service_signer.identity
        pending = ledger.create_job(owner, [1, 2])
        ledger.create_job(owner, [3], status=JobStatus.FULFILLED)
        ledger.create_job(owner, [4], status=7)  # state this service does not know
        jobs = scanner.scan(owner, job_type)
        assert [j.id for j in jobs] == [pending]
        assert jobs[0].input_data == ["1", "2"]

    def test_non_pending_excluded_on_every_scan(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str) -> None:
        owner = service_signer.identity
        ledger.create_job(owner, [1], status=JobStatus.FULFILLED)
        for _ in range(3):
            assert scanner.scan(owner, job_type) == []

    def test_ignores_other_types_and_owners(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str) -> None:
        owner = service_signer.identity
        ledger.create_job("0xsomeoneelse", [1])
        ledger.add_object("0x2::coin::Coin<0x2::sui::SUI>", owner, {"status": 0})
        assert scanner.scan(owner, job_type) == []

    def test_missing_or_malformed_status_not_actionable(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str) -> None:
        owner = service_signer.identity
        ledger.add_object(job_type, owner, {"input_data": []})
        ledger.add_object(job_type, owner, {"status": "pending", "input_data": []})
        assert scanner.scan(owner, job_type) == []

    @pytest.mark.parametrize("status", [0.9, 0.0, False, "0.0", " 0", None])
    def test_non_integer_status_not_pending(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str, status) -> None:
        owner = service_signer.identity
        ledger.add_object(job_type, owner, {"status": status, "input_data": ["1"]})
        assert scanner.scan(owner, job_type) == []

    def test_decimal_string_status_accepted(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str) -> None:
        owner = service_signer.identity
        job_id = ledger.add_object(job_type, owner, {"status": "0", "input_data": ["1"]})
        ledger.add_object(job_type, owner, {"status": "1", "input_data": ["1"]})
        assert [j.id for j in scanner.scan(owner, job_type)] == [job_id]

    def test_vanished_object_dropped_silently(self, service_signer: Signer, job_type: str) -> None:
        ledger = InMemoryLedger()
        owner = service_signer.identity
        keep = ledger.create_job(owner, [1])
        gone = ledger.create_job(owner, [2])
        real_fetch = ledger.get_object_fields

        def racing_fetch(object_id):
            if object_id == gone:
                ledger.remove_object(gone)
            return real_fetch(object_id)

        ledger.get_object_fields = racing_fetch
        jobs = JobScanner(ledger).scan(owner, job_type)
        assert [j.id for j in jobs] == [keep]

    def test_single_fetch_failure_drops_only_that_candidate(self, service_signer: Signer, job_type: str) -> None:
        ledger = InMemoryLedger()
        owner = service_signer.identity
        keep = ledger.create_job(owner, [1])
        flaky = ledger.create_job(owner, [2])
        real_fetch = ledger.get_object_fields

        def fetch(object_id):
            if object_id == flaky:
                raise RejectedByLedger("busy")
            return real_fetch(object_id)

        ledger.get_object_fields = fetch
        assert [j.id for j in JobScanner(ledger).scan(owner, job_type)] == [keep]

    def test_listing_failure_is_scan_error(self, ledger: InMemoryLedger, scanner: JobScanner, service_signer: Signer, job_type: str) -> None:
        ledger.offline = True
        with pytest.raises(ScanError) as exc:
            scanner.scan(service_signer.identity, job_type)
        assert isinstance(exc.value.__cause__, LedgerNetworkError)


def test_object_vanished_alias() -> None:
    from fulfiller.errors import ObjectVanished

    assert ObjectVanished is ObjectNotFound
