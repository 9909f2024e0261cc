"""
Job discovery: owned objects -> type filter -> field snapshot -> Pending only.
"""

import logging
from typing import List

from fulfiller.errors import LedgerError, ObjectNotFound, ScanError
from fulfiller.ledger import LedgerClient
from fulfiller.schema import JobRequest

logger = logging.getLogger(__name__)


def job_type_tag(package_id: str, module: str = "logic", struct: str = "JobRequest") -> str:
    return f"{package_id}::{module}::{struct}"


def matches_type(type_tag, type_filter: str) -> bool:
    """
    Prefix match so generic instantiations (`...::JobRequest<T>`) still match,
    but `...::JobRequestArchive` does not.
    """
    if not type_tag:
        return False
    if type_tag == type_filter:
        return True
    return type_tag.startswith(type_filter + "<")


class JobScanner:
    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    def scan(self, owner: str, type_filter: str) -> List[JobRequest]:
        """
        Jobs owned by `owner` whose status is Pending. Order is unspecified.

        Raises ScanError if the ledger cannot be listed. Objects that vanish
        between listing and fetching are dropped silently; a failure to fetch
        one candidate drops only that candidate.
        """
        try:
            refs = self.ledger.list_owned_objects(owner)
        except LedgerError as e:
            raise ScanError(f"listing objects owned by {owner} failed: {e}") from e

        pending: List[JobRequest] = []
        for ref in refs:
            if not matches_type(ref.type, type_filter):
                continue
            try:
                fields = self.ledger.get_object_fields(ref.object_id)
            except ObjectNotFound:
                logger.debug("job=%s vanished before fetch", ref.object_id)
                continue
            except LedgerError as e:
                logger.warning("job=%s fetch failed, skipping this tick: %s", ref.object_id, e)
                continue
            job = JobRequest.from_fields(ref.object_id, fields, type_tag=ref.type)
            if job is None:
                logger.debug("job=%s has no integer status, not actionable", ref.object_id)
                continue
            if job.is_pending:
                pending.append(job)
        return pending
