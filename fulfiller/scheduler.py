"""
Fixed-rate driver: every `interval` seconds, scan then fulfill each pending job.

A failing job never stops its siblings and a failing tick never stops the
loop. stop() lets the in-flight tick finish, then returns from run().
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from fulfiller.errors import ScanError
from fulfiller.pipeline import FulfillmentPipeline
from fulfiller.scanner import JobScanner
from fulfiller.schema import ErrorKind, FulfillmentOutcome, JobState, TickReport

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 10.0


class Scheduler:
    def __init__(
        self,
        scanner: JobScanner,
        pipeline: FulfillmentPipeline,
        owner: str,
        type_filter: str,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.scanner = scanner
        self.pipeline = pipeline
        self.owner = owner
        self.type_filter = type_filter
        self.interval = interval
        self._clock = clock
        self._stop = threading.Event()
        self._ticks = 0
        self.last_report: Optional[TickReport] = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def run_tick(self) -> TickReport:
        """One scan-and-fulfill cycle. Never raises."""
        self._ticks += 1
        report = TickReport(tick=self._ticks, started_at=datetime.now(timezone.utc))
        try:
            jobs = self.scanner.scan(self.owner, self.type_filter)
        except ScanError as e:
            report.error = str(e)
            logger.warning("tick=%d scan_failed=%s", report.tick, e)
        except Exception as e:
            report.error = f"unexpected: {e}"
            logger.exception("tick=%d aborted", report.tick)
        else:
            report.jobs_found = len(jobs)
            logger.info("tick=%d jobs_found=%d", report.tick, len(jobs))
            for job in jobs:
                if self._stop.is_set():
                    logger.info("tick=%d abandoning remaining jobs on shutdown", report.tick)
                    break
                report.outcomes.append(self._process_one(job))
        self.last_report = report
        return report

    def _process_one(self, job) -> FulfillmentOutcome:
        try:
            return self.pipeline.process(job)
        except Exception as e:
            # Anything the pipeline did not classify stays contained to this job.
            logger.exception("job=%s state=failed unexpected error", job.id)
            return FulfillmentOutcome(job_id=job.id, state=JobState.FAILED, error=ErrorKind.INTERNAL, detail=repr(e))

    def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Run until stop() (or `max_ticks` ticks). Tick N is due at
        start + N * interval; an overrunning tick makes the next one start
        immediately without catching up missed ticks.
        """
        logger.info("scheduler started owner=%s interval=%ss", self.owner, self.interval)
        next_due = self._clock()
        ran = 0
        while not self._stop.is_set():
            self.run_tick()
            ran += 1
            if max_ticks is not None and ran >= max_ticks:
                break
            next_due += self.interval
            now = self._clock()
            if next_due < now:
                next_due = now
            self._stop.wait(next_due - now)
        logger.info("scheduler stopped after %d ticks", ran)
