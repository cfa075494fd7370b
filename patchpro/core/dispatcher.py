"""Concurrent execution of remediation jobs on a fixed-size thread pool.

Hand-off is bounded: the producer blocks until a worker is free, so jobs
are never queued beyond the pool size. A failing job only affects its own
report item. ``dispatch`` returns once every accepted job is terminal.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from patchpro.core.models import Job, ReportItem
from patchpro.reporting.report import ReportSink

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


@dataclass
class DispatchStats:
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    crashed: int = 0
    interrupted: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, ok: bool, crashed: bool = False) -> None:
        with self._lock:
            if crashed:
                self.crashed += 1
            if ok:
                self.succeeded += 1
            else:
                self.failed += 1

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed


class Dispatcher:
    def __init__(
        self,
        run_job: Callable[[Job], object],
        sink: ReportSink,
        max_workers: int = DEFAULT_WORKERS,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.run_job = run_job
        self.sink = sink
        self.max_workers = max_workers

    def dispatch(self, jobs: Iterable[Job]) -> DispatchStats:
        stats = DispatchStats()
        slots = threading.BoundedSemaphore(self.max_workers)

        logger.info("Dispatching jobs on %d worker(s)", self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="patchpro-worker") as pool:
            try:
                for job in jobs:
                    slots.acquire()
                    stats.submitted += 1
                    future: Future = pool.submit(self._run_isolated, job, stats)
                    future.add_done_callback(lambda _f: slots.release())
            except KeyboardInterrupt:
                # Started jobs always finish; only intake stops.
                stats.interrupted = True
                logger.warning("Interrupted after %d job(s): draining in-flight jobs", stats.submitted)
        logger.info("All jobs drained: %d succeeded, %d failed", stats.succeeded, stats.failed)
        return stats

    def _run_isolated(self, job: Job, stats: DispatchStats) -> Optional[object]:
        try:
            result = self.run_job(job)
        except Exception as exc:
            logger.exception("Job for %s crashed", job.repo_url)
            self.sink.add(ReportItem(
                repo_url=job.repo_url,
                cve_ids=job.cve_ids,
                status="failed",
                error=f"unexpected error: {exc}",
            ))
            stats.record(ok=False, crashed=True)
            return None
        stats.record(ok=getattr(result, "ok", True))
        return result
