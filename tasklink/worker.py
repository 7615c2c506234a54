"""Background worker that drains the task link queue"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from tasklink.models.base import SessionLocal
from tasklink.services.link_processor import JobOutcome, LinkJobProcessor, WorkerConfig

logger = logging.getLogger(__name__)

DRAIN_JOB_ID = "task_link_drain"
RECONCILE_JOB_ID = "task_link_reconcile"


class TaskLinkWorker:
    """Timer-driven poller with at most one batch in flight.

    Idle -> draining on a tick; a tick that arrives while draining is a no-op.
    Jobs inside a batch run strictly one after another.
    """

    def __init__(
        self,
        processor_factory: Callable[[Session], LinkJobProcessor],
        *,
        config: Optional[WorkerConfig] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        scheduler: Optional[BackgroundScheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.processor_factory = processor_factory
        self.config = config or WorkerConfig()
        self.session_factory = session_factory
        self.scheduler = scheduler or BackgroundScheduler()
        self._clock = clock
        self._busy = threading.Lock()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    @property
    def draining(self) -> bool:
        return self._busy.locked()

    def start(self, *, run_now: bool = True):
        """Start the timer (and kick off a first batch right away)"""
        if self._started:
            logger.warning("Task link worker already running")
            return

        job_kwargs = {}
        if run_now:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.run_batch,
            trigger=IntervalTrigger(seconds=self.config.interval_seconds),
            id=DRAIN_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **job_kwargs,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self._started = True
        logger.info(
            f"Task link worker started (interval={self.config.interval_seconds}s, "
            f"batch={self.config.batch_size}, visibility={self.config.visibility_timeout_seconds}s, "
            f"max_attempts={self.config.max_attempts})"
        )

    def schedule_reconcile(self, func: Callable[[], object], interval_minutes: int):
        """Run `func` periodically on the worker's scheduler"""
        self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=RECONCILE_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Scheduled tracker status reconciliation every {interval_minutes} minutes")

    def stop(self):
        """Stop the timer; waits for an in-flight batch to finish"""
        if not self._started:
            return
        self.scheduler.shutdown(wait=True)
        self._started = False
        logger.info("Task link worker stopped")

    def run_batch(self) -> Optional[Dict[str, int]]:
        """Dequeue and process one batch. Returns None if a batch is already draining."""
        if not self._busy.acquire(blocking=False):
            logger.debug("Previous link batch still draining; skipping tick")
            return None

        stats = {outcome.value: 0 for outcome in JobOutcome}
        stats["errors"] = 0
        db = self.session_factory()
        try:
            processor = self.processor_factory(db)
            jobs = processor.queue.dequeue(
                batch_size=self.config.batch_size,
                visibility_timeout=self.config.visibility_timeout_seconds,
            )
            if not jobs:
                return stats
            leased_at = self._clock()

            for job in jobs:
                try:
                    outcome = processor.process(job, leased_at=leased_at)
                except Exception as e:
                    # One bad job must not stall the batch; it stays leased and comes back.
                    db.rollback()
                    stats["errors"] += 1
                    logger.exception(f"Unexpected error processing job {job.msg_id}: {e}")
                    outcome = JobOutcome.RETRY
                stats[outcome.value] += 1
                if outcome == JobOutcome.RETRY:
                    logger.warning(f"Job {job.msg_id} failed, will retry")

            logger.info(f"Link batch finished: {stats}")
            return stats
        except Exception as e:
            logger.error(f"Error processing link batch: {e}")
            stats["errors"] += 1
            return stats
        finally:
            db.close()
            self._busy.release()
