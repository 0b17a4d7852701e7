from __future__ import annotations

import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "link_expiry_sweep"


class ExpirySweeper:
    """Schedules the link expiry sweep at a fixed interval."""

    def __init__(
        self,
        run_once: Callable[[], int],
        interval_seconds: float,
    ) -> None:
        self.run_once = run_once
        self.interval_seconds = interval_seconds
        self.scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        if self.interval_seconds <= 0 or self.running:
            return
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            name="Secure link expiry sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("expiry.sweeper.started", extra={"interval": self.interval_seconds})

    def stop(self) -> None:
        if self.scheduler is None:
            return
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self.scheduler = None
        logger.info("expiry.sweeper.stopped")

    def _sweep(self) -> None:
        try:
            expired = self.run_once()
        except Exception:
            # Next tick retries.
            logger.exception("expiry.sweep.failed")
            return
        if expired:
            logger.info("expiry.sweep.completed", extra={"expired": expired})
