"""
Daily Scheduler - Calibration and selection jobs
================================================

Two daily jobs, both in America/New_York:

    05:00  calibration  settled history -> weights, patterns, gates
    10:00  selection    feeds -> slips for the day (skipped if already generated)

Jobs run on an APScheduler BackgroundScheduler thread; each async cycle is
driven with asyncio.run() so it gets a fresh event loop on that thread.

Endpoints (mounted by main.py):
    GET  /scheduler/status
    POST /scheduler/run/{job_id}
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import APIRouter, HTTPException

from calibration_loop import run_calibration
from core.time_et import now_et
from env_config import Config
from slip_pipeline import run_selection_cycle

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

class SchedulerConfig:
    """Scheduler configuration."""

    TIMEZONE = Config.TIMEZONE

    # Calibration first, so the selection run reads fresh gates and weights
    CALIBRATION_HOUR = Config.CALIBRATION_HOUR
    CALIBRATION_MINUTE = 0

    SELECTION_HOUR = Config.SELECTION_HOUR
    SELECTION_MINUTE = 0

    MISFIRE_GRACE_S = 15 * 60


# ============================================
# JOBS
# ============================================

class ScheduledJob:
    """One named daily job with its last result."""

    def __init__(self, job_id: str, name: str, runner: Callable[[], Any], hour: int, minute: int):
        self.job_id = job_id
        self.name = name
        self.runner = runner
        self.hour = hour
        self.minute = minute
        self.last_run: Optional[datetime] = None
        self.last_results: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def run(self) -> Dict[str, Any]:
        """Run the cycle on this thread; overlapping runs of the same job are skipped."""
        if not self._lock.acquire(blocking=False):
            logger.warning("%s already running, skipping", self.name)
            return {"success": False, "skipped": True, "reason": "already_running"}
        try:
            self.last_run = now_et()
            logger.info("Starting %s", self.name)
            try:
                results = asyncio.run(self.runner())
            except Exception as e:
                logger.exception("%s failed", self.name)
                results = {"success": False, "error": f"{type(e).__name__}: {e}"}
            self.last_results = results
            logger.info("%s complete: success=%s", self.name, results.get("success"))
            return results
        finally:
            self._lock.release()

    def status(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "name": self.name,
            "schedule": f"{self.hour:02d}:{self.minute:02d} ET daily",
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_success": self.last_results.get("success") if self.last_results else None,
        }


class DailyScheduler:
    """
    Manages scheduled tasks.
    """

    def __init__(self):
        self.jobs: Dict[str, ScheduledJob] = {
            "calibration": ScheduledJob(
                "calibration", "Daily Calibration", run_calibration,
                SchedulerConfig.CALIBRATION_HOUR, SchedulerConfig.CALIBRATION_MINUTE,
            ),
            "selection": ScheduledJob(
                "selection", "Daily Slip Selection", run_selection_cycle,
                SchedulerConfig.SELECTION_HOUR, SchedulerConfig.SELECTION_MINUTE,
            ),
        }
        self.scheduler: Optional[BackgroundScheduler] = None
        self.running = False

    def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = BackgroundScheduler(timezone=SchedulerConfig.TIMEZONE)
        for job in self.jobs.values():
            self.scheduler.add_job(
                job.run,
                CronTrigger(hour=job.hour, minute=job.minute, timezone=SchedulerConfig.TIMEZONE),
                id=job.job_id,
                name=job.name,
                misfire_grace_time=SchedulerConfig.MISFIRE_GRACE_S,
                coalesce=True,
                max_instances=1,
            )
            logger.info("Scheduled %s at %02d:%02d ET", job.name, job.hour, job.minute)
        self.scheduler.start()

        self.running = True
        logger.info("Daily scheduler started")

    def stop(self):
        """Stop the scheduler."""
        self.running = False

        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None

        logger.info("Daily scheduler stopped")

    def run_now(self, job_id: str) -> Dict[str, Any]:
        """Manually trigger a job on the calling thread."""
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        logger.info("Manual %s triggered", job.name)
        return job.run()

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        status: Dict[str, Any] = {
            "running": self.running,
            "timezone": SchedulerConfig.TIMEZONE,
            "jobs": [job.status() for job in self.jobs.values()],
        }
        if self.scheduler:
            status["scheduled_jobs"] = [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in self.scheduler.get_jobs()
            ]
        return status


# ============================================
# GLOBAL INSTANCE + API
# ============================================

scheduler_router = APIRouter(prefix="/scheduler", tags=["Scheduler"])

_scheduler: Optional[DailyScheduler] = None


def init_scheduler() -> DailyScheduler:
    """Initialize the global scheduler."""
    global _scheduler
    _scheduler = DailyScheduler()
    return _scheduler


def get_scheduler() -> Optional[DailyScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


@scheduler_router.get("/status")
async def scheduler_status():
    """Get scheduler status."""
    if not _scheduler:
        return {"status": "not_initialized"}
    return {
        "status": "success",
        "scheduler": _scheduler.get_status(),
    }


@scheduler_router.post("/run/{job_id}")
async def run_job_now(job_id: str):
    """Manually trigger a job (runs in a worker thread, returns its summary)."""
    if not _scheduler:
        raise HTTPException(500, "Scheduler not initialized")
    if job_id not in _scheduler.jobs:
        raise HTTPException(404, f"Unknown job: {job_id}")

    result = await asyncio.to_thread(_scheduler.run_now, job_id)
    return {
        "status": "success",
        "result": result,
    }
