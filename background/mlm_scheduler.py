# background/mlm_scheduler.py
"""
MLM Scheduler - periodic engine maintenance.
Uses APScheduler for task scheduling.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from core.db import get_db_session_ctx
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.earnings_aggregator import EarningsAggregator
from mlm_system.services.missed_earnings_service import MissedEarningsLedger

logger = logging.getLogger(__name__)


class MLMScheduler:
    """
    Background scheduler for engine maintenance.

    Jobs:
    - Missed earnings sweep: every RECONCILE_INTERVAL_MINUTES
    - Earnings audit: daily at EARNINGS_AUDIT_HOUR:00 UTC
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.isRunning = False

        self.scheduler = scheduler or AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 300  # 5 minutes grace period
            }
        )

        # Statistics
        self.stats = {
            "tasksExecuted": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastExecutedAt": None,
            "transfersMade": 0,
            "earningsCorrected": 0,
        }

    def registerJobs(self):
        """Add both jobs to the APScheduler instance."""
        interval = Config.get(Config.RECONCILE_INTERVAL_MINUTES, 30)
        auditHour = Config.get(Config.EARNINGS_AUDIT_HOUR, 0)

        # ═══════════════════════════════════════════════════════════════
        # JOB 1: Missed earnings sweep
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_sweep_wrapper,
            trigger=IntervalTrigger(minutes=interval),
            id='missed_earnings_sweep',
            name='Missed Earnings Sweep',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Missed Earnings Sweep (every {interval} minutes)")

        # ═══════════════════════════════════════════════════════════════
        # JOB 2: Daily earnings audit
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_audit_wrapper,
            trigger=CronTrigger(hour=auditHour, minute=0),
            id='earnings_audit',
            name=f'Earnings Audit ({auditHour:02d}:00 UTC)',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Earnings Audit ({auditHour:02d}:00 UTC)")

    async def start(self):
        """Start scheduler with all jobs."""
        if self.isRunning:
            logger.warning("MLM Scheduler already running")
            return

        logger.info("=" * 60)
        logger.info("Starting MLM Scheduler with APScheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        self.registerJobs()
        self.scheduler.start()

        logger.info(f"✅ MLM Scheduler started, active jobs: {len(self.scheduler.get_jobs())}")

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping MLM Scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ MLM Scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPERS (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_sweep_wrapper(self):
        """Safe wrapper for the missed earnings sweep."""
        try:
            await self.sweepMissedEarnings()
        except Exception as e:
            logger.error(f"Error in missed earnings sweep job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def _safe_audit_wrapper(self):
        """Safe wrapper for the earnings audit."""
        try:
            await self.auditEarnings()
        except Exception as e:
            logger.error(f"Error in earnings audit job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    # ═══════════════════════════════════════════════════════════════════
    # JOBS
    # ═══════════════════════════════════════════════════════════════════

    async def sweepMissedEarnings(self) -> dict:
        """Reconcile every member with pending missed earnings."""
        with get_db_session_ctx() as session:
            ledger = MissedEarningsLedger(session)
            result = await ledger.sweep()

        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        self.stats["transfersMade"] += result["transfers"]

        if result["transfers"]:
            await eventBus.emit(MLMEvents.MISSED_EARNINGS_SWEPT, result)

        return result

    async def auditEarnings(self) -> int:
        """Correct cached member earnings that drifted from the ledger."""
        with get_db_session_ctx() as session:
            aggregator = EarningsAggregator(session)
            corrections = await aggregator.auditAll()

        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        self.stats["earningsCorrected"] += len(corrections)

        return len(corrections)

    def getStatus(self) -> dict:
        """Get scheduler status."""
        jobs_info = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None
                })

        return {
            "isRunning": self.isRunning,
            "schedulerRunning": self.scheduler.running,
            "stats": self.stats,
            "jobs": jobs_info
        }
