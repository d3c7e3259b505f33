"""
Spread Pick'em Settlement Sweep Scheduler

Runs the idempotent settlement sweep in the background with APScheduler so a
game whose final score landed without a settlement (crash, lost trigger,
conflict give-up) heals on the next tick.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pickem import db
from pickem.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages background settlement jobs"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.settlement = None
        self.is_running = False
        self.sweep_stats = {
            "last_sweep": None,
            "total_sweeps": 0,
            "successful_sweeps": 0,
            "failed_sweeps": 0,
            "last_error": None,
            "games_settled": 0,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")
        self.settlement = SettlementService()

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
            self.scheduler.start()
            self.is_running = True

            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Scheduler stopped")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        """Add core scheduled jobs"""

        # Frequent sweep for unsettled completed games
        self.scheduler.add_job(
            func=self._settle_pending_games,
            trigger=IntervalTrigger(
                seconds=self.app.config.get("SETTLEMENT_SWEEP_SECONDS", 120)
            ),
            id="settle_pending_games",
            name="Settle Pending Games",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        # Nightly audit re-checks every completed game (3 AM UTC)
        self.scheduler.add_job(
            func=self._nightly_full_resettle,
            trigger=CronTrigger(hour=3, minute=0),
            id="nightly_full_resettle",
            name="Nightly Full Re-settlement",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info("Core scheduled jobs added")

    def _settle_pending_games(self):
        """Sweep completed games that still have unsettled data"""
        with self.app.app_context():
            self._run_sweep(include_settled=False)

    def _nightly_full_resettle(self):
        """Re-run settlement for every completed game; a no-op when all is current"""
        with self.app.app_context():
            self._run_sweep(include_settled=True)

    def _run_sweep(self, include_settled):
        try:
            summary = self.settlement.settle_pending(include_settled=include_settled)
            self._update_stats(
                success=not summary["errors"],
                games_settled=summary["games_settled"],
                error=summary["errors"][-1]["error"] if summary["errors"] else None,
            )
            return summary
        except Exception as e:
            # Next tick retries; settlement is idempotent
            db.session.rollback()
            self._update_stats(False, error=str(e))
            logger.error(f"Error in settlement sweep: {e}", exc_info=True)
            return None

    def _update_stats(self, success, games_settled=0, error=None):
        """Update sweep statistics"""
        self.sweep_stats["last_sweep"] = datetime.now(timezone.utc)
        self.sweep_stats["total_sweeps"] += 1
        self.sweep_stats["games_settled"] += games_settled

        if success:
            self.sweep_stats["successful_sweeps"] += 1
            self.sweep_stats["last_error"] = None
        else:
            self.sweep_stats["failed_sweeps"] += 1
            self.sweep_stats["last_error"] = error

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.sweep_stats)
        if stats["last_sweep"]:
            stats["last_sweep"] = stats["last_sweep"].isoformat()

        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_sweep(self, include_settled=False):
        """Manually trigger a sweep"""
        with self.app.app_context():
            summary = self._run_sweep(include_settled=include_settled)
        if summary is None:
            return False, f"Manual sweep failed: {self.sweep_stats['last_error']}"
        return True, summary


# Global scheduler instance
scheduler_service = SchedulerService()
