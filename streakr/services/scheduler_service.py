"""
STREAKr background scheduler

APScheduler jobs that keep question state in step with the clock:
auto-locking questions of matches that have bounced, and pulling fixture
start-time changes from Squiggle.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from flask import current_app

from streakr import db
from streakr.models import Season
from streakr.services import settlement_service
from streakr.utils.data_sync import SquiggleSync, SyncError

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages background jobs for auto-lock and fixture sync"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.job_stats = {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "last_error": None,
            "questions_locked": 0,
            "matches_synced": 0,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        self.scheduler.remove_all_jobs()
        self._add_core_jobs()
        self.scheduler.start()
        self.is_running = True
        logger.info("Scheduler started successfully")

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Scheduler stopped")

    def shutdown(self):
        self.stop()

    def _add_core_jobs(self):
        interval = self.app.config.get("AUTO_LOCK_INTERVAL", 60)

        self.scheduler.add_job(
            func=self._auto_lock,
            trigger=IntervalTrigger(seconds=interval),
            id="auto_lock",
            name="Auto-lock Started Matches",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )

        # Fixture times move during the season; check daily before the day's games
        self.scheduler.add_job(
            func=self._sync_fixtures,
            trigger=CronTrigger(hour=2, minute=0),
            id="sync_fixtures",
            name="Sync Fixture Times",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=600,
        )

    def _auto_lock(self):
        """Lock open questions of every match whose start time has passed"""
        with self.app.app_context():
            try:
                locked = settlement_service.auto_lock_started_matches(
                    datetime.now(timezone.utc)
                )
                self.job_stats["questions_locked"] += locked
                self._update_stats(True)
            except Exception as e:
                logger.error(f"Error in auto-lock: {e}")
                db.session.rollback()
                self._update_stats(False, str(e))

    def _sync_fixtures(self):
        """Pull start times and venues for the active season from Squiggle"""
        with self.app.app_context():
            season = Season.get_current_season()
            if not season:
                return

            try:
                updated = SquiggleSync().sync_season(season)
                self.job_stats["matches_synced"] += updated
                self._update_stats(True)
            except SyncError as e:
                logger.warning(f"Fixture sync unavailable: {e}")
                self._update_stats(False, str(e))
            except Exception as e:
                logger.error(f"Error in fixture sync: {e}")
                db.session.rollback()
                self._update_stats(False, str(e))

    def _update_stats(self, success, error=None):
        self.job_stats["last_run"] = datetime.now(timezone.utc)
        self.job_stats["total_runs"] += 1

        if success:
            self.job_stats["successful_runs"] += 1
            self.job_stats["last_error"] = None
        else:
            self.job_stats["failed_runs"] += 1
            self.job_stats["last_error"] = error

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.job_stats)
        if stats["last_run"]:
            stats["last_run"] = stats["last_run"].isoformat()
        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def run_job(self, job_id):
        """Manually trigger a job; returns (ok, message)"""
        jobs = {"auto_lock": self._auto_lock, "sync_fixtures": self._sync_fixtures}
        if job_id not in jobs:
            return False, f"Unknown job: {job_id}"
        if self.app is None:
            self.app = current_app._get_current_object()
        jobs[job_id]()
        return True, f"Job {job_id} completed"


# Global scheduler instance
scheduler_service = SchedulerService()
