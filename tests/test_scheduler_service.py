from datetime import datetime, timedelta, timezone

from streakr import db
from streakr.models import Question
from streakr.services.scheduler_service import SchedulerService


def test_start_registers_core_jobs(app):
    service = SchedulerService()
    service.init_app(app)
    assert not service.is_running

    service.start()
    try:
        status = service.get_status()
        assert status["is_running"]
        assert sorted(job["id"] for job in status["jobs"]) == ["auto_lock", "sync_fixtures"]
    finally:
        service.stop()

    assert not service.is_running


def test_run_auto_lock_job(app, make_match, make_question):
    started = make_match(
        start_time=datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=10)
    )
    question_id = make_question(started).id
    db.session.commit()

    service = SchedulerService()
    ok, message = service.run_job("auto_lock")
    db.session.expire_all()

    assert ok, message
    assert db.session.get(Question, question_id).status == "pending"
    assert service.job_stats["questions_locked"] == 1
    stats = service.get_status()["stats"]
    assert stats["successful_runs"] == 1
    assert stats["last_run"] is not None


def test_sync_job_without_season_is_skipped(app):
    service = SchedulerService()
    ok, _ = service.run_job("sync_fixtures")
    assert ok
    assert service.job_stats["total_runs"] == 0


def test_unknown_job(app):
    ok, message = SchedulerService().run_job("nightly_backup")
    assert not ok
    assert "nightly_backup" in message
