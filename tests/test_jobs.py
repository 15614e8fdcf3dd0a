from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import OperationalError

from doctrack.database import SessionLocal
from doctrack.jobs import JOB_IDS, JobSupervisor
from doctrack.models import AnalyticsSummary, ViewSession
from doctrack.services.access_gate import grant_access
from doctrack.services.sessions import close_idle_sessions


def make_supervisor(now, scheduler=None):
    return JobSupervisor(session_factory=SessionLocal, clock=lambda: now, scheduler=scheduler or MagicMock())


def open_at(db, link, now, ip="198.51.100.1"):
    return grant_access(db, link.share_token, ip=ip, now=now).session


def test_idle_reaper_closes_only_idle_sessions(db, link, fixed_now):
    idle = open_at(db, link, fixed_now - timedelta(minutes=31))
    idle.total_duration_ms = 7000
    recent = open_at(db, link, fixed_now - timedelta(minutes=10), ip="198.51.100.2")
    db.commit()

    result = make_supervisor(fixed_now).run_job("idle_reaper")

    assert result == {"job": "idle_reaper", "closed": 1}
    db.expire_all()
    assert db.get(ViewSession, idle.id).is_active is False
    assert db.get(ViewSession, idle.id).total_duration_ms == 7000
    assert db.get(ViewSession, recent.id).is_active is True


def test_idle_reaper_is_rerunnable(db, link, fixed_now):
    open_at(db, link, fixed_now - timedelta(hours=2))
    supervisor = make_supervisor(fixed_now)

    assert supervisor.run_job("idle_reaper")["closed"] == 1
    assert supervisor.run_job("idle_reaper")["closed"] == 0


def test_idle_reaper_never_raises():
    broken = MagicMock()
    broken.execute.side_effect = OperationalError("UPDATE", {}, Exception("database is locked"))

    assert close_idle_sessions(broken) == 0
    broken.rollback.assert_called_once()


def test_summary_job_summarises_previous_day(db, link, fixed_now):
    open_at(db, link, fixed_now - timedelta(days=1))
    open_at(db, link, fixed_now, ip="198.51.100.2")

    result = make_supervisor(fixed_now).run_job("summary_generation")

    assert result["date"] == (fixed_now - timedelta(days=1)).date().isoformat()
    summary = db.query(AnalyticsSummary).one()
    assert summary.date == (fixed_now - timedelta(days=1)).date()
    assert summary.total_views == 1


def test_retention_job_reports_per_category(db, fixed_now):
    result = make_supervisor(fixed_now).run_job("retention_sweeper")

    assert result["job"] == "retention_sweeper"
    assert result["errors"] == []
    assert result["sessions"] == 0


def test_unknown_job():
    with pytest.raises(KeyError):
        JobSupervisor(scheduler=MagicMock()).run_job("vacuum")


def test_install_registers_every_job():
    scheduler = MagicMock()
    JobSupervisor(scheduler=scheduler).install()

    assert scheduler.add_job.call_count == len(JOB_IDS)
    calls = {call.kwargs["id"]: call.kwargs for call in scheduler.add_job.call_args_list}
    assert set(calls) == set(JOB_IDS)
    assert isinstance(calls["idle_reaper"]["trigger"], IntervalTrigger)
    assert isinstance(calls["retention_sweeper"]["trigger"], CronTrigger)
    assert isinstance(calls["summary_generation"]["trigger"], CronTrigger)
    for kwargs in calls.values():
        assert kwargs["max_instances"] == 1
        assert kwargs["replace_existing"] is True
        assert kwargs["args"] == [kwargs["id"]]


def test_start_and_shutdown():
    scheduler = MagicMock()
    scheduler.running = False
    supervisor = JobSupervisor(scheduler=scheduler)

    supervisor.start()
    scheduler.start.assert_called_once()
    assert scheduler.add_job.call_count == len(JOB_IDS)

    scheduler.running = True
    supervisor.start()
    scheduler.start.assert_called_once()

    supervisor.shutdown()
    scheduler.shutdown.assert_called_once_with(wait=False)


def test_run_job_endpoint(client, admin_headers):
    response = client.post("/admin/jobs/idle_reaper/run", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"job": "idle_reaper", "closed": 0}

    assert client.post("/admin/jobs/vacuum/run", headers=admin_headers).status_code == 404
