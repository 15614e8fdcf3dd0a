from datetime import timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from conftest import CHROME_UA
from doctrack.models import AnalyticsSummary, GlobalAggregate, PageView, ViewSession
from doctrack.schemas.tracking import SessionEndEvent
from doctrack.services import aggregator
from doctrack.services.access_gate import grant_access
from doctrack.services.sessions import close_session

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def view(db, link, now, ip, seconds=None, user_agent=CHROME_UA, referer=None):
    grant = grant_access(db, link.share_token, ip=ip, user_agent=user_agent, referer=referer, now=now)
    if seconds is not None:
        close_session(db, SessionEndEvent.model_validate({
            "shareId": link.share_token,
            "sessionId": grant.session.session_id,
            "durationSeconds": seconds,
            "pagesViewed": 1,
            "totalPages": 1,
            "maxPageReached": 1,
        }), now=now)
    return grant


def test_recompute_summary(db, link, document, fixed_now):
    view(db, link, fixed_now, "198.51.100.1", seconds=30, referer="https://www.linkedin.com/feed/")
    view(db, link, fixed_now + timedelta(hours=1), "198.51.100.1", seconds=90)
    view(db, link, fixed_now + timedelta(hours=2), "198.51.100.2", user_agent=IPHONE_UA)
    # Next day, not part of the summary
    view(db, link, fixed_now + timedelta(days=1), "198.51.100.3", seconds=10)

    values = aggregator.recompute_summary(db, document.id, fixed_now.date(), now=fixed_now)

    assert values["total_views"] == 3
    assert values["unique_views"] == 2
    assert values["total_duration_ms"] == 120000
    assert values["completed_sessions"] == 2
    assert values["avg_duration_ms"] == 60000
    assert values["devices"] == {"desktop": 2, "mobile": 1}
    assert values["referers"] == {"linkedin.com": 1, "direct": 2}
    assert values["countries"] == {"unknown": 3}


def test_recompute_is_idempotent(db, link, document, fixed_now):
    view(db, link, fixed_now, "198.51.100.1", seconds=30)
    view(db, link, fixed_now, "198.51.100.2", seconds=60)

    aggregator.recompute_summary(db, document.id, fixed_now.date(), now=fixed_now)
    first = db.query(AnalyticsSummary).one()
    snapshot = (first.total_views, first.unique_views, first.total_duration_ms, first.avg_duration_ms, first.devices)

    aggregator.recompute_summary(db, document.id, fixed_now.date(), now=fixed_now + timedelta(hours=1))
    db.expire_all()
    rows = db.query(AnalyticsSummary).all()

    assert len(rows) == 1
    row = rows[0]
    assert (row.total_views, row.unique_views, row.total_duration_ms, row.avg_duration_ms, row.devices) == snapshot


def test_recompute_without_raw_rows_keeps_history(db, link, document, fixed_now):
    view(db, link, fixed_now, "198.51.100.1", seconds=30)
    aggregator.generate_summaries_for_date(db, fixed_now.date(), now=fixed_now)

    db.query(ViewSession).delete()
    db.commit()

    assert aggregator.recompute_summary(db, document.id, fixed_now.date()) is None
    assert db.query(AnalyticsSummary).one().total_views == 1


def test_generate_summaries_for_date_covers_every_active_document(db, make_link, owner, fixed_now):
    from doctrack.models import Document

    other = Document(owner_id=owner.id, title="Other", storage_key="other.pdf")
    db.add(other)
    db.commit()

    view(db, make_link(), fixed_now, "198.51.100.1")
    view(db, make_link(document_id=other.id), fixed_now, "198.51.100.1")

    result = aggregator.generate_summaries_for_date(db, fixed_now.date(), now=fixed_now)

    assert result == {"date": fixed_now.date().isoformat(), "documents": 2, "skipped": 0}
    assert db.query(AnalyticsSummary).count() == 2


def test_rebaseline_corrects_drift(db, link, fixed_now):
    view(db, link, fixed_now, "198.51.100.1", seconds=30)
    view(db, link, fixed_now, "198.51.100.1", seconds=50)

    # Simulate duplicated increments
    aggregator.record_view(db, True)
    aggregator.record_session_duration(db, 50000)

    row = aggregator.rebaseline_global(db, now=fixed_now)

    assert row.total_views == 2
    assert row.total_unique_views == 1
    assert row.total_duration_ms == 80000
    assert row.completed_sessions == 2
    assert row.avg_session_duration_ms == 40000
    assert row.total_shares == 1


def test_rebaseline_survives_session_pruning(db, link, fixed_now):
    view(db, link, fixed_now - timedelta(days=60), "198.51.100.1", seconds=30)
    aggregator.generate_summaries_for_date(db, (fixed_now - timedelta(days=60)).date(), now=fixed_now)

    db.query(PageView).delete()
    db.query(ViewSession).delete()
    db.commit()

    view(db, link, fixed_now, "198.51.100.2", seconds=10)
    row = aggregator.rebaseline_global(db, now=fixed_now)

    assert row.total_views == 2
    assert row.total_duration_ms == 40000


def test_incremental_counters(db):
    aggregator.record_view(db, True)
    aggregator.record_view(db, False)
    aggregator.record_share(db)
    aggregator.record_email_capture(db)

    db.expire_all()
    row = db.get(GlobalAggregate, 1)
    assert (row.total_views, row.total_unique_views, row.total_shares, row.total_email_captures) == (2, 1, 1, 1)


def test_incremental_failure_is_swallowed():
    broken = MagicMock()
    broken.get.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))

    assert aggregator.record_view(broken, True) is False
    broken.rollback.assert_called()


def test_referer_key():
    assert aggregator.referer_key(None) == "direct"
    assert aggregator.referer_key("") == "direct"
    assert aggregator.referer_key("https://www.Google.com/search?q=x") == "google.com"
    assert aggregator.referer_key("not a url") == "direct"


def test_admin_generate_and_rebaseline(client, db, link, admin_headers, owner_headers, fixed_now):
    view(db, link, fixed_now, "198.51.100.1", seconds=30)

    response = client.post("/admin/summaries/generate", json={"date": fixed_now.date().isoformat()},
                           headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["documents"] == 1

    response = client.post("/admin/global/rebaseline", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["total_views"] == 1

    assert client.post("/admin/global/rebaseline", headers=owner_headers).status_code == 403
    assert client.post("/admin/global/rebaseline").status_code == 401


def test_aged_summaries_survive_partial_pruning(db, link, document, fixed_now):
    from doctrack.services import retention

    day_start = (fixed_now - timedelta(days=30)).replace(hour=0)
    view(db, link, day_start.replace(hour=8), "198.51.100.1", seconds=30)
    view(db, link, day_start.replace(hour=20), "198.51.100.2", seconds=60)
    aggregator.generate_summaries_for_date(db, day_start.date(), now=day_start + timedelta(days=1))

    retention.run_retention_sweep(db, now=fixed_now, delete_blob=lambda key: True)
    assert db.query(ViewSession).count() == 1

    result = aggregator.generate_summaries_for_date(db, day_start.date(), now=fixed_now)
    assert (result["documents"], result["skipped"]) == (0, 1)

    row = aggregator.rebaseline_global(db, now=fixed_now)
    db.expire_all()
    summary = db.query(AnalyticsSummary).one()
    assert (summary.total_views, summary.total_duration_ms) == (2, 90000)
    assert row.total_views == 2


def test_aged_day_without_summary_is_still_generated(db, link, document, fixed_now):
    day = (fixed_now - timedelta(days=45)).date()
    view(db, link, fixed_now - timedelta(days=45), "198.51.100.1", seconds=30)

    result = aggregator.generate_summaries_for_date(db, day, now=fixed_now)

    assert (result["documents"], result["skipped"]) == (1, 0)
    assert db.query(AnalyticsSummary).one().total_views == 1


def test_zero_duration_is_not_a_completed_session(db, link, document, fixed_now):
    view(db, link, fixed_now, "198.51.100.1", seconds=0)
    view(db, link, fixed_now, "198.51.100.2", seconds=40)

    db.expire_all()
    incremental = db.get(GlobalAggregate, 1)
    assert (incremental.completed_sessions, incremental.avg_session_duration_ms) == (1, 40000)

    values = aggregator.recompute_summary(db, document.id, fixed_now.date(), now=fixed_now)
    assert values["completed_sessions"] == 1
    assert values["avg_duration_ms"] == 40000
