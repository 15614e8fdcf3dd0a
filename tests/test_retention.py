from datetime import timedelta

from doctrack.models import (
    AnalyticsSummary, Document, EmailCapture, PageView, ShareLink, User, ViewSession,
)
from doctrack.services import retention
from doctrack.utils.privacy import retention_date


def add_session(db, link, started_at, retention=True, session_id=None):
    session = ViewSession(
        session_id=session_id or f"s-{started_at.isoformat()}-{link.id}",
        share_link_id=link.id,
        ip_hash="abc",
        started_at=started_at,
        last_active_at=started_at,
        data_retention_date=retention_date(started_at) if retention else None,
    )
    db.add(session)
    db.commit()
    db.add(PageView(session_id=session.id, page_number=1, viewed_at=started_at))
    db.commit()
    return session


def sweep(db, now, delete_blob=lambda key: True):
    return retention.run_retention_sweep(db, now=now, delete_blob=delete_blob)


def test_sessions_past_retention_are_deleted(db, link, fixed_now):
    add_session(db, link, fixed_now - timedelta(days=31), session_id="old")
    add_session(db, link, fixed_now - timedelta(days=29), session_id="new")

    report = sweep(db, fixed_now)

    assert report["sessions"] == 1
    assert report["page_views"] == 1
    remaining = [s.session_id for s in db.query(ViewSession).all()]
    assert remaining == ["new"]
    assert db.query(PageView).count() == 1


def test_fallback_window_applies_without_retention_date(db, link, fixed_now):
    add_session(db, link, fixed_now - timedelta(days=45), retention=False, session_id="legacy")
    add_session(db, link, fixed_now - timedelta(days=5), retention=False, session_id="recent")

    report = sweep(db, fixed_now)

    assert report["sessions"] == 1
    assert [s.session_id for s in db.query(ViewSession).all()] == ["recent"]


def test_old_summaries_and_captures_are_deleted(db, link, document, fixed_now):
    db.add_all([
        AnalyticsSummary(document_id=document.id, date=(fixed_now - timedelta(days=800)).date()),
        AnalyticsSummary(document_id=document.id, date=(fixed_now - timedelta(days=700)).date()),
        EmailCapture(share_link_id=link.id, email="old@example.com", captured_at=fixed_now - timedelta(days=400)),
        EmailCapture(share_link_id=link.id, email="new@example.com", captured_at=fixed_now - timedelta(days=300)),
    ])
    db.commit()

    report = sweep(db, fixed_now)

    assert report["summaries"] == 1
    assert report["email_captures"] == 1
    assert [c.email for c in db.query(EmailCapture).all()] == ["new@example.com"]
    assert db.query(AnalyticsSummary).count() == 1


def test_orphaned_documents_are_removed_with_their_rows(db, owner, fixed_now):
    orphan = Document(owner_id=None, title="Orphan", storage_key="orphans/a.pdf",
                      created_at=fixed_now - timedelta(days=120))
    young_orphan = Document(owner_id=None, title="Young", storage_key="orphans/b.pdf",
                            created_at=fixed_now - timedelta(days=10))
    owned = Document(owner_id=owner.id, title="Owned", storage_key="owned.pdf",
                     created_at=fixed_now - timedelta(days=400))
    db.add_all([orphan, young_orphan, owned])
    db.commit()

    orphan_link = ShareLink(document_id=orphan.id, share_token="orphanlink")
    db.add(orphan_link)
    db.commit()
    add_session(db, orphan_link, fixed_now - timedelta(days=1))
    db.add(AnalyticsSummary(document_id=orphan.id, date=fixed_now.date()))
    db.add(EmailCapture(share_link_id=orphan_link.id, email="x@example.com", captured_at=fixed_now))
    db.commit()

    deleted_blobs = []
    report = sweep(db, fixed_now, delete_blob=lambda key: deleted_blobs.append(key) or True)

    assert report["orphan_documents"] == 1
    assert deleted_blobs == ["orphans/a.pdf"]
    assert {d.title for d in db.query(Document).all()} == {"Young", "Owned"}
    assert db.query(ShareLink).count() == 0
    assert db.query(ViewSession).count() == 0
    assert db.query(PageView).count() == 0
    assert db.query(AnalyticsSummary).count() == 0
    assert db.query(EmailCapture).count() == 0


def test_deleted_owner_makes_document_orphaned(db, fixed_now):
    user = User(email="gone@example.com")
    db.add(user)
    db.commit()
    doc = Document(owner_id=user.id, storage_key="gone.pdf", created_at=fixed_now - timedelta(days=91))
    db.add(doc)
    db.commit()

    db.delete(user)
    db.commit()

    assert sweep(db, fixed_now)["orphan_documents"] == 1
    assert db.query(Document).count() == 0


def test_storage_failure_does_not_block_database_delete(db, fixed_now):
    db.add(Document(owner_id=None, storage_key="stuck.pdf", created_at=fixed_now - timedelta(days=100)))
    db.commit()

    report = sweep(db, fixed_now, delete_blob=lambda key: False)

    assert report["orphan_documents"] == 1
    assert report["storage_failures"] == 1
    assert report["errors"] == []
    assert db.query(Document).count() == 0


def test_failing_category_does_not_abort_others(db, link, fixed_now, monkeypatch):
    add_session(db, link, fixed_now - timedelta(days=40))
    db.add(EmailCapture(share_link_id=link.id, email="old@example.com", captured_at=fixed_now - timedelta(days=400)))
    db.commit()

    def explode(db, now):
        raise RuntimeError("summary table unavailable")

    monkeypatch.setattr(retention, "delete_old_summaries", explode)

    report = sweep(db, fixed_now)

    assert report["errors"] == [{"category": "summaries", "error": "summary table unavailable"}]
    assert report["sessions"] == 1
    assert report["email_captures"] == 1
