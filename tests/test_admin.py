import json
from datetime import timedelta

from sqlalchemy import select, update

from senditfast.core.clock import utcnow
from senditfast.core.config import settings
from senditfast.models.transfer import Transfer, TransferStatus


def _expire(sync_session, transfer_id, ago=timedelta(minutes=5)):
    sync_session.execute(update(Transfer).where(Transfer.id == transfer_id).values(expires_at=utcnow() - ago))
    sync_session.commit()


def test_cleanup_endpoints_require_admin(client, make_user, headers_for):
    headers = headers_for(make_user())

    assert client.get("/admin/cleanup").status_code == 401
    assert client.get("/admin/cleanup", headers=headers).status_code == 403
    assert client.post("/admin/cleanup", headers=headers).status_code == 403


def test_admin_sees_stats_and_runs_the_sweep(client, make_user, headers_for, make_transfer, sync_session):
    user = headers_for(make_user())
    admin = headers_for(make_user(is_admin=True))
    stale = make_transfer(client, user, {"old.txt": b"12345"})
    fresh = make_transfer(client, user, {"new.txt": b"1"})
    _expire(sync_session, stale["id"])

    stats = client.get("/admin/cleanup", headers=admin).json()
    assert stats["expiredCount"] == 1
    assert stats["totalSizeBytes"] == 5
    assert stats["oldestExpired"] is not None
    assert stats["pendingCleanupCount"] == 0

    run = client.post("/admin/cleanup", headers=admin)
    assert run.status_code == 200
    body = run.json()
    assert body["processed"] == 1
    assert body["deleted"] == 1
    assert body["errors"] == []
    assert body["orphansReaped"] == 0

    sync_session.expire_all()
    statuses = dict(sync_session.execute(select(Transfer.id, Transfer.status)).all())
    assert statuses[stale["id"]] == TransferStatus.EXPIRED
    assert statuses[fresh["id"]] == TransferStatus.ACTIVE
    assert client.get("/admin/cleanup", headers=admin).json()["expiredCount"] == 0


def test_cron_endpoint_checks_the_shared_secret(client, make_user, headers_for, make_transfer, sync_session,
                                                monkeypatch):
    transfer = make_transfer(client, headers_for(make_user()))
    _expire(sync_session, transfer["id"])
    monkeypatch.setattr(settings, "CRON_SECRET", "cron-token")

    assert client.post("/cron/cleanup").status_code == 401
    assert client.post("/cron/cleanup", headers={"Authorization": "Bearer wrong"}).status_code == 401

    response = client.post("/cron/cleanup", headers={"Authorization": "Bearer cron-token"})
    assert response.status_code == 200
    assert response.json()["processed"] == 1

    again = client.post("/cron/cleanup", headers={"Authorization": "Bearer cron-token"})
    assert again.json()["processed"] == 0


def test_cron_endpoint_is_open_without_a_secret(client):
    response = client.post("/cron/cleanup")
    assert response.status_code == 200
    assert response.json() == {"processed": 0, "deleted": 0, "errors": [], "retried": 0, "orphansReaped": 0}


def test_health_reports_dependencies(client):
    body = client.get("/health").json()
    assert body["status"] == "running"
    assert body["database"] == "ok"
    assert body["storage"] == "ok"

    client.app.state.storage.unavailable = True
    assert client.get("/health").json()["storage"].startswith("error")


def test_metrics_exposes_sweep_counters(client):
    client.post("/cron/cleanup")
    body = client.get("/metrics").text
    assert "senditfast_sweep_runs_total" in body


def test_sweep_script_prints_the_run_summary(capsys):
    from senditfast.scripts import sweep

    assert sweep.main(["--batch-size", "10"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary == {"processed": 0, "deleted": 0, "errors": [], "retried": 0, "orphansReaped": 0}
