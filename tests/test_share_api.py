import asyncio
from datetime import timedelta

import httpx
from sqlalchemy import select, update

from senditfast.core.clock import utcnow
from senditfast.models.audit_log import AuditActions, AuditLog
from senditfast.models.file_object import FileObject
from senditfast.models.transfer import Transfer, TransferStatus


def _fetch(storage, url: str) -> httpx.Response:
    async def get():
        async with httpx.AsyncClient(transport=storage.http_transport()) as http:
            return await http.get(url)

    return asyncio.run(get())


def test_share_meta_lists_files_without_auth(client, make_user, headers_for, make_transfer):
    headers = headers_for(make_user())
    transfer = make_transfer(client, headers, {"a.txt": b"aaa", "b.txt": b"bbbb"})

    response = client.get(f"/share/{transfer['slug']}")

    assert response.status_code == 200
    meta = response.json()
    assert meta["requires_password"] is False
    assert meta["branding"] is None
    assert sorted((f["name"], f["size_bytes"]) for f in meta["files"]) == [("a.txt", 3), ("b.txt", 4)]


def test_download_url_serves_the_file(client, make_user, headers_for, make_transfer, sync_session):
    headers = headers_for(make_user())
    transfer = make_transfer(client, headers, {"notes.txt": b"hello world"})
    file_id = client.get(f"/share/{transfer['slug']}").json()["files"][0]["id"]

    response = client.get(f"/share/{transfer['slug']}/download", params={"fileId": file_id})

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["fileName"] == "notes.txt"
    assert body["fileSize"] == 11
    fetched = _fetch(client.app.state.storage, body["downloadUrl"])
    assert fetched.status_code == 200
    assert fetched.content == b"hello world"
    assert "notes.txt" in fetched.headers["content-disposition"]

    actions = sync_session.execute(
        select(AuditLog.action).where(AuditLog.resource_id == transfer["id"])
    ).scalars().all()
    assert AuditActions.TRANSFER_CREATE in actions
    assert AuditActions.TRANSFER_DOWNLOAD in actions


def test_password_protected_download(client, make_user, headers_for, make_transfer):
    headers = headers_for(make_user("PRO"))
    transfer = make_transfer(client, headers, password="s3cret!")
    meta = client.get(f"/share/{transfer['slug']}").json()
    assert meta["requires_password"] is True
    url = f"/share/{transfer['slug']}/download"
    file_id = meta["files"][0]["id"]

    missing = client.get(url, params={"fileId": file_id})
    assert missing.status_code == 403
    assert missing.json()["detail"] == "Password required"

    wrong = client.get(url, params={"fileId": file_id, "password": "nope"})
    assert wrong.status_code == 403
    assert wrong.json()["detail"] == "Invalid password"

    right = client.get(url, params={"fileId": file_id, "password": "s3cret!"})
    assert right.status_code == 200
    assert right.json()["downloadUrl"]


def test_unknown_slug_is_not_found(client):
    assert client.get("/share/does-not-exist").status_code == 404
    assert client.get("/share/does-not-exist/download", params={"fileId": "x"}).status_code == 404


def test_expired_transfer_is_unreadable_before_the_sweep(client, make_user, headers_for, make_transfer, sync_session):
    headers = headers_for(make_user())
    transfer = make_transfer(client, headers)
    file_id = client.get(f"/share/{transfer['slug']}").json()["files"][0]["id"]

    sync_session.execute(
        update(Transfer).where(Transfer.id == transfer["id"]).values(expires_at=utcnow() - timedelta(seconds=1))
    )
    sync_session.commit()

    assert client.get(f"/share/{transfer['slug']}").status_code == 404
    download = client.get(f"/share/{transfer['slug']}/download", params={"fileId": file_id})
    assert download.status_code == 404
    status = sync_session.execute(select(Transfer.status).where(Transfer.id == transfer["id"])).scalar_one()
    assert status == TransferStatus.ACTIVE


def test_owner_lists_and_deletes_transfers(client, make_user, headers_for, make_transfer):
    headers = headers_for(make_user())
    first = make_transfer(client, headers, {"one.txt": b"1"})
    second = make_transfer(client, headers, {"two.txt": b"22"})

    items = client.get("/transfers", headers=headers).json()["items"]
    assert [i["id"] for i in items] == [second["id"], first["id"]]

    response = client.delete(f"/transfers/{first['id']}", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "cleanupPending": False}
    assert client.get(f"/share/{first['slug']}").status_code == 404
    assert client.get(f"/share/{second['slug']}").status_code == 200

    again = client.delete(f"/transfers/{first['id']}", headers=headers)
    assert again.status_code == 200
    assert again.json()["cleanupPending"] is False


def test_only_the_owner_can_delete(client, make_user, headers_for, make_transfer):
    owner = headers_for(make_user())
    stranger = headers_for(make_user())
    transfer = make_transfer(client, owner)

    response = client.delete(f"/transfers/{transfer['id']}", headers=stranger)

    assert response.status_code == 403
    assert client.get(f"/share/{transfer['slug']}").status_code == 200
    assert client.get("/transfers", headers=stranger).json()["items"] == []


def test_delete_with_storage_failure_reports_pending_cleanup(client, make_user, headers_for, make_transfer,
                                                              sync_session):
    headers = headers_for(make_user())
    transfer = make_transfer(client, headers)
    keys = sync_session.execute(
        select(FileObject.storage_key).where(FileObject.transfer_id == transfer["id"])
    ).scalars().all()
    client.app.state.storage.failing_deletes = set(keys)

    response = client.delete(f"/transfers/{transfer['id']}", headers=headers)

    assert response.status_code == 200
    assert response.json()["cleanupPending"] is True
    assert client.get(f"/share/{transfer['slug']}").status_code == 404
