import asyncio
import time
from datetime import datetime, timedelta

import httpx

from senditfast.core.clock import utcnow
from senditfast.core.config import MIB
from senditfast.services.uploads import part_ranges


def _create(client, headers, size, name="video.mp4", content_type="video/mp4"):
    return client.post(
        "/upload/create",
        json={"fileName": name, "fileSize": size, "contentType": content_type},
        headers=headers,
    )


def _relay(client, headers, created, part_number, data, part_url=None):
    return client.post(
        "/upload/parts",
        headers=headers,
        data={
            "partUrl": part_url or created["partUrls"][part_number - 1],
            "partNumber": str(part_number),
            "uploadId": created["uploadId"],
            "key": created["key"],
        },
        files={"file": ("blob", data, "application/octet-stream")},
    )


def _fetch(storage, url: str) -> bytes:
    async def get():
        async with httpx.AsyncClient(transport=storage.http_transport()) as http:
            return (await http.get(url)).content

    return asyncio.run(get())


def test_upload_requires_authentication(client):
    response = _create(client, {}, 10)
    assert response.status_code == 401


def test_end_to_end_upload_share_and_download(client, make_user, headers_for):
    headers = headers_for(make_user())
    size = 25 * MIB
    data = bytes(range(256)) * (size // 256)

    created = _create(client, headers, size).json()
    assert created["partSize"] == 10 * MIB
    assert len(created["partUrls"]) == 3

    ranges = part_ranges(size, created["partSize"])
    assert [r.size for r in ranges] == [10 * MIB, 10 * MIB, 5 * MIB]
    etags = {}
    for n in (3, 1, 2):
        r = ranges[n - 1]
        response = _relay(client, headers, created, n, data[r.start:r.end])
        assert response.status_code == 200, response.text
        assert response.json()["partNumber"] == n
        etags[n] = response.json()["etag"]

    response = client.post(
        "/upload/complete",
        headers=headers,
        json={
            "uploadId": created["uploadId"],
            "key": created["key"],
            "parts": [{"PartNumber": n, "ETag": etags[n]} for n in (3, 1, 2)],
        },
    )
    assert response.status_code == 200, response.text
    assert response.json()["success"] is True

    before = utcnow()
    response = client.post(
        "/transfers/create",
        headers=headers,
        json={"files": [{"key": created["key"], "name": "video.mp4", "size_bytes": size, "content_type": "video/mp4"}]},
    )
    assert response.status_code == 200, response.text
    transfer = response.json()
    expires_at = datetime.fromisoformat(transfer["expires_at"])
    assert before + timedelta(days=7) - timedelta(minutes=1) <= expires_at <= utcnow() + timedelta(days=7)

    meta = client.get(f"/share/{transfer['slug']}").json()
    assert len(meta["files"]) == 1
    assert meta["requires_password"] is False
    assert meta["files"][0]["size_bytes"] == size

    file_id = meta["files"][0]["id"]
    first = client.get(f"/share/{transfer['slug']}/download", params={"fileId": file_id})
    second = client.get(f"/share/{transfer['slug']}/download", params={"fileId": file_id})
    assert first.status_code == 200
    assert first.json()["downloadUrl"]
    assert first.json()["downloadUrl"] != second.json()["downloadUrl"]
    assert first.json()["fileName"] == "video.mp4"

    storage = client.app.state.storage
    assert storage.read_object(created["key"]) == data
    assert _fetch(storage, first.json()["downloadUrl"]) == data


def test_zero_size_file_is_rejected(client, make_user, headers_for):
    response = _create(client, headers_for(make_user()), 0)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_file_larger_than_plan_is_rejected(client, make_user, headers_for):
    response = _create(client, headers_for(make_user("FREE")), 6 * 1024 ** 3)
    assert response.status_code == 400
    assert response.json()["error"] == "Plan limit exceeded"

    response = _create(client, headers_for(make_user("PRO")), 6 * 1024 ** 3)
    assert response.status_code == 200
    assert len(response.json()["partUrls"]) == 615


def test_unknown_plan_is_a_validation_error(client, make_user, headers_for):
    response = _create(client, headers_for(make_user("ENTERPRISE")), 10)
    assert response.status_code == 400
    assert "Unsupported plan" in response.json()["detail"]


def test_completion_with_missing_part_is_a_conflict(client, make_user, headers_for):
    headers = headers_for(make_user())
    created = _create(client, headers, 25 * MIB).json()
    etag = _relay(client, headers, created, 1, b"a" * (10 * MIB)).json()["etag"]

    response = client.post(
        "/upload/complete",
        headers=headers,
        json={"uploadId": created["uploadId"], "key": created["key"], "parts": [{"PartNumber": 1, "ETag": etag}]},
    )
    assert response.status_code == 409


def test_completion_with_duplicate_parts_is_a_conflict(client, make_user, headers_for):
    headers = headers_for(make_user())
    created = _create(client, headers, 3).json()
    etag = _relay(client, headers, created, 1, b"abc").json()["etag"]

    response = client.post(
        "/upload/complete",
        headers=headers,
        json={
            "uploadId": created["uploadId"],
            "key": created["key"],
            "parts": [{"PartNumber": 1, "ETag": etag}, {"PartNumber": 1, "ETag": etag}],
        },
    )
    assert response.status_code == 409


def test_other_users_cannot_touch_an_upload(client, make_user, headers_for):
    owner = headers_for(make_user())
    intruder = headers_for(make_user())
    created = _create(client, owner, 3).json()
    etag = _relay(client, owner, created, 1, b"abc").json()["etag"]

    response = client.post(
        "/upload/complete",
        headers=intruder,
        json={"uploadId": created["uploadId"], "key": created["key"], "parts": [{"PartNumber": 1, "ETag": etag}]},
    )
    assert response.status_code == 403

    response = _relay(client, intruder, created, 1, b"abc")
    assert response.status_code == 403


def test_relay_refuses_urls_of_another_upload(client, make_user, headers_for):
    headers = headers_for(make_user())
    first = _create(client, headers, 3).json()
    second = _create(client, headers, 3).json()

    response = _relay(client, headers, first, 1, b"abc", part_url=second["partUrls"][0])
    assert response.status_code == 400

    response = _relay(client, headers, first, 1, b"abc", part_url="http://169.254.169.254/latest/meta-data")
    assert response.status_code == 400


def test_relay_refuses_foreign_host_or_bucket_even_with_matching_query(client, make_user, headers_for):
    headers = headers_for(make_user())
    created = _create(client, headers, 3).json()
    own = httpx.URL(created["partUrls"][0])

    foreign_host = str(own.copy_with(host="169.254.169.254"))
    response = _relay(client, headers, created, 1, b"abc", part_url=foreign_host)
    assert response.status_code == 400

    foreign_bucket = str(own.copy_with(path=f"/another-bucket/{created['key']}"))
    response = _relay(client, headers, created, 1, b"abc", part_url=foreign_bucket)
    assert response.status_code == 400

    response = _relay(client, headers, created, 1, b"abc")
    assert response.status_code == 200


def test_expired_part_url_surfaces_upstream_403_with_expired_kind(client, make_user, headers_for):
    headers = headers_for(make_user())
    created = _create(client, headers, 3).json()
    storage = client.app.state.storage
    storage.clock = lambda: time.time() + storage.part_url_expires + 60

    response = _relay(client, headers, created, 1, b"abc")
    assert response.status_code == 403
    assert response.json()["kind"] == "expired"
    assert response.json()["upstreamStatus"] == 403

    fresh = client.post(
        "/upload/part-url",
        headers=headers,
        json={"uploadId": created["uploadId"], "key": created["key"], "partNumber": 1},
    )
    assert fresh.status_code == 200
    response = _relay(client, headers, created, 1, b"abc", part_url=fresh.json()["partUrl"])
    assert response.status_code == 200


def test_storage_outage_during_relay_is_transient(client, make_user, headers_for):
    headers = headers_for(make_user())
    created = _create(client, headers, 3).json()
    client.app.state.storage.unavailable = True

    response = _relay(client, headers, created, 1, b"abc")
    assert response.status_code == 503
    assert response.json()["kind"] == "transient"


def test_abort_is_idempotent_and_blocks_completion(client, make_user, headers_for):
    headers = headers_for(make_user())
    created = _create(client, headers, 3).json()
    body = {"uploadId": created["uploadId"], "key": created["key"]}

    assert client.post("/upload/abort", headers=headers, json=body).json() == {"success": True}
    assert client.post("/upload/abort", headers=headers, json=body).json() == {"success": True}
    assert created["uploadId"] not in client.app.state.storage.pending_upload_ids()

    response = client.post("/upload/complete", headers=headers, json=dict(body, parts=[{"PartNumber": 1, "ETag": "x"}]))
    assert response.status_code == 400
