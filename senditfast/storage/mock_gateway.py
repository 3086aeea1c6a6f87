"""In-memory storage backend for tests and local development.

Behaves like a versioned S3 bucket: multipart uploads are tracked per
upload id, presigned URLs are HMAC-signed and expire, and the URLs are
served by an ``httpx.MockTransport`` so the part relay exercises the same
HTTP path it uses against real storage.
"""

import hashlib
import hmac
import itertools
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import quote, urlencode

import httpx

from senditfast.core.exceptions import IntegrityError, NotFoundError, StorageTransientError

from .base import CompletedPart, MultipartUploadInit, StorageGateway, build_object_key, sorted_parts

logger = logging.getLogger("senditfast")

MOCK_HOST = "mock-storage.local"


@dataclass
class _StoredPart:
    etag: str
    data: bytes


@dataclass
class _PendingUpload:
    key: str
    content_type: str
    part_count: int
    parts: dict[int, _StoredPart] = field(default_factory=dict)


def _s3_error(status_code: int, code: str, message: str) -> httpx.Response:
    body = f"<Error><Code>{code}</Code><Message>{message}</Message></Error>"
    return httpx.Response(status_code, text=body, headers={"Content-Type": "application/xml"})


class MockStorageGateway(StorageGateway):
    def __init__(
        self,
        bucket: str = "senditfast",
        part_url_expires: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.bucket = bucket
        self.part_url_expires = part_url_expires
        self.clock = clock
        self.unavailable = False
        self.failing_deletes: set[str] = set()
        self._secret = secrets.token_bytes(32)
        self._ids = itertools.count(1)
        self._uploads: dict[str, _PendingUpload] = {}
        self._objects: dict[str, list[bytes]] = {}

    # -- test helpers -------------------------------------------------------

    def put_object(self, key: str, data: bytes) -> None:
        self._objects.setdefault(key, []).append(data)

    def has_object(self, key: str) -> bool:
        return bool(self._objects.get(key))

    def version_count(self, key: str) -> int:
        return len(self._objects.get(key, []))

    def read_object(self, key: str) -> bytes:
        return self._objects[key][-1]

    def pending_upload_ids(self) -> list[str]:
        return list(self._uploads)

    # -- signing ------------------------------------------------------------

    def _sign(self, method: str, key: str, params: dict[str, str]) -> str:
        payload = "\n".join([method, key] + [f"{k}={params[k]}" for k in sorted(params)])
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def _url(self, method: str, key: str, params: dict[str, str], expires_in: int) -> str:
        params = dict(params, expires=str(int(self.clock()) + expires_in))
        params["signature"] = self._sign(method, key, params)
        return f"http://{MOCK_HOST}/{self.bucket}/{quote(key)}?{urlencode(params)}"

    def _check_available(self) -> None:
        if self.unavailable:
            raise StorageTransientError("Mock storage unavailable")

    # -- gateway ------------------------------------------------------------

    async def init_multipart_upload(
        self, file_name: str, file_size: int, content_type: str, part_count: int
    ) -> MultipartUploadInit:
        self._check_available()
        key = build_object_key(file_name)
        upload_id = f"mock-upload-{next(self._ids)}"
        self._uploads[upload_id] = _PendingUpload(key=key, content_type=content_type, part_count=part_count)
        part_urls = [self._part_url(key, upload_id, n) for n in range(1, part_count + 1)]
        logger.info("[mock storage] multipart_init key=%s parts=%s size=%s", key, part_count, file_size)
        return MultipartUploadInit(upload_id=upload_id, key=key, part_urls=part_urls)

    def _part_url(self, key: str, upload_id: str, part_number: int) -> str:
        return self._url("PUT", key, {"uploadId": upload_id, "partNumber": str(part_number)}, self.part_url_expires)

    async def get_part_upload_url(self, key: str, upload_id: str, part_number: int) -> str:
        self._check_available()
        upload = self._uploads.get(upload_id)
        if upload is None or upload.key != key:
            raise NotFoundError("Upload not found in storage")
        return self._part_url(key, upload_id, part_number)

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: list[CompletedPart]) -> None:
        self._check_available()
        upload = self._uploads.get(upload_id)
        if upload is None or upload.key != key:
            raise IntegrityError("Storage rejected the part list (NoSuchUpload)")
        ordered = sorted_parts(parts, expected_count=upload.part_count)
        for part in ordered:
            stored = upload.parts.get(part.part_number)
            if stored is None or stored.etag != part.etag:
                raise IntegrityError(f"Storage rejected the part list (InvalidPart {part.part_number})")
        self.put_object(key, b"".join(upload.parts[p.part_number].data for p in ordered))
        del self._uploads[upload_id]

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._check_available()
        upload = self._uploads.get(upload_id)
        if upload is not None and upload.key == key:
            del self._uploads[upload_id]

    async def get_download_url(self, key: str, expires_in: int, filename: Optional[str] = None) -> str:
        self._check_available()
        if not self.has_object(key):
            raise NotFoundError("File not found in storage")
        params = {"nonce": secrets.token_hex(8)}
        if filename:
            params["filename"] = filename
        return self._url("GET", key, params, expires_in)

    async def delete_file(self, key: str) -> None:
        self._check_available()
        if key in self.failing_deletes:
            raise StorageTransientError(f"Mock storage refused to delete {key}")
        self._objects.pop(key, None)

    async def ping(self) -> None:
        self._check_available()

    def owns_url(self, url: httpx.URL, key: str) -> bool:
        return (
            url.scheme == "http"
            and url.host == MOCK_HOST
            and url.port is None
            and url.path == f"/{self.bucket}/{key}"
        )

    # -- presigned URL server -----------------------------------------------

    def http_transport(self) -> httpx.AsyncBaseTransport:
        return httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        prefix = f"/{self.bucket}/"
        if request.url.host != MOCK_HOST or not request.url.path.startswith(prefix):
            return _s3_error(404, "NoSuchBucket", "The specified bucket does not exist")
        key = request.url.path[len(prefix):]
        params = dict(request.url.params)
        signature = params.pop("signature", "")
        if not hmac.compare_digest(signature, self._sign(request.method, key, params)):
            return _s3_error(403, "SignatureDoesNotMatch", "The request signature we calculated does not match")
        if self.clock() > int(params.get("expires", "0")):
            return _s3_error(403, "AccessDenied", "Request has expired")
        if self.unavailable:
            return _s3_error(503, "SlowDown", "Please reduce your request rate")

        if request.method == "PUT":
            upload = self._uploads.get(params.get("uploadId", ""))
            if upload is None or upload.key != key:
                return _s3_error(404, "NoSuchUpload", "The specified upload does not exist")
            data = await request.aread()
            etag = hashlib.md5(data).hexdigest()
            upload.parts[int(params["partNumber"])] = _StoredPart(etag=etag, data=data)
            return httpx.Response(200, headers={"ETag": f'"{etag}"'})

        if request.method == "GET":
            if not self.has_object(key):
                return _s3_error(404, "NoSuchKey", "The specified key does not exist")
            headers = {}
            if params.get("filename"):
                headers["Content-Disposition"] = f'attachment; filename="{params["filename"]}"'
            return httpx.Response(200, content=self.read_object(key), headers=headers)

        return _s3_error(405, "MethodNotAllowed", "The specified method is not allowed")
