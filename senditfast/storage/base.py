"""Object storage capability shared by the real and the in-memory backend.

Everything above this package talks to :class:`StorageGateway` only; the
concrete implementation is chosen once at startup by
:func:`senditfast.storage.build_storage_gateway`.
"""

from __future__ import annotations

import asyncio
import re
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

import httpx

from senditfast.core.exceptions import IntegrityError

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
MAX_KEY_NAME_LENGTH = 128


@dataclass
class MultipartUploadInit:
    upload_id: str
    key: str
    part_urls: list[str]


@dataclass(frozen=True)
class CompletedPart:
    part_number: int
    etag: str


@dataclass
class DeleteReport:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def sanitize_file_name(file_name: str) -> str:
    # Folder uploads send "dir/sub/file.txt"; keep the path readable but flat.
    cleaned = _UNSAFE_KEY_CHARS.sub("_", file_name.strip()).strip("._")
    return (cleaned or "file")[-MAX_KEY_NAME_LENGTH:]


def build_object_key(file_name: str) -> str:
    return f"uploads/{int(time.time() * 1000)}-{uuid.uuid4()}-{sanitize_file_name(file_name)}"


def normalize_etag(etag: str) -> str:
    return etag.strip().strip('"')


def sorted_parts(parts: Iterable[CompletedPart], expected_count: Optional[int] = None) -> list[CompletedPart]:
    """Order parts by number and insist they form the run 1..N.

    Duplicate numbers, gaps and (when known) a count that differs from the
    planned one are rejected instead of letting storage stitch a short object.
    """
    ordered = sorted(parts, key=lambda p: p.part_number)
    if not ordered:
        raise IntegrityError("No parts supplied")
    numbers = [p.part_number for p in ordered]
    if len(set(numbers)) != len(numbers):
        raise IntegrityError("Duplicate part numbers supplied")
    if numbers != list(range(1, len(numbers) + 1)):
        raise IntegrityError(f"Part numbers must run 1..{len(numbers)} without gaps")
    if expected_count is not None and len(numbers) != expected_count:
        raise IntegrityError(f"Expected {expected_count} parts, received {len(numbers)}")
    return [CompletedPart(p.part_number, normalize_etag(p.etag)) for p in ordered]


class StorageGateway(ABC):
    bucket: str

    @abstractmethod
    async def init_multipart_upload(
        self, file_name: str, file_size: int, content_type: str, part_count: int
    ) -> MultipartUploadInit: ...

    @abstractmethod
    async def get_part_upload_url(self, key: str, upload_id: str, part_number: int) -> str: ...

    @abstractmethod
    async def complete_multipart_upload(self, key: str, upload_id: str, parts: list[CompletedPart]) -> None: ...

    @abstractmethod
    async def abort_multipart_upload(self, key: str, upload_id: str) -> None: ...

    @abstractmethod
    async def get_download_url(self, key: str, expires_in: int, filename: Optional[str] = None) -> str: ...

    @abstractmethod
    async def delete_file(self, key: str) -> None: ...

    @abstractmethod
    def owns_url(self, url: httpx.URL, key: str) -> bool:
        """True when ``url`` addresses ``key`` in this gateway's bucket on its own endpoint."""

    async def delete_files(self, keys: list[str]) -> DeleteReport:
        """Delete every key, never stopping at the first failure."""
        report = DeleteReport()
        if not keys:
            return report
        results = await asyncio.gather(*(self.delete_file(k) for k in keys), return_exceptions=True)
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                report.failed[key] = str(result) or result.__class__.__name__
            else:
                report.deleted.append(key)
        return report

    async def ensure_bucket(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    def http_transport(self) -> Optional[httpx.AsyncBaseTransport]:
        """Transport the part relay must use to reach presigned URLs (None: the network)."""
        return None
