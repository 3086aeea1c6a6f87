"""Pass-through proxy for a single multipart part.

Browsers that cannot PUT to the storage host directly post the part here;
the bytes are streamed on to the presigned URL without buffering the whole
part, and storage's answer comes back unchanged.
"""

import logging
from typing import AsyncIterator

import httpx
from fastapi import UploadFile

from senditfast.core.exceptions import PartRelayError
from senditfast.storage.base import normalize_etag

logger = logging.getLogger("senditfast")

CHUNK_SIZE = 1024 * 1024
_TRANSIENT_STATUSES = {408, 429}


class RelayFailureKind:
    EXPIRED = "expired"
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify_failure(status_code: int, body: str) -> str:
    if status_code == 403 and "expired" in body.lower():
        return RelayFailureKind.EXPIRED
    if status_code in _TRANSIENT_STATUSES or status_code >= 500:
        return RelayFailureKind.TRANSIENT
    return RelayFailureKind.FATAL


async def iter_upload_file(file: UploadFile, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def relay_part(
    client: httpx.AsyncClient,
    part_url: str,
    part_number: int,
    chunks: AsyncIterator[bytes],
    size: int,
) -> str:
    """PUT one part to its presigned URL and return the unquoted ETag."""
    try:
        response = await client.put(
            part_url,
            content=chunks,
            headers={"Content-Length": str(size)},
        )
    except httpx.TransportError as e:
        logger.warning("part_relay transport error part=%s err=%s", part_number, e)
        raise PartRelayError(f"Could not reach storage: {e.__class__.__name__}", 502, RelayFailureKind.TRANSIENT)

    if response.status_code >= 300:
        body = response.text
        kind = classify_failure(response.status_code, body)
        logger.warning("part_relay rejected part=%s status=%s kind=%s", part_number, response.status_code, kind)
        raise PartRelayError(
            f"Storage answered {response.status_code} for part {part_number}",
            response.status_code,
            kind,
        )

    etag = response.headers.get("ETag")
    if not etag:
        raise PartRelayError("Storage did not return an ETag", 502, RelayFailureKind.TRANSIENT)
    return normalize_etag(etag)
