import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import quote

import httpx
import urllib3
from minio import Minio
from minio.datatypes import Part
from minio.error import MinioException, S3Error
from starlette.concurrency import run_in_threadpool

from senditfast.core.config import Settings
from senditfast.core.exceptions import IntegrityError, NotFoundError, StorageTransientError

from .base import CompletedPart, MultipartUploadInit, StorageGateway, build_object_key, sorted_parts

logger = logging.getLogger("senditfast")

# Provider codes that mean the parts handed to CompleteMultipartUpload do not
# match what was uploaded.
_INTEGRITY_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"}
_MISSING_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchVersion"}


def _storage_error(action: str, exc: Exception) -> StorageTransientError:
    code = getattr(exc, "code", None) or exc.__class__.__name__
    logger.error("MinIO %s failed: code=%s err=%s", action, code, exc)
    return StorageTransientError(f"Storage {action} failed ({code})")


class MinioStorageGateway(StorageGateway):
    def __init__(self, settings: Settings, client: Optional[Minio] = None):
        self.bucket = settings.MINIO_BUCKET
        self.part_url_expires = timedelta(seconds=settings.PART_URL_EXPIRES)
        self.endpoint = httpx.URL(f"{'https' if settings.MINIO_SECURE else 'http'}://{settings.MINIO_ENDPOINT}")
        self.client = client or Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
            region=settings.MINIO_REGION,
        )

    async def ensure_bucket(self) -> None:
        try:
            if not await run_in_threadpool(self.client.bucket_exists, self.bucket):
                await run_in_threadpool(self.client.make_bucket, self.bucket)
                logger.info(f"Bucket '{self.bucket}' created successfully")
            else:
                logger.info(f"Bucket '{self.bucket}' already exists")
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            logger.error(f"MinIO error: {e}")
            raise RuntimeError(f"Failed to initialize MinIO bucket: {e}")

    async def ping(self) -> None:
        try:
            await run_in_threadpool(self.client.bucket_exists, self.bucket)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("ping", e)

    def owns_url(self, url: httpx.URL, key: str) -> bool:
        if url.scheme != self.endpoint.scheme or url.port != self.endpoint.port:
            return False
        # The SDK signs path-style URLs, or virtual-host style on AWS hosts.
        if url.host == self.endpoint.host:
            return url.path == f"/{self.bucket}/{key}"
        return url.host == f"{self.bucket}.{self.endpoint.host}" and url.path == f"/{key}"

    def _presign_part(self, key: str, upload_id: str, part_number: int) -> str:
        return self.client.get_presigned_url(
            "PUT",
            self.bucket,
            key,
            expires=self.part_url_expires,
            extra_query_params={"uploadId": upload_id, "partNumber": str(part_number)},
        )

    async def init_multipart_upload(
        self, file_name: str, file_size: int, content_type: str, part_count: int
    ) -> MultipartUploadInit:
        key = build_object_key(file_name)
        try:
            # minio-py only exposes the multipart primitives as private helpers.
            upload_id = await run_in_threadpool(
                self.client._create_multipart_upload, self.bucket, key, {"Content-Type": content_type}
            )
            part_urls = [
                await run_in_threadpool(self._presign_part, key, upload_id, n)
                for n in range(1, part_count + 1)
            ]
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("multipart init", e)
        logger.info("multipart_init key=%s parts=%s size=%s", key, part_count, file_size)
        return MultipartUploadInit(upload_id=upload_id, key=key, part_urls=part_urls)

    async def get_part_upload_url(self, key: str, upload_id: str, part_number: int) -> str:
        try:
            return await run_in_threadpool(self._presign_part, key, upload_id, part_number)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("presign part", e)

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: list[CompletedPart]) -> None:
        ordered = sorted_parts(parts)
        try:
            await run_in_threadpool(
                self.client._complete_multipart_upload,
                self.bucket,
                key,
                upload_id,
                [Part(p.part_number, p.etag) for p in ordered],
            )
        except S3Error as e:
            if e.code in _INTEGRITY_CODES:
                logger.warning("multipart_complete rejected key=%s code=%s", key, e.code)
                raise IntegrityError(f"Storage rejected the part list ({e.code})")
            raise _storage_error("multipart complete", e)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("multipart complete", e)

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        try:
            await run_in_threadpool(self.client._abort_multipart_upload, self.bucket, key, upload_id)
        except S3Error as e:
            if e.code == "NoSuchUpload":
                return
            raise _storage_error("multipart abort", e)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("multipart abort", e)

    async def get_download_url(self, key: str, expires_in: int, filename: Optional[str] = None) -> str:
        response_headers = None
        if filename:
            response_headers = {
                "response-content-disposition": f"attachment; filename*=UTF-8''{quote(filename, safe='')}"
            }
        try:
            await run_in_threadpool(self.client.stat_object, self.bucket, key)
            return await run_in_threadpool(
                self.client.presigned_get_object,
                self.bucket,
                key,
                expires=timedelta(seconds=expires_in),
                response_headers=response_headers,
            )
        except S3Error as e:
            if e.code in _MISSING_CODES:
                raise NotFoundError("File not found in storage")
            raise _storage_error("presign download", e)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("presign download", e)

    def _remove_all_versions(self, key: str) -> int:
        removed = 0
        # Prefix listing also matches longer keys; only the exact key is ours.
        for obj in self.client.list_objects(self.bucket, prefix=key, include_version=True):
            if obj.object_name != key:
                continue
            self.client.remove_object(self.bucket, key, version_id=obj.version_id)
            removed += 1
        return removed

    async def delete_file(self, key: str) -> None:
        try:
            removed = await run_in_threadpool(self._remove_all_versions, key)
        except S3Error as e:
            if e.code in _MISSING_CODES:
                return
            raise _storage_error("delete", e)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise _storage_error("delete", e)
        logger.info("storage_delete key=%s versions=%s", key, removed)
