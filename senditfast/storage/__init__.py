from senditfast.core.config import Settings

from .base import CompletedPart, DeleteReport, MultipartUploadInit, StorageGateway
from .minio_gateway import MinioStorageGateway
from .mock_gateway import MockStorageGateway


def build_storage_gateway(settings: Settings) -> StorageGateway:
    """Pick the storage implementation once, at process start."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "mock":
        return MockStorageGateway(bucket=settings.MINIO_BUCKET, part_url_expires=settings.PART_URL_EXPIRES)
    if backend == "minio":
        return MinioStorageGateway(settings)
    raise RuntimeError(f"Unknown STORAGE_BACKEND '{settings.STORAGE_BACKEND}'")


__all__ = [
    "CompletedPart",
    "DeleteReport",
    "MinioStorageGateway",
    "MockStorageGateway",
    "MultipartUploadInit",
    "StorageGateway",
    "build_storage_gateway",
]
