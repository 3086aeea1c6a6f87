import os
from dataclasses import dataclass

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


def _as_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class PlanLimits:
    max_size_bytes: int
    expiry_days: int
    monthly_transfers: int  # -1 means unlimited
    password_protection: bool


PLAN_LIMITS: dict[str, PlanLimits] = {
    "FREE": PlanLimits(max_size_bytes=5 * GIB, expiry_days=7, monthly_transfers=10, password_protection=False),
    "PRO": PlanLimits(max_size_bytes=100 * GIB, expiry_days=30, monthly_transfers=-1, password_protection=True),
    "BUSINESS": PlanLimits(max_size_bytes=250 * GIB, expiry_days=90, monthly_transfers=-1, password_protection=True),
}


class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-secret-key")
    ALGORITHM: str = "HS256"

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./senditfast.db")
    DB_ECHO: bool = _as_bool(os.getenv("DB_ECHO"))

    STORAGE_BACKEND: str = "mock" if _as_bool(os.getenv("MOCK_STORAGE")) else os.getenv("STORAGE_BACKEND", "minio")
    MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "minio:9000")
    MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
    MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
    MINIO_BUCKET: str = os.getenv("MINIO_BUCKET", "senditfast")
    MINIO_SECURE: bool = _as_bool(os.getenv("MINIO_SECURE"))
    MINIO_REGION: str | None = os.getenv("MINIO_REGION") or None

    PART_SIZE: int = int(os.getenv("PART_SIZE", str(10 * MIB)))
    MAX_PART_COUNT: int = int(os.getenv("MAX_PART_COUNT", "10000"))
    PART_URL_EXPIRES: int = int(os.getenv("PART_URL_EXPIRES", "3600"))
    DOWNLOAD_URL_EXPIRES: int = int(os.getenv("DOWNLOAD_URL_EXPIRES", "900"))

    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "")

    EMAIL_BACKEND: str = os.getenv("EMAIL_BACKEND", "sendgrid" if os.getenv("SENDGRID_API_KEY") else "console")
    SENDGRID_API_KEY: str = os.getenv("SENDGRID_API_KEY", "")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "noreply@senditfast.com")
    EMAIL_FROM_NAME: str = os.getenv("EMAIL_FROM_NAME", "SendItFast")
    EMAIL_RETRY_ATTEMPTS: int = int(os.getenv("EMAIL_RETRY_ATTEMPTS", "3"))
    EMAIL_RETRY_BACKOFF_SECS: float = float(os.getenv("EMAIL_RETRY_BACKOFF_SECS", "0.5"))
    MAX_RECIPIENTS: int = int(os.getenv("MAX_RECIPIENTS", "50"))
    NOTIFICATION_STALE_SECONDS: int = int(os.getenv("NOTIFICATION_STALE_SECONDS", "300"))

    SWEEP_BATCH_SIZE: int = int(os.getenv("SWEEP_BATCH_SIZE", "100"))
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))
    ORPHAN_GRACE_HOURS: int = int(os.getenv("ORPHAN_GRACE_HOURS", "24"))
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")

    SLUG_BYTES: int = 16
    SLUG_MAX_ATTEMPTS: int = int(os.getenv("SLUG_MAX_ATTEMPTS", "5"))
    MIN_PASSWORD_LENGTH: int = 4

    PLAN_LIMITS: dict[str, PlanLimits] = PLAN_LIMITS

settings = Settings()
