from typing import Optional

from pydantic import BaseModel


class CleanupStats(BaseModel):
    expiredCount: int
    totalSizeBytes: int
    oldestExpired: Optional[str]
    pendingCleanupCount: int


class CleanupRunResult(BaseModel):
    processed: int
    deleted: int
    errors: list[str]
    retried: int
    orphansReaped: int = 0
