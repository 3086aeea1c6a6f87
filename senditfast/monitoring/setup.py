import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

sweep_runs = Counter("senditfast_sweep_runs_total", "Expiration sweep runs")
sweep_transfers_expired = Counter("senditfast_sweep_transfers_expired_total", "Transfers claimed and expired by the sweep")
sweep_objects_deleted = Counter("senditfast_sweep_objects_deleted_total", "Storage objects deleted by the sweep")
sweep_failed_deletes = Counter("senditfast_sweep_failed_deletes_total", "Storage deletes that failed during a sweep")
sweep_duration = Histogram("senditfast_sweep_duration_seconds", "Duration of an expiration sweep in seconds")
orphans_reaped = Counter("senditfast_orphan_uploads_reaped_total", "Abandoned upload sessions reaped")
notifications_sent = Counter("senditfast_notifications_total", "Notification emails by outcome", ["outcome"])


def report_sweep(processed: int, deleted: int, failed: int, duration: float) -> None:
    """Record sweep metrics to Prometheus."""
    sweep_runs.inc()
    if processed:
        sweep_transfers_expired.inc(processed)
    if deleted:
        sweep_objects_deleted.inc(deleted)
    if failed:
        sweep_failed_deletes.inc(failed)
    sweep_duration.observe(duration)


def report_orphans(reaped: int) -> None:
    if reaped:
        orphans_reaped.inc(reaped)


def report_notification(outcome: str) -> None:
    notifications_sent.labels(outcome=outcome.lower()).inc()


def setup_monitoring(app: ASGIApp):
    Instrumentator(excluded_handlers=["/metrics", "/health"]).instrument(app).expose(
        app, endpoint="/metrics", include_in_schema=False
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            # Service errors are mapped by the exception handlers; anything
            # reaching this point is a bug.
            logger.exception("Unhandled error: %s %s -> %s", request.method, request.url.path, e)
            return JSONResponse(status_code=500, content={"error": "Internal error", "detail": "Internal Server Error"})
        finally:
            route = request.scope.get("route")
            level = logging.WARNING if status_code >= 500 else logging.INFO
            logger.log(level, "method=%s route=%s status=%s duration_ms=%.1f",
                       request.method, getattr(route, "path", request.url.path), status_code,
                       (time.perf_counter() - started) * 1000)
