"""arq job definitions and worker lifecycle hooks."""

import uuid
from typing import Any, Awaitable
from urllib.parse import urlparse

from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import configure_logging, get_logger

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, ctx: dict[str, Any], coro: Awaitable[Any]) -> Any:
    """Await the job; on exception store a FailedJob and re-raise so arq records the failure too."""
    try:
        return await coro
    except Exception as e:
        from app.db.init import init_db
        from app.models.failed_job import FailedJob
        await init_db()
        job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
        attempt = ctx.get("job_try") or 1
        await FailedJob(
            job_name=job_name,
            job_id=job_id,
            attempt=attempt,
            error_type=type(e).__name__,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=job_id, attempt=attempt)
        raise


async def startup(ctx: dict) -> None:
    from app.db.init import init_db
    configure_logging(debug=get_settings().debug, service="captcha-rewards-worker")
    await init_db()
    log.info("worker_started")


async def shutdown(ctx: dict) -> None:
    log.info("worker_stopped")


def get_redis_settings() -> RedisSettings:
    u = urlparse(get_settings().redis_url)
    db = u.path.lstrip("/")
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(db) if db else 0,
    )


async def reconcile_wallets(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron job: reconcile wallet ledgers."""
    from app.worker.cron import run_reconcile_wallets
    return await _run_with_dlq("reconcile_wallets", ctx, run_reconcile_wallets())
