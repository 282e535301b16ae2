"""Run ARQ worker. Usage: python -m app.worker.run_worker (or: arq app.worker.run_worker.WorkerSettings)"""

from arq import run_worker
from arq.cron import cron
from app.worker.tasks import get_redis_settings, reconcile_wallets, startup, shutdown


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [reconcile_wallets]
    cron_jobs = [
        cron(reconcile_wallets, minute=set(range(0, 60, 5)), second=0, unique=True),  # every 5 minutes
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
