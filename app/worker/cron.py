"""Cron: ledger reconciliation sweep."""

from typing import Any

from app.core.logging import get_logger
from app.db.init import init_db
from app.services.reconciliation import reconcile

log = get_logger(__name__)


async def run_reconcile_wallets() -> dict[str, Any]:
    """Finish interrupted wallet mutations and withdrawal approvals, then audit every wallet."""
    await init_db()
    result = await reconcile()
    if result["anomalies"]:
        log.warning("reconcile_anomalies", count=result["anomalies"])
    return result
