import pytest

from app.models.failed_job import FailedJob
from app.worker import cron, tasks

pytestmark = pytest.mark.asyncio


@pytest.fixture
def bound_db(db, monkeypatch):
    """Keep jobs on the in-memory database instead of connecting to MONGODB_URI."""
    async def _noop(database=None):
        return None

    monkeypatch.setattr(cron, "init_db", _noop)
    monkeypatch.setattr("app.db.init.init_db", _noop)
    return db


async def test_reconcile_job_returns_counts(bound_db):
    result = await tasks.reconcile_wallets({"job_id": "job-1"})
    assert result["anomalies"] == 0
    assert await FailedJob.find_all().count() == 0


async def test_failed_job_goes_to_dead_letter(bound_db, monkeypatch):
    async def _boom(now=None):
        raise RuntimeError("mongo went away")

    monkeypatch.setattr(cron, "reconcile", _boom)
    with pytest.raises(RuntimeError):
        await tasks.reconcile_wallets({"job_id": "job-2", "job_try": 3})
    failed = await FailedJob.find_one(FailedJob.job_id == "job-2")
    assert failed.job_name == "reconcile_wallets"
    assert "mongo went away" in failed.reason
    assert failed.error_type == "RuntimeError"
    assert failed.attempt == 3


async def test_redis_settings_from_url(monkeypatch):
    from app.core.config import get_settings
    monkeypatch.setattr(get_settings(), "redis_url", "redis://:pw@cache:6380/2")
    s = tasks.get_redis_settings()
    assert (s.host, s.port, s.password, s.database) == ("cache", 6380, "pw", 2)
