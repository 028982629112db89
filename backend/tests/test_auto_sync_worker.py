from datetime import datetime, timezone

import pytest

from stocksync.services.order_sync import SyncResult
from stocksync.workers import auto_sync_worker


class FakeOrchestrator:

    def __init__(self, results):
        self.results = results
        self.sessions = []
        self.options = []

    async def sync_all_accounts(self, db, **options):
        self.sessions.append(db)
        self.options.append(options)
        return self.results


class FakeSession:

    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_run_once_summarizes_and_closes_session(monkeypatch):
    session = FakeSession()
    monkeypatch.setattr(auto_sync_worker, "SessionLocal", lambda: session)
    orchestrator = FakeOrchestrator({
        "acc-1": SyncResult(success=True, imported=4, auto_processed=2),
        "acc-2": SyncResult(success=False, error="Token expired or revoked. Reconnect the account."),
    })

    summary = await auto_sync_worker.run_auto_sync_once(orchestrator, now=datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc))

    assert orchestrator.sessions == [session]
    assert orchestrator.options == [{"filters": {"dataInicial": "2024-03-04"}, "max_pages": 5}]
    assert session.closed is True
    assert summary["accounts"] == 2
    assert summary["failed"] == ["acc-2"]
    assert summary["imported"] == 4
    assert summary["auto_processed"] == 2
    assert summary["results"]["acc-2"]["error"] == "Token expired or revoked. Reconnect the account."


@pytest.mark.asyncio
async def test_session_is_closed_when_sync_crashes(monkeypatch):
    session = FakeSession()
    monkeypatch.setattr(auto_sync_worker, "SessionLocal", lambda: session)

    class Exploding:
        async def sync_all_accounts(self, db, **options):
            raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError):
        await auto_sync_worker.run_auto_sync_once(Exploding())
    assert session.closed is True
