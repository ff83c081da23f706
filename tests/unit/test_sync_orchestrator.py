"""Unit tests for the sync orchestrator."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from pm_indexer.config import settings
from pm_indexer.ingestion.errors import SourceFetchError
from pm_indexer.models import Job, Market, PriceSnapshot, SyncRun
from pm_indexer.sync.orchestrator import (
    SyncInProgressError,
    SyncOrchestrator,
    SyncRunError,
    get_sync_status,
)
from tests.conftest import FakeEmbedder, FakeSource, FakeVectorIndex, kalshi_raw, seed_market


def build_orchestrator(session_factory, kalshi_pages=None, polymarket_pages=None, **kwargs):
    sources = [
        kwargs.pop("polymarket", None) or FakeSource("polymarket", polymarket_pages or []),
        kwargs.pop("kalshi", None) or FakeSource("kalshi", kalshi_pages or []),
    ]
    return SyncOrchestrator(
        sources=sources,
        embedder=kwargs.pop("embedder", None) or FakeEmbedder(),
        index=kwargs.pop("index", None) or FakeVectorIndex(),
        session_factory=session_factory,
        job_worker_enabled=kwargs.pop("job_worker_enabled", False),
    )


@pytest.fixture
def seeded(file_session_factory):
    """Two stored Kalshi markets, A and B."""
    with file_session_factory() as db:
        a = seed_market(db, kalshi_raw("A"))
        b = seed_market(db, kalshi_raw("B"))
        return {"A": a.id, "B": b.id}


def changed_batch():
    """A unchanged with a new price, B with new text, C never seen."""
    return [[
        kalshi_raw("A", yes_bid=60, yes_ask=64),
        kalshi_raw("B", subtitle="Rules were clarified"),
        kalshi_raw("C"),
    ]]


@pytest.mark.unit
class TestIncrementalSync:
    """Test a successful incremental pass."""

    def test_result_counts(self, file_session_factory, seeded):
        """Test new, price-updated and content-changed counts."""
        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=changed_batch())

        result = orchestrator.incremental_sync()

        assert result.status == "success"
        assert result.kalshi.fetched == 3
        assert result.kalshi.new_markets == 1
        assert result.kalshi.updated_prices == 2
        assert result.kalshi.content_changed == 1
        assert result.kalshi.embeddings_generated == 2
        assert result.polymarket.fetched == 0
        assert result.polymarket.status == "success"

    def test_sources_asked_for_open_markets(self, file_session_factory, seeded):
        """Test incremental syncs request open markets only."""
        kalshi = FakeSource("kalshi", changed_batch())
        orchestrator = build_orchestrator(file_session_factory, kalshi=kalshi)

        orchestrator.incremental_sync()

        assert kalshi.calls == ["open"]

    def test_full_sync_requests_everything(self, file_session_factory):
        """Test full syncs request every status."""
        kalshi = FakeSource("kalshi", [])
        orchestrator = build_orchestrator(file_session_factory, kalshi=kalshi)

        orchestrator.full_sync()

        assert kalshi.calls == ["all"]

    def test_rows_written(self, file_session_factory, seeded):
        """Test inserts, price updates, content updates and history."""
        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=changed_batch())

        orchestrator.incremental_sync()

        with file_session_factory() as db:
            markets = {m.source_id: m for m in db.execute(select(Market)).scalars()}
            assert set(markets) == {"A", "B", "C"}
            assert markets["A"].id == seeded["A"]
            assert markets["A"].yes_price == pytest.approx(0.62)
            assert markets["B"].id == seeded["B"]
            assert markets["B"].description == "Rules were clarified"
            assert markets["C"].embedding_model == "fake-model"

            snapshots = db.execute(select(func.count(PriceSnapshot.id))).scalar()
            assert snapshots == 3

    def test_vectors_written_for_embedded_markets_only(self, file_session_factory, seeded):
        """Test unchanged markets get a payload refresh, not a new vector."""
        index = FakeVectorIndex()
        embedder = FakeEmbedder()
        orchestrator = build_orchestrator(
            file_session_factory, kalshi_pages=changed_batch(), index=index, embedder=embedder,
        )

        orchestrator.incremental_sync()

        with file_session_factory() as db:
            c_id = db.execute(select(Market.id).where(Market.source_id == "C")).scalar()
        assert set(index.points) == {seeded["B"], c_id}
        assert set(embedder.embedded_ids) == {seeded["B"], c_id}
        assert index.payload_updates == [seeded["A"]]

    def test_duplicate_source_ids_dropped(self, file_session_factory):
        """Test a record repeated across pages is processed once."""
        pages = [[kalshi_raw("X")], [kalshi_raw("X", yes_bid=10, yes_ask=12), kalshi_raw("Y")]]
        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=pages)

        result = orchestrator.incremental_sync()

        assert result.kalshi.fetched == 2
        assert result.kalshi.new_markets == 2

    def test_second_identical_sync_embeds_nothing(self, file_session_factory):
        """Test unchanged content is never re-embedded."""
        pages = [[kalshi_raw("X"), kalshi_raw("Y")]]
        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=pages)

        orchestrator.incremental_sync()
        second = orchestrator.incremental_sync()

        assert second.kalshi.new_markets == 0
        assert second.kalshi.updated_prices == 2
        assert second.kalshi.embeddings_generated == 0

    def test_run_recorded(self, file_session_factory):
        """Test the run row is closed with its result."""
        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=[[kalshi_raw("X")]])

        orchestrator.incremental_sync()

        with file_session_factory() as db:
            run = db.execute(select(SyncRun)).scalars().one()
            assert run.type == "incremental"
            assert run.status == "success"
            assert run.ended_at is not None
            assert run.result["kalshi"]["new_markets"] == 1
            assert get_sync_status(db)["is_syncing"] is False


@pytest.mark.unit
class TestDegradedSync:
    """Test partial and failed syncs."""

    def test_one_source_failing_is_partial(self, file_session_factory):
        """Test the healthy source still commits."""
        polymarket = FakeSource("polymarket", error=SourceFetchError("polymarket", "http_5xx", "502", 502))
        orchestrator = build_orchestrator(
            file_session_factory, kalshi_pages=[[kalshi_raw("X")]], polymarket=polymarket,
        )

        with pytest.raises(SyncRunError) as exc_info:
            orchestrator.incremental_sync()

        error = exc_info.value
        assert error.status == "partial"
        assert error.result.polymarket.status == "failed"
        assert error.result.kalshi.status == "success"
        assert any("polymarket" in e for e in error.errors)

        with file_session_factory() as db:
            assert db.execute(select(func.count(Market.id))).scalar() == 1
            assert db.execute(select(SyncRun.status)).scalar() == "partial"

    def test_vector_store_down_fails_both(self, file_session_factory):
        """Test an unavailable index fails the run before touching rows."""
        orchestrator = build_orchestrator(
            file_session_factory,
            kalshi_pages=[[kalshi_raw("X")]],
            index=FakeVectorIndex(fail_ensure=True),
        )

        with pytest.raises(SyncRunError) as exc_info:
            orchestrator.incremental_sync()

        assert exc_info.value.status == "failed"
        with file_session_factory() as db:
            assert db.execute(select(func.count(Market.id))).scalar() == 0
            assert db.execute(select(SyncRun.status)).scalar() == "failed"

    def test_embedding_failure_commits_nothing(self, file_session_factory):
        """Test inline embedding failures abort the source pass."""
        orchestrator = build_orchestrator(
            file_session_factory,
            kalshi_pages=[[kalshi_raw("X")]],
            embedder=FakeEmbedder(fail=True),
        )

        with pytest.raises(SyncRunError) as exc_info:
            orchestrator.incremental_sync()

        assert exc_info.value.result.kalshi.status == "failed"
        with file_session_factory() as db:
            assert db.execute(select(func.count(Market.id))).scalar() == 0

    def test_vector_write_failure_queues_recovery(self, file_session_factory):
        """Test committed rows without vectors get embedding jobs."""
        orchestrator = build_orchestrator(
            file_session_factory,
            kalshi_pages=[[kalshi_raw("X")]],
            index=FakeVectorIndex(fail_upsert=True),
        )

        with pytest.raises(SyncRunError):
            orchestrator.incremental_sync()

        with file_session_factory() as db:
            market = db.execute(select(Market)).scalars().one()
            assert market.embedding_model is None
            job = db.execute(select(Job)).scalars().one()
            assert job.payload["market_ids"] == [market.id]
            assert job.status == "queued"


@pytest.mark.unit
class TestDeferredEmbedding:
    """Test job worker mode."""

    def test_jobs_enqueued_instead_of_embedding(self, file_session_factory, seeded):
        """Test embedding work is queued with the rows."""
        embedder = FakeEmbedder()
        index = FakeVectorIndex()
        orchestrator = build_orchestrator(
            file_session_factory,
            kalshi_pages=changed_batch(),
            embedder=embedder,
            index=index,
            job_worker_enabled=True,
        )

        result = orchestrator.incremental_sync()

        assert result.kalshi.embeddings_generated == 0
        assert embedder.embedded_ids == []
        assert index.points == {}

        with file_session_factory() as db:
            jobs = db.execute(select(Job)).scalars().all()
            queued_ids = {mid for job in jobs for mid in job.payload["market_ids"]}
            c = db.execute(select(Market).where(Market.source_id == "C")).scalars().one()
            assert queued_ids == {seeded["B"], c.id}
            assert c.embedding_model is None


@pytest.mark.unit
class TestSingleFlight:
    """Test that only one sync runs at a time."""

    def test_running_row_rejects_new_sync(self, file_session_factory):
        """Test a run in flight elsewhere blocks this process."""
        with file_session_factory() as db:
            db.add(SyncRun(id="other-run", type="full", status="running", started_at=datetime.utcnow()))
            db.commit()

        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=[[kalshi_raw("X")]])

        with pytest.raises(SyncInProgressError):
            orchestrator.incremental_sync()

        with file_session_factory() as db:
            runs = db.execute(select(SyncRun)).scalars().all()
            assert [(r.id, r.status) for r in runs] == [("other-run", "running")]
            assert db.execute(select(func.count(Market.id))).scalar() == 0

    def test_in_process_overlap_rejected(self, file_session_factory):
        """Test a second call while one holds the lock."""
        orchestrator = build_orchestrator(file_session_factory)

        orchestrator._lock.acquire()
        try:
            assert orchestrator.is_syncing
            with pytest.raises(SyncInProgressError):
                orchestrator.full_sync()
        finally:
            orchestrator._lock.release()

        assert not orchestrator.is_syncing

    def test_stale_run_recovered(self, file_session_factory):
        """Test abandoned running rows are failed so syncs can resume."""
        now = datetime(2026, 6, 1, 12, 0)
        with file_session_factory() as db:
            db.add(SyncRun(id="stale", type="incremental", status="running", started_at=now - timedelta(hours=5)))
            db.commit()

        orchestrator = build_orchestrator(file_session_factory)

        assert orchestrator.recover_stale_runs(now) == 1
        with file_session_factory() as db:
            run = db.get(SyncRun, "stale")
            assert run.status == "failed"
            assert run.ended_at == now

    def test_orphan_going_stale_after_startup_unblocks_sync(self, file_session_factory):
        """Test a crashed run that was still fresh at startup stops blocking once stale."""
        with file_session_factory() as db:
            db.add(SyncRun(
                id="orphan", type="incremental", status="running",
                started_at=datetime.utcnow() - timedelta(minutes=10),
            ))
            db.commit()

        orchestrator = build_orchestrator(file_session_factory, kalshi_pages=[[kalshi_raw("X")]])
        assert orchestrator.recover_stale_runs() == 0
        with pytest.raises(SyncInProgressError):
            orchestrator.incremental_sync()

        # The stale window elapses while the process keeps running
        with file_session_factory() as db:
            db.get(SyncRun, "orphan").started_at = (
                datetime.utcnow() - timedelta(minutes=settings.sync_stale_after_minutes + 1)
            )
            db.commit()

        result = orchestrator.incremental_sync()

        assert result.status == "success"
        with file_session_factory() as db:
            assert db.get(SyncRun, "orphan").status == "failed"
            assert db.execute(select(func.count(Market.id))).scalar() == 1

    def test_recent_run_left_alone(self, file_session_factory):
        """Test a run inside the stale window is not touched."""
        now = datetime(2026, 6, 1, 12, 0)
        with file_session_factory() as db:
            db.add(SyncRun(id="live", type="incremental", status="running", started_at=now - timedelta(minutes=5)))
            db.commit()

        orchestrator = build_orchestrator(file_session_factory)

        assert orchestrator.recover_stale_runs(now) == 0
        with file_session_factory() as db:
            assert db.get(SyncRun, "live").status == "running"


@pytest.mark.unit
class TestSyncStatus:
    """Test the status summary."""

    def test_empty(self, db_session):
        """Test no runs yet."""
        status = get_sync_status(db_session)

        assert status == {
            "is_syncing": False,
            "last_sync_time": None,
            "last_full_sync_time": None,
            "last_sync_result": None,
        }

    def test_last_full_sync(self, db_session):
        """Test failed full syncs do not count as the last full sync."""
        ended = datetime(2026, 6, 1, 3, 10)
        db_session.add_all([
            SyncRun(id="1", type="full", status="success", started_at=ended, ended_at=ended, result={"ok": 1}),
            SyncRun(id="2", type="full", status="failed", started_at=ended, ended_at=ended + timedelta(hours=1)),
        ])
        db_session.commit()

        status = get_sync_status(db_session)

        assert status["last_full_sync_time"] == ended.isoformat()
        assert status["last_sync_time"] == (ended + timedelta(hours=1)).isoformat()
