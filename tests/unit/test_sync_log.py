"""
Unit tests for the sync run state machine
"""

import uuid

import pytest

from core.exceptions import SyncStateError
from ingestion.sync_log import SyncRunLog
from models.base import SyncStatus, SyncType


class TestSyncRunLog:

    @pytest.mark.asyncio
    async def test_start_creates_started_row(self, db_session):
        run_log = SyncRunLog(db_session)

        run = await run_log.start(SyncType.BULK, triggered_by="cli", config_snapshot={"max_pages": 3})

        assert run.status == SyncStatus.STARTED
        assert run.triggered_by == "cli"
        assert run.config_snapshot == {"max_pages": 3}
        assert run.completed_at is None
        assert run_log.run_id == run.run_id

    @pytest.mark.asyncio
    async def test_complete(self, db_session):
        run_log = SyncRunLog(db_session)
        await run_log.start(SyncType.COMPREHENSIVE)

        run = await run_log.complete(
            records_processed=10,
            records_created=7,
            records_updated=2,
            records_unchanged=1,
            metadata={"pages_fetched": 1},
        )

        assert run.status == SyncStatus.COMPLETED
        assert run.records_created == 7
        assert run.error_message is None
        assert run.completed_at is not None
        assert run.sync_duration_ms >= 0
        assert run.run_metadata == {"pages_fetched": 1}

    @pytest.mark.asyncio
    async def test_complete_with_record_failures(self, db_session):
        run_log = SyncRunLog(db_session)
        await run_log.start(SyncType.BULK)

        run = await run_log.complete(
            records_processed=5,
            records_created=3,
            records_failed=2,
            error_details=[{"phase": "normalization"}, {"phase": "reconciliation"}],
        )

        assert run.status == SyncStatus.COMPLETED_WITH_ERRORS
        assert run.error_message == "2 records failed"
        assert len(run.error_details) == 2

    @pytest.mark.asyncio
    async def test_fail(self, db_session):
        run_log = SyncRunLog(db_session)
        await run_log.start(SyncType.BULK)

        run = await run_log.fail("Authentication failed")

        assert run.status == SyncStatus.FAILED
        assert run.error_message == "Authentication failed"
        assert run_log.status == SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_exactly_one_terminal_transition(self, db_session):
        run_log = SyncRunLog(db_session)
        await run_log.start(SyncType.BULK)
        await run_log.complete()

        with pytest.raises(SyncStateError):
            await run_log.fail("late failure")
        with pytest.raises(SyncStateError):
            await run_log.complete()

        stored = await run_log.get(run_log.run_id)
        assert stored.status == SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_finish_before_start(self, db_session):
        with pytest.raises(SyncStateError):
            await SyncRunLog(db_session).complete()

    @pytest.mark.asyncio
    async def test_finish_after_rollback(self, db_session):
        run_log = SyncRunLog(db_session)
        await run_log.start(SyncType.BULK)
        await db_session.rollback()

        run = await run_log.fail("rolled back")

        assert run.status == SyncStatus.FAILED


class TestReadSurface:

    @pytest.mark.asyncio
    async def test_active_run(self, db_session):
        run_log = SyncRunLog(db_session)
        assert await run_log.active_run() is None

        await run_log.start(SyncType.BULK)
        active = await run_log.active_run()
        assert active.run_id == run_log.run_id

        await run_log.complete()
        assert await run_log.active_run() is None

    @pytest.mark.asyncio
    async def test_recent_and_filter(self, db_session):
        for sync_type in (SyncType.BULK, SyncType.ENRICHMENT, SyncType.BULK):
            run_log = SyncRunLog(db_session)
            await run_log.start(sync_type)
            await run_log.complete()

        reader = SyncRunLog(db_session)
        assert len(await reader.recent()) == 3
        assert len(await reader.recent(limit=2)) == 2
        bulk_runs = await reader.recent(sync_type=SyncType.BULK)
        assert {run.sync_type for run in bulk_runs} == {SyncType.BULK}
        assert len(bulk_runs) == 2

    @pytest.mark.asyncio
    async def test_get(self, db_session):
        run_log = SyncRunLog(db_session)
        await run_log.start(SyncType.BULK)

        assert (await run_log.get(str(run_log.run_id))).id == run_log.run_pk
        assert await run_log.get(uuid.uuid4()) is None
        assert await run_log.get("not-a-uuid") is None
