"""Tests for the execution lifecycle and the stale-execution reaper."""

import uuid
from datetime import timedelta

import pytest_asyncio

from achadinhos.core.time_utils import utcnow
from achadinhos.models import Execution, ExecutionStatus
from achadinhos.services.execution_service import timeout_message


async def add_execution(session_factory, scraper_id, status, age: timedelta = timedelta(0)) -> Execution:
    execution = Execution(
        id=uuid.uuid4(),
        scraper_id=scraper_id,
        status=status,
        started_at=utcnow() - age,
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(execution)
    return execution


@pytest_asyncio.fixture
async def pending(state_machine, scraper_config) -> Execution:
    return await state_machine.enqueue(scraper_config.id)


class TestCreate:
    async def test_enqueue_creates_pending(self, state_machine, scraper_config):
        execution = await state_machine.enqueue(scraper_config.id)
        stored = await state_machine.get(execution.id)
        assert stored.status == ExecutionStatus.PENDING
        assert stored.products_found == 0
        assert stored.finished_at is None

    async def test_create_running(self, state_machine, scraper_config):
        execution = await state_machine.create_running(scraper_config.id)
        assert (await state_machine.get(execution.id)).status == ExecutionStatus.RUNNING


class TestTransitions:
    async def test_full_lifecycle(self, state_machine, pending):
        assert await state_machine.start(pending.id)
        assert await state_machine.succeed(pending.id, found=10, added=4)

        stored = await state_machine.get(pending.id)
        assert stored.status == ExecutionStatus.SUCCESS
        assert stored.products_found == 10
        assert stored.products_added == 4
        assert stored.finished_at is not None

    async def test_added_clamped_to_found(self, state_machine, pending):
        await state_machine.start(pending.id)
        await state_machine.succeed(pending.id, found=3, added=5)
        assert (await state_machine.get(pending.id)).products_added == 3

    async def test_start_only_from_pending(self, state_machine, pending):
        assert await state_machine.start(pending.id)
        assert not await state_machine.start(pending.id)

    async def test_succeed_requires_running(self, state_machine, pending):
        assert not await state_machine.succeed(pending.id, found=1, added=1)
        assert (await state_machine.get(pending.id)).status == ExecutionStatus.PENDING

    async def test_fail_from_pending_and_running(self, state_machine, pending, scraper_config):
        assert await state_machine.fail(pending.id, "config missing")

        running = await state_machine.create_running(scraper_config.id)
        assert await state_machine.fail(running.id, "boom", traceback="Traceback ...")

        stored = await state_machine.get(running.id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.error == "boom"
        assert stored.error_traceback == "Traceback ..."

    async def test_terminal_states_are_final(self, state_machine, pending):
        await state_machine.start(pending.id)
        await state_machine.succeed(pending.id, found=2, added=2)

        assert not await state_machine.fail(pending.id, "too late")
        stored = await state_machine.get(pending.id)
        assert stored.status == ExecutionStatus.SUCCESS
        assert stored.error is None

    async def test_unknown_execution(self, state_machine):
        assert not await state_machine.start(uuid.uuid4())


class TestReaper:
    async def test_reaps_old_running_and_pending(self, state_machine, session_factory, scraper_config):
        old_running = await add_execution(
            session_factory, scraper_config.id, ExecutionStatus.RUNNING, timedelta(minutes=45)
        )
        old_pending = await add_execution(
            session_factory, scraper_config.id, ExecutionStatus.PENDING, timedelta(hours=2)
        )
        fresh = await add_execution(
            session_factory, scraper_config.id, ExecutionStatus.RUNNING, timedelta(minutes=5)
        )

        reaped = await state_machine.reap_stale(timedelta(minutes=30))

        assert reaped == 2
        stored = await state_machine.get(old_running.id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.error == "Execution timeout after 45 minutes"
        assert stored.finished_at is not None
        assert (await state_machine.get(old_pending.id)).status == ExecutionStatus.FAILED
        assert (await state_machine.get(fresh.id)).status == ExecutionStatus.RUNNING

    async def test_terminal_executions_untouched(self, state_machine, session_factory, scraper_config):
        done = await add_execution(
            session_factory, scraper_config.id, ExecutionStatus.SUCCESS, timedelta(hours=3)
        )
        assert await state_machine.reap_stale(timedelta(minutes=30)) == 0
        assert (await state_machine.get(done.id)).status == ExecutionStatus.SUCCESS

    async def test_reaping_twice_is_noop(self, state_machine, session_factory, scraper_config):
        await add_execution(session_factory, scraper_config.id, ExecutionStatus.RUNNING, timedelta(hours=1))
        assert await state_machine.reap_stale(timedelta(minutes=30)) == 1
        assert await state_machine.reap_stale(timedelta(minutes=30)) == 0

    def test_timeout_message(self):
        assert timeout_message(timedelta(minutes=31, seconds=59)) == "Execution timeout after 31 minutes"


class TestQueries:
    async def test_list_pending_oldest_first(self, state_machine, session_factory, scraper_config):
        newer = await add_execution(session_factory, scraper_config.id, ExecutionStatus.PENDING, timedelta(minutes=1))
        older = await add_execution(session_factory, scraper_config.id, ExecutionStatus.PENDING, timedelta(minutes=5))
        await add_execution(session_factory, scraper_config.id, ExecutionStatus.RUNNING, timedelta(minutes=10))

        pending = await state_machine.list_pending(limit=10)
        assert [e.id for e in pending] == [older.id, newer.id]

    async def test_list_pending_respects_limit(self, state_machine, session_factory, scraper_config):
        for minutes in range(5):
            await add_execution(session_factory, scraper_config.id, ExecutionStatus.PENDING, timedelta(minutes=minutes))
        assert len(await state_machine.list_pending(limit=3)) == 3

    async def test_list_recent_filters(self, state_machine, session_factory, scraper_config):
        failed = await add_execution(session_factory, scraper_config.id, ExecutionStatus.FAILED, timedelta(minutes=1))
        await add_execution(session_factory, scraper_config.id, ExecutionStatus.SUCCESS, timedelta(minutes=2))

        recent = await state_machine.list_recent()
        assert [e.status for e in recent] == [ExecutionStatus.FAILED, ExecutionStatus.SUCCESS]

        only_failed = await state_machine.list_recent(status=ExecutionStatus.FAILED)
        assert [e.id for e in only_failed] == [failed.id]

        assert await state_machine.list_recent(scraper_id=uuid.uuid4()) == []
