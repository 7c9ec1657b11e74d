"""Tests for the scraper orchestrator: one run, end to end."""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from achadinhos.core.exceptions import NotFoundError, ScraperError
from achadinhos.core.time_utils import as_utc, utcnow
from achadinhos.models import ExecutionStatus, Marketplace, Product, ScraperConfig
from achadinhos.scrapers.orchestrator import CANCELLED_MESSAGE, ScraperOrchestrator
from achadinhos.scrapers.registry import StrategyRegistry
from achadinhos.scrapers.utils.work_queue import ScrapeQueue
from factories import make_product, wait_until


@pytest.fixture
def orchestrator(session_factory, registry, reconciler, state_machine):
    return ScraperOrchestrator(
        session_factory,
        registry,
        reconciler,
        state_machine,
        queue=ScrapeQueue(concurrency=2),
        schedule_timezone="UTC",
        retry_delay=timedelta(minutes=30),
    )


async def reload(session_factory, config_id) -> ScraperConfig:
    async with session_factory() as session:
        return await session.get(ScraperConfig, config_id)


class TestSuccessfulRun:
    async def test_run_records_success(self, orchestrator, scraper_config, state_machine, session_factory):
        result = await orchestrator.run_scraper(scraper_config)

        assert result.status == ExecutionStatus.SUCCESS
        assert result.products_found == 2
        assert result.products_added == 2
        assert result.error is None

        execution = await state_machine.get(result.execution_id)
        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.products_found == 2

        async with session_factory() as session:
            products = (await session.execute(select(func.count()).select_from(Product))).scalar_one()
        assert products == 2

    async def test_updates_schedule(self, orchestrator, scraper_config, session_factory):
        before = utcnow()
        result = await orchestrator.run_scraper(scraper_config)

        stored = await reload(session_factory, scraper_config.id)
        assert as_utc(stored.last_run) >= before - timedelta(seconds=1)
        assert as_utc(stored.next_run) == result.next_run
        # "0 */6 * * *" -> on the hour, at most six hours away
        assert result.next_run.minute == 0
        assert result.next_run.hour % 6 == 0
        assert result.next_run - before <= timedelta(hours=6)

    async def test_second_run_adds_nothing(self, orchestrator, scraper_config):
        await orchestrator.run_scraper(scraper_config)
        result = await orchestrator.run_scraper(scraper_config)
        assert result.products_found == 2
        assert result.products_added == 0

    async def test_empty_result_is_success(self, orchestrator, scraper_config, fake_strategy):
        fake_strategy.products = []
        result = await orchestrator.run_scraper(scraper_config)
        assert result.status == ExecutionStatus.SUCCESS
        assert result.products_found == 0

    async def test_strategy_results_are_not_truncated_again(self, orchestrator, fake_strategy, session_factory, user):
        config = ScraperConfig(
            name="ML capped",
            marketplace=Marketplace.MERCADOLIVRE,
            keywords=["fone"],
            categories=[],
            max_products=5,
            frequency="0 */6 * * *",
            user_id=user.id,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(config)
        fake_strategy.products = [make_product(i) for i in range(1, 9)]

        first = await orchestrator.run_scraper(config)

        assert (first.products_found, first.products_added) == (8, 8)
        async with session_factory() as session:
            stored = (await session.execute(select(func.count()).select_from(Product))).scalar_one()
        assert stored == 8

        fake_strategy.products = [make_product(i) for i in (1, 2, 3, 4, 5, 9, 10, 11)]
        second = await orchestrator.run_scraper(config)

        assert (second.products_found, second.products_added) == (8, 3)


class TestFailedRun:
    async def test_strategy_error_marks_failed(
        self, orchestrator, scraper_config, fake_strategy, state_machine, session_factory
    ):
        fake_strategy.error = ScraperError("MERCADOLIVRE", "blocked")
        before = utcnow()

        result = await orchestrator.run_scraper(scraper_config)

        assert result.status == ExecutionStatus.FAILED
        assert "blocked" in result.error
        execution = await state_machine.get(result.execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert "ScraperError" in execution.error_traceback

        stored = await reload(session_factory, scraper_config.id)
        retry_at = as_utc(stored.next_run)
        assert timedelta(minutes=29) <= retry_at - before <= timedelta(minutes=31)

    async def test_missing_strategy_marks_failed(self, session_factory, reconciler, state_machine, user):
        config = ScraperConfig(
            name="AliExpress",
            marketplace=Marketplace.ALIEXPRESS,
            keywords=["relógio"],
            categories=[],
            frequency="* * * * *",
            user_id=user.id,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(config)

        orchestrator = ScraperOrchestrator(session_factory, StrategyRegistry(), reconciler, state_machine)
        result = await orchestrator.run_scraper(config)

        assert result.status == ExecutionStatus.FAILED
        assert "ALIEXPRESS" in result.error

    async def test_reconciler_error_marks_failed(self, orchestrator, scraper_config, reconciler, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("database gone")

        monkeypatch.setattr(reconciler, "save", explode)
        result = await orchestrator.run_scraper(scraper_config)
        assert result.status == ExecutionStatus.FAILED
        assert result.error == "database gone"

    async def test_run_reaped_midway_reports_stored_error(
        self, orchestrator, scraper_config, fake_strategy, state_machine, session_factory
    ):
        original = fake_strategy.scrape

        async def reaped_while_running(config):
            running = await state_machine.list_recent(scraper_id=config.id)
            await state_machine.fail(running[0].id, "Execution timeout after 45 minutes")
            return await original(config)

        fake_strategy.scrape = reaped_while_running
        before = utcnow()

        result = await orchestrator.run_scraper(scraper_config)

        assert result.status == ExecutionStatus.FAILED
        assert result.error == "Execution timeout after 45 minutes"
        assert result.products_found == 2
        execution = await state_machine.get(result.execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.error == result.error
        stored = await reload(session_factory, scraper_config.id)
        assert timedelta(minutes=29) <= as_utc(stored.next_run) - before <= timedelta(minutes=31)


class TestPendingExecutions:
    async def test_promotes_pending(self, orchestrator, scraper_config, state_machine):
        execution = await orchestrator.enqueue_run(scraper_config.id)
        result = await orchestrator.run_pending(execution)

        assert result.execution_id == execution.id
        assert (await state_machine.get(execution.id)).status == ExecutionStatus.SUCCESS

    async def test_already_started_execution_skipped(self, orchestrator, scraper_config, state_machine, fake_strategy):
        execution = await orchestrator.enqueue_run(scraper_config.id)
        await state_machine.start(execution.id)

        assert await orchestrator.run_pending(execution) is None
        assert fake_strategy.calls == 0

    async def test_missing_config_fails_execution(self, orchestrator, state_machine):
        execution = await state_machine.enqueue(uuid.uuid4())

        assert await orchestrator.run_pending(execution) is None
        stored = await state_machine.get(execution.id)
        assert stored.status == ExecutionStatus.FAILED
        assert "not found" in stored.error

    async def test_enqueue_unknown_config(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.enqueue_run(uuid.uuid4())


class TestConcurrency:
    async def test_same_config_not_run_twice(self, orchestrator, scraper_config, fake_strategy):
        release = asyncio.Event()
        original = fake_strategy.scrape

        async def slow(config):
            await release.wait()
            return await original(config)

        fake_strategy.scrape = slow
        first = asyncio.create_task(orchestrator.run_scraper(scraper_config))
        await asyncio.sleep(0.05)

        assert scraper_config.id in orchestrator.in_flight
        assert await orchestrator.run_scraper(scraper_config) is None

        release.set()
        assert (await first).status == ExecutionStatus.SUCCESS
        assert orchestrator.in_flight == set()

    async def test_queue_caps_simultaneous_scrapes(self, orchestrator, fake_strategy, session_factory):
        configs = [
            ScraperConfig(name=f"ml-{i}", marketplace=Marketplace.MERCADOLIVRE, keywords=["x"], categories=[])
            for i in range(6)
        ]
        async with session_factory() as session:
            async with session.begin():
                session.add_all(configs)

        release = asyncio.Event()
        entered = []
        fake_strategy.products = []
        original = fake_strategy.scrape

        async def held(config):
            entered.append(config.id)
            await release.wait()
            return await original(config)

        fake_strategy.scrape = held
        runs = [asyncio.create_task(orchestrator.run_scraper(config)) for config in configs]
        await wait_until(lambda: orchestrator.queue.active == 2)
        await asyncio.sleep(0.1)

        assert orchestrator.queue.active == 2
        assert len(entered) == 2

        release.set()
        results = await asyncio.gather(*runs)

        assert all(r.status == ExecutionStatus.SUCCESS for r in results)
        assert len(entered) == 6
        assert orchestrator.queue.peak == 2

    async def test_shutdown_refuses_new_runs(self, orchestrator, scraper_config, fake_strategy, state_machine):
        await orchestrator.shutdown(timeout=1)

        assert orchestrator.closing
        assert await orchestrator.run_scraper(scraper_config) is None
        assert fake_strategy.calls == 0
        assert await state_machine.list_recent(scraper_id=scraper_config.id) == []

    async def test_shutdown_cancels_and_fails_execution(self, orchestrator, scraper_config, fake_strategy, state_machine):
        async def hang(config):
            await asyncio.Event().wait()

        fake_strategy.scrape = hang
        task = asyncio.create_task(orchestrator.run_scraper(scraper_config))
        await asyncio.sleep(0.05)

        await orchestrator.shutdown(timeout=0.05)

        assert task.cancelled()
        executions = await state_machine.list_recent(scraper_id=scraper_config.id)
        assert executions[0].status == ExecutionStatus.FAILED
        assert executions[0].error == CANCELLED_MESSAGE


class TestDueConfigs:
    async def test_lists_never_run_and_overdue(self, orchestrator, session_factory):
        now = utcnow()
        configs = {
            "never": ScraperConfig(name="never", marketplace=Marketplace.AMAZON, next_run=None),
            "overdue": ScraperConfig(name="overdue", marketplace=Marketplace.AMAZON, next_run=now - timedelta(minutes=5)),
            "future": ScraperConfig(name="future", marketplace=Marketplace.AMAZON, next_run=now + timedelta(hours=1)),
            "inactive": ScraperConfig(name="inactive", marketplace=Marketplace.AMAZON, is_active=False),
        }
        async with session_factory() as session:
            async with session.begin():
                session.add_all(configs.values())

        due = await orchestrator.list_due_configs()
        assert {c.name for c in due} == {"never", "overdue"}


class TestNextRun:
    def test_schedule_timezone(self, session_factory, registry, reconciler, state_machine):
        orchestrator = ScraperOrchestrator(
            session_factory, registry, reconciler, state_machine, schedule_timezone="America/Sao_Paulo"
        )
        next_run = orchestrator.next_run_for("0 8 * * *")
        # 08:00 in Sao Paulo (UTC-3, no DST since 2019) is 11:00 UTC
        assert next_run.utcoffset() == timedelta(0)
        assert (next_run.hour, next_run.minute) == (11, 0)
