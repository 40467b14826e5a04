"""Tests for the AlertTicker worker loop."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.scanner import ScanResult
from src.alerts.scheduler import TickResult
from src.alerts.ticker import AlertTicker

T0 = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = AsyncMock()
    engine.tick.return_value = TickResult()
    engine.sweep.return_value = [ScanResult(job_id="j1", matched=1)]
    engine.next_fire_time.return_value = None
    return engine


@pytest.fixture
def ticker(engine):
    return AlertTicker(
        engine,
        config=AlertConfig(sweep_interval_minutes=15),
        dispatch_settings=DispatchSettings(check_frequency_minutes=1),
    )


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_first_run_ticks_and_sweeps(self, ticker, engine):
        await ticker.run_once(T0)
        engine.tick.assert_called_once_with(T0)
        engine.sweep.assert_called_once_with(now=T0)

    @pytest.mark.asyncio
    async def test_sweep_only_after_interval(self, ticker, engine):
        await ticker.run_once(T0)
        await ticker.run_once(T0 + timedelta(minutes=5))
        assert engine.sweep.call_count == 1

        await ticker.run_once(T0 + timedelta(minutes=15))
        assert engine.sweep.call_count == 2
        assert engine.tick.call_count == 3

    @pytest.mark.asyncio
    async def test_tick_failure_does_not_skip_sweep(self, ticker, engine):
        engine.tick.side_effect = ConnectionError("redis down")
        await ticker.run_once(T0)
        engine.sweep.assert_called_once()

    @pytest.mark.asyncio
    async def test_sweep_failure_is_contained(self, ticker, engine):
        engine.sweep.side_effect = RuntimeError("db down")
        await ticker.run_once(T0)
        await ticker.run_once(T0 + timedelta(minutes=1))
        assert engine.tick.call_count == 2


class TestSleepSeconds:
    @pytest.mark.asyncio
    async def test_nothing_pending_sleeps_full_period(self, ticker):
        assert await ticker.sleep_seconds(T0) == 60.0

    @pytest.mark.asyncio
    async def test_wakes_for_next_fire_time(self, ticker, engine):
        engine.next_fire_time.return_value = T0 + timedelta(seconds=20)
        assert await ticker.sleep_seconds(T0) == 20.0

    @pytest.mark.asyncio
    async def test_overdue_sleeps_minimum(self, ticker, engine):
        engine.next_fire_time.return_value = T0 - timedelta(minutes=5)
        assert await ticker.sleep_seconds(T0) == 1.0

    @pytest.mark.asyncio
    async def test_far_fire_time_capped_by_period(self, ticker, engine):
        engine.next_fire_time.return_value = T0 + timedelta(hours=3)
        assert await ticker.sleep_seconds(T0) == 60.0

    @pytest.mark.asyncio
    async def test_store_failure_falls_back_to_period(self, ticker, engine):
        engine.next_fire_time.side_effect = ConnectionError("redis down")
        assert await ticker.sleep_seconds(T0) == 60.0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_ends_loop_and_closes_owned_connections(self, engine):
        database = AsyncMock()
        redis_client = AsyncMock()
        ticker = AlertTicker(engine, database=database, redis_client=redis_client)

        async def tick_then_stop(now):
            await ticker.stop()
            return TickResult()

        engine.tick.side_effect = tick_then_stop
        await asyncio.wait_for(ticker.start(), timeout=5)

        assert ticker.is_running is False
        redis_client.close.assert_called_once()
        database.close.assert_called_once()
        engine.drain.assert_awaited_once()
