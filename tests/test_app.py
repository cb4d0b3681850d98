"""Lifecycle tests for the collector application."""

from __future__ import annotations

import asyncio
import logging

import pytest

from sleepnumber_stats.adapters import MetricSink, SleepIQAPIError
from sleepnumber_stats.app import AgentState, CollectorApp


def _session_invalid() -> SleepIQAPIError:
    return SleepIQAPIError("Session is invalid", status=401, code=50002)


async def _wait_for_first_cycle(app: CollectorApp) -> None:
    for _ in range(200):
        scheduler = app.scheduler
        if scheduler is not None and scheduler.cycles >= 1:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("collector never completed a poll cycle")


@pytest.mark.asyncio
async def test_missing_destination_exits_before_login(
    config_factory, fake_sleepiq, recording_writer
):
    app = CollectorApp(
        config_factory(bucket=None), sleepiq=fake_sleepiq, writer=recording_writer
    )

    assert await app.run() == 1
    assert fake_sleepiq.logins == 0
    assert app.state is AgentState.FAILED


@pytest.mark.asyncio
async def test_login_failure_exits_with_error(
    config_factory, fake_sleepiq, recording_writer, caplog
):
    fake_sleepiq.fail("login", SleepIQAPIError("Invalid credentials", status=401))
    app = CollectorApp(config_factory(), sleepiq=fake_sleepiq, writer=recording_writer)

    with caplog.at_level(logging.ERROR):
        assert await app.run() == 1

    assert "Failed to log into SleepIQ account" in caplog.text
    assert fake_sleepiq.closed is True
    assert "list_beds" not in fake_sleepiq.calls
    assert recording_writer.batches == []


@pytest.mark.asyncio
async def test_shutdown_flushes_once_and_stops_polling(
    config_factory, fake_sleepiq, recording_writer, monkeypatch
):
    flushes = []
    original_flush = MetricSink.flush

    async def counting_flush(self, timeout=None):
        flushes.append(timeout)
        await original_flush(self, timeout)

    monkeypatch.setattr(MetricSink, "flush", counting_flush)
    app = CollectorApp(config_factory(), sleepiq=fake_sleepiq, writer=recording_writer)

    runner = asyncio.create_task(app.run())
    await _wait_for_first_cycle(app)
    assert app.state is AgentState.ACTIVE

    app.request_shutdown("SIGTERM")
    exit_code = await asyncio.wait_for(runner, timeout=2.0)

    assert exit_code == 0
    assert flushes == [2.0]
    assert len(recording_writer.points) == 8
    assert recording_writer.closed is True
    assert fake_sleepiq.calls.count("list_beds") == 1
    assert fake_sleepiq.closed is True
    assert app.state is AgentState.STOPPING


@pytest.mark.asyncio
async def test_failed_relogin_exits_with_error(
    config_factory, fake_sleepiq, recording_writer
):
    fake_sleepiq.fail("list_beds", _session_invalid())
    fake_sleepiq.hooks["list_beds"] = lambda: fake_sleepiq.fail(
        "login", SleepIQAPIError("Invalid credentials", status=401)
    )
    app = CollectorApp(config_factory(), sleepiq=fake_sleepiq, writer=recording_writer)

    exit_code = await asyncio.wait_for(app.run(), timeout=2.0)

    assert exit_code == 1
    assert fake_sleepiq.logins == 2
    assert fake_sleepiq.closed is True
    assert recording_writer.closed is True


@pytest.mark.asyncio
async def test_delivery_errors_are_logged(
    config_factory, fake_sleepiq, recording_writer, caplog
):
    recording_writer.failures.append(RuntimeError("influxdb unavailable"))
    app = CollectorApp(
        config_factory(batch_size=1), sleepiq=fake_sleepiq, writer=recording_writer
    )

    with caplog.at_level(logging.ERROR):
        runner = asyncio.create_task(app.run())
        await _wait_for_first_cycle(app)
        app.request_shutdown()
        assert await asyncio.wait_for(runner, timeout=2.0) == 0

    assert "Encountered error on writing to InfluxDB" in caplog.text
    assert "influxdb unavailable" in caplog.text
    # only the first single-point batch was lost
    assert len(recording_writer.points) == 7
