"""Main application entry-point for sleepnumber-stats."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from enum import Enum
from typing import Optional

from .adapters import (
    DeliveryError,
    MetricSink,
    SinkConfigurationError,
    SleepIQClient,
)
from .config import CollectorConfig
from .core import PointWriter, SleepIQAdapter
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .session import AuthenticationError, SessionClient
from .telemetry import PollScheduler

LOGGER = logging.getLogger(__name__)

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class AgentState(str, Enum):
    COLD_START = "cold_start"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    STOPPING = "stopping"
    FAILED = "failed"


class CollectorApp:
    """Coordinates collector startup, the poll loop and shutdown.

    The SleepIQ adapter and the InfluxDB point writer can be injected for
    testing; by default they are built from the configuration.
    """

    def __init__(
        self,
        config: CollectorConfig,
        *,
        sleepiq: Optional[SleepIQAdapter] = None,
        writer: Optional[PointWriter] = None,
    ) -> None:
        self._config = config
        self._adapter: SleepIQAdapter = sleepiq or SleepIQClient(config.sleepiq)
        self._writer = writer
        self._client: Optional[SessionClient] = None
        self._sink: Optional[MetricSink] = None
        self._scheduler: Optional[PollScheduler] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._error_task: Optional[asyncio.Task[None]] = None
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._signals_installed = False
        self._state = AgentState.COLD_START

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def scheduler(self) -> Optional[PollScheduler]:
        return self._scheduler

    @classmethod
    def start(cls, config: CollectorConfig) -> int:
        instance = cls(config)
        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
        )
        try:
            return asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("sleepnumber-stats received shutdown signal")
            return 0

    def request_shutdown(self, signame: Optional[str] = None) -> None:
        if signame:
            LOGGER.info("Caught signal %s, flushing data to InfluxDB", signame)
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> int:
        """Run the collector until shutdown; return the process exit code."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("sleepnumber-stats starting with config: %s", self._config.path)

        try:
            self._sink = MetricSink(self._config.influxdb, writer=self._writer)
        except SinkConfigurationError as exc:
            LOGGER.error("Failed to initialize InfluxDB connection: %s", exc)
            await self._transition_state(AgentState.FAILED, detail=str(exc))
            return 1

        self._client = SessionClient(
            self._adapter,
            username=self._config.sleepiq.username,
            password=self._config.sleepiq.password,
        )

        await self._transition_state(AgentState.AUTHENTICATING)
        try:
            await self._client.login()
        except AuthenticationError as exc:
            LOGGER.error("%s", exc)
            await self._transition_state(AgentState.FAILED, detail=str(exc))
            await self._client.aclose()
            return 1

        exit_code = 0
        try:
            await self._start_services()
            exit_code = await self._wait_for_shutdown()
        finally:
            await self._stop_services()
        return exit_code

    async def _transition_state(
        self, state: AgentState, *, detail: Optional[str] = None
    ) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.info(
            "Agent state transition %s -> %s (%s)",
            previous.value,
            state.value,
            detail or state.value,
        )
        await self._health.set_agent_state(
            state.value, healthy=state == AgentState.ACTIVE, detail=detail
        )

    async def _start_services(self) -> None:
        assert self._sink is not None and self._client is not None
        assert self._shutdown_event is not None

        await self._sink.start()
        self._error_task = asyncio.create_task(
            self._observe_delivery_errors(self._sink)
        )

        self._scheduler = PollScheduler(
            client=self._client,
            sink=self._sink,
            interval_seconds=self._config.polling.interval_seconds,
            stop_event=self._shutdown_event,
            measurement_prefix=self._config.influxdb.measurement_prefix,
        )
        self._health.register_probe("sleepiq", self._scheduler.health)
        self._health.register_probe("influxdb", self._sink.health)

        self._poll_task = asyncio.create_task(self._scheduler.run())
        self._install_signal_handlers()
        await self._start_health_server()
        await self._transition_state(AgentState.ACTIVE, detail="polling")

    async def _wait_for_shutdown(self) -> int:
        assert self._poll_task is not None and self._shutdown_event is not None

        waiter = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait(
                {self._poll_task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await waiter

        if not self._poll_task.done():
            return 0

        exc = None if self._poll_task.cancelled() else self._poll_task.exception()
        if isinstance(exc, AuthenticationError):
            LOGGER.error("%s", exc)
            await self._transition_state(AgentState.FAILED, detail=str(exc))
            return 1
        if exc is not None:
            LOGGER.error("Poll loop failed: %s", exc, exc_info=exc)
            await self._transition_state(AgentState.FAILED, detail=str(exc))
            return 1
        return 0

    async def _observe_delivery_errors(self, sink: MetricSink) -> None:
        async for error in sink.errors():
            LOGGER.error("Encountered error on writing to InfluxDB: %s", error)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in _SHUTDOWN_SIGNALS:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            # platforms without loop signal support fall back to KeyboardInterrupt
            LOGGER.debug("Signal handlers unavailable on this platform")
            return
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in _SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server

    async def _stop_poll_task(self) -> None:
        task = self._poll_task
        if task is None or task.done():
            return

        timeout = self._config.polling.shutdown_timeout_seconds
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task in done:
            exc = None if task.cancelled() else task.exception()
            if exc is not None:
                LOGGER.error("Poll loop ended with error during shutdown: %s", exc)
            return

        LOGGER.warning("Poll cycle did not finish within %.1fs; cancelling", timeout)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _stop_services(self) -> None:
        await self._transition_state(AgentState.STOPPING, detail="shutdown requested")
        self._remove_signal_handlers()
        if self._shutdown_event is not None:
            self._shutdown_event.set()

        await self._stop_poll_task()

        if self._sink is not None:
            try:
                await self._sink.flush(
                    timeout=self._config.polling.shutdown_timeout_seconds
                )
            except DeliveryError as exc:
                LOGGER.error("Failed to flush data to InfluxDB: %s", exc)
            await self._sink.close()

        if self._error_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._error_task
            self._error_task = None

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

        if self._client is not None:
            await self._client.aclose()
