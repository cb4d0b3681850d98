"""InfluxDB metric sink with batched background delivery."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional, Sequence

from influxdb_client import Point
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync

from .. import constants
from ..config import InfluxConfig
from ..core import MetricPoint, MetricWriter, PointWriter

LOGGER = logging.getLogger(__name__)


class SinkConfigurationError(ValueError):
    """Raised when the InfluxDB write destination is not configured."""


class DeliveryError(RuntimeError):
    """Raised or reported when a batch of points could not be written."""

    def __init__(self, message: str, *, points: int = 0) -> None:
        super().__init__(message)
        self.points = points


def resolve_destination(config: InfluxConfig) -> str:
    """Return the write target: the bucket, or ``database/retention_policy``."""

    if config.bucket:
        if config.database or config.retention_policy:
            LOGGER.warning(
                "Both bucket and database/retention policy configured; writing to bucket %s",
                config.bucket,
            )
        return config.bucket
    if config.database and config.retention_policy:
        return f"{config.database}/{config.retention_policy}"
    raise SinkConfigurationError(
        "must configure at least one of bucket or database/retention policy"
    )


def resolve_auth(config: InfluxConfig) -> str:
    if config.token:
        return config.token
    if config.username and config.password:
        return f"{config.username}:{config.password}"
    return ""


def to_influx_point(point: MetricPoint) -> Point:
    record = Point(point.measurement)
    for key, value in point.tags.items():
        record.tag(key, value)
    for key, value in point.fields.items():
        record.field(key, value)
    record.time(point.timestamp, point.precision)
    return record


class InfluxPointWriter(PointWriter):
    """Writes batches through the asyncio InfluxDB client."""

    def __init__(self, config: InfluxConfig, *, destination: str, auth: str) -> None:
        self.config = config
        self.destination = destination
        self._auth = auth
        self._client: Optional[InfluxDBClientAsync] = None

    def _ensure_client(self) -> InfluxDBClientAsync:
        # the async client binds an aiohttp session, so create it on the loop
        if self._client is None:
            self._client = InfluxDBClientAsync(
                url=self.config.address,
                token=self._auth,
                org=self.config.organization,
                timeout=int(self.config.timeout_seconds * 1000),
                verify_ssl=not self.config.skip_verify_ssl,
            )
        return self._client

    async def write(self, points: Sequence[MetricPoint]) -> None:
        client = self._ensure_client()
        write_api = client.write_api()
        await write_api.write(
            bucket=self.destination,
            org=self.config.organization,
            record=[to_influx_point(point) for point in points],
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class MetricSink(MetricWriter):
    """Buffers metric points and delivers them to InfluxDB in batches.

    Points are delivered when a batch fills up, every ``flush_interval``
    seconds, and on :meth:`flush`. Background delivery failures never reach
    the producer; they are published on :meth:`errors` instead.
    """

    def __init__(
        self,
        config: InfluxConfig,
        *,
        writer: Optional[PointWriter] = None,
    ) -> None:
        self.destination = resolve_destination(config)
        self._writer: PointWriter = writer or InfluxPointWriter(
            config, destination=self.destination, auth=resolve_auth(config)
        )
        self._flush_interval = (
            config.flush_interval_seconds
            if config.flush_interval_seconds > 0
            else constants.DEFAULT_FLUSH_INTERVAL_SECONDS
        )
        self._batch_size = max(1, config.batch_size)

        self._pending: list[MetricPoint] = []
        self._errors: asyncio.Queue[Optional[DeliveryError]] = asyncio.Queue()
        self._delivery_lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[None]] = set()
        self._stop_event = asyncio.Event()
        self._flush_task: Optional[asyncio.Task[None]] = None
        self._closed = False
        self._last_error: Optional[DeliveryError] = None

        self.points_written = 0
        self.delivery_failures = 0

    @property
    def flush_interval(self) -> float:
        return self._flush_interval

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        """Start the periodic background flush."""

        if self._flush_task is not None:
            return
        self._stop_event.clear()
        self._flush_task = asyncio.create_task(self._flush_loop())
        LOGGER.info(
            "InfluxDB sink writing to %s (flush every %.1fs, batch size %d)",
            self.destination,
            self._flush_interval,
            self._batch_size,
        )

    def write_point(self, point: MetricPoint) -> None:
        if self._closed:
            LOGGER.debug("Dropping %s point; sink is closed", point.measurement)
            return
        self._pending.append(point)
        if len(self._pending) >= self._batch_size:
            self._schedule_delivery()

    async def errors(self) -> AsyncIterator[DeliveryError]:
        """Yield background delivery errors until the sink is closed."""

        while True:
            error = await self._errors.get()
            if error is None:
                return
            yield error

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Deliver every pending point, raising the final delivery error if any."""

        async def _drain() -> None:
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
            batch = self._take_pending()
            if batch:
                await self._deliver(batch)

        try:
            if timeout is None:
                await _drain()
            else:
                async with asyncio.timeout(timeout):
                    await _drain()
        except TimeoutError as exc:
            raise DeliveryError(
                f"Timed out flushing points to InfluxDB after {timeout:.1f}s",
                points=len(self._pending),
            ) from exc

    async def close(self) -> None:
        """Stop background delivery and end the error stream."""

        if self._closed:
            return
        self._stop_event.set()
        if self._flush_task is not None:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None

        for task in list(self._inflight):
            task.cancel()
        for task in list(self._inflight):
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._writer.aclose()
        self._closed = True
        self._errors.put_nowait(None)

    def health(self) -> tuple[bool, Optional[str]]:
        if self._last_error is not None:
            return False, str(self._last_error)
        return True, f"points_written={self.points_written}"

    def _take_pending(self) -> list[MetricPoint]:
        batch, self._pending = self._pending, []
        return batch

    def _schedule_delivery(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet; the periodic flush picks the batch up later
            return

        batch = self._take_pending()
        if not batch:
            return
        task = loop.create_task(self._deliver_in_background(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _flush_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._flush_interval
                )
                break
            except asyncio.TimeoutError:
                pass

            # tracked in _inflight so flush() waits for it
            self._schedule_delivery()

    async def _deliver_in_background(self, batch: list[MetricPoint]) -> None:
        try:
            await self._deliver(batch)
        except DeliveryError as exc:
            self._errors.put_nowait(exc)

    async def _deliver(self, batch: list[MetricPoint]) -> None:
        async with self._delivery_lock:
            try:
                await self._writer.write(batch)
            except Exception as exc:
                self.delivery_failures += 1
                error = DeliveryError(
                    f"Failed to write {len(batch)} points to InfluxDB: {exc}",
                    points=len(batch),
                )
                self._last_error = error
                raise error from exc

        self.points_written += len(batch)
        self._last_error = None
        LOGGER.debug("Wrote %d points to InfluxDB", len(batch))
