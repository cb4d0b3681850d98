"""Health reporting for the collector."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)

HealthProbe = Callable[[], tuple[bool, Optional[str]]]


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks component statuses for the running collector.

    Components either push their status with :meth:`update` or register a
    probe that is evaluated on every snapshot.
    """

    def __init__(self) -> None:
        self._status: Dict[str, ComponentStatus] = {}
        self._probes: Dict[str, HealthProbe] = {}
        self._agent_state: Optional[ComponentStatus] = None
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    def register_probe(self, name: str, probe: HealthProbe) -> None:
        self._probes[name] = probe

    async def set_agent_state(
        self, state: str, *, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._agent_state = ComponentStatus(
                name=state, healthy=healthy, detail=detail
            )

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            statuses = dict(self._status)
            agent_state = self._agent_state

        for name, probe in self._probes.items():
            try:
                healthy, detail = probe()
            except Exception as exc:  # a broken probe reports itself unhealthy
                healthy, detail = False, f"probe failed: {exc}"
            statuses[name] = ComponentStatus(name=name, healthy=healthy, detail=detail)

        components = [status.as_dict() for status in statuses.values()]
        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        if agent_state is not None and not agent_state.healthy:
            overall = "degraded"

        payload: Dict[str, object] = {"status": overall, "components": components}
        if agent_state is not None:
            payload["agentState"] = {
                "state": agent_state.name,
                "healthy": agent_state.healthy,
                "detail": agent_state.detail,
                "updatedAt": agent_state.updated_at.isoformat(timespec="seconds"),
            }
        return payload


class HealthServer:
    """Minimal HTTP server exposing `/healthz` for status checks."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        if self._site is not None:
            with contextlib.suppress(RuntimeError):
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
