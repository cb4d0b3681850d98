"""Session-aware wrapper over the SleepIQ API client."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

from .adapters.sleepiq import SleepIQAPIError, is_session_invalid
from .core import (
    Bed,
    BedFamilyStatus,
    FootWarmerState,
    FoundationState,
    SleepIQAdapter,
    SleepIQSession,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# transport failures, API errors and malformed payloads
_REQUEST_FAILURES = (
    SleepIQAPIError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    KeyError,
    TypeError,
    ValueError,
)


class AuthenticationError(RuntimeError):
    """Raised when logging into the SleepIQ account fails."""


class QueryError(RuntimeError):
    """Raised when a SleepIQ query fails."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(message)
        self.operation = operation


class SessionExpiredError(QueryError):
    """Raised when a query fails because the login session is no longer valid."""


class SessionClient:
    """Owns the SleepIQ login session and classifies query failures.

    Queries are refused locally once the session has been reported invalid,
    so nothing reaches the API again until :meth:`login` succeeds.
    """

    def __init__(self, adapter: SleepIQAdapter, *, username: str, password: str) -> None:
        self._adapter = adapter
        self._username = username
        self._password = password
        self._session: Optional[SleepIQSession] = None

    @property
    def session(self) -> Optional[SleepIQSession]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._session.is_valid()

    async def login(self) -> SleepIQSession:
        try:
            session = await self._adapter.login(self._username, self._password)
        except _REQUEST_FAILURES as exc:
            raise AuthenticationError(
                f"Failed to log into SleepIQ account: {exc}"
            ) from exc

        self._session = session
        LOGGER.info("Logged into SleepIQ account (user=%s)", session.user_id or "unknown")
        return session

    async def list_beds(self) -> list[Bed]:
        return await self._query("query beds", self._adapter.list_beds)

    async def family_status(self) -> list[BedFamilyStatus]:
        return await self._query("query family status", self._adapter.family_status)

    async def foundation_status(self, bed_id: str) -> FoundationState:
        return await self._query(
            "query bed foundation status",
            lambda session: self._adapter.foundation_status(session, bed_id),
        )

    async def foot_warmer_status(self, bed_id: str) -> FootWarmerState:
        return await self._query(
            "query bed foot warmer status",
            lambda session: self._adapter.foot_warmer_status(session, bed_id),
        )

    async def aclose(self) -> None:
        await self._adapter.aclose()

    async def _query(
        self, operation: str, call: Callable[[SleepIQSession], Awaitable[T]]
    ) -> T:
        session = self._session
        if session is None or not session.is_valid():
            raise SessionExpiredError(
                operation, f"Cannot {operation}: no valid SleepIQ session"
            )

        try:
            return await call(session)
        except _REQUEST_FAILURES as exc:
            if is_session_invalid(exc):
                session.invalidate()
                raise SessionExpiredError(
                    operation, f"Failed to {operation}: {exc}"
                ) from exc
            raise QueryError(operation, f"Failed to {operation}: {exc}") from exc
