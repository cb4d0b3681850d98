"""SleepIQ adapter providing the HTTP calls used by the collector."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import aiohttp

from ..config import SleepIQConfig
from ..core import (
    Bed,
    BedFamilyStatus,
    FootWarmerState,
    FoundationState,
    SleepIQAdapter,
    SleepIQSession,
)

LOGGER = logging.getLogger(__name__)

SESSION_INVALID_CODE = 50002
SESSION_INVALID_MARKER = "session is invalid"


class SleepIQAPIError(RuntimeError):
    """Raised when the SleepIQ API answers with an error."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


def is_session_invalid(error: BaseException) -> bool:
    """Return True when ``error`` means the login session has expired.

    The API reports expiry as HTTP 401 with error code 50002; the message
    text is only consulted when neither is available.
    """

    if isinstance(error, SleepIQAPIError):
        if error.status == 401 or error.code == SESSION_INVALID_CODE:
            return True
    return SESSION_INVALID_MARKER in str(error).lower()


def _api_error(status: int, payload: Any, text: str) -> SleepIQAPIError:
    code: Optional[int] = None
    message = text.strip() or f"HTTP {status}"
    if isinstance(payload, Mapping) and isinstance(payload.get("Error"), Mapping):
        detail = payload["Error"]
        message = str(detail.get("Message") or message)
        try:
            code = int(detail["Code"])
        except (KeyError, TypeError, ValueError):
            code = None
    return SleepIQAPIError(
        f"SleepIQ request failed with status {status}: {message}",
        status=status,
        code=code,
    )


class SleepIQClient(SleepIQAdapter):
    """Non-blocking client for the SleepIQ REST API."""

    def __init__(
        self,
        config: SleepIQConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._base_url = config.base_url.rstrip("/")
        self._http: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    async def login(self, username: str, password: str) -> SleepIQSession:
        http = await self._ensure_session()
        url = f"{self._base_url}/login"
        LOGGER.debug("Logging into SleepIQ at %s", url)

        async with http.put(
            url, json={"login": username, "password": password}
        ) as response:
            payload = await self._read_payload(response)
            cookies = {name: morsel.value for name, morsel in response.cookies.items()}

        key = payload.get("key")
        if not key:
            raise SleepIQAPIError(
                "SleepIQ login response did not include a session key",
                status=response.status,
            )

        return SleepIQSession(
            key=str(key),
            user_id=payload.get("userId"),
            cookies=cookies,
            logged_in_at=datetime.now(timezone.utc),
        )

    async def list_beds(self, session: SleepIQSession) -> list[Bed]:
        payload = await self._get(session, "bed")
        return [Bed.from_payload(item) for item in payload.get("beds", [])]

    async def family_status(self, session: SleepIQSession) -> list[BedFamilyStatus]:
        payload = await self._get(session, "bed/familyStatus")
        return [BedFamilyStatus.from_payload(item) for item in payload.get("beds", [])]

    async def foundation_status(
        self, session: SleepIQSession, bed_id: str
    ) -> FoundationState:
        payload = await self._get(session, f"bed/{bed_id}/foundation/status")
        return FoundationState.from_payload(payload)

    async def foot_warmer_status(
        self, session: SleepIQSession, bed_id: str
    ) -> FootWarmerState:
        payload = await self._get(session, f"bed/{bed_id}/foundation/footwarming")
        return FootWarmerState.from_payload(payload)

    async def aclose(self) -> None:
        if self._owns_session and self._http is not None:
            await self._http.close()
        self._http = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            # cookies live on SleepIQSession, not in a shared jar
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
            self._owns_session = True
        return self._http

    async def _get(self, session: SleepIQSession, path: str) -> dict[str, Any]:
        http = await self._ensure_session()
        url = f"{self._base_url}/{path}"

        async with http.get(
            url, params={"_k": session.key}, cookies=session.cookies
        ) as response:
            payload = await self._read_payload(response)
            for name, morsel in response.cookies.items():
                session.cookies[name] = morsel.value

        return payload

    @staticmethod
    async def _read_payload(response: aiohttp.ClientResponse) -> dict[str, Any]:
        text = await response.text()
        try:
            payload = json.loads(text) if text else {}
        except ValueError:
            payload = None

        if response.status >= 400 or (
            isinstance(payload, dict) and "Error" in payload
        ):
            raise _api_error(response.status, payload, text)

        if not isinstance(payload, dict):
            raise SleepIQAPIError(
                f"Unexpected response from SleepIQ: {text[:200]}",
                status=response.status,
            )
        return payload
