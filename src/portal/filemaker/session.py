"""FileMaker Data API session lifecycle.

A Data API token is valid for 15 minutes after last use. Tokens are cached in
the shared state store for 14 minutes so a cached token is never presented
after FileMaker has expired it. Two process instances may race and both log
in; that only produces two valid sessions, so no lock is taken.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.portal.core.redis import SharedStateStore, StateStoreError
from src.portal.filemaker.errors import (
    ConfigurationMissing,
    ErrorCategory,
    FileMakerError,
    error_from_response,
)
from src.portal.filemaker.schemas import FileMakerCredentials

logger = structlog.get_logger(__name__)

SESSION_KEY = "fm:session"
SESSION_TTL_SECONDS = 840  # 14 minutes (FM expires at 15)


class SessionManager:
    """Acquires, caches and invalidates the bearer token used for every call.

    Args:
        credentials: FileMaker connection settings, or None when unconfigured.
        store: Shared TTL-capable store holding the cached token.
        transport: Optional httpx transport (tests inject a MockTransport).
        timeout: Request timeout in seconds for login/logout.
    """

    def __init__(
        self,
        credentials: FileMakerCredentials | None,
        store: SharedStateStore,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._credentials = credentials
        self._store = store
        self._transport = transport
        self._timeout = timeout

    @property
    def is_configured(self) -> bool:
        return self._credentials is not None

    def _require_credentials(self) -> FileMakerCredentials:
        if self._credentials is None:
            raise ConfigurationMissing()
        return self._credentials

    async def acquire(self) -> str:
        """Return the cached token, logging in (and caching) on a miss."""
        self._require_credentials()

        try:
            cached = await self._store.get(SESSION_KEY)
            if cached:
                return cached
        except StateStoreError as exc:
            logger.warning("filemaker.session_cache_get_failed", error=str(exc))

        token = await self.login()

        try:
            await self._store.set(SESSION_KEY, token, SESSION_TTL_SECONDS)
        except StateStoreError as exc:
            logger.warning("filemaker.session_cache_set_failed", error=str(exc))

        return token

    async def invalidate(self) -> None:
        """Drop the cached token (called after an auth-class failure)."""
        try:
            await self._store.delete(SESSION_KEY)
        except StateStoreError as exc:
            logger.warning("filemaker.session_invalidate_failed", error=str(exc))
        logger.info("filemaker.session_invalidated")

    async def login(self) -> str:
        """POST /sessions with basic auth and return the new session token."""
        credentials = self._require_credentials()

        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._timeout
        ) as client:
            response = await client.post(
                f"{credentials.base_url}/sessions",
                auth=(credentials.username, credentials.password),
                json={},
            )

        payload = _json_or_none(response)
        error = error_from_response(payload, response.status_code)
        if error is not None:
            logger.error(
                "filemaker.login_failed",
                status_code=response.status_code,
                fm_code=error.code,
            )
            raise error

        token = (payload or {}).get("response", {}).get("token") or response.headers.get(
            "X-FM-Data-Access-Token"
        )
        if not token:
            raise FileMakerError(
                "FileMaker login returned no session token",
                category=ErrorCategory.AUTH,
                http_status=response.status_code,
            )

        logger.info("filemaker.session_created", database=credentials.database)
        return token

    async def logout(self, token: str) -> None:
        """DELETE /sessions/{token}. Best effort -- failures are only logged."""
        if self._credentials is None or not token:
            return

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            ) as client:
                await client.delete(f"{self._credentials.base_url}/sessions/{token}")
        except httpx.HTTPError as exc:
            logger.warning("filemaker.logout_failed", error=str(exc))
            return

        await self.invalidate()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
