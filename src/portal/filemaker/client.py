"""Async client for the FileMaker Data API.

Every operation takes the session token explicitly; ``with_session`` is the
executor that supplies it. ``with_session`` checks the circuit breaker before
touching the network, acquires a token, runs the operation, and on an
auth-class failure invalidates the cached session and retries exactly once.

Any FileMaker message code other than "0" is raised as a classified
``FileMakerError`` rather than returned as data.
"""

from __future__ import annotations

import json
import mimetypes
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from urllib.parse import quote, unquote

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from src.portal.config import Settings
from src.portal.core.redis import SharedStateStore
from src.portal.filemaker.circuit import CircuitBreaker
from src.portal.filemaker.errors import (
    CircuitOpenError,
    ConfigurationMissing,
    ErrorCategory,
    FileMakerError,
    classify_http_status,
    error_from_response,
)
from src.portal.filemaker.schemas import (
    Attachment,
    FieldMetadata,
    FileMakerCredentials,
    LayoutMetadata,
    PortalWindow,
)
from src.portal.filemaker.session import SessionManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Machine writes skip validation rules meant for interactive data entry.
WRITE_OPTIONS = {"entrymode": "script", "prohibitmode": "script"}

DEFAULT_PORTAL_PAGE_SIZE = 50

# Categories that mean FileMaker answered normally; they do not trip the breaker.
_HEALTHY_RESPONSE_CATEGORIES = frozenset(
    {ErrorCategory.NOT_FOUND, ErrorCategory.VALIDATION, ErrorCategory.CONFLICT}
)

_ATTACHMENT_URL_RE = re.compile(r"^https?://[^\s/]+/Streaming(?:_SSL)?/\S+", re.IGNORECASE)
_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*(?:[\w-]+'[\w-]*')?\"?([^\";]+)\"?", re.IGNORECASE)
_FILENAME_RE = re.compile(r"filename\s*=\s*\"?([^\";]+)\"?", re.IGNORECASE)


def _is_auth_error(exc: BaseException) -> bool:
    return isinstance(exc, FileMakerError) and exc.category == ErrorCategory.AUTH


def is_attachment_url(value: Any) -> bool:
    """True if a field value is a temporary container streaming URL.

    FileMaker returns container fields as signed URLs (valid ~15 minutes)
    under /Streaming/ or /Streaming_SSL/ rather than as raw bytes.
    """
    return isinstance(value, str) and bool(_ATTACHMENT_URL_RE.match(value.strip()))


def filename_from_content_disposition(header: str | None) -> str | None:
    """Extract the filename from a Content-Disposition header, if present."""
    if not header:
        return None
    match = _FILENAME_STAR_RE.search(header)
    if match:
        return unquote(match.group(1).strip())
    match = _FILENAME_RE.search(header)
    if match:
        return match.group(1).strip()
    return None


def _fallback_filename(content_type: str | None) -> str:
    extension = ""
    if content_type:
        extension = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ""
    return f"attachment-{int(time.time() * 1000)}{extension}"


class FileMakerClient:
    """Authenticated CRUD/query/metadata executor against the Data API.

    Args:
        credentials: FileMaker connection settings, or None when unconfigured.
        sessions: SessionManager that supplies bearer tokens.
        breaker: CircuitBreaker gating every ``with_session`` call.
        transport: Optional httpx transport (tests inject a MockTransport).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        credentials: FileMakerCredentials | None,
        sessions: SessionManager,
        breaker: CircuitBreaker,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._credentials = credentials
        self._sessions = sessions
        self._breaker = breaker
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: SharedStateStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> FileMakerClient:
        """Wire a client, session manager and breaker from application settings."""
        credentials = FileMakerCredentials.from_settings(settings)
        sessions = SessionManager(
            credentials, store, transport=transport, timeout=settings.FM_TIMEOUT
        )
        return cls(
            credentials,
            sessions,
            CircuitBreaker(store),
            transport=transport,
            timeout=settings.FM_TIMEOUT,
        )

    @property
    def is_configured(self) -> bool:
        return self._credentials is not None

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Create a new httpx client bound to the configured transport."""
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout, **kwargs)

    def _base_url(self) -> str:
        if self._credentials is None:
            raise ConfigurationMissing()
        return self._credentials.base_url

    # ── Session-scoped executor ─────────────────────────────────────────

    async def with_session(self, operation: Callable[[str], Awaitable[T]]) -> T:
        """Run ``operation(token)`` behind the circuit breaker.

        Raises:
            ConfigurationMissing: FM_* settings are absent (not counted as a failure).
            CircuitOpenError: breaker is open; no network call is made.
            FileMakerError: the operation failed; auth failures are retried once first.
        """
        if not self.is_configured:
            raise ConfigurationMissing()

        if await self._breaker.is_open():
            logger.warning("filemaker.circuit_open_rejected")
            raise CircuitOpenError()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception(_is_auth_error),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("filemaker.session_expired_retrying")
                        await self._sessions.invalidate()
                    token = await self._sessions.acquire()
                    result = await operation(token)
        except ConfigurationMissing:
            raise
        except FileMakerError as exc:
            if exc.category in _HEALTHY_RESPONSE_CATEGORIES:
                await self._breaker.record_success()
            else:
                await self._breaker.record_failure()
            raise

        await self._breaker.record_success()
        return result

    # ── Core request helper ─────────────────────────────────────────────

    async def _request(
        self,
        token: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated Data API request and return ``response``."""
        url = f"{self._base_url()}/{path}"
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json_body if method != "GET" else None,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TransportError as exc:
            logger.error("filemaker.transport_error", method=method, path=path, error=str(exc))
            raise FileMakerError(f"FileMaker unreachable: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        error = error_from_response(payload, response.status_code)
        if error is not None:
            logger.debug(
                "filemaker.request_failed",
                method=method,
                path=path,
                fm_code=error.code,
                category=error.category.value,
            )
            raise error

        if not isinstance(payload, dict):
            raise FileMakerError(
                f"FileMaker returned a non-JSON response (HTTP {response.status_code})",
                http_status=response.status_code,
            )
        return payload.get("response") or {}

    @staticmethod
    def _layout_path(layout: str, *parts: str) -> str:
        segments = ["layouts", quote(layout, safe="")]
        segments.extend(quote(str(p), safe="") for p in parts)
        return "/".join(segments)

    @staticmethod
    def _portal_params(portals: list[PortalWindow], prefix: str = "_") -> dict[str, Any]:
        """Query (prefix "_") or _find body (prefix "") keys for portal windows."""
        params: dict[str, Any] = {}
        for window in portals:
            if window.limit is not None:
                params[f"{prefix}limit.{window.name}"] = str(window.limit)
            if window.offset is not None:
                params[f"{prefix}offset.{window.name}"] = str(window.offset)
        return params

    # ── Read operations ─────────────────────────────────────────────────

    async def get_records(
        self,
        token: str,
        layout: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        sort: list[dict[str, str]] | None = None,
        portals: list[PortalWindow] | None = None,
    ) -> dict[str, Any]:
        """GET a page of records. Offsets are 1-based."""
        params: dict[str, Any] = {}
        if limit:
            params["_limit"] = str(limit)
        if offset:
            params["_offset"] = str(offset)
        if sort:
            params["_sort"] = json.dumps(sort)
        if portals:
            params["portal"] = json.dumps([p.name for p in portals])
            params.update(self._portal_params(portals))

        return await self._request(
            token, "GET", self._layout_path(layout, "records"), params=params or None
        )

    async def get_record(
        self,
        token: str,
        layout: str,
        record_id: str,
        *,
        portals: list[PortalWindow] | None = None,
    ) -> dict[str, Any]:
        """GET a single record by FileMaker recordId."""
        params: dict[str, Any] = {}
        if portals:
            params["portal"] = json.dumps([p.name for p in portals])
            params.update(self._portal_params(portals))

        return await self._request(
            token,
            "GET",
            self._layout_path(layout, "records", record_id),
            params=params or None,
        )

    async def find_records(
        self,
        token: str,
        layout: str,
        query: list[dict[str, Any]],
        *,
        limit: int | None = None,
        offset: int | None = None,
        sort: list[dict[str, str]] | None = None,
        portals: list[PortalWindow] | None = None,
    ) -> dict[str, Any]:
        """POST _find with FileMaker find criteria, e.g. [{"Parc ID": "4635457003"}].

        A find with no matches raises a not_found FileMakerError (code 401).
        """
        body: dict[str, Any] = {"query": query}
        if sort:
            body["sort"] = sort
        if limit:
            body["limit"] = str(limit)
        if offset:
            body["offset"] = str(offset)
        if portals:
            body["portal"] = [p.name for p in portals]
            body.update(self._portal_params(portals, prefix=""))

        return await self._request(
            token, "POST", self._layout_path(layout, "_find"), json_body=body
        )

    async def get_all_portal_records(
        self,
        token: str,
        layout: str,
        owner_id: str,
        portal_name: str,
        page_size: int = DEFAULT_PORTAL_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Fetch every related row of one portal on one parent record.

        Requests successive offset windows and stops at the first page that
        returns fewer than ``page_size`` rows.
        """
        rows: list[dict[str, Any]] = []
        offset = 1

        while True:
            response = await self.get_record(
                token,
                layout,
                owner_id,
                portals=[PortalWindow(name=portal_name, limit=page_size, offset=offset)],
            )
            data = response.get("data") or []
            page = (data[0].get("portalData") or {}).get(portal_name, []) if data else []
            rows.extend(page)

            if len(page) < page_size:
                break
            offset += page_size

        logger.debug(
            "filemaker.portal_fetched",
            layout=layout,
            owner_id=owner_id,
            portal=portal_name,
            count=len(rows),
        )
        return rows

    # ── Write operations ────────────────────────────────────────────────

    async def create_record(
        self,
        token: str,
        layout: str,
        field_data: dict[str, Any],
        *,
        portal_data: dict[str, list[dict[str, Any]]] | None = None,
        bypass_validation: bool = True,
    ) -> dict[str, Any]:
        """Create a record. Returns {"recordId": ..., "modId": ...}."""
        body: dict[str, Any] = {"fieldData": field_data}
        if portal_data:
            body["portalData"] = portal_data
        if bypass_validation:
            body["options"] = dict(WRITE_OPTIONS)

        result = await self._request(
            token, "POST", self._layout_path(layout, "records"), json_body=body
        )
        logger.info("filemaker.record_created", layout=layout, record_id=result.get("recordId"))
        return result

    async def update_record(
        self,
        token: str,
        layout: str,
        record_id: str,
        field_data: dict[str, Any],
        *,
        mod_id: str | None = None,
        portal_data: dict[str, list[dict[str, Any]]] | None = None,
        bypass_validation: bool = True,
    ) -> dict[str, Any]:
        """Update a record. Pass ``mod_id`` for optimistic concurrency.

        A stale ``mod_id`` raises a conflict FileMakerError (code 306).
        """
        body: dict[str, Any] = {"fieldData": field_data}
        if mod_id is not None:
            body["modId"] = str(mod_id)
        if portal_data:
            body["portalData"] = portal_data
        if bypass_validation:
            body["options"] = dict(WRITE_OPTIONS)

        result = await self._request(
            token, "PATCH", self._layout_path(layout, "records", record_id), json_body=body
        )
        logger.info("filemaker.record_updated", layout=layout, record_id=record_id)
        return result

    async def duplicate_record(
        self,
        token: str,
        layout: str,
        record_id: str,
        *,
        bypass_validation: bool = True,
    ) -> dict[str, Any]:
        """Duplicate a record. Returns the new {"recordId": ..., "modId": ...}."""
        body: dict[str, Any] = {}
        if bypass_validation:
            body["options"] = dict(WRITE_OPTIONS)

        result = await self._request(
            token, "POST", self._layout_path(layout, "records", record_id), json_body=body
        )
        logger.info(
            "filemaker.record_duplicated",
            layout=layout,
            source_record_id=record_id,
            record_id=result.get("recordId"),
        )
        return result

    async def delete_record(self, token: str, layout: str, record_id: str) -> dict[str, Any]:
        """Delete a record."""
        result = await self._request(
            token, "DELETE", self._layout_path(layout, "records", record_id)
        )
        logger.info("filemaker.record_deleted", layout=layout, record_id=record_id)
        return result

    # ── Layout metadata ─────────────────────────────────────────────────

    async def get_layout_metadata(self, token: str, layout: str) -> dict[str, Any]:
        """GET /layouts/{layout}: raw fieldMetaData, portalMetaData, valueLists."""
        return await self._request(token, "GET", self._layout_path(layout))

    async def discover_fields(self, token: str, layout: str) -> LayoutMetadata:
        """Typed view of a layout's fields, portals and value lists."""
        raw = await self.get_layout_metadata(token, layout)

        def _field(entry: dict[str, Any]) -> FieldMetadata:
            return FieldMetadata(
                name=entry.get("name", ""),
                type=entry.get("type"),
                result=entry.get("result"),
                max_repeat=entry.get("maxRepeat"),
            )

        return LayoutMetadata(
            fields=[_field(f) for f in raw.get("fieldMetaData") or []],
            portals={
                name: [_field(f) for f in fields or []]
                for name, fields in (raw.get("portalMetaData") or {}).items()
            },
            value_lists={
                vl.get("name", ""): [v.get("value", "") for v in vl.get("values") or []]
                for vl in raw.get("valueLists") or []
            },
        )

    # ── Container fields ────────────────────────────────────────────────

    async def download_attachment(self, token: str, url: str) -> Attachment:
        """Stream a container field's temporary URL into memory.

        The URL is only valid for about 15 minutes after the record was read,
        so download it within the same unit of work that fetched the record.
        """
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with self._client(follow_redirects=True) as client:
                async with client.stream("GET", url, headers=headers) as response:
                    if response.status_code >= 400:
                        raise FileMakerError(
                            f"Attachment download failed with HTTP {response.status_code}",
                            category=classify_http_status(response.status_code),
                            http_status=response.status_code,
                        )
                    chunks = [chunk async for chunk in response.aiter_bytes()]
                    content_type = response.headers.get("Content-Type")
                    disposition = response.headers.get("Content-Disposition")
        except httpx.TransportError as exc:
            raise FileMakerError(f"Attachment download failed: {exc}") from exc

        filename = filename_from_content_disposition(disposition) or _fallback_filename(
            content_type
        )
        attachment = Attachment(
            filename=filename,
            content_type=content_type,
            content=b"".join(chunks),
        )
        logger.info("filemaker.attachment_downloaded", filename=filename, size=attachment.size)
        return attachment

    async def upload_to_container(
        self,
        token: str,
        layout: str,
        record_id: str,
        field_name: str,
        content: bytes,
        filename: str,
        *,
        repetition: int = 1,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """Upload a file into a container field (multipart ``upload`` part)."""
        url = (
            f"{self._base_url()}/"
            f"{self._layout_path(layout, 'records', record_id, 'containers', field_name, str(repetition))}"
        )
        mime = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {token}"},
                    files={"upload": (filename, content, mime)},
                )
        except httpx.TransportError as exc:
            raise FileMakerError(f"Container upload failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        error = error_from_response(payload, response.status_code)
        if error is not None:
            raise error

        logger.info(
            "filemaker.container_uploaded",
            layout=layout,
            record_id=record_id,
            field=field_name,
            filename=filename,
        )
        return (payload or {}).get("response") or {}
