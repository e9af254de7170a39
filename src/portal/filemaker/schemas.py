"""Pydantic schemas for the FileMaker bridge.

Defines:
- Connection config: FileMakerCredentials, Layouts
- Request options: PortalWindow
- Metadata: FieldMetadata, LayoutMetadata
- Attachments: Attachment
- Sync reporting: SyncMode, SyncRecordError, SyncStats, SyncPreview, SyncReport
- Status reporting: ConnectionStatus
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, Field

from src.portal.config import Settings

FM_API_VERSION = "v1"


# ── Connection Config ───────────────────────────────────────────────────────


class FileMakerCredentials(BaseModel):
    """The four settings required to talk to the Data API."""

    server_url: str
    database: str
    username: str
    password: str

    @property
    def base_url(self) -> str:
        """Data API root for the configured database (no trailing slash)."""
        server = self.server_url.rstrip("/")
        return f"{server}/fmi/data/{FM_API_VERSION}/databases/{quote(self.database, safe='')}"

    @classmethod
    def from_settings(cls, settings: Settings) -> FileMakerCredentials | None:
        """Return credentials, or None if any required FM_* setting is blank."""
        if not settings.filemaker_configured():
            return None
        return cls(
            server_url=settings.FM_SERVER_URL,
            database=settings.FM_DATABASE,
            username=settings.FM_USERNAME,
            password=settings.FM_PASSWORD,
        )


class Layouts(BaseModel):
    """FileMaker layout names per entity (env-overridable)."""

    properties: str = "PARC - Form"
    buyers: str = "PARC - Form"
    submissions: str = "BuyerSubmissions"
    communications: str = "CommunicationLog"

    @classmethod
    def from_settings(cls, settings: Settings) -> Layouts:
        return cls(
            properties=settings.FM_LAYOUT_PROPERTIES,
            buyers=settings.FM_LAYOUT_BUYERS,
            submissions=settings.FM_LAYOUT_SUBMISSIONS,
            communications=settings.FM_LAYOUT_COMMUNICATIONS,
        )


# ── Request Options ─────────────────────────────────────────────────────────


class PortalWindow(BaseModel):
    """A page of related (portal) records to include with a parent record."""

    name: str
    limit: int | None = None
    offset: int | None = None


# ── Layout Metadata ─────────────────────────────────────────────────────────


class FieldMetadata(BaseModel):
    """One field as described by GET /layouts/{layout}."""

    name: str
    type: str | None = None
    result: str | None = None
    max_repeat: int | None = None


class LayoutMetadata(BaseModel):
    """Fields, portals and value lists exposed by a layout."""

    fields: list[FieldMetadata] = Field(default_factory=list)
    portals: dict[str, list[FieldMetadata]] = Field(default_factory=dict)
    value_lists: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


# ── Attachments ─────────────────────────────────────────────────────────────


class Attachment(BaseModel):
    """Bytes downloaded from a container field's temporary URL."""

    filename: str
    content_type: str | None = None
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


# ── Sync Reporting ──────────────────────────────────────────────────────────


class SyncMode(str, Enum):
    """How records are selected from FileMaker for a pull."""

    FULL = "full"
    DELTA = "delta"


class SyncRecordError(BaseModel):
    """Why a single FileMaker record was not synced."""

    record_id: str | None = None
    parcel_id: str | None = None
    error: str


class SyncStats(BaseModel):
    """Per-invocation batch statistics. Never persisted."""

    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[SyncRecordError] = Field(default_factory=list)


class SyncPreview(BaseModel):
    """Dry-run view of one FileMaker record and its mapped local shape."""

    record_id: str | None = None
    field_data: dict[str, Any] = Field(default_factory=dict)
    mapped: dict[str, Any] = Field(default_factory=dict)


class SyncReport(BaseModel):
    """Result of SyncReconciler.sync().

    ``stats`` is None for a dry run; ``preview`` is empty for a real run.
    """

    mode: SyncMode = SyncMode.FULL
    dry_run: bool = False
    fetched: int = 0
    stats: SyncStats | None = None
    preview: list[SyncPreview] = Field(default_factory=list)
    synced_at: datetime | None = None


# ── Status Reporting ────────────────────────────────────────────────────────


class SyncMetadataRead(BaseModel):
    """Bookkeeping row for the last pull."""

    status: str = "idle"
    last_sync_at: datetime | None = None
    last_full_sync: datetime | None = None
    records_synced: int = 0
    error_message: str | None = None
    updated_at: datetime | None = None


class ConnectionStatus(BaseModel):
    """Health report for the bridge (never raises for FileMaker failures)."""

    configured: bool
    connected: bool = False
    reason: str | None = None
    error: str | None = None
    error_category: str | None = None
    fm_code: str | None = None
    latency_ms: int | None = None
    fm_record_count: int | None = None
    database: str | None = None
    layout: str | None = None
    table: str | None = None
    portal_record_count: int = 0
    delta: int | None = None
    mapped_fields: list[str] = Field(default_factory=list)
    field_metadata: list[FieldMetadata] | None = None
    meta_error: str | None = None
    circuit_open: bool = False
    sync_metadata: SyncMetadataRead | None = None
    checked_at: datetime
