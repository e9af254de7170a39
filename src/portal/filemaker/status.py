"""Bridge health check: configuration, connectivity, counts and sync state."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import structlog

from src.portal.filemaker.client import FileMakerClient
from src.portal.filemaker.errors import CircuitOpenError, FileMakerError
from src.portal.filemaker.field_mapping import PROPERTY_FIELD_MAP
from src.portal.filemaker.repository import LocalRepository
from src.portal.filemaker.schemas import ConnectionStatus, FieldMetadata, Layouts

logger = structlog.get_logger(__name__)


async def check_connection(
    client: FileMakerClient,
    repository: LocalRepository,
    layouts: Layouts | None = None,
    include_meta: bool = False,
) -> ConnectionStatus:
    """Probe FileMaker with a one-record read and compare against local counts.

    FileMaker failures are reported in the result rather than raised.
    """
    layouts = layouts or Layouts()
    mapped_fields = [spec.local for spec in PROPERTY_FIELD_MAP]
    circuit_open = await client.breaker.is_open()
    sync_metadata = await repository.get_sync_metadata()
    portal_count = await repository.count_properties()

    base: dict[str, Any] = {
        "mapped_fields": mapped_fields,
        "circuit_open": circuit_open,
        "sync_metadata": sync_metadata,
        "portal_record_count": portal_count,
    }

    if not client.is_configured:
        return ConnectionStatus(
            configured=False,
            reason="FileMaker environment variables not set",
            checked_at=datetime.now(timezone.utc),
            **base,
        )

    async def _probe(token: str) -> dict[str, Any]:
        response = await client.get_records(token, layouts.properties, limit=1)
        info = response.get("dataInfo") or {}
        result: dict[str, Any] = {
            "fm_record_count": info.get("totalRecordCount", 0),
            "database": info.get("database"),
            "layout": info.get("layout"),
            "table": info.get("table"),
        }
        if include_meta:
            try:
                metadata = await client.discover_fields(token, layouts.properties)
                result["field_metadata"] = metadata.fields
            except FileMakerError as exc:
                logger.warning("filemaker.status_metadata_failed", error=str(exc))
                result["field_metadata"] = None
                result["meta_error"] = "Could not fetch layout metadata"
        return result

    started = time.monotonic()
    try:
        probe = await client.with_session(_probe)
    except FileMakerError as exc:
        logger.error(
            "filemaker.status_check_failed",
            error=str(exc),
            fm_code=exc.code,
            category=exc.category.value,
        )
        base["circuit_open"] = circuit_open or isinstance(exc, CircuitOpenError)
        return ConnectionStatus(
            configured=True,
            connected=False,
            error=str(exc),
            error_category=exc.category.value,
            fm_code=exc.code,
            latency_ms=int((time.monotonic() - started) * 1000),
            checked_at=datetime.now(timezone.utc),
            **base,
        )

    fields: list[FieldMetadata] | None = probe.pop("field_metadata", None)
    return ConnectionStatus(
        configured=True,
        connected=True,
        latency_ms=int((time.monotonic() - started) * 1000),
        delta=probe["fm_record_count"] - portal_count,
        field_metadata=fields,
        checked_at=datetime.now(timezone.utc),
        **probe,
        **base,
    )
