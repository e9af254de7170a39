"""Pull reconciliation: FileMaker property records -> local portal store.

SyncReconciler.sync() pages through the property layout, maps each record
with the field maps, resolves its buyer and program, and upserts the local
property by parcel id. One record's failure never aborts the batch; it is
recorded in SyncStats.errors and the loop continues.

Merge policy: core fields are always overwritten from FileMaker, optional
fields are only written when FileMaker has a value, so a local edit to an
optional field survives a FileMaker record that has not caught up yet.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from typing import Any

import structlog

from src.portal.filemaker.client import FileMakerClient
from src.portal.filemaker.errors import ConfigurationMissing, ErrorCategory, FileMakerError
from src.portal.filemaker.field_mapping import (
    BUYER_FIELD_MAP,
    PROPERTY_FIELD_MAP,
    FieldClass,
    fields_of_class,
    from_external,
)
from src.portal.filemaker.repository import LocalRepository, ProgramRead, SyncInProgress
from src.portal.filemaker.schemas import (
    Layouts,
    SyncMode,
    SyncPreview,
    SyncRecordError,
    SyncReport,
    SyncStats,
)

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
PREVIEW_SIZE = 5
DEFAULT_PROGRAM_KEY = "FeaturedHomes"

# Optional fields are written only when FileMaker supplies a value.
_PRESENCE_CLASSES = {FieldClass.NUMERIC, FieldClass.CURRENCY, FieldClass.BOOLEAN}
_TRUTHY_CLASSES = {FieldClass.DATE, FieldClass.TEXT, FieldClass.ENUMERATION}

# Fields set on every upsert, from FileMaker or their default.
_CORE_FIELDS = frozenset(
    {
        "address",
        "program_type",
        "date_sold",
        "enforcement_level",
        "status",
        "percent_complete",
        "insurance_received",
        "occupancy_established",
        "scope_of_work_approved",
        "building_permit_obtained",
        "bond_required",
    }
)


def format_fm_timestamp(value: datetime) -> str:
    """FileMaker find syntax for timestamps: MM/DD/YYYY HH:MM:SS."""
    return value.strftime("%m/%d/%Y %H:%M:%S")


class SyncReconciler:
    """Pulls property records from FileMaker into the local store.

    Args:
        client: FileMakerClient used for every FileMaker call.
        repository: Local store implementing LocalRepository.
        layouts: FileMaker layout names.
    """

    def __init__(
        self,
        client: FileMakerClient,
        repository: LocalRepository,
        layouts: Layouts | None = None,
    ) -> None:
        self._client = client
        self._repo = repository
        self._layouts = layouts or Layouts()
        self._presence_fields = fields_of_class(PROPERTY_FIELD_MAP, _PRESENCE_CLASSES)
        self._truthy_fields = fields_of_class(PROPERTY_FIELD_MAP, _TRUTHY_CLASSES)

    async def sync(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        dry_run: bool = False,
        mode: SyncMode = SyncMode.FULL,
    ) -> SyncReport:
        """Run one pull.

        Args:
            limit: Page size for each FileMaker request.
            dry_run: Map the first few records and return them; write nothing.
            mode: FULL pages through every record; DELTA only fetches records
                modified since the last successful sync.

        Returns:
            SyncReport with stats (real run) or a preview (dry run).

        Raises:
            ConfigurationMissing: FM_* settings are absent.
            SyncInProgress: another sync is marked running.
            FileMakerError: fetching from FileMaker failed (metadata marked failed).
        """
        if not self._client.is_configured:
            raise ConfigurationMissing()

        metadata = await self._repo.get_sync_metadata()
        if not await self._repo.claim_sync():
            raise SyncInProgress()

        stats = SyncStats()
        try:
            since = metadata.last_sync_at or datetime(1970, 1, 1, tzinfo=timezone.utc)
            records = await self._client.with_session(
                lambda token: self._fetch(token, limit, mode, since)
            )
            logger.info("filemaker.sync_fetched", mode=mode.value, records=len(records))

            if dry_run:
                await self._repo.save_sync_metadata(status="idle")
                return SyncReport(
                    mode=mode,
                    dry_run=True,
                    fetched=len(records),
                    preview=[self._preview(r) for r in records[:PREVIEW_SIZE]],
                )

            programs = await self._repo.list_programs()
            for record in records:
                await self._reconcile(record, programs, stats)

            logger.info(
                "filemaker.sync_complete",
                mode=mode.value,
                synced=stats.synced,
                created=stats.created,
                updated=stats.updated,
                skipped=stats.skipped,
                error_count=len(stats.errors),
            )

            synced_at = datetime.now(timezone.utc)
            changes: dict[str, Any] = {
                "status": "idle",
                "last_sync_at": synced_at,
                "records_synced": len(records),
            }
            if mode == SyncMode.FULL:
                changes["last_full_sync"] = synced_at
            await self._repo.save_sync_metadata(**changes)

            return SyncReport(
                mode=mode,
                dry_run=False,
                fetched=len(records),
                stats=stats,
                synced_at=synced_at,
            )
        except Exception as exc:
            logger.error("filemaker.sync_failed", mode=mode.value, error=str(exc))
            await self._mark_failed(str(exc))
            raise
        except asyncio.CancelledError:
            # Release the claim so the next sync is not locked out.
            logger.warning("filemaker.sync_cancelled", mode=mode.value)
            await self._mark_failed("Sync cancelled")
            raise

    # ── Fetch ───────────────────────────────────────────────────────────

    async def _fetch(
        self, token: str, limit: int, mode: SyncMode, since: datetime
    ) -> list[dict[str, Any]]:
        """Page from offset 1 until a short page or a not_found response."""
        query = [{"ModificationTimestamp": f">={format_fm_timestamp(since)}"}]
        records: list[dict[str, Any]] = []
        offset = 1

        while True:
            try:
                if mode == SyncMode.DELTA:
                    response = await self._client.find_records(
                        token, self._layouts.properties, query, limit=limit, offset=offset
                    )
                else:
                    response = await self._client.get_records(
                        token, self._layouts.properties, limit=limit, offset=offset
                    )
            except FileMakerError as exc:
                if exc.category == ErrorCategory.NOT_FOUND:
                    break
                raise

            page = response.get("data") or []
            records.extend(page)
            if len(page) < limit:
                break
            offset += len(page)

        return records

    @staticmethod
    def _preview(record: dict[str, Any]) -> SyncPreview:
        field_data = record.get("fieldData") or {}
        return SyncPreview(
            record_id=record.get("recordId"),
            field_data=field_data,
            mapped=from_external(field_data, PROPERTY_FIELD_MAP),
        )

    # ── Per-record reconciliation ───────────────────────────────────────

    async def _reconcile(
        self,
        record: dict[str, Any],
        programs: list[ProgramRead],
        stats: SyncStats,
    ) -> None:
        record_id = record.get("recordId")
        parcel_id = None
        try:
            field_data = record.get("fieldData") or {}
            property_data = from_external(field_data, PROPERTY_FIELD_MAP)
            buyer_data = from_external(field_data, BUYER_FIELD_MAP)

            parcel_id = property_data.get("parcel_id")
            if not parcel_id:
                stats.skipped += 1
                stats.errors.append(
                    SyncRecordError(record_id=record_id, error="Missing parcel id")
                )
                return

            buyer_id = await self._resolve_buyer(buyer_data)

            program_key = property_data.get("program_type") or DEFAULT_PROGRAM_KEY
            program = _resolve_program(programs, program_key)
            if program is None:
                stats.skipped += 1
                stats.errors.append(
                    SyncRecordError(
                        record_id=record_id,
                        parcel_id=parcel_id,
                        error=f"Unknown program type: {program_key}",
                    )
                )
                return

            payload = self._property_payload(property_data, program_key)
            payload["buyer_id"] = buyer_id
            payload["program_id"] = program.id

            existing = await self._repo.find_property_by_parcel_id(parcel_id)
            if existing is not None:
                await self._repo.update_property(existing.id, payload)
                stats.updated += 1
            else:
                await self._repo.create_property({"parcel_id": parcel_id, **payload})
                stats.created += 1

            stats.synced += 1
        except Exception as exc:
            logger.warning(
                "filemaker.sync_record_failed",
                record_id=record_id,
                parcel_id=parcel_id,
                error=str(exc),
            )
            stats.errors.append(
                SyncRecordError(record_id=record_id, parcel_id=parcel_id, error=str(exc))
            )

    async def _resolve_buyer(self, buyer_data: dict[str, Any]) -> str:
        """Match by email when FileMaker has one; otherwise always create."""
        email = buyer_data.get("email")

        if email:
            existing = await self._repo.find_buyer_by_email(email)
            if existing is not None:
                changes = {
                    key: buyer_data[key]
                    for key in ("first_name", "last_name", "phone", "organization")
                    if buyer_data.get(key)
                }
                for key in ("top_note", "buyer_status"):
                    if buyer_data.get(key) is not None:
                        changes[key] = buyer_data[key]
                if changes:
                    await self._repo.update_buyer(existing.id, changes)
                return existing.id

        # No email means no identity to deduplicate against.
        created = await self._repo.create_buyer(
            {
                "first_name": buyer_data.get("first_name") or "Unknown",
                "last_name": buyer_data.get("last_name") or "",
                "email": email or None,
                "phone": buyer_data.get("phone"),
                "organization": buyer_data.get("organization"),
                "top_note": buyer_data.get("top_note"),
                "buyer_status": buyer_data.get("buyer_status"),
            }
        )
        return created.id

    def _property_payload(self, mapped: dict[str, Any], program_key: str) -> dict[str, Any]:
        def _or(key: str, default: Any) -> Any:
            value = mapped.get(key)
            return default if value is None else value

        payload: dict[str, Any] = {
            "address": mapped.get("address") or "",
            "program_type": program_key,
            "date_sold": mapped.get("date_sold") or date.today(),
            "enforcement_level": _or("enforcement_level", 0),
            "status": mapped.get("status") or "active",
            "percent_complete": _or("percent_complete", 0),
            "insurance_received": _or("insurance_received", False),
            "occupancy_established": _or("occupancy_established", "No"),
            "scope_of_work_approved": _or("scope_of_work_approved", False),
            "building_permit_obtained": _or("building_permit_obtained", False),
            "bond_required": _or("bond_required", False),
        }

        for key, value in mapped.items():
            if key in _CORE_FIELDS or key == "parcel_id":
                continue
            if key in self._presence_fields:
                if value is not None:
                    payload[key] = value
            elif key in self._truthy_fields and value:
                payload[key] = value

        return payload

    async def _mark_failed(self, message: str) -> None:
        try:
            await self._repo.save_sync_metadata(status="failed", error_message=message)
        except Exception as exc:
            logger.warning("filemaker.sync_metadata_update_failed", error=str(exc))


def _resolve_program(programs: list[ProgramRead], key: str) -> ProgramRead | None:
    for program in programs:
        if program.key == key:
            return program
    for program in programs:
        if program.label == key:
            return program
    return None
