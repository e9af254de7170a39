"""Portal repository -- async persistence for the FileMaker bridge.

Implements the LocalRepository contract over SQLAlchemy with the
session_factory callable pattern. Payload dicts are filtered to the model's
columns before writing, so FileMaker-only keys never reach the ORM.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.portal.filemaker.repository import (
    BuyerRead,
    CommunicationDetail,
    DocumentRead,
    ProgramRead,
    PropertyRead,
    SubmissionDetail,
)
from src.portal.filemaker.schemas import SyncMetadataRead
from src.portal.records.models import (
    SYNC_METADATA_ID,
    BuyerModel,
    CommunicationModel,
    DocumentModel,
    ProgramModel,
    PropertyModel,
    SubmissionModel,
    SyncMetadataModel,
)

logger = structlog.get_logger(__name__)

_PROTECTED_COLUMNS = frozenset({"id", "created_at", "updated_at"})


# ── Serialization Helpers ───────────────────────────────────────────────────


def _columns(model_cls: type) -> frozenset[str]:
    return frozenset(c.key for c in model_cls.__table__.columns)


def _writable(model_cls: type, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only keys that are writable columns; coerce FK strings to UUIDs."""
    allowed = _columns(model_cls) - _PROTECTED_COLUMNS
    clean: dict[str, Any] = {}
    for key, value in data.items():
        if key not in allowed:
            continue
        if key.endswith("_id") and key != "parcel_id" and isinstance(value, str):
            value = uuid.UUID(value)
        clean[key] = value
    return clean


def _parse_uuid(value: str) -> uuid.UUID | None:
    """UUID from a caller-supplied id; None when it is not one."""
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _model_to_program(model: ProgramModel) -> ProgramRead:
    return ProgramRead(id=str(model.id), key=model.key, label=model.label)


def _model_to_buyer(model: BuyerModel) -> BuyerRead:
    return BuyerRead(
        id=str(model.id),
        first_name=model.first_name,
        last_name=model.last_name,
        email=model.email,
        phone=model.phone,
        organization=model.organization,
        top_note=model.top_note,
        buyer_status=model.buyer_status,
    )


def _model_to_property(model: PropertyModel) -> PropertyRead:
    return PropertyRead(
        id=str(model.id),
        parcel_id=model.parcel_id,
        address=model.address,
        program_type=model.program_type,
        status=model.status,
        buyer_id=str(model.buyer_id) if model.buyer_id else None,
        program_id=str(model.program_id) if model.program_id else None,
        date_sold=model.date_sold,
    )


def _model_to_sync_metadata(model: SyncMetadataModel) -> SyncMetadataRead:
    return SyncMetadataRead(
        status=model.status,
        last_sync_at=model.last_sync_at,
        last_full_sync=model.last_full_sync,
        records_synced=model.records_synced or 0,
        error_message=model.error_message,
        updated_at=model.updated_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class PortalRepository:
    """Async CRUD for properties, buyers, programs and outbound records.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Properties ──────────────────────────────────────────────────────────

    async def find_property_by_parcel_id(self, parcel_id: str) -> PropertyRead | None:
        async for session in self._session_factory():
            stmt = select(PropertyModel).where(PropertyModel.parcel_id == parcel_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_property(model)

    async def create_property(self, data: dict[str, Any]) -> PropertyRead:
        async for session in self._session_factory():
            model = PropertyModel(**_writable(PropertyModel, data))
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_property(model)

    async def update_property(self, property_id: str, data: dict[str, Any]) -> PropertyRead:
        """Apply ``data`` to an existing property.

        Raises:
            ValueError: If no property with ``property_id`` exists.
        """
        async for session in self._session_factory():
            model = await session.get(PropertyModel, uuid.UUID(property_id))
            if model is None:
                raise ValueError(f"Property not found: {property_id}")
            for key, value in _writable(PropertyModel, data).items():
                setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_property(model)

    async def count_properties(self) -> int:
        async for session in self._session_factory():
            result = await session.execute(select(func.count()).select_from(PropertyModel))
            return int(result.scalar_one())

    # ── Buyers ──────────────────────────────────────────────────────────────

    async def find_buyer_by_email(self, email: str) -> BuyerRead | None:
        async for session in self._session_factory():
            stmt = select(BuyerModel).where(BuyerModel.email == email).limit(1)
            result = await session.execute(stmt)
            model = result.scalars().first()
            if model is None:
                return None
            return _model_to_buyer(model)

    async def create_buyer(self, data: dict[str, Any]) -> BuyerRead:
        async for session in self._session_factory():
            model = BuyerModel(**_writable(BuyerModel, data))
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_buyer(model)

    async def update_buyer(self, buyer_id: str, data: dict[str, Any]) -> BuyerRead:
        async for session in self._session_factory():
            model = await session.get(BuyerModel, uuid.UUID(buyer_id))
            if model is None:
                raise ValueError(f"Buyer not found: {buyer_id}")
            for key, value in _writable(BuyerModel, data).items():
                setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_buyer(model)

    # ── Programs ────────────────────────────────────────────────────────────

    async def list_programs(self) -> list[ProgramRead]:
        async for session in self._session_factory():
            result = await session.execute(select(ProgramModel))
            return [_model_to_program(m) for m in result.scalars().all()]

    # ── Outbound Records ────────────────────────────────────────────────────

    async def get_submission_detail(self, submission_id: str) -> SubmissionDetail | None:
        """Load a submission with its property, the property's buyer and documents."""
        key = _parse_uuid(submission_id)
        if key is None:
            return None

        async for session in self._session_factory():
            submission = await session.get(SubmissionModel, key)
            if submission is None:
                return None

            prop = await session.get(PropertyModel, submission.property_id)
            buyer = None
            if prop is not None and prop.buyer_id is not None:
                buyer = await session.get(BuyerModel, prop.buyer_id)

            docs = await session.execute(
                select(DocumentModel).where(DocumentModel.submission_id == submission.id)
            )

            return SubmissionDetail(
                id=str(submission.id),
                type=submission.type,
                status=submission.status,
                confirmation_id=submission.confirmation_id,
                created_at=submission.created_at,
                property=_model_to_property(prop) if prop else None,
                buyer=_model_to_buyer(buyer) if buyer else None,
                documents=[
                    DocumentRead(id=str(d.id), category=d.category, filename=d.filename)
                    for d in docs.scalars().all()
                ],
            )

    async def get_communication_detail(
        self, communication_id: str
    ) -> CommunicationDetail | None:
        key = _parse_uuid(communication_id)
        if key is None:
            return None

        async for session in self._session_factory():
            comm = await session.get(CommunicationModel, key)
            if comm is None:
                return None

            prop = await session.get(PropertyModel, comm.property_id) if comm.property_id else None
            buyer = await session.get(BuyerModel, comm.buyer_id) if comm.buyer_id else None

            return CommunicationDetail(
                id=str(comm.id),
                action=comm.action,
                channel=comm.channel,
                recipient_email=comm.recipient_email,
                subject=comm.subject,
                body_text=comm.body_text,
                status=comm.status,
                sent_at=comm.sent_at,
                template_name=comm.template_name,
                property=_model_to_property(prop) if prop else None,
                buyer=_model_to_buyer(buyer) if buyer else None,
            )

    # ── Sync Metadata ───────────────────────────────────────────────────────

    async def get_sync_metadata(self) -> SyncMetadataRead:
        """Return the singleton row, creating it on first use."""
        async for session in self._session_factory():
            model = await session.get(SyncMetadataModel, SYNC_METADATA_ID)
            if model is None:
                model = SyncMetadataModel(id=SYNC_METADATA_ID, status="idle", records_synced=0)
                session.add(model)
                await session.commit()
                await session.refresh(model)
            return _model_to_sync_metadata(model)

    async def save_sync_metadata(self, **changes: Any) -> SyncMetadataRead:
        async for session in self._session_factory():
            model = await session.get(SyncMetadataModel, SYNC_METADATA_ID)
            if model is None:
                model = SyncMetadataModel(id=SYNC_METADATA_ID, status="idle", records_synced=0)
                session.add(model)
            for key, value in _writable(SyncMetadataModel, changes).items():
                setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            logger.debug("portal.sync_metadata_saved", status=model.status)
            return _model_to_sync_metadata(model)

    async def claim_sync(self) -> bool:
        """Conditional UPDATE on the singleton row; True if this caller won."""
        await self.get_sync_metadata()
        async for session in self._session_factory():
            result = await session.execute(
                update(SyncMetadataModel)
                .where(
                    SyncMetadataModel.id == SYNC_METADATA_ID,
                    SyncMetadataModel.status != "running",
                )
                .values(status="running", error_message=None)
            )
            await session.commit()
            claimed = result.rowcount == 1
            logger.debug("portal.sync_claim", claimed=claimed)
            return claimed
