"""Local-store contract consumed by the FileMaker bridge.

The bridge never owns portal entities; it reads and writes them through
``LocalRepository``. ``src.portal.records.repository.PortalRepository`` is the
SQLAlchemy implementation; tests use an in-memory fake.

Payload dicts passed to ``create_*``/``update_*`` use the local field names of
the field maps. Implementations ignore keys they have no column for.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field

from src.portal.filemaker.schemas import SyncMetadataRead


class LocalRecordNotFound(Exception):
    """A submission/communication id passed to a push does not exist locally."""

    def __init__(self, entity: str, record_id: str):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} not found: {record_id}")


class SyncInProgress(Exception):
    """Another sync holds the sync metadata row in the ``running`` state."""

    def __init__(self, message: str = "A FileMaker sync is already running"):
        super().__init__(message)


# ── Read Models ─────────────────────────────────────────────────────────────


class ProgramRead(BaseModel):
    id: str
    key: str
    label: str


class BuyerRead(BaseModel):
    id: str
    first_name: str = "Unknown"
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    organization: str | None = None
    top_note: str | None = None
    buyer_status: str | None = None


class PropertyRead(BaseModel):
    id: str
    parcel_id: str
    address: str = ""
    program_type: str | None = None
    status: str | None = None
    buyer_id: str | None = None
    program_id: str | None = None
    date_sold: date | None = None


class DocumentRead(BaseModel):
    id: str
    category: str
    filename: str | None = None


class SubmissionDetail(BaseModel):
    """Submission joined with its property, buyer and documents."""

    id: str
    type: str | None = None
    status: str | None = None
    confirmation_id: str | None = None
    created_at: datetime | None = None
    property: PropertyRead | None = None
    buyer: BuyerRead | None = None
    documents: list[DocumentRead] = Field(default_factory=list)

    def fields(self) -> dict[str, Any]:
        """The submission's own mapped fields."""
        return self.model_dump(include={"type", "status", "confirmation_id", "created_at"})


class CommunicationDetail(BaseModel):
    """Communication joined with its property and buyer."""

    id: str
    action: str | None = None
    channel: str | None = None
    recipient_email: str | None = None
    subject: str | None = None
    body_text: str | None = None
    status: str | None = None
    sent_at: datetime | None = None
    template_name: str | None = None
    property: PropertyRead | None = None
    buyer: BuyerRead | None = None

    def fields(self) -> dict[str, Any]:
        """The communication's own mapped fields."""
        return self.model_dump(
            include={
                "action",
                "channel",
                "recipient_email",
                "subject",
                "body_text",
                "status",
                "sent_at",
                "template_name",
            }
        )


# ── Contract ────────────────────────────────────────────────────────────────


class LocalRepository(Protocol):
    """Persistence operations the bridge needs from the portal store."""

    # Properties
    async def find_property_by_parcel_id(self, parcel_id: str) -> PropertyRead | None: ...

    async def create_property(self, data: dict[str, Any]) -> PropertyRead: ...

    async def update_property(self, property_id: str, data: dict[str, Any]) -> PropertyRead: ...

    async def count_properties(self) -> int: ...

    # Buyers
    async def find_buyer_by_email(self, email: str) -> BuyerRead | None: ...

    async def create_buyer(self, data: dict[str, Any]) -> BuyerRead: ...

    async def update_buyer(self, buyer_id: str, data: dict[str, Any]) -> BuyerRead: ...

    # Programs
    async def list_programs(self) -> list[ProgramRead]: ...

    # Outbound records
    async def get_submission_detail(self, submission_id: str) -> SubmissionDetail | None: ...

    async def get_communication_detail(
        self, communication_id: str
    ) -> CommunicationDetail | None: ...

    # Sync bookkeeping
    async def get_sync_metadata(self) -> SyncMetadataRead: ...

    async def save_sync_metadata(self, **changes: Any) -> SyncMetadataRead: ...

    async def claim_sync(self) -> bool:
        """Atomically flip status to ``running`` unless it already is.

        Returns False when another sync holds the claim.
        """
        ...
