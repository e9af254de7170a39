"""Portal persistence models -- the local working copy of FileMaker data.

Seven SQLAlchemy models:
- ProgramModel: Disposition programs (FeaturedHomes, Ready4Rehab, ...)
- BuyerModel: Purchasers; email is the dedup key when present
- PropertyModel: Parcels under compliance; parcel_id is the natural key
- SubmissionModel: Buyer compliance submissions pushed to FileMaker
- DocumentModel: Files attached to a submission (photo/document/receipt)
- CommunicationModel: Outbound notices pushed to FileMaker
- SyncMetadataModel: Singleton row tracking the last FileMaker pull
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.portal.core.database import Base

SYNC_METADATA_ID = "singleton"


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class ProgramModel(Base):
    """Disposition program. ``key`` is the short identifier, ``label`` the display name."""

    __tablename__ = "programs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    key: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class BuyerModel(Base):
    """Purchaser of a property. Buyers without email are never deduplicated."""

    __tablename__ = "buyers"

    id: Mapped[uuid.UUID] = _uuid_pk()
    first_name: Mapped[str] = mapped_column(String(200), nullable=False, default="Unknown")
    last_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(300), nullable=True)
    top_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    buyer_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class PropertyModel(Base):
    """Parcel under a compliance program.

    Columns mirror the local names in PROPERTY_FIELD_MAP; FileMaker-only
    fields with no column here are dropped by the repository on write.
    """

    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = _uuid_pk()
    parcel_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    parcel_id_dashed: Mapped[str | None] = mapped_column(String(30), nullable=True)
    address: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    buyer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("buyers.id"), nullable=True
    )
    program_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("programs.id"), nullable=True
    )

    # Program & sale
    program_type: Mapped[str] = mapped_column(String(50), nullable=False)
    date_sold: Mapped[date] = mapped_column(Date, nullable=False)
    offer_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    purchase_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Property metadata
    foreclosure_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    property_class: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sold_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gclb_owned: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    flint_area_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    minimum_bid: Mapped[float | None] = mapped_column(Float, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    availability: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tax_capture: Mapped[str | None] = mapped_column(String(100), nullable=True)
    asking_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    rehab_status_funding: Mapped[str | None] = mapped_column(String(200), nullable=True)
    delinquent_taxes: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Survey
    sev: Mapped[float | None] = mapped_column(Float, nullable=True)
    interior_condition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    fire_damage: Mapped[str | None] = mapped_column(String(100), nullable=True)
    occupancy_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    overall_condition: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Physical
    bedrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    stories: Mapped[float | None] = mapped_column(Float, nullable=True)
    sq_ft: Mapped[float | None] = mapped_column(Float, nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lot_size: Mapped[float | None] = mapped_column(Float, nullable=True)
    garage_size: Mapped[float | None] = mapped_column(Float, nullable=True)
    basement_size: Mapped[float | None] = mapped_column(Float, nullable=True)
    school: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Sale / closing
    buyer_offer_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    down_payment_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    monthly_payment_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    term_of_contract_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    applicant_home_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Compliance
    occupancy_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    insurance_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    insurance_received: Mapped[bool] = mapped_column(Boolean, default=False)
    occupancy_established: Mapped[str] = mapped_column(String(20), default="No")
    minimum_hold_expiry: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_proof_of_invest_provided: Mapped[date | None] = mapped_column(Date, nullable=True)
    compliance_1st_attempt: Mapped[date | None] = mapped_column(Date, nullable=True)
    compliance_2nd_attempt: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_contact_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scope_of_work_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    building_permit_obtained: Mapped[bool] = mapped_column(Boolean, default=False)
    rehab_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    percent_complete: Mapped[float] = mapped_column(Float, default=0)
    demo_final_cert_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    bond_required: Mapped[bool] = mapped_column(Boolean, default=False)
    bond_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    compliance_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    referred_to_lisc: Mapped[date | None] = mapped_column(Date, nullable=True)
    lisc_recommend_received: Mapped[date | None] = mapped_column(Date, nullable=True)
    lisc_recommend_sale: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Enforcement
    enforcement_level: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(50), default="active")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class SubmissionModel(Base):
    """Buyer compliance submission (progress report, proof of insurance, ...)."""

    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    property_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("properties.id"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="received")
    confirmation_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class DocumentModel(Base):
    """File uploaded with a submission. ``category`` drives the pushed counts."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = _uuid_pk()
    submission_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("submissions.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    filename: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class CommunicationModel(Base):
    """Outbound notice to a buyer about a property."""

    __tablename__ = "communications"

    id: Mapped[uuid.UUID] = _uuid_pk()
    property_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("properties.id"), nullable=True
    )
    buyer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("buyers.id"), nullable=True
    )
    action: Mapped[str | None] = mapped_column(String(100), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(20), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    template_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class SyncMetadataModel(Base):
    """Singleton bookkeeping row for FileMaker pulls (id is always "singleton")."""

    __tablename__ = "sync_metadata"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default=SYNC_METADATA_ID)
    status: Mapped[str] = mapped_column(String(20), default="idle")
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_full_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    records_synced: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
