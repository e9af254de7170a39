"""FileMaker <-> portal field mappings and value conversion.

Single source of truth for translating local field names to FileMaker layout
field names, in both directions. Each entry is a ``FieldSpec`` carrying its
``FieldClass``, which selects the value conversion.

Unresolved entries document a FileMaker field whose real name has not been
confirmed on the layout yet (``TBD_*``). They are read if FileMaker ever
returns them but are never written.

Defines:
- FieldClass, FieldSpec, FieldMap
- PROPERTY_FIELD_MAP, BUYER_FIELD_MAP, SUBMISSION_FIELD_MAP, COMMUNICATION_FIELD_MAP
- SALES_DISPOSITION_MAP: "Sales Disposition" checkbox label -> program key
- to_external() / from_external(): whole-record conversion
- split_name() / join_name(), normalize_parcel_id() / format_parcel_id_dashed()
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from functools import cached_property
from typing import Any


class FieldClass(str, Enum):
    """Conversion rule for a mapped field."""

    DATE = "date"
    BOOLEAN = "boolean"
    CURRENCY = "currency"
    NUMERIC = "numeric"
    ENUMERATION = "enumeration"
    TEXT = "text"
    NAME = "name"  # single FM name field <-> first_name/last_name
    PARCEL_ID = "parcel_id"  # natural key, normalised to digits on read


@dataclass(frozen=True)
class FieldSpec:
    """One local field and its FileMaker counterpart."""

    local: str
    external: str
    field_class: FieldClass = FieldClass.TEXT
    unresolved: bool = False
    choices: Mapping[str, str] | None = None  # ENUMERATION: FM label -> local value


@dataclass(frozen=True)
class FieldMap:
    """Fixed, ordered table of FieldSpecs for one entity type."""

    entity: str
    specs: tuple[FieldSpec, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.specs)

    def __len__(self) -> int:
        return len(self.specs)

    @cached_property
    def by_local(self) -> dict[str, FieldSpec]:
        return {spec.local: spec for spec in self.specs}

    @cached_property
    def by_external(self) -> dict[str, FieldSpec]:
        """Reverse index, built once per map."""
        return {spec.external: spec for spec in self.specs}

    def external_name(self, local: str) -> str:
        return self.by_local[local].external

    def writable(self) -> list[FieldSpec]:
        return [spec for spec in self.specs if not spec.unresolved]

    def unresolved(self) -> list[FieldSpec]:
        return [spec for spec in self.specs if spec.unresolved]


# ── Sales Disposition -> program type ──────────────────────────────────────
# FM uses checkboxes for "Sales Disposition"; the portal stores one program key.

SALES_DISPOSITION_MAP: dict[str, str] = {
    "Featured": "FeaturedHomes",
    "FH adj VL": "FeaturedHomes",  # Featured Homes adjacent vacant lot
    "R4R": "Ready4Rehab",
    "R4R adj VL": "Ready4Rehab",
    "Demo": "Demolition",
    "VIP": "VIP",
    "Comm/I": "Commercial",
    "Dev Lot": "DeveloperLot",
    "RealDR": "RealDR",
    "Occupant": "Occupant",
    "Vacant Land": "VacantLand",
    "Realtor": "Realtor",
}


def _specs(*rows: tuple) -> tuple[FieldSpec, ...]:
    return tuple(FieldSpec(*row) for row in rows)


D, B, C, N, E, T = (
    FieldClass.DATE,
    FieldClass.BOOLEAN,
    FieldClass.CURRENCY,
    FieldClass.NUMERIC,
    FieldClass.ENUMERATION,
    FieldClass.TEXT,
)
TBD = True

# ── Property fields (PARC - Form layout) ───────────────────────────────────

PROPERTY_FIELD_MAP = FieldMap(
    "property",
    _specs(
        # Identifiers
        ("parcel_id", "Parc ID", FieldClass.PARCEL_ID),
        ("parcel_id_dashed", "PID w/Dashes", T),
        ("address", "Address", T),
        # Program & sale info
        ("program_type", "Sales Disposition", E, False, SALES_DISPOSITION_MAP),
        ("date_sold", "Date Sold", D),
        ("offer_type", "Sold Auction", T),
        ("purchase_type", "Purchase Cat", T),
        # Property metadata
        ("foreclosure_year", "Foreclosure Year", N),
        ("property_class", "Property Class", T),
        ("sold_status", "Sold Status", T),
        ("gclb_owned", "GCLB Owned", B),
        ("flint_area_name", "Flint Area Name", T),
        ("minimum_bid", "Minimum Bid", C),
        ("category", "Category", T),
        ("availability", "Availability", T),
        ("tax_capture", "Tax Capture", T),
        ("asking_price", "Asking Price", C),
        ("rehab_status_funding", "Rehab Status / Funding", T),
        ("delinquent_taxes", "Del. taxes on property?", B),
        # Survey data
        ("sev", "SEV", C),
        ("interior_condition", "interior condition", T),
        ("fire_damage", "fire_damage", T),
        ("occupancy_status", "occupancy_status", T),
        ("overall_condition", "LB_Overall condition", T),
        # Physical details
        ("bedrooms", "Bedrooms", N),
        ("baths", "Baths", N),
        ("stories", "Stories", N),
        ("sq_ft", "Sq Ft", N),
        ("year_built", "Year Built", N),
        ("lot_size", "Lot Size (Acreage)", C),
        ("garage_size", "Garage", N),
        ("basement_size", "Basement", N),
        ("school", "School", T),
        # Featured Homes sale/closing
        ("buyer_offer_date", "Buyer Offer Date", D),
        ("down_payment_amount", "Down payment amount", C),
        ("monthly_payment_amount", "Monthly Payment Amount", C),
        ("term_of_contract_months", "Term of Contract in Months", N),
        ("applicant_home_conditions", "Applicant Home_Property Conditions", T),
        # Compliance dates -- names not confirmed on the layout yet
        ("occupancy_deadline", "TBD_Occupancy_Deadline", D, TBD),
        ("insurance_due_date", "TBD_Insurance_Due_Date", D, TBD),
        ("insurance_received", "TBD_Insurance_Received", B, TBD),
        ("occupancy_established", "TBD_Occupancy_Established", T, TBD),
        ("minimum_hold_expiry", "TBD_Minimum_Hold_Expiry", D, TBD),
        # Rehab/compliance
        ("date_proof_of_invest_provided", "Date Proof of Invest provided", D),
        ("compliance_1st_attempt", "Compliance 1st Attempt", D),
        ("compliance_2nd_attempt", "Compliance 2nd Attempt", D),
        ("last_contact_date", "TBD_Last_Contact_Date", D, TBD),
        ("scope_of_work_approved", "TBD_Scope_Work_Approved", B, TBD),
        ("building_permit_obtained", "TBD_Building_Permit_Obtained", B, TBD),
        ("rehab_deadline", "TBD_Rehab_Deadline", D, TBD),
        ("percent_complete", "TBD_Percent_Complete", N, TBD),
        # Demo / bond
        ("demo_final_cert_date", "Demo Final Cert Date", D),
        ("bond_required", "Bond Required", B),
        ("bond_amount", "If yes, Bond amount", C),
        # VIP
        ("compliance_type", "Compliance", T),
        # LISC
        ("referred_to_lisc", "Referred to LISC", D),
        ("lisc_recommend_received", "LISC recommend Received", D),
        ("lisc_recommend_sale", "LISC recommend Sale", D),
        # Enforcement
        ("enforcement_level", "TBD_Enforcement_Level", N, TBD),
        ("status", "Status", T),
    ),
)

# ── Buyer fields ───────────────────────────────────────────────────────────
# Buyers are a portal on the property layout. FM keeps a single "Name" field.

BUYER_FIELD_MAP = FieldMap(
    "buyer",
    _specs(
        ("full_name", "Name", FieldClass.NAME),
        ("organization", "Organization", T),
        ("co_applicant", "Co-Applicant", T),
        ("interest_type", "Interest Type", T),
        ("date_received", "Date Rcd", D),
        ("closing", "Closing", D),
        ("lc_forfeit", "LC Forfeit", B),
        ("treas_revert", "Treas Revert", B),
        ("buyer_status", "Status", T),
        ("top_note", "Top Note", T),
        ("email", "TBD_Buyer_Email", T, TBD),
        ("phone", "TBD_Buyer_Phone", T, TBD),
    ),
)

# ── Submission fields (BuyerSubmissions layout) ────────────────────────────

SUBMISSION_FIELD_MAP = FieldMap(
    "submission",
    _specs(
        ("type", "Submission_Type", T),
        ("status", "Submission_Status", T),
        ("confirmation_id", "Confirmation_ID", T),
        ("created_at", "Date_Submitted", D),
    ),
)

# ── Communication fields (CommunicationLog layout) ─────────────────────────

COMMUNICATION_FIELD_MAP = FieldMap(
    "communication",
    _specs(
        ("action", "Communication_Action", T),
        ("channel", "Communication_Channel", T),
        ("recipient_email", "Recipient_Email", T),
        ("subject", "Email_Subject", T),
        ("body_text", "Email_Body", T),
        ("status", "Communication_Status", T),
        ("sent_at", "Date_Sent", D),
        ("template_name", "Template_Name", T),
    ),
)

del D, B, C, N, E, T, TBD


# ── Parcel IDs ─────────────────────────────────────────────────────────────


def normalize_parcel_id(raw: Any) -> str:
    """FM stores both "4635457003" and "46-35-457-003"; keep the bare form."""
    if raw is None:
        return ""
    return re.sub(r"[-\s]", "", str(raw)).strip()


def format_parcel_id_dashed(parcel_id: Any) -> str:
    """"4635457003" -> "46-35-457-003". Non 10-digit input is returned digits-only."""
    if not parcel_id:
        return ""
    clean = re.sub(r"\D", "", str(parcel_id))
    if len(clean) != 10:
        return clean
    return f"{clean[0:2]}-{clean[2:4]}-{clean[4:7]}-{clean[7:10]}"


# ── Names ──────────────────────────────────────────────────────────────────


def split_name(full_name: Any) -> dict[str, str]:
    """Split FM's single name field into first/last.

    "Smith, John" -> John / Smith; "John Smith" -> John / Smith;
    "Madonna" -> Madonna / ""; empty -> Unknown / "".
    """
    trimmed = str(full_name).strip() if full_name else ""
    if not trimmed:
        return {"first_name": "Unknown", "last_name": ""}

    if "," in trimmed:
        last, _, rest = trimmed.partition(",")
        return {"first_name": rest.strip() or "Unknown", "last_name": last.strip()}

    parts = trimmed.split()
    if len(parts) == 1:
        return {"first_name": parts[0], "last_name": ""}
    return {"first_name": parts[0], "last_name": " ".join(parts[1:])}


def join_name(first_name: str | None, last_name: str | None) -> str:
    return " ".join(part for part in (first_name, last_name) if part)


# ── Value converters ───────────────────────────────────────────────────────


def _parse_local_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return datetime.strptime(text, "%m/%d/%Y").date()
        except ValueError:
            return None
    return None


def to_fm_date(value: Any) -> str:
    """Local ISO date/date/datetime -> "MM/DD/YYYY"; invalid or empty -> ""."""
    parsed = _parse_local_date(value)
    return parsed.strftime("%m/%d/%Y") if parsed else ""


def from_fm_date(value: Any) -> date | None:
    """FM "MM/DD/YYYY" (or ISO) -> date; invalid or empty -> None."""
    if not value:
        return None
    text = str(value).strip()
    if "/" in text:
        try:
            return datetime.strptime(text.split(" ")[0], "%m/%d/%Y").date()
        except ValueError:
            return None
    return _parse_local_date(text)


def to_fm_boolean(value: Any) -> int | str:
    if value is None:
        return ""
    return 1 if value else 0


def from_fm_boolean(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    return value is True or value == 1 or value == "1" or value == "Yes"


def parse_number(value: Any) -> int | float | None:
    """Parse an FM number (possibly "$1,250.00"). Empty -> None, garbage -> 0."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    text = str(value).replace("$", "").replace(",", "").strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return 0
    return int(number) if number.is_integer() else number


def to_fm_number(value: Any) -> int | float | str:
    number = parse_number(value)
    return "" if number is None else number


def from_fm_currency(value: Any) -> float | None:
    number = parse_number(value)
    return None if number is None else float(number)


def enumeration_from_fm(value: Any, choices: Mapping[str, str]) -> str | None:
    """Checkbox value (return-delimited) -> first recognised local value.

    If no token is recognised the raw first token is returned unmodified so
    data is never silently dropped. Empty input -> None.
    """
    if not value:
        return None
    tokens = [t.strip() for t in re.split(r"[\r\n]+", str(value))]
    tokens = [t for t in tokens if t]
    for token in tokens:
        if token in choices:
            return choices[token]
    return tokens[0] if tokens else None


def enumeration_to_fm(value: Any, choices: Mapping[str, str]) -> str:
    """Local value -> first FM label mapping to it; unknown values pass through."""
    if not value:
        return ""
    for label, local_value in choices.items():
        if local_value == value:
            return label
    return str(value)


def program_to_sales_disposition(program_type: str | None) -> str:
    return enumeration_to_fm(program_type, SALES_DISPOSITION_MAP)


def sales_disposition_to_program(fm_value: Any) -> str | None:
    return enumeration_from_fm(fm_value, SALES_DISPOSITION_MAP)


# ── Whole-record conversion ────────────────────────────────────────────────


def _to_fm_value(spec: FieldSpec, value: Any) -> Any:
    fc = spec.field_class
    if fc == FieldClass.DATE:
        return to_fm_date(value)
    if fc == FieldClass.BOOLEAN:
        return to_fm_boolean(value)
    if fc in (FieldClass.CURRENCY, FieldClass.NUMERIC):
        return to_fm_number(value)
    if fc == FieldClass.ENUMERATION:
        return enumeration_to_fm(value, spec.choices or {})
    if fc == FieldClass.PARCEL_ID:
        return normalize_parcel_id(value)
    return "" if value is None else value


def to_external(
    local: Mapping[str, Any],
    field_map: FieldMap | None = None,
) -> dict[str, Any]:
    """Convert a local object to FileMaker ``fieldData``.

    Unresolved fields and keys absent from ``local`` are skipped. A NAME field
    is composed from ``first_name``/``last_name`` when the full name itself is
    not supplied.

    Args:
        local: Dict of local field names to values.
        field_map: Optional FieldMap. Defaults to PROPERTY_FIELD_MAP.

    Returns:
        Dict of FileMaker field names to converted values.
    """
    if field_map is None:
        field_map = PROPERTY_FIELD_MAP

    fm: dict[str, Any] = {}

    for spec in field_map:
        if spec.unresolved:
            continue

        if spec.field_class == FieldClass.NAME:
            if spec.local in local:
                fm[spec.external] = local[spec.local] or ""
            elif "first_name" in local or "last_name" in local:
                fm[spec.external] = join_name(local.get("first_name"), local.get("last_name"))
            continue

        if spec.local not in local:
            continue

        fm[spec.external] = _to_fm_value(spec, local[spec.local])

    return fm


def from_external(
    field_data: Mapping[str, Any],
    field_map: FieldMap | None = None,
) -> dict[str, Any]:
    """Convert FileMaker ``fieldData`` to a local object.

    FileMaker keys with no entry in the map are ignored so new layout fields
    never break a sync. A NAME field yields ``full_name``, ``first_name`` and
    ``last_name``.

    Args:
        field_data: FileMaker record fieldData.
        field_map: Optional FieldMap. Defaults to PROPERTY_FIELD_MAP.

    Returns:
        Dict of local field names to converted values.
    """
    if field_map is None:
        field_map = PROPERTY_FIELD_MAP

    reverse = field_map.by_external
    local: dict[str, Any] = {}

    for fm_key, value in field_data.items():
        spec = reverse.get(fm_key)
        if spec is None:
            continue

        fc = spec.field_class
        if fc == FieldClass.NAME:
            local[spec.local] = value or None
            local.update(split_name(value))
        elif fc == FieldClass.PARCEL_ID:
            local[spec.local] = normalize_parcel_id(value) or None
        elif fc == FieldClass.DATE:
            local[spec.local] = from_fm_date(value)
        elif fc == FieldClass.BOOLEAN:
            local[spec.local] = from_fm_boolean(value)
        elif fc == FieldClass.NUMERIC:
            local[spec.local] = parse_number(value)
        elif fc == FieldClass.CURRENCY:
            local[spec.local] = from_fm_currency(value)
        elif fc == FieldClass.ENUMERATION:
            local[spec.local] = enumeration_from_fm(value, spec.choices or {})
        else:
            # Empty text reads back as None, matching the other classes
            local[spec.local] = value if value not in ("", None) else None

    return local


def fields_of_class(field_map: FieldMap, classes: Iterable[FieldClass]) -> set[str]:
    """Local names in ``field_map`` whose class is one of ``classes``."""
    wanted = set(classes)
    return {spec.local for spec in field_map if spec.field_class in wanted}
