"""Unit tests for FileMaker field maps and value conversion."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from src.portal.filemaker.field_mapping import (
    BUYER_FIELD_MAP,
    COMMUNICATION_FIELD_MAP,
    PROPERTY_FIELD_MAP,
    SALES_DISPOSITION_MAP,
    SUBMISSION_FIELD_MAP,
    FieldClass,
    FieldMap,
    FieldSpec,
    enumeration_from_fm,
    format_parcel_id_dashed,
    from_external,
    from_fm_boolean,
    from_fm_date,
    join_name,
    normalize_parcel_id,
    parse_number,
    program_to_sales_disposition,
    sales_disposition_to_program,
    split_name,
    to_external,
    to_fm_boolean,
    to_fm_date,
)

ALL_MAPS = [PROPERTY_FIELD_MAP, BUYER_FIELD_MAP, SUBMISSION_FIELD_MAP, COMMUNICATION_FIELD_MAP]

# Representative local values per class, including null. "" is left out:
# an empty FileMaker value reads back as None on purpose.
SAMPLES = {
    FieldClass.DATE: [date(2024, 3, 9), date(1999, 12, 31), None],
    FieldClass.BOOLEAN: [True, False, None],
    FieldClass.CURRENCY: [1250.5, 0.0, 89000.0, None],
    FieldClass.NUMERIC: [3, 0, 2.5, 1925, None],
    FieldClass.TEXT: ["Good", "123 Main St", None],
    FieldClass.ENUMERATION: ["VIP", "Ready4Rehab", "Demolition", None],
    FieldClass.PARCEL_ID: ["4635457003", None],
}


# ── Map integrity ──────────────────────────────────────────────────────────


class TestFieldMaps:
    @pytest.mark.parametrize("field_map", ALL_MAPS, ids=lambda m: m.entity)
    def test_local_and_external_names_unique(self, field_map):
        locals_ = [spec.local for spec in field_map]
        externals = [spec.external for spec in field_map]
        assert len(set(locals_)) == len(locals_)
        assert len(set(externals)) == len(externals)

    def test_unresolved_fields_are_marked(self):
        unresolved = {spec.local for spec in PROPERTY_FIELD_MAP.unresolved()}
        assert {"last_contact_date", "enforcement_level", "percent_complete"} <= unresolved
        assert all(spec.external.startswith("TBD_") for spec in PROPERTY_FIELD_MAP.unresolved())

    def test_buyer_email_is_unresolved(self):
        assert BUYER_FIELD_MAP.by_local["email"].unresolved is True

    def test_program_type_uses_disposition_table(self):
        spec = PROPERTY_FIELD_MAP.by_local["program_type"]
        assert spec.field_class == FieldClass.ENUMERATION
        assert spec.external == "Sales Disposition"
        assert spec.choices is SALES_DISPOSITION_MAP


# ── Round trip ─────────────────────────────────────────────────────────────


class TestRoundTrip:
    @pytest.mark.parametrize("field_map", ALL_MAPS, ids=lambda m: m.entity)
    def test_every_resolved_field_round_trips(self, field_map):
        for spec in field_map.writable():
            if spec.field_class == FieldClass.NAME:
                continue
            for value in SAMPLES[spec.field_class]:
                local = {spec.local: value}
                back = from_external(to_external(local, field_map), field_map)
                assert back == local, f"{spec.local}={value!r} came back as {back!r}"

    def test_name_round_trip(self):
        local = {"first_name": "John", "last_name": "Smith"}
        back = from_external(to_external(local, BUYER_FIELD_MAP), BUYER_FIELD_MAP)
        assert back["first_name"] == "John"
        assert back["last_name"] == "Smith"

    def test_full_record_round_trip(self):
        local = {
            "parcel_id": "4635457003",
            "address": "1401 E Court St",
            "program_type": "FeaturedHomes",
            "date_sold": date(2023, 6, 1),
            "gclb_owned": True,
            "asking_price": 45000.0,
            "bedrooms": 3,
            "status": "active",
        }
        assert from_external(to_external(local)) == local


# ── to_external ────────────────────────────────────────────────────────────


class TestToExternal:
    def test_unresolved_never_emitted(self):
        everything = {spec.local: "x" for spec in PROPERTY_FIELD_MAP}
        payload = to_external(everything, PROPERTY_FIELD_MAP)

        unresolved = {spec.external for spec in PROPERTY_FIELD_MAP.unresolved()}
        assert unresolved
        assert not unresolved & payload.keys()
        assert not any(key.startswith("TBD_") for key in payload)

    @pytest.mark.parametrize("field_map", ALL_MAPS, ids=lambda m: m.entity)
    def test_unresolved_never_emitted_for_any_map(self, field_map):
        for value in ["", None, 0, True, "2024-01-01"]:
            payload = to_external({spec.local: value for spec in field_map}, field_map)
            assert not any(spec.external in payload for spec in field_map.unresolved())

    def test_missing_keys_skipped(self):
        assert to_external({"address": "12 Elm"}) == {"Address": "12 Elm"}

    def test_defaults_to_property_map(self):
        assert to_external({"parcel_id": "46-35-457-003"}) == {"Parc ID": "4635457003"}

    def test_date_formats(self):
        assert to_external({"date_sold": "2024-03-09"}) == {"Date Sold": "03/09/2024"}
        assert to_external({"date_sold": datetime(2024, 3, 9, 15, 30)}) == {"Date Sold": "03/09/2024"}
        assert to_external({"date_sold": "not a date"}) == {"Date Sold": ""}
        assert to_external({"date_sold": None}) == {"Date Sold": ""}

    def test_boolean_and_numbers(self):
        payload = to_external({"gclb_owned": False, "bedrooms": "3", "minimum_bid": "$1,250.00"})
        assert payload == {"GCLB Owned": 0, "Bedrooms": 3, "Minimum Bid": 1250.0}

    def test_program_type_written_as_checkbox_label(self):
        assert to_external({"program_type": "Ready4Rehab"}) == {"Sales Disposition": "R4R"}
        assert to_external({"program_type": "Custom"}) == {"Sales Disposition": "Custom"}

    def test_full_name_composed_from_parts(self):
        payload = to_external({"first_name": "Ada", "last_name": "Lovelace"}, BUYER_FIELD_MAP)
        assert payload == {"Name": "Ada Lovelace"}

    def test_full_name_wins_over_parts(self):
        payload = to_external(
            {"full_name": "Lovelace, Ada", "first_name": "X", "last_name": "Y"}, BUYER_FIELD_MAP
        )
        assert payload["Name"] == "Lovelace, Ada"


# ── from_external ──────────────────────────────────────────────────────────


class TestFromExternal:
    def test_unmapped_keys_ignored(self):
        assert from_external({"Brand New FM Field": "x", "Address": "12 Elm"}) == {
            "address": "12 Elm"
        }

    def test_parcel_id_normalised(self):
        assert from_external({"Parc ID": "46-35-457-003 "}) == {"parcel_id": "4635457003"}

    def test_unresolved_field_still_read(self):
        assert from_external({"TBD_Buyer_Email": "a@b.org"}, BUYER_FIELD_MAP) == {"email": "a@b.org"}

    def test_name_field_sets_parts(self):
        local = from_external({"Name": "Smith, John"}, BUYER_FIELD_MAP)
        assert local == {"full_name": "Smith, John", "first_name": "John", "last_name": "Smith"}

    def test_empty_text_reads_as_none(self):
        assert from_external(to_external({"address": ""})) == {"address": None}
        assert from_external({"Sales Disposition": ""}) == {"program_type": None}

    def test_currency_garbage_is_zero(self):
        assert from_external({"Minimum Bid": "call office"}) == {"minimum_bid": 0.0}
        assert from_external({"Bedrooms": "n/a"}) == {"bedrooms": 0}


# ── Conversions ────────────────────────────────────────────────────────────


class TestConversions:
    def test_enumeration_first_known_label(self):
        assert enumeration_from_fm("VIP\r\nDemo", SALES_DISPOSITION_MAP) == "VIP"
        assert enumeration_from_fm("\rDemo\r\n", SALES_DISPOSITION_MAP) == "Demolition"
        assert enumeration_from_fm("Mystery\rR4R adj VL", SALES_DISPOSITION_MAP) == "Ready4Rehab"

    def test_enumeration_unknown_keeps_raw_first_token(self):
        assert enumeration_from_fm("Unknown\r\nAlsoUnknown", SALES_DISPOSITION_MAP) == "Unknown"

    def test_enumeration_empty_is_none(self):
        assert enumeration_from_fm("", SALES_DISPOSITION_MAP) is None
        assert enumeration_from_fm(None, SALES_DISPOSITION_MAP) is None
        assert enumeration_from_fm("\r\n", SALES_DISPOSITION_MAP) is None

    def test_program_helpers(self):
        assert program_to_sales_disposition("FeaturedHomes") == "Featured"
        assert program_to_sales_disposition(None) == ""
        assert sales_disposition_to_program("Comm/I") == "Commercial"

    def test_boolean_read_accepts_literals(self):
        assert from_fm_boolean(1) is True
        assert from_fm_boolean("1") is True
        assert from_fm_boolean("Yes") is True
        assert from_fm_boolean(0) is False
        assert from_fm_boolean("No") is False
        assert from_fm_boolean("") is None
        assert to_fm_boolean(True) == 1
        assert to_fm_boolean(False) == 0
        assert to_fm_boolean(None) == ""

    def test_dates(self):
        assert to_fm_date(date(2024, 1, 5)) == "01/05/2024"
        assert from_fm_date("01/05/2024") == date(2024, 1, 5)
        assert from_fm_date("2024-01-05") == date(2024, 1, 5)
        assert from_fm_date("13/45/2024") is None
        assert from_fm_date("") is None

    def test_parse_number(self):
        assert parse_number("$89,000.00") == 89000
        assert parse_number("2.5") == 2.5
        assert parse_number("abc") == 0
        assert parse_number("") is None

    def test_parcel_helpers(self):
        assert normalize_parcel_id("46-35-457-003") == "4635457003"
        assert format_parcel_id_dashed("4635457003") == "46-35-457-003"
        assert format_parcel_id_dashed("123") == "123"
        assert format_parcel_id_dashed(None) == ""


class TestNames:
    @pytest.mark.parametrize(
        "raw,first,last",
        [
            ("Smith, John", "John", "Smith"),
            ("John Smith", "John", "Smith"),
            ("Mary Ann van Dyke", "Mary", "Ann van Dyke"),
            ("Madonna", "Madonna", ""),
            ("", "Unknown", ""),
            (None, "Unknown", ""),
            ("   ", "Unknown", ""),
        ],
    )
    def test_split_name(self, raw, first, last):
        assert split_name(raw) == {"first_name": first, "last_name": last}

    def test_join_name(self):
        assert join_name("John", "Smith") == "John Smith"
        assert join_name("Madonna", "") == "Madonna"
        assert join_name(None, None) == ""


class TestCustomMap:
    def test_custom_map_with_resolved_field(self):
        custom = FieldMap(
            "property",
            (FieldSpec("last_contact_date", "Last Contact", FieldClass.DATE),),
        )
        assert to_external({"last_contact_date": date(2024, 2, 1)}, custom) == {
            "Last Contact": "02/01/2024"
        }
