"""Tests for the static territory tables."""

from plan_engine.tdsp_mapping import (
    TDSP_INFO, TDSPMapping, city_display_name, format_city_name, format_filter_name,
)

from .conftest import ONCOR_DUNS


class TestNameFormatting:
    def test_city_display_name(self):
        assert city_display_name("fort-worth-tx") == "Fort Worth"
        assert city_display_name("dallas") == "Dallas"

    def test_format_city_name_adds_state(self):
        assert format_city_name("dallas-tx") == "Dallas, TX"
        assert format_city_name("dallas") == "Dallas"

    def test_format_filter_name(self):
        assert format_filter_name("free-weekends") == "Free Weekends"
        assert format_filter_name("") == ""


class TestCities:
    def test_get_city(self, mapping):
        city = mapping.get_city("dallas-tx")
        assert city.name == "Dallas"
        assert city.duns == ONCOR_DUNS
        assert city.tdsp.zone == "North"
        assert city.tier == 1

    def test_unknown_city(self, mapping):
        assert mapping.get_city("atlantis-tx") is None
        assert mapping.get_tdsp_from_city("atlantis-tx") is None
        assert not mapping.validate_city_slug("atlantis-tx")

    def test_city_from_zip(self, mapping):
        assert mapping.get_city_from_zip("75201") == "dallas-tx"
        assert mapping.get_city_from_zip(" 77002 ") == "houston-tx"
        assert mapping.get_city_from_zip("99999") is None

    def test_city_to_dict(self, mapping):
        d = mapping.get_city("houston-tx").to_dict()
        assert d["tdsp_name"] == "CenterPoint Energy Houston Electric"
        assert d["zone"] == "Coast"


class TestTDSPs:
    def test_lookup_by_duns(self, mapping):
        assert mapping.get_tdsp_by_duns(ONCOR_DUNS) is TDSP_INFO["ONCOR"]
        assert mapping.get_tdsp_by_duns("000") is None

    def test_zone_defaults_to_north(self, mapping):
        assert mapping.zone_for_duns(TDSP_INFO["CENTERPOINT"].duns) == "Coast"
        assert mapping.zone_for_duns("unknown") == "North"


class TestMultiTDSP:
    def test_split_zip(self, mapping):
        assert mapping.is_multi_tdsp_zip("75001")
        assert mapping.requires_address_validation("75001")
        assert mapping.get_primary_tdsp_for_zip("75001").duns == ONCOR_DUNS
        assert [t.name for t in mapping.get_alternative_tdsps("75001")] == ["Texas-New Mexico Power Company"]
        assert mapping.get_boundary_type("75056") == "block-level"
        assert "Addison" in mapping.get_boundary_notes("75001")

    def test_split_zip_without_address_requirement(self, mapping):
        assert mapping.is_multi_tdsp_zip("77002")
        assert not mapping.requires_address_validation("77002")

    def test_three_way_boundary(self, mapping):
        assert len(mapping.get_alternative_tdsps("76020")) == 2

    def test_regular_zip(self, mapping):
        assert not mapping.is_multi_tdsp_zip("75201")
        assert mapping.get_primary_tdsp_for_zip("75201") is None
        assert mapping.get_alternative_tdsps("75201") == []
        assert mapping.get_boundary_notes("75201") == ""


class TestNonDeregulated:
    def test_cooperative(self, mapping):
        assert mapping.get_cooperative("75932")["name"] == "Cherokee County Electric Cooperative"
        assert mapping.get_cooperative("75201") is None

    def test_municipal(self, mapping):
        assert mapping.get_municipal_utility("san-antonio-tx")["name"] == "CPS Energy"
        assert mapping.get_municipal_utility("dallas-tx") is None


class TestMissingData:
    def test_missing_files_give_empty_tables(self, tmp_path):
        missing = tmp_path / "missing.json"
        m = TDSPMapping(missing, missing, missing, missing)
        assert m.city_slugs() == []
        assert m.get_city_from_zip("75201") is None
        assert m.get_cooperative("75932") is None

    def test_corrupt_file_is_ignored(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        m = TDSPMapping(bad, bad, bad, bad)
        assert m.all_cities() == []
