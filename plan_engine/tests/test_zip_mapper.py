"""Tests for ZIP -> TDSP inference."""

import pytest

from plan_engine.tdsp_mapping import TDSP_INFO
from plan_engine.zip_mapper import (
    ZIPMapper, coverage_stats, infer_city, infer_county, infer_tdsp_by_range, is_texas_zip,
)

from .conftest import ONCOR_DUNS


@pytest.fixture
def mapper(mapping):
    return ZIPMapper(mapping)


class TestHelpers:
    def test_is_texas_zip(self):
        assert is_texas_zip("75201")
        assert is_texas_zip("70000")
        assert not is_texas_zip("10001")
        assert not is_texas_zip("7520")
        assert not is_texas_zip("abcde")

    def test_infer_city_and_county(self):
        assert infer_city("75201") == "Dallas"
        assert infer_county("77002") == "Harris County"
        assert infer_city("75900") == "North Texas"
        assert infer_county("75900") == "Unknown County"

    @pytest.mark.parametrize("zip_code,code", [
        ("75999", "ONCOR"),
        ("77999", "CENTERPOINT"),
        ("78100", "AEP_CENTRAL"),
        ("78650", "TNMP"),
        ("79800", "AEP_NORTH"),
        ("79100", "ONCOR"),
    ])
    def test_range_rules(self, zip_code, code):
        assert infer_tdsp_by_range(zip_code) is TDSP_INFO[code]


class TestLookup:
    def test_static_mapping_wins(self, mapper):
        m = mapper.lookup("75201")
        assert m.source == "static"
        assert m.confidence == 95
        assert m.tdsp == ONCOR_DUNS
        assert m.city == "Dallas"

    def test_range_inference(self, mapper):
        m = mapper.lookup("75999")
        assert m.source == "inferred"
        assert m.confidence == 75
        assert m.tdsp == ONCOR_DUNS

    def test_non_texas_and_malformed(self, mapper):
        assert mapper.lookup("10001") is None
        assert mapper.lookup("7520") is None
        assert mapper.lookup("") is None

    def test_nearby_inference(self, mapper):
        m = mapper.infer_from_nearby("75230")
        assert m.source == "nearby"
        assert m.tdsp == ONCOR_DUNS
        assert 60 < m.confidence <= 90

    def test_nearby_with_no_neighbours(self, mapper):
        assert mapper.infer_from_nearby("71500") is None

    def test_is_deregulated(self, mapper):
        assert mapper.is_deregulated("75201")
        assert not mapper.is_deregulated("10001")


class TestComprehensiveMapping:
    def test_range_is_fully_covered(self, mapper):
        mappings = mapper.generate_comprehensive_mapping(75200, 75210)
        assert len(mappings) == 11
        assert mappings[0].zip_code == "75200"

    def test_range_is_clamped_to_texas(self, mapper):
        mappings = mapper.generate_comprehensive_mapping(69990, 70002)
        assert [m.zip_code for m in mappings] == ["70000", "70001", "70002"]

    def test_coverage_stats(self, mapper):
        stats = coverage_stats(mapper.generate_comprehensive_mapping(75200, 75210))
        assert stats["total_mapped"] == 11
        assert stats["by_tdsp"] == {"Oncor Electric Delivery": 11}
        assert sum(stats["by_source"].values()) == 11
        assert stats["coverage_percentage"] == pytest.approx(0.11)


class TestCitySlug:
    def test_static_slug(self, mapper):
        assert mapper.city_slug_for(mapper.lookup("77002")) == "houston-tx"

    def test_inferred_slug_falls_back_to_top_city_in_territory(self, mapper):
        assert mapper.city_slug_for(mapper.lookup("75999")) == "dallas-tx"
