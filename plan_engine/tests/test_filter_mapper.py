"""Tests for URL segment <-> API parameter mapping."""

import pytest

from plan_engine.filter_mapper import FilterMapper, create_provider_slug

from .conftest import ONCOR_DUNS


@pytest.fixture
def fm():
    return FilterMapper()


class TestMapFilters:
    def test_term_and_rate(self, fm):
        r = fm.map_filters_to_api_params("dallas-tx", ["12-month", "fixed-rate"], ONCOR_DUNS)
        assert r.is_valid
        assert r.api_params == {
            "tdsp_duns": ONCOR_DUNS, "display_usage": 1000, "term": 12, "rate_type": "fixed",
        }
        assert [f.display_name for f in r.applied_filters] == ["12-Month", "Fixed Rate"]

    def test_no_filters_warns(self, fm):
        r = fm.map_filters_to_api_params("dallas-tx", [], ONCOR_DUNS)
        assert r.is_valid
        assert "No filters applied - showing all available plans" in r.warnings

    @pytest.mark.parametrize("segment,param,value", [
        ("month-to-month", "term", 1),
        ("green-energy", "percent_green", 100),
        ("50-green", "percent_green", 50),
        ("low-usage", "display_usage", 500),
        ("2000-kwh", "display_usage", 2000),
        ("prepaid", "is_pre_pay", True),
        ("no-deposit", "deposit_required", False),
        ("no-contract", "term", 1),
        ("txu-energy", "brand_id", "txu_energy"),
        ("indexed-rate", "rate_type", "indexed"),
    ])
    def test_single_segments(self, fm, segment, param, value):
        r = fm.map_filters_to_api_params("dallas-tx", [segment], ONCOR_DUNS)
        assert r.is_valid
        assert r.api_params[param] == value

    def test_unknown_segment(self, fm):
        r = fm.map_filters_to_api_params("dallas-tx", ["cheapest"], ONCOR_DUNS)
        assert not r.is_valid
        assert r.errors == ["Unknown filter: 'cheapest'"]

    def test_conflicting_rate_types(self, fm):
        r = fm.map_filters_to_api_params("dallas-tx", ["fixed-rate", "variable-rate"], ONCOR_DUNS)
        assert r.is_valid
        assert r.api_params["rate_type"] == "fixed"
        assert any("conflicts with previously applied rate_type" in w for w in r.warnings)

    def test_duplicate_terms(self, fm):
        r = fm.map_filters_to_api_params("dallas-tx", ["12-month", "24-month"], ONCOR_DUNS)
        assert r.api_params["term"] == 12
        assert any("Multiple term filters" in w for w in r.warnings)

    def test_combination_warnings(self, fm):
        r = fm.map_filters_to_api_params("dallas-tx", ["24-month", "prepaid"], ONCOR_DUNS)
        assert "Prepaid plans typically have shorter contract terms" in r.warnings

    def test_houston_green_note(self, fm):
        r = fm.map_filters_to_api_params("houston-tx", ["green-energy"], "957877905")
        assert "Houston area has excellent green energy options" in r.warnings

    def test_many_filters_warns(self, fm):
        r = fm.map_filters_to_api_params(
            "dallas-tx", ["12-month", "fixed-rate", "green-energy", "prepaid"], ONCOR_DUNS
        )
        assert any("Many filters applied" in w for w in r.warnings)


class TestReverseMapping:
    def test_generate_url_from_params(self, fm):
        assert fm.generate_url_from_params({
            "term": 12, "rate_type": "fixed", "percent_green": 100,
            "is_pre_pay": True, "display_usage": 2000, "brand_id": "txu_energy",
        }) == ["12-month", "fixed-rate", "green-energy", "prepaid", "high-usage", "txu-energy"]

    def test_default_usage_is_omitted(self, fm):
        assert fm.generate_url_from_params({"display_usage": 1000, "term": 1}) == ["month-to-month"]

    def test_partial_green_and_unknown_brand(self, fm):
        assert fm.generate_url_from_params({"percent_green": 50, "brand_id": "new_co"}) == ["50-green", "new-co"]


class TestSegments:
    def test_validate_filter_segment(self, fm):
        assert fm.validate_filter_segment("12-month")["is_valid"]
        bad = fm.validate_filter_segment("13-month")
        assert not bad["is_valid"]
        assert "Unknown filter segment" in bad["error"]

    def test_get_definition_for_unlisted_provider(self, fm):
        d = fm.get_definition("acme-power")
        assert d.type == "provider"
        assert d.value_transform("acme-power") == "acme_power"
        assert fm.get_definition("12-kwh") is None

    def test_display_name(self, fm):
        assert fm.display_name("green-energy") == "100% Clean Energy"
        assert fm.display_name("acme-power") == "Acme Power"
        assert fm.display_name("indexed-rate") == "Market Rate"

    def test_filter_type(self, fm):
        assert fm.filter_type("prepaid") == "plan_features"
        assert fm.filter_type("nope") is None

    def test_suggestions_prefer_prefix(self, fm):
        assert fm.get_filter_suggestions("month")[0] == "month-to-month"
        assert fm.get_filter_suggestions("green", limit=2) == ["green-energy", "green-mountain-energy"]

    def test_available_filters_exclude(self, fm):
        types = [d.type for d in fm.get_available_filters(["term", "provider"])]
        assert types == ["rate_type", "green_energy", "plan_features", "usage"]


class TestProviders:
    def test_create_provider_slug(self):
        assert create_provider_slug("Green Mountain Energy, Inc.") == "green-mountain-energy-inc"
        assert create_provider_slug("  4Change   Energy ") == "4change-energy"

    def test_extract_providers_dedupes(self, fm, sample_plans, make_plan):
        plans = sample_plans + [
            make_plan("x1", "Dup", "TXU Energy Inc", 12.0),
            make_plan("x2", "Anon", "Unknown Provider", 12.0),
        ]
        assert fm.extract_providers_from_plans(plans) == [
            "champion-energy", "gexa-energy", "green-mountain-energy", "reliant", "txu-energy",
        ]
