"""Tests for faceted URL routing."""

from unittest.mock import MagicMock

import pytest

from plan_engine.exceptions import ApiErrorType, PlanApiError
from plan_engine.faceted_router import FacetedRouter, build_url

from .conftest import ONCOR_DUNS


@pytest.fixture
def router(mapping):
    return FacetedRouter(mapping)


class TestValidateRoute:
    def test_city_only(self, router):
        r = router.validate_route("/electricity-plans/dallas-tx/")
        assert r.is_valid
        assert r.city_name == "Dallas"
        assert r.tdsp_duns == ONCOR_DUNS
        assert r.canonical_url == "/electricity-plans/dallas-tx/"
        assert r.should_index
        assert r.messaging["headline"] == "Dallas Electricity Plans"

    def test_canonical_url_ignores_segment_order(self, router):
        a = router.validate_route("dallas-tx/fixed-rate/12-month")
        b = router.validate_route("dallas-tx/12-month/fixed-rate")
        assert a.canonical_url == b.canonical_url == "/electricity-plans/dallas-tx/12-month/fixed-rate/"

    def test_unknown_city(self, router):
        r = router.validate_route("/electricity-plans/gotham-tx/12-month/")
        assert not r.is_valid
        assert r.redirect_url == "/404"
        assert r.error == "Invalid city: gotham-tx"

    def test_missing_city(self, router):
        r = router.validate_route("/electricity-plans/")
        assert not r.is_valid
        assert r.redirect_url == "/electricity-plans/"

    def test_too_many_filters_redirects(self, router):
        r = router.validate_route("dallas-tx/12-month/fixed-rate/green-energy/prepaid")
        assert not r.is_valid
        assert r.error == "Too many filters (max 3)"
        assert r.redirect_url == "/electricity-plans/dallas-tx/12-month/fixed-rate/green-energy/"

    def test_redirects_can_be_disabled(self, router):
        r = router.validate_route("dallas-tx/12-month/cheapest", enable_redirects=False)
        assert not r.is_valid
        assert r.redirect_url is None

    def test_invalid_filter_falls_back(self, router):
        r = router.validate_route("dallas-tx/12-month/cheapest")
        assert not r.is_valid
        assert "Unknown filter: 'cheapest'" in r.error
        assert r.redirect_url == "/electricity-plans/dallas-tx/12-month/"

    def test_allow_invalid_filters(self, router):
        r = router.validate_route("dallas-tx/cheapest", allow_invalid_filters=True)
        assert r.is_valid
        assert r.canonical_url == "/electricity-plans/dallas-tx/cheapest/"

    def test_three_filters_are_not_indexed(self, router):
        assert not router.validate_route("dallas-tx/12-month/fixed-rate/prepaid").should_index

    def test_require_plans_uses_fetcher(self, mapping, sample_plans):
        fetcher = MagicMock(return_value=sample_plans[:2])
        router = FacetedRouter(mapping, plan_fetcher=fetcher)
        r = router.validate_route("dallas-tx/12-month", require_plans=True)
        fetcher.assert_called_once_with(
            {"tdsp_duns": ONCOR_DUNS, "display_usage": 1000, "term": 12}, "Dallas"
        )
        assert [p.id for p in r.plans] == ["p1", "p2"]
        assert r.messaging["subheadline"] == "2 12-month contracts available."

    def test_fetcher_not_called_without_require_plans(self, mapping):
        fetcher = MagicMock()
        FacetedRouter(mapping, plan_fetcher=fetcher).validate_route("dallas-tx/12-month")
        fetcher.assert_not_called()

    def test_fetch_failure_sets_plan_error(self, mapping):
        fetcher = MagicMock(side_effect=PlanApiError(ApiErrorType.SERVER_ERROR, "upstream down"))
        r = FacetedRouter(mapping, plan_fetcher=fetcher).validate_route(
            "dallas-tx/12-month", require_plans=True
        )
        assert r.is_valid
        assert r.plans == []
        assert r.plan_error == "Failed to fetch plans: upstream down"

    def test_breadcrumbs_and_title(self, router):
        r = router.validate_route("dallas-tx/12-month/fixed-rate")
        assert len(r.breadcrumbs) == 5
        assert r.breadcrumbs[2] == {"name": "Dallas Plans", "url": "/electricity-plans/dallas-tx/"}
        assert r.breadcrumbs[-1]["url"] == "/electricity-plans/dallas-tx/12-month/fixed-rate/"
        assert r.title == "12-Month + Fixed Rate Plans in Dallas, TX | Real Rates, No Tricks"

    def test_to_dict(self, router):
        d = router.validate_route("dallas-tx/green-energy").to_dict()
        assert d["filters"]["api_params"]["percent_green"] == 100
        assert d["plan_count"] == 0


class TestHelpers:
    def test_build_url(self):
        assert build_url("dallas-tx") == "/electricity-plans/dallas-tx/"
        assert build_url("dallas-tx", ["prepaid"]) == "/electricity-plans/dallas-tx/prepaid/"

    def test_parse_path(self, router):
        assert router.parse_path("/electricity-plans/dallas-tx/12-month/") == ("dallas-tx", ["12-month"])
        assert router.parse_path("houston-tx") == ("houston-tx", [])
        assert router.parse_path("/electricity-plans/gotham-tx/") is None

    def test_generate_valid_combinations(self, router):
        urls = router.generate_valid_combinations("dallas-tx")
        assert urls[0] == "/electricity-plans/dallas-tx/"
        assert "/electricity-plans/dallas-tx/12-month/fixed-rate/" in urls
        assert "/electricity-plans/dallas-tx/6-month/" in urls
        assert router.generate_valid_combinations("gotham-tx") == []

    def test_single_depth_skips_combinations(self, router):
        urls = router.generate_valid_combinations("dallas-tx", max_depth=1)
        assert "/electricity-plans/dallas-tx/12-month/fixed-rate/" not in urls

    def test_suggested_filters_skip_applied_types(self, router):
        suggestions = router.get_suggested_filters("dallas-tx", ["12-month"])
        assert "6-month" not in suggestions
        assert suggestions[0] == "fixed-rate"

    def test_validate_filter_segment(self, router):
        assert router.validate_filter_segment("prepaid")
        assert not router.validate_filter_segment("cheapest")

    def test_page_title_without_filters(self, router):
        assert router.generate_page_title("Houston", []) == "Houston Electricity Plans | ChooseMyPower"
