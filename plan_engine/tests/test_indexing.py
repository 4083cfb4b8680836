"""Tests for the page indexing policy."""

import pytest

from plan_engine.indexing import (
    IndexPolicy, add_filter_to_url, extract_filters_from_path, remove_filter_from_url,
)


@pytest.fixture
def policy(mapping):
    return IndexPolicy(mapping)


class TestIndexPolicy:
    def test_should_index(self, policy):
        assert policy.should_index_combination("dallas-tx", [])
        assert policy.should_index_combination("abilene-tx", ["12-month"])
        assert policy.should_index_combination("dallas-tx", ["fixed-rate", "12-month"])
        assert not policy.should_index_combination("dallas-tx", ["24-month", "fixed-rate"])
        assert not policy.should_index_combination("abilene-tx", ["12-month", "fixed-rate"])
        assert not policy.should_index_combination("dallas-tx", ["12-month", "fixed-rate", "prepaid"])

    def test_unknown_city_is_tier_three(self, policy):
        assert policy.should_index_combination("gotham-tx", [])
        assert not policy.should_index_combination("gotham-tx", ["12-month"])

    @pytest.mark.parametrize("city,filters,expected", [
        ("dallas-tx", [], 1.0),
        ("dallas-tx", ["12-month"], 1.0),
        ("dallas-tx", ["12-month", "fixed-rate"], 0.9),
        ("abilene-tx", ["12-month"], 0.65),
        ("gotham-tx", ["12-month", "fixed-rate", "prepaid"], 0.2),
    ])
    def test_sitemap_priority(self, policy, city, filters, expected):
        assert policy.get_sitemap_priority(city, filters) == pytest.approx(expected)

    def test_change_frequency(self, policy):
        assert policy.get_change_frequency("dallas-tx", []) == "daily"
        assert policy.get_change_frequency("tyler-tx", []) == "weekly"
        assert policy.get_change_frequency("dallas-tx", ["prepaid"]) == "weekly"
        assert policy.get_change_frequency("tyler-tx", ["prepaid"]) == "monthly"

    def test_high_value_pages(self, policy):
        assert policy.is_high_value_page("tyler-tx", [])
        assert policy.is_high_value_page("tyler-tx", ["green-energy"])
        assert not policy.is_high_value_page("tyler-tx", ["time-of-use"])
        assert policy.is_high_value_page("dallas-tx", ["autopay-discount", "12-month"])
        assert not policy.is_high_value_page("tyler-tx", ["12-month", "fixed-rate"])


class TestUrlHelpers:
    def test_add_filter(self):
        assert add_filter_to_url("/texas/dallas", "12-month") == "/texas/dallas/12-month"
        assert add_filter_to_url("/texas/dallas/12-month", "12-month") == "/texas/dallas/12-month"
        assert add_filter_to_url("/other/path", "12-month") == "/other/path"

    def test_remove_filter(self):
        assert remove_filter_from_url("/texas/dallas/12-month/prepaid", "12-month") == "/texas/dallas/prepaid"
        assert remove_filter_from_url("/texas/dallas/12-month", "12-month") == "/texas/dallas"

    def test_extract_filters(self):
        assert extract_filters_from_path("/texas/dallas/12-month/prepaid/") == ["12-month", "prepaid"]
        assert extract_filters_from_path("/electricity-plans/dallas-tx/") == []
