"""Tests for the pricing API client (HTTP mocked)."""

import threading
from unittest.mock import MagicMock

import pytest
import requests
from sqlalchemy import text

from plan_engine.comparepower_client import (
    ComparePowerClient, determine_rate_type, parse_time_of_use, transform_plan,
)
from plan_engine.exceptions import ApiErrorType, PlanApiError

from .conftest import ONCOR_DUNS

PARAMS = {"tdsp_duns": ONCOR_DUNS, "display_usage": 1000}


def _response(status=200, payload=None, reason="OK"):
    resp = MagicMock()
    resp.status_code = status
    resp.reason = reason
    resp.json.return_value = payload
    return resp


@pytest.fixture
def client():
    c = ComparePowerClient("https://pricing.test/", api_key="k", retry_wait=0)
    c._session = MagicMock()
    return c


class TestTransform:
    def test_transform_plan(self, raw_plan):
        plan = transform_plan(raw_plan)
        assert plan.id == "cp-001"
        assert plan.name == "Simple Saver 12"
        assert plan.provider.name == "TXU Energy"
        assert plan.pricing.rate_per_kwh == pytest.approx(12.5)
        assert plan.pricing.rate_500kwh == pytest.approx(13.9)
        assert plan.pricing.total_2000kwh == 238.0
        assert plan.contract.length == 12
        assert plan.contract.type == "fixed"
        assert plan.contract.early_termination_fee == 150
        assert plan.features.free_time is None
        assert plan.tdsp_duns == ONCOR_DUNS
        assert plan.service_areas == ["Oncor Electric Delivery"]

    def test_avg_in_dollars_is_converted(self, raw_plan):
        raw_plan["display_pricing_1000"] = {"avg": 0.142, "total": 142.0}
        assert transform_plan(raw_plan).pricing.rate_per_kwh == pytest.approx(14.2)

    def test_time_of_use_plan(self, raw_plan):
        raw_plan["product"]["is_time_of_use"] = True
        raw_plan["product"]["headline"] = "FREE weekend electricity from 12:00 am to 11:59 pm"
        free = transform_plan(raw_plan).features.free_time
        assert free == {"hours": "12:00 am-11:59 pm", "days": ["Saturday", "Sunday"]}

    @pytest.mark.parametrize("name,headline,expected", [
        ("Flex Variable", "", "variable"),
        ("Power Saver", "Indexed to the market", "indexed"),
        ("Simple 12", "Fixed for a year", "fixed"),
    ])
    def test_determine_rate_type(self, name, headline, expected):
        assert determine_rate_type({"name": name, "headline": headline}) == expected

    def test_parse_time_of_use_without_hours(self):
        assert parse_time_of_use("Free nights!") == {"hours": "Off-peak hours", "days": ["All"]}


class TestBuildQuery:
    def test_requires_tdsp(self):
        with pytest.raises(PlanApiError) as exc:
            ComparePowerClient.build_query({"display_usage": 1000})
        assert exc.value.error_type == ApiErrorType.INVALID_TDSP

    def test_optional_params(self):
        q = ComparePowerClient.build_query(
            dict(PARAMS, term=12, is_pre_pay=True, percent_green=None, rate_type="fixed")
        )
        assert q == {
            "group": "default",
            "tdsp_duns": ONCOR_DUNS,
            "display_usage": "1000",
            "term": "12",
            "is_pre_pay": "true",
        }


class TestFetchPlans:
    def test_fetch_and_cache(self, client, raw_plan):
        client._session.get.return_value = _response(payload=[raw_plan])

        plans = client.fetch_plans(PARAMS, city="Dallas")
        assert [p.id for p in plans] == ["cp-001"]

        url = client._session.get.call_args[0][0]
        assert url == "https://pricing.test/api/plans/current"
        headers = client._session.get.call_args[1]["headers"]
        assert headers["X-API-Key"] == "k"

        again = client.fetch_plans(PARAMS)
        assert again is plans
        assert client._session.get.call_count == 1
        assert client.cache_stats()["hit_rate"] == 0.5

    def test_malformed_items_are_skipped(self, client, raw_plan):
        bad = dict(raw_plan, product={"term": "twelve"})
        client._session.get.return_value = _response(payload=[bad, raw_plan])
        assert len(client.fetch_plans(PARAMS)) == 1

    def test_non_array_response(self, client):
        client._session.get.return_value = _response(payload={"error": "nope"})
        with pytest.raises(PlanApiError) as exc:
            client.fetch_plans(PARAMS)
        assert exc.value.error_type == ApiErrorType.DATA_VALIDATION_ERROR

    def test_server_errors_are_retried(self, client):
        client._session.get.return_value = _response(500, reason="Internal Server Error")
        with pytest.raises(PlanApiError) as exc:
            client.fetch_plans(PARAMS, city="Dallas")
        assert exc.value.error_type == ApiErrorType.SERVER_ERROR
        assert "for Dallas" in exc.value.user_message
        assert client._session.get.call_count == 3

    def test_client_errors_are_not_retried(self, client):
        client._session.get.return_value = _response(404, reason="Not Found")
        with pytest.raises(PlanApiError) as exc:
            client.fetch_plans(PARAMS)
        assert exc.value.error_type == ApiErrorType.NOT_FOUND
        assert client._session.get.call_count == 1

    def test_network_timeout(self, client):
        client._session.get.side_effect = requests.ConnectionError("Read timed out")
        with pytest.raises(PlanApiError) as exc:
            client.fetch_plans(PARAMS)
        assert exc.value.error_type == ApiErrorType.TIMEOUT
        assert client._session.get.call_count == 3

    def test_recovers_after_transient_failure(self, client, raw_plan):
        client._session.get.side_effect = [
            _response(503, reason="Service Unavailable"),
            _response(payload=[raw_plan]),
        ]
        assert len(client.fetch_plans(PARAMS)) == 1
        assert client._session.get.call_count == 2


class TestFallbacks:
    def test_stale_cache_on_failure(self, client, raw_plan):
        client._session.get.return_value = _response(payload=[raw_plan])
        plans = client.fetch_plans(PARAMS)

        client.cache_ttl = -1
        client._session.get.return_value = _response(503, reason="Service Unavailable")
        assert client.fetch_plans(PARAMS) is plans
        assert client.cache_stats()["stale_entries"] == 1

    def test_snapshot_store_on_failure(self, plan_store, raw_plan):
        first = ComparePowerClient("https://pricing.test", plan_store=plan_store, retry_wait=0)
        first._session = MagicMock()
        first._session.get.return_value = _response(payload=[raw_plan])
        first.fetch_plans(PARAMS)
        assert plan_store.plan_count(ONCOR_DUNS) == 1

        second = ComparePowerClient("https://pricing.test", plan_store=plan_store, retry_wait=0)
        second._session = MagicMock()
        second._session.get.return_value = _response(503, reason="Service Unavailable")
        plans = second.fetch_plans(PARAMS)
        assert [p.id for p in plans] == ["cp-001"]

    def test_snapshot_respects_server_filters(self, plan_store, raw_plan):
        first = ComparePowerClient("https://pricing.test", plan_store=plan_store, retry_wait=0)
        first._session = MagicMock()
        first._session.get.return_value = _response(payload=[raw_plan])
        first.fetch_plans(PARAMS)

        second = ComparePowerClient("https://pricing.test", plan_store=plan_store, retry_wait=0)
        second._session = MagicMock()
        second._session.get.return_value = _response(503, reason="Service Unavailable")
        assert second.fetch_plans(dict(PARAMS, term=24)) == []

    def test_repeated_fetches_keep_one_snapshot(self, plan_store, raw_plan):
        c = ComparePowerClient("https://pricing.test", plan_store=plan_store, cache_ttl=-1, retry_wait=0)
        c._session = MagicMock()
        c._session.get.return_value = _response(payload=[raw_plan])
        for _ in range(50):
            c.fetch_plans(PARAMS)
        assert c._session.get.call_count == 50
        with plan_store.engine.connect() as conn:
            rows = conn.execute(text("SELECT COUNT(*) FROM plan_snapshots")).scalar()
        assert rows == 1

    def test_upstream_error_survives_broken_store(self, plan_store):
        with plan_store.engine.connect() as conn:
            conn.execute(text("DROP TABLE plan_snapshots"))
            conn.commit()
        c = ComparePowerClient("https://pricing.test", plan_store=plan_store, retry_wait=0)
        c._session = MagicMock()
        c._session.get.return_value = _response(503, reason="Service Unavailable")
        with pytest.raises(PlanApiError) as exc:
            c.fetch_plans(PARAMS)
        assert exc.value.error_type == ApiErrorType.SERVER_ERROR

    def test_filtered_fetches_are_not_snapshotted(self, plan_store, raw_plan):
        c = ComparePowerClient("https://pricing.test", plan_store=plan_store, retry_wait=0)
        c._session = MagicMock()
        c._session.get.return_value = _response(payload=[raw_plan])
        c.fetch_plans(dict(PARAMS, term=12))
        assert plan_store.plan_count(ONCOR_DUNS) == 0


class TestBreakerAndHealth:
    def test_breaker_opens_after_repeated_failures(self, client):
        client.breaker.failure_threshold = 3
        client._session.get.return_value = _response(500, reason="Internal Server Error")
        with pytest.raises(PlanApiError):
            client.fetch_plans(PARAMS)

        client.clear_cache()
        with pytest.raises(PlanApiError) as exc:
            client.fetch_plans(dict(PARAMS, display_usage=500))
        assert exc.value.error_type == ApiErrorType.CIRCUIT_OPEN

    def test_health_check(self, client):
        client._session.get.return_value = _response(200)
        assert client.health_check() is True
        client._session.get.side_effect = requests.ConnectionError("refused")
        assert client.health_check() is False

    def test_clear_cache(self, client, raw_plan):
        client._session.get.return_value = _response(payload=[raw_plan])
        client.fetch_plans(PARAMS)
        client.clear_cache()
        assert client.cache_stats()["total_entries"] == 0


class TestCache:
    def test_oldest_entry_is_evicted(self, raw_plan):
        c = ComparePowerClient("https://pricing.test", cache_max_entries=2, retry_wait=0)
        c._session = MagicMock()
        c._session.get.return_value = _response(payload=[raw_plan])
        first = dict(PARAMS, display_usage=500)
        c.fetch_plans(first)
        c.fetch_plans(PARAMS)
        c.fetch_plans(dict(PARAMS, display_usage=2000))

        assert c.cache_stats()["total_entries"] == 2
        assert c.cache_key(first) not in c._cache
        assert not c.is_cached(first)
        assert c.is_cached(PARAMS)

    def test_is_cached(self, client, raw_plan):
        assert client.is_cached(PARAMS) is False
        client._session.get.return_value = _response(payload=[raw_plan])
        client.fetch_plans(PARAMS)
        assert client.is_cached(PARAMS) is True
        client.cache_ttl = -1
        assert client.is_cached(PARAMS) is False

    def test_stats_during_concurrent_fetches(self, raw_plan):
        c = ComparePowerClient("https://pricing.test", cache_max_entries=5, retry_wait=0)
        c._session = MagicMock()
        c._session.get.return_value = _response(payload=[raw_plan])
        errors = []

        def writer(n):
            for usage in range(n * 1000, n * 1000 + 200):
                c.fetch_plans(dict(PARAMS, display_usage=usage))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(1, 5)]
        for t in threads:
            t.start()
        while any(t.is_alive() for t in threads):
            try:
                c.cache_stats()
            except RuntimeError as e:
                errors.append(e)
        for t in threads:
            t.join()

        assert errors == []
        assert c.cache_stats()["total_entries"] == 5
