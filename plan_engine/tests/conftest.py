"""Shared fixtures: tmp-path config, sample plans and a mocked-upstream engine."""

import os
from unittest.mock import MagicMock

import pytest

os.environ.setdefault("COMPAREPOWER_API_KEY", "test-key")
os.environ.setdefault("ERCOT_API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from plan_engine.circuit_breaker import CircuitBreaker
from plan_engine.config import Config
from plan_engine.engine import PlanEngine
from plan_engine.models import Contract, Features, Plan, Pricing, Provider
from plan_engine.plan_store import PlanStore
from plan_engine.tdsp_mapping import TDSPMapping

ONCOR_DUNS = "1039940674000"
TNMP_DUNS = "007929441"


def _make_plan(plan_id, name, provider, rate, length=12, rate_type="fixed", green=0,
               fee=0.0, etf=0.0, rating=4.0, deposit=False, autopay=False,
               promotion=None, free_time=None, bill_credit=0.0):
    return Plan(
        id=plan_id,
        name=name,
        provider=Provider(name=provider, rating=rating),
        pricing=Pricing(
            rate_500kwh=rate + 1.0,
            rate_1000kwh=rate,
            rate_2000kwh=rate - 0.5,
            rate_per_kwh=rate,
            total_500kwh=round((rate + 1.0) * 5, 2),
            total_1000kwh=round(rate * 10, 2),
            total_2000kwh=round((rate - 0.5) * 20, 2),
            monthly_fee=fee,
        ),
        contract=Contract(length=length, type=rate_type, early_termination_fee=etf),
        features=Features(
            green_energy=green,
            bill_credit=bill_credit,
            free_time=free_time,
            deposit_required=deposit,
            requires_auto_pay=autopay,
        ),
        promotion=promotion,
        tdsp_duns=ONCOR_DUNS,
    )


@pytest.fixture
def make_plan():
    return _make_plan


@pytest.fixture
def sample_plans():
    """
    p4 10.2 indexed  Champion   promo, no ETF
    p1 11.5 fixed    TXU        12mo, ETF 150
    p2 13.0 fixed    Reliant    24mo, 100% green, $5 fee
    p5 14.1 fixed    Green Mtn  100% green, deposit, no ETF
    p3 15.5 variable Gexa       month-to-month, $9.95 fee
    p6 16.0 fixed    TXU        free weekends
    """
    return [
        _make_plan("p1", "TXU Simple 12", "TXU Energy", 11.5, etf=150, rating=4.2),
        _make_plan("p2", "Reliant Green 24", "Reliant", 13.0, length=24, green=100,
                   fee=5.0, etf=200, rating=3.8),
        _make_plan("p3", "Gexa Flex", "Gexa Energy", 15.5, length=1, rate_type="variable",
                   fee=9.95, rating=3.5),
        _make_plan("p4", "Champion Index", "Champion Energy", 10.2, rate_type="indexed",
                   green=20, rating=4.5, promotion="$50 bill credit"),
        _make_plan("p5", "Pollution Free 12", "Green Mountain Energy", 14.1, green=100,
                   deposit=True),
        _make_plan("p6", "TXU Free Weekends", "TXU Energy", 16.0, etf=150, rating=4.2,
                   free_time={"hours": "12:00 am-11:59 pm", "days": ["Saturday", "Sunday"]}),
    ]


@pytest.fixture
def raw_plan():
    """One plan as the pricing API returns it."""
    return {
        "_id": "cp-001",
        "product": {
            "name": "Simple Saver 12",
            "term": 12,
            "percent_green": 0,
            "is_pre_pay": False,
            "is_time_of_use": False,
            "requires_auto_pay": False,
            "early_termination_fee": 150,
            "headline": "Lock in a low rate",
            "brand": {"name": "TXU Energy"},
        },
        "tdsp": {"name": "Oncor Electric Delivery", "duns_number": ONCOR_DUNS},
        "display_pricing_500": {"avg_cents": 13.9, "total": 69.5},
        "display_pricing_1000": {"avg_cents": 12.5, "total": 125.0},
        "display_pricing_2000": {"avg_cents": 11.9, "total": 238.0},
    }


@pytest.fixture
def config(tmp_path):
    return Config(
        esiid_cache_db=tmp_path / "esiid_cache.db",
        database_url=f"sqlite:///{tmp_path / 'plan_snapshots.db'}",
    )


@pytest.fixture
def mapping(config):
    return TDSPMapping.from_config(config)


@pytest.fixture
def plan_store(config):
    store = PlanStore(config.database_url)
    yield store
    store.close()


@pytest.fixture
def pricing(sample_plans):
    client = MagicMock()
    client.fetch_plans.return_value = sample_plans
    client.is_cached.return_value = False
    client.health_check.return_value = True
    client.cache_stats.return_value = {"total_entries": 0, "fresh_entries": 0,
                                       "stale_entries": 0, "hit_rate": 0.0}
    client.breaker = CircuitBreaker("comparepower")
    return client


@pytest.fixture
def esiid():
    client = MagicMock()
    client.cache = None
    client.breaker = CircuitBreaker("ercot")
    client.health_check.return_value = {"healthy": True, "response_time": 5, "last_error": None}
    client.cache_stats.return_value = {"size": 0, "hits": 0, "misses": 0, "hit_rate": 0.0}
    return client


@pytest.fixture
def engine(config, plan_store, pricing, esiid):
    eng = PlanEngine(config, plan_store=plan_store, pricing=pricing, esiid=esiid)
    yield eng
    eng.close()
