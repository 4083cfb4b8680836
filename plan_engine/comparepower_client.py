"""ComparePower pricing API client.

GET {base}/api/plans/current?group=default&tdsp_duns=...&display_usage=1000

Responses are normalized into Plan objects and cached in memory for an
hour. On failure the client falls back to a stale cache entry, then to the
latest stored snapshot, and only then raises.
"""

import json
import logging
import re
import threading
import time
from collections import OrderedDict
from typing import List, Optional

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .circuit_breaker import CircuitBreaker
from .exceptions import ApiErrorType, PlanApiError
from .models import Contract, Features, Plan, Pricing, Provider

logger = logging.getLogger(__name__)

_USER_AGENT = "ChooseMyPower.org/1.0"

_OPTIONAL_PARAMS = (
    "term", "percent_green", "is_pre_pay", "is_time_of_use", "requires_auto_pay", "brand_id",
)

_TIME_RANGE = re.compile(
    r"(\d{1,2}:\d{2}\s*(?:am|pm))\s*to\s*(\d{1,2}:\d{2}\s*(?:am|pm))", re.IGNORECASE
)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, PlanApiError) and exc.is_retryable


def _cents(pricing: Optional[dict]) -> float:
    if not pricing:
        return 0.0
    if pricing.get("avg_cents"):
        return float(pricing["avg_cents"])
    if pricing.get("avg"):
        return float(pricing["avg"]) * 100
    return 0.0


def _total(pricing: Optional[dict]) -> float:
    return float((pricing or {}).get("total") or 0)


def determine_rate_type(product: dict) -> str:
    name = (product.get("name") or "").lower()
    headline = (product.get("headline") or "").lower()
    if "variable" in name or "variable" in headline:
        return "variable"
    if "indexed" in name or "indexed" in headline:
        return "indexed"
    return "fixed"


def parse_time_of_use(headline: str) -> dict:
    """'FREE electricity from 9:00 am to 4:00 pm' -> {hours, days}."""
    headline = headline or ""
    match = _TIME_RANGE.search(headline)
    if match:
        days = ["Saturday", "Sunday"] if "weekend" in headline.lower() else ["All"]
        return {"hours": f"{match.group(1)}-{match.group(2)}", "days": days}
    return {"hours": "Off-peak hours", "days": ["All"]}


def transform_plan(raw: dict) -> Plan:
    product = raw.get("product") or {}
    brand = product.get("brand") or {}
    tdsp = raw.get("tdsp") or {}
    p500 = raw.get("display_pricing_500")
    p1000 = raw.get("display_pricing_1000")
    p2000 = raw.get("display_pricing_2000")

    return Plan(
        id=raw.get("_id", ""),
        name=product.get("name", ""),
        provider=Provider(name=brand.get("name", "")),
        pricing=Pricing(
            rate_500kwh=_cents(p500),
            rate_1000kwh=_cents(p1000),
            rate_2000kwh=_cents(p2000),
            rate_per_kwh=_cents(p1000),
            total_500kwh=_total(p500),
            total_1000kwh=_total(p1000),
            total_2000kwh=_total(p2000),
        ),
        contract=Contract(
            length=int(product.get("term") or 0),
            type=determine_rate_type(product),
            early_termination_fee=float(product.get("early_termination_fee") or 0),
        ),
        features=Features(
            green_energy=int(product.get("percent_green") or 0),
            free_time=parse_time_of_use(product.get("headline")) if product.get("is_time_of_use") else None,
            deposit_required=bool(product.get("is_pre_pay")),
            requires_auto_pay=bool(product.get("requires_auto_pay")),
        ),
        service_areas=[tdsp["name"]] if tdsp.get("name") else [],
        tdsp_duns=tdsp.get("duns_number", ""),
    )


def _matches_params(plan: Plan, params: dict) -> bool:
    """Apply the API's server-side filters to a stored snapshot."""
    if params.get("term") and plan.contract.length != int(params["term"]):
        return False
    if params.get("percent_green") is not None and plan.features.green_energy < int(params["percent_green"]):
        return False
    if params.get("is_pre_pay") is not None and plan.features.deposit_required != bool(params["is_pre_pay"]):
        return False
    if params.get("is_time_of_use") is not None and (plan.features.free_time is not None) != bool(params["is_time_of_use"]):
        return False
    if params.get("requires_auto_pay") is not None and plan.features.requires_auto_pay != bool(params["requires_auto_pay"]):
        return False
    return True


class ComparePowerClient:
    """Fetch and normalize plans from the ComparePower pricing API."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0,
                 retry_attempts: int = 3, cache_ttl: int = 3600, cache_max_entries: int = 100,
                 breaker: CircuitBreaker = None, plan_store=None, retry_wait: float = 1.0,
                 snapshot_max_age: float = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.cache_ttl = cache_ttl
        self.cache_max_entries = cache_max_entries
        self.breaker = breaker or CircuitBreaker("comparepower")
        self.plan_store = plan_store
        self.retry_wait = retry_wait
        self.snapshot_max_age = snapshot_max_age
        self._session = requests.Session()
        self._cache: "OrderedDict[str, tuple]" = OrderedDict()
        self._cache_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_config(cls, config, plan_store=None) -> "ComparePowerClient":
        breaker = CircuitBreaker(
            "comparepower",
            failure_threshold=config.breaker_failure_threshold,
            recovery_timeout=config.breaker_recovery_timeout,
            half_open_max_calls=config.breaker_half_open_max_calls,
        )
        return cls(
            config.comparepower_api_url,
            api_key=config.comparepower_api_key,
            timeout=config.request_timeout,
            retry_attempts=config.retry_attempts,
            cache_ttl=config.plan_cache_ttl,
            cache_max_entries=config.plan_cache_max_entries,
            breaker=breaker,
            plan_store=plan_store,
            snapshot_max_age=config.snapshot_max_age,
        )

    def _headers(self) -> dict:
        headers = {"User-Agent": _USER_AGENT, "Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    @staticmethod
    def build_query(api_params: dict) -> dict:
        if not api_params.get("tdsp_duns"):
            raise PlanApiError(ApiErrorType.INVALID_TDSP, "tdsp_duns is required", {"params": api_params})
        query = {
            "group": "default",
            "tdsp_duns": api_params["tdsp_duns"],
            "display_usage": str(api_params.get("display_usage") or 1000),
        }
        for key in _OPTIONAL_PARAMS:
            value = api_params.get(key)
            if value is None or value == "":
                continue
            query[key] = str(value).lower() if isinstance(value, bool) else str(value)
        return query

    @staticmethod
    def cache_key(api_params: dict) -> str:
        return json.dumps(api_params, sort_keys=True, default=str)

    # -- HTTP ----------------------------------------------------------

    def _request(self, url: str, query: dict, context: dict):
        try:
            resp = self._session.get(url, params=query, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise PlanApiError.from_network_error(e, context)
        if resp.status_code != 200:
            raise PlanApiError.from_http_error(resp.status_code, resp.reason or "", context)
        try:
            return resp.json()
        except ValueError as e:
            raise PlanApiError(
                ApiErrorType.DATA_VALIDATION_ERROR, f"Invalid JSON from pricing API: {e}", context, False
            )

    def _fetch_raw(self, query: dict, context: dict) -> list:
        url = f"{self.base_url}/api/plans/current"
        retryer = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=4 * self.retry_wait),
            retry=retry_if_exception(_is_retryable),
            before_sleep=lambda rs: logger.warning(
                f"Pricing API attempt {rs.attempt_number} failed: {rs.outcome.exception()}; retrying"
            ),
            reraise=True,
        )
        data = retryer(self.breaker.call, self._request, url, query, context)
        if not isinstance(data, list):
            raise PlanApiError(
                ApiErrorType.DATA_VALIDATION_ERROR, "Plan response is not an array", context, False
            )
        return data

    # -- public --------------------------------------------------------

    def fetch_plans(self, api_params: dict, city: str = None) -> List[Plan]:
        """
        Fetch plans for a TDSP and optional filters.

        Returns:
            List of Plan

        Raises:
            PlanApiError when the API, the stale cache and the snapshot
            store all fail to produce plans
        """
        key = self.cache_key(api_params)
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached and time.time() - cached[0] <= self.cache_ttl:
                self._hits += 1
                logger.debug(f"Plan cache hit: {key}")
                return cached[1]
            self._misses += 1

        query = self.build_query(api_params)
        context = {"tdsp_duns": api_params.get("tdsp_duns")}
        if city:
            context["city"] = city

        try:
            raw = self._fetch_raw(query, context)
        except PlanApiError as e:
            return self._fallback(api_params, key, e)

        plans = []
        for item in raw:
            try:
                plans.append(transform_plan(item))
            except (TypeError, ValueError, KeyError) as e:
                logger.debug(f"Skipping malformed plan {item.get('_id') if isinstance(item, dict) else item!r}: {e}")
        self._store(key, plans)

        if self.plan_store is not None and set(api_params) <= {"tdsp_duns", "display_usage"}:
            self.plan_store.save_snapshot(
                api_params["tdsp_duns"], int(api_params.get("display_usage") or 1000), plans
            )
        logger.info(f"Fetched {len(plans)} plans for TDSP {api_params.get('tdsp_duns')}")
        return plans

    def _fallback(self, api_params: dict, key: str, error: PlanApiError) -> List[Plan]:
        with self._cache_lock:
            stale = self._cache.get(key)
        if stale:
            logger.warning(f"Pricing API failed ({error.error_type.value}); serving stale cache")
            return stale[1]

        if self.plan_store is not None:
            snapshot = self.plan_store.latest_snapshot(
                api_params["tdsp_duns"], int(api_params.get("display_usage") or 1000), self.snapshot_max_age
            )
            if snapshot:
                logger.warning(f"Pricing API failed ({error.error_type.value}); serving stored snapshot")
                return [p for p in snapshot if _matches_params(p, api_params)]

        raise error

    def _store(self, key: str, plans: List[Plan]):
        with self._cache_lock:
            self._cache[key] = (time.time(), plans)
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_max_entries:
                self._cache.popitem(last=False)

    def is_cached(self, api_params: dict) -> bool:
        """True if fetch_plans would answer these params from a fresh cache entry."""
        with self._cache_lock:
            cached = self._cache.get(self.cache_key(api_params))
            return bool(cached) and time.time() - cached[0] <= self.cache_ttl

    def cache_stats(self) -> dict:
        now = time.time()
        with self._cache_lock:
            total = len(self._cache)
            fresh = sum(1 for ts, _ in self._cache.values() if now - ts <= self.cache_ttl)
            lookups = self._hits + self._misses
            hits = self._hits
        return {
            "total_entries": total,
            "fresh_entries": fresh,
            "stale_entries": total - fresh,
            "hit_rate": round(hits / lookups, 3) if lookups else 0.0,
        }

    def clear_cache(self):
        with self._cache_lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def health_check(self) -> bool:
        try:
            resp = self._session.get(f"{self.base_url}/health", headers=self._headers(), timeout=self.timeout)
            return resp.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Pricing API health check failed: {e}")
            return False
