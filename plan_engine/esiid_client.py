"""ERCOT ESIID lookups: street address -> meter -> TDSP.

Used for split ZIPs where the ZIP alone cannot tell which utility
delivers power to a given premise.
"""

import logging
import time
from collections import Counter
from typing import List

import requests

from .cache import ESIIDCache
from .circuit_breaker import CircuitBreaker
from .exceptions import ApiErrorType, PlanApiError
from .models import ESIIDResult

logger = logging.getLogger(__name__)

_USER_AGENT = "ChooseMyPower.org/1.0"
_REQUIRED_FIELDS = ("esiid", "address", "zip_code", "tdsp_duns", "tdsp_name")
_DETAIL_FIELDS = (
    "service_delivery_identifier", "profile_id", "switch_hold_indicator",
    "customer_class", "load_profile", "rate_class",
)

# Health probe address
_PROBE_ADDRESS = "1234 Main St"
_PROBE_ZIP = "75201"


def _valid_row(row) -> bool:
    return isinstance(row, dict) and all(isinstance(row.get(f), str) for f in _REQUIRED_FIELDS)


def _strip(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_result(row: dict) -> ESIIDResult:
    return ESIIDResult(
        esiid=row["esiid"],
        address=row["address"].strip(),
        city=_strip(row.get("city")),
        state=_strip(row.get("state")) or "TX",
        zip_code=row["zip_code"].strip(),
        county=_strip(row.get("county")),
        tdsp_duns=row["tdsp_duns"],
        tdsp_name=row["tdsp_name"].strip(),
        service_voltage=_strip(row.get("service_voltage")),
        meter_type=_strip(row.get("meter_type")),
    )


class ESIIDClient:
    """Search the ERCOT ESIID API and resolve addresses to TDSPs."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0,
                 cache: ESIIDCache = None, breaker: CircuitBreaker = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.cache = cache
        self.breaker = breaker or CircuitBreaker("ercot")
        self._session = requests.Session()

    @classmethod
    def from_config(cls, config) -> "ESIIDClient":
        breaker = CircuitBreaker(
            "ercot",
            failure_threshold=config.breaker_failure_threshold,
            recovery_timeout=config.breaker_recovery_timeout,
            half_open_max_calls=config.breaker_half_open_max_calls,
        )
        return cls(
            config.ercot_api_url,
            api_key=config.ercot_api_key,
            timeout=config.request_timeout,
            cache=ESIIDCache(config.esiid_cache_db, config.esiid_cache_ttl_hours),
            breaker=breaker,
        )

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": _USER_AGENT,
            "Accept": "application/json",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _get(self, url: str, params: dict, context: dict, what: str):
        try:
            resp = self._session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise PlanApiError(
                ApiErrorType.NETWORK_ERROR, f"Network error during {what}: {e}", context, True
            )
        if resp.status_code != 200:
            raise PlanApiError(
                ApiErrorType.ESIID_LOOKUP_ERROR,
                f"{what[0].upper()}{what[1:]} failed: {resp.status_code} {resp.reason or ''}".rstrip(),
                dict(context, status=resp.status_code),
                resp.status_code >= 500,
            )
        try:
            return resp.json()
        except ValueError:
            raise PlanApiError(
                ApiErrorType.DATA_VALIDATION_ERROR, f"Invalid JSON from {what}", context, False
            )

    def search_esiids(self, address: str, zip_code: str) -> List[ESIIDResult]:
        """
        Find ESIIDs (meters) at an address.

        Returns:
            List of ESIIDResult; rows missing required fields are dropped

        Raises:
            PlanApiError: ESIID_LOOKUP_ERROR, DATA_VALIDATION_ERROR,
                NETWORK_ERROR or CIRCUIT_OPEN
        """
        if self.cache is not None:
            cached = self.cache.get(address, zip_code)
            if cached is not None:
                return cached

        context = {"address": address, "zip_code": zip_code}
        data = self.breaker.call(
            self._get,
            f"{self.base_url}/api/esiids",
            {"address": address, "zip_code": zip_code},
            context,
            "ESIID search",
        )
        if not isinstance(data, list):
            raise PlanApiError(
                ApiErrorType.DATA_VALIDATION_ERROR, "ESIID search response is not an array", context, False
            )

        results = [normalize_result(row) for row in data if _valid_row(row)]
        if self.cache is not None:
            self.cache.put(address, zip_code, results)
        logger.info(f"Found {len(results)} ESIID results for {address}, {zip_code}")
        return results

    def get_esiid_details(self, esiid: str) -> dict:
        context = {"esiid": esiid}
        data = self.breaker.call(
            self._get,
            f"{self.base_url}/api/esiids/{requests.utils.quote(esiid, safe='')}",
            None,
            context,
            "ESIID details lookup",
        )
        if not _valid_row(data) or not isinstance(data.get("premise_number"), str):
            raise PlanApiError(
                ApiErrorType.DATA_VALIDATION_ERROR, "Invalid ESIID details response", context, False
            )
        details = normalize_result(data).to_dict()
        details["premise_number"] = data["premise_number"]
        for f in _DETAIL_FIELDS:
            details[f] = data.get(f) or ""
        return details

    def resolve_address_to_tdsp(self, address: str, zip_code: str, display_usage: int = 1000) -> dict:
        """
        Resolve a service address to its TDSP.

        Returns:
            {success, method, confidence, tdsp_duns, tdsp_name, esiid,
             address, zip_code, alternatives, api_params}

        Raises:
            PlanApiError(ESIID_NOT_FOUND) when no meter matches
        """
        address = (address or "").strip()
        zip_code = (zip_code or "").strip()
        logger.debug(f"Resolving address to TDSP: {address}, {zip_code}")

        results = self.search_esiids(address, zip_code)
        if not results:
            raise PlanApiError(
                ApiErrorType.ESIID_NOT_FOUND,
                "No ESIID found for this address",
                {"address": address, "zip_code": zip_code},
                False,
            )

        # Counter.most_common keeps first-seen order on ties
        counts = Counter(r.tdsp_duns for r in results)
        ranked = [duns for duns, _ in counts.most_common()]
        first_by_duns = {}
        for r in results:
            first_by_duns.setdefault(r.tdsp_duns, r)

        primary = first_by_duns[ranked[0]]
        api_params = {"tdsp_duns": primary.tdsp_duns, "display_usage": display_usage}

        if len(ranked) == 1:
            first = results[0]
            return {
                "success": True,
                "method": "single_result",
                "confidence": "high",
                "tdsp_duns": primary.tdsp_duns,
                "tdsp_name": primary.tdsp_name,
                "esiid": first.esiid,
                "address": first.address,
                "zip_code": first.zip_code,
                "alternatives": [],
                "api_params": api_params,
            }

        alternatives = [
            {
                "tdsp_duns": duns,
                "tdsp_name": first_by_duns[duns].tdsp_name,
                "esiid": first_by_duns[duns].esiid,
                "address": first_by_duns[duns].address,
            }
            for duns in ranked[1:]
        ]
        return {
            "success": True,
            "method": "multiple_results",
            "confidence": "medium",
            "tdsp_duns": primary.tdsp_duns,
            "tdsp_name": primary.tdsp_name,
            "esiid": primary.esiid,
            "address": address,
            "zip_code": zip_code,
            "alternatives": alternatives,
            "api_params": api_params,
        }

    def clear_cache(self):
        if self.cache is not None:
            self.cache.clear()
            logger.info("ESIID cache cleared")

    def cache_stats(self) -> dict:
        if self.cache is None:
            return {"size": 0, "hits": 0, "misses": 0, "hit_rate": 0.0}
        return self.cache.stats()

    def health_check(self) -> dict:
        t0 = time.time()
        try:
            self.search_esiids(_PROBE_ADDRESS, _PROBE_ZIP)
        except PlanApiError as e:
            return {
                "healthy": False,
                "response_time": int((time.time() - t0) * 1000),
                "last_error": e.message,
            }
        return {"healthy": True, "response_time": int((time.time() - t0) * 1000), "last_error": None}
