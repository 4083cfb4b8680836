"""Main PlanEngine: orchestrates ZIP resolution, faceted routing, plan fetching and analysis."""

import json
import logging
import re
import threading
import time
from typing import Dict, List, Optional

from rapidfuzz import fuzz, process, utils

from . import cost_analysis
from .comparepower_client import ComparePowerClient
from .config import Config
from .esiid_client import ESIIDClient
from .exceptions import ApiErrorType, PlanApiError, ValidationError
from .faceted_router import FacetedRouter, build_url
from .filter_mapper import PROVIDERS, VALID_TERMS, FilterMapper
from .indexing import IndexPolicy
from .models import Plan
from .plan_filter import FilterEngine, parse_filter_query
from .plan_store import PlanStore
from .tdsp_mapping import TDSPMapping, format_city_name
from .zip_mapper import ZIPMapper, coverage_stats
from .zip_service import ZIPService

logger = logging.getLogger(__name__)

_ZIP_RE = re.compile(r"^\d{5}$")

RATE_TYPES = ("fixed", "variable", "indexed")

# pricing API filters; anything else in a route's params is applied locally
_SERVER_PARAMS = {
    "tdsp_duns", "display_usage", "term", "percent_green",
    "is_pre_pay", "is_time_of_use", "requires_auto_pay", "brand_id",
}

LIST_CACHE_TTL = 300  # seconds

AUTOCOMPLETE_MIN_LENGTH = 2
AUTOCOMPLETE_MAX_LIMIT = 20


def _post_filter(plans: List[Plan], params: dict) -> List[Plan]:
    """Apply route params the pricing API does not understand."""
    rate_type = params.get("rate_type")
    if rate_type:
        plans = [p for p in plans if p.contract.type == rate_type]
    if params.get("deposit_required") is False:
        plans = [p for p in plans if not p.features.deposit_required]
    if params.get("free_weekends"):
        plans = [
            p for p in plans
            if p.features.free_time and "Saturday" in p.features.free_time.get("days", [])
        ]
    if params.get("bill_credit"):
        plans = [p for p in plans if p.features.bill_credit > 0 or p.promotion]
    return plans


class PlanEngine:
    """
    Texas electricity plan engine.

    Resolves ZIPs and addresses to TDSP territories, maps faceted URLs to
    pricing API queries, fetches and normalizes plans, and filters,
    compares and cost-analyzes them.
    """

    def __init__(self, config: Optional[Config] = None, plan_store: PlanStore = None,
                 pricing: ComparePowerClient = None, esiid: ESIIDClient = None):
        self.config = config or Config()

        logger.info("Initializing PlanEngine...")
        t0 = time.time()

        # Static territory tables
        self.mapping = TDSPMapping.from_config(self.config)
        self.zip_mapper = ZIPMapper(self.mapping)
        self.zip_service = ZIPService(self.mapping, self.zip_mapper)

        # Snapshot store (last-resort fallback and plan counts)
        self.plan_store = plan_store or PlanStore(self.config.database_url)

        # Upstream APIs
        self.pricing = pricing or ComparePowerClient.from_config(self.config, self.plan_store)
        self.esiid = esiid or ESIIDClient.from_config(self.config)

        # Faceted navigation
        self.filter_mapper = FilterMapper()
        self.router = FacetedRouter(
            self.mapping,
            self.filter_mapper,
            plan_fetcher=self.fetch_route_plans,
            max_filter_depth=self.config.max_filter_depth,
        )
        self.index_policy = IndexPolicy(self.mapping)

        self._list_cache: Dict[str, tuple] = {}
        self._list_lock = threading.Lock()

        logger.info(f"PlanEngine ready in {time.time() - t0:.1f}s")

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def fetch_route_plans(self, api_params: dict, city: str = None) -> List[Plan]:
        server = {k: v for k, v in api_params.items() if k in _SERVER_PARAMS}
        plans = self.pricing.fetch_plans(server, city=city)
        return _post_filter(plans, api_params)

    def resolve_city(self, city: str):
        slug = (city or "").strip().lower()
        found = self.mapping.get_city(slug) or self.mapping.get_city(f"{slug}-tx")
        if found is None:
            available = sorted(self.mapping.all_cities(), key=lambda c: -c.priority)
            raise PlanApiError(
                ApiErrorType.NOT_FOUND,
                f"City '{city}' not found in texas",
                {"city": city, "available_cities": [c.slug for c in available[:5]]},
                False,
            )
        return found

    def city_plans(self, city: str, usage: int = None) -> List[Plan]:
        """All plans for a city's TDSP at one usage level."""
        c = self.resolve_city(city)
        params = {
            "tdsp_duns": c.duns,
            "display_usage": usage or self.config.default_display_usage,
        }
        return self.pricing.fetch_plans(params, city=c.name)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @staticmethod
    def validate_search_request(zip_code, address=None, usage=None, filters=None) -> List[str]:
        errors = []
        if not zip_code or not isinstance(zip_code, str):
            errors.append("zipCode is required")
        elif not _ZIP_RE.match(zip_code.strip()):
            errors.append("zipCode must be a 5-digit ZIP code")

        if usage is not None:
            if not isinstance(usage, (int, float)) or isinstance(usage, bool) or not 100 <= usage <= 5000:
                errors.append("usage must be a number between 100 and 5000 kWh")

        if address is not None and len(address.strip()) < 5:
            errors.append("address must be at least 5 characters when provided")

        filters = filters or {}
        term = filters.get("term")
        if term is not None and term not in VALID_TERMS:
            errors.append("filters.term must be 1, 6, 12, 18, 24, or 36 months")
        green = filters.get("green")
        if green is not None and (not isinstance(green, (int, float)) or not 0 <= green <= 100):
            errors.append("filters.green must be a percentage between 0 and 100")
        rate_type = filters.get("rate_type")
        if rate_type is not None and rate_type not in RATE_TYPES:
            errors.append('filters.rate_type must be "fixed", "variable", or "indexed"')
        return errors

    def search_plans(self, zip_code: str, address: str = None, usage: int = None,
                     filters: dict = None) -> dict:
        """
        Find plans for a ZIP code, using the address to settle split ZIPs.

        Returns:
            {plans, tdsp_info, search_meta, split_zip_info}

        Raises:
            ValidationError on bad input
            PlanApiError when the ZIP has no TDSP or the pricing API fails
        """
        t0 = time.time()
        errors = self.validate_search_request(zip_code, address, usage, filters)
        if errors:
            raise ValidationError("; ".join(errors), "VALIDATION_ERROR", {"errors": errors})

        zip_code = zip_code.strip()
        address = address.strip() if address else None
        usage = int(usage or self.config.default_display_usage)
        filters = filters or {}

        if self.mapping.is_multi_tdsp_zip(zip_code):
            primary = self.mapping.get_primary_tdsp_for_zip(zip_code)
            requires_address = self.mapping.requires_address_validation(zip_code)
            duns, name = primary.duns, primary.name
            if requires_address and address:
                try:
                    resolution = self.esiid.resolve_address_to_tdsp(address, zip_code, usage)
                    duns = resolution["tdsp_duns"]
                    name = resolution["tdsp_name"]
                    confidence = resolution["confidence"]
                    method = "esiid_resolution"
                except PlanApiError as e:
                    logger.warning(f"ESIID resolution failed for {zip_code}, using primary TDSP: {e.message}")
                    confidence = "medium"
                    method = "split_zip_resolved"
            else:
                confidence = "medium" if address else "low"
                method = "split_zip_resolved"
            split_zip_info = {
                "is_multi_tdsp": True,
                "alternative_tdsps": [
                    {"duns": t.duns, "name": t.name, "requires_address": requires_address}
                    for t in self.mapping.get_alternative_tdsps(zip_code)
                ],
            }
            city_name = None
        else:
            result = self.zip_service.validate_zip(zip_code)
            if not result.success:
                raise PlanApiError(
                    ApiErrorType.INVALID_TDSP,
                    f"No TDSP mapping found for ZIP code {zip_code}. This ZIP code may not be "
                    f"in a deregulated Texas electricity market.",
                    {"zip_code": zip_code, "reason": result.error_code},
                    False,
                )
            duns, name = result.tdsp["duns"], result.tdsp["name"]
            confidence = "high"
            method = "direct_mapping"
            split_zip_info = {"is_multi_tdsp": False}
            city_name = result.city["name"]

        api_params = {"tdsp_duns": duns, "display_usage": usage}
        if filters.get("term"):
            api_params["term"] = filters["term"]
        if filters.get("green"):
            api_params["percent_green"] = int(filters["green"])
        for key, param in (("prepaid", "is_pre_pay"), ("time_of_use", "is_time_of_use"),
                           ("requires_auto_pay", "requires_auto_pay")):
            if filters.get(key) is not None:
                api_params[param] = bool(filters[key])

        cache_hit = self.pricing.is_cached(api_params)
        plans = self.pricing.fetch_plans(api_params, city=city_name)

        filtered = plans
        if filters.get("rate_type"):
            filtered = [p for p in filtered if p.contract.type == filters["rate_type"]]
        if filters.get("provider"):
            wanted = filters["provider"].lower()
            filtered = [p for p in filtered if wanted in p.provider.name.lower()]

        logger.info(
            f"Search {zip_code}: {len(filtered)}/{len(plans)} plans via {method} "
            f"({(time.time() - t0) * 1000:.0f}ms)"
        )
        return {
            "plans": [p.to_dict() for p in filtered],
            "tdsp_info": {
                "duns": duns,
                "name": name,
                "zone": self.mapping.zone_for_duns(duns),
                "confidence": confidence,
            },
            "search_meta": {
                "total_plans": len(plans),
                "filtered_plans": len(filtered),
                "zip_code": zip_code,
                "usage": usage,
                "cache_hit": cache_hit,
                "response_time": int((time.time() - t0) * 1000),
                "method": method,
            },
            "split_zip_info": split_zip_info,
        }

    def esiid_lookup(self, address: str, zip_code: str, usage: int = None) -> dict:
        errors = []
        if not address or not isinstance(address, str):
            errors.append("address is required")
        elif len(address.strip()) < 5:
            errors.append("address must be at least 5 characters")
        errors.extend(self.validate_search_request(zip_code, usage=usage))
        if errors:
            raise ValidationError("; ".join(errors), "VALIDATION_ERROR", {"errors": errors})
        return self.esiid.resolve_address_to_tdsp(
            address.strip(), zip_code.strip(), int(usage or self.config.default_display_usage)
        )

    # ------------------------------------------------------------------
    # Plan listing, comparison, suggestions
    # ------------------------------------------------------------------

    def _list_cache_key(self, slug: str, query: dict, limit: int, offset: int) -> str:
        return json.dumps([slug, query, limit, offset], sort_keys=True, default=str)

    def list_plans(self, city: str, query: dict = None, limit: int = 50, offset: int = 0) -> dict:
        """
        Filter, sort and page a city's plans.

        Returns:
            {plans, total_count, filtered_count, filter_counts, applied_filters,
             suggestions, pagination, city, cached}
        """
        query = dict(query or {})
        if not 1 <= limit <= 100:
            raise ValidationError("limit must be between 1 and 100", "INVALID_LIMIT")
        if offset < 0:
            raise ValidationError("offset must not be negative", "INVALID_OFFSET")

        c = self.resolve_city(city)
        key = self._list_cache_key(c.slug, query, limit, offset)
        with self._list_lock:
            cached = self._list_cache.get(key)
            if cached and time.time() - cached[0] < LIST_CACHE_TTL:
                logger.debug(f"Plan list cache hit: {c.slug}")
                return dict(cached[1], cached=True)

        flt = parse_filter_query(query, c.slug)
        engine = FilterEngine(self.city_plans(c.slug))
        result = engine.apply_filters(flt)
        filtered = result["plans"]
        page = filtered[offset:offset + limit]

        response = {
            "plans": [p.to_dict() for p in page],
            "total_count": result["total_count"],
            "filtered_count": result["filtered_count"],
            "filter_counts": result["filter_counts"],
            "applied_filters": flt.to_dict(),
            "suggestions": engine.generate_suggestions(flt) if not filtered else [],
            "pagination": {
                "limit": limit,
                "offset": offset,
                "has_more": offset + limit < len(filtered),
            },
            "city": c.to_dict(),
            "filter_time_ms": result["time_ms"],
            "cached": False,
        }

        with self._list_lock:
            self._list_cache[key] = (time.time(), response)
            now = time.time()
            for k in [k for k, (ts, _) in self._list_cache.items() if now - ts >= LIST_CACHE_TTL]:
                del self._list_cache[k]
        return response

    def compare_plans(self, city: str, plan_ids: List[str], settings: dict = None) -> dict:
        if not isinstance(plan_ids, list) or not 2 <= len(plan_ids) <= 5:
            raise ValidationError("Between 2 and 5 plan IDs are required for comparison", "INVALID_PLAN_IDS")
        if len(set(plan_ids)) != len(plan_ids):
            raise ValidationError("Plan IDs must be unique", "INVALID_PLAN_IDS")

        cost_settings = cost_analysis.CostSettings.from_dict(settings)
        if not 100 <= cost_settings.monthly_usage_kwh <= 10000:
            raise ValidationError("Monthly usage must be between 100 and 10,000 kWh", "INVALID_USAGE")
        if not 1 <= cost_settings.analysis_months <= 60:
            raise ValidationError("Analysis period must be between 1 and 60 months", "INVALID_PERIOD")

        by_id = {p.id: p for p in self.city_plans(city)}
        missing = [pid for pid in plan_ids if pid not in by_id]
        if missing:
            raise PlanApiError(
                ApiErrorType.NOT_FOUND,
                f"Plans not found: {', '.join(missing)}",
                {"missing_ids": missing},
                False,
            )

        plans = [by_id[pid] for pid in plan_ids]
        comparison = cost_analysis.compare_plans(plans, cost_settings, self.config.texas_average_rate)
        comparison["city"] = self.resolve_city(city).to_dict()
        return comparison

    def plan_suggestions(self, city: str, query: dict = None, limit: int = 5) -> dict:
        """Relaxation hints and near-miss plans for a filter set."""
        if not 1 <= limit <= 10:
            raise ValidationError("Limit must be between 1 and 10", "INVALID_LIMIT")
        c = self.resolve_city(city)
        flt = parse_filter_query(query or {}, c.slug)
        engine = FilterEngine(self.city_plans(c.slug))
        filtered_count = engine.apply_filters(flt)["filtered_count"]
        return {
            "filtered_count": filtered_count,
            "suggestions": engine.generate_suggestions(flt)[:limit],
            "nearby_plans": [p.to_dict() for p in engine.find_nearby_plans(flt, limit)],
            "city": c.to_dict(),
        }

    # ------------------------------------------------------------------
    # Faceted navigation
    # ------------------------------------------------------------------

    def faceted_search(self, path: str, require_plans: bool = True) -> dict:
        route = self.router.validate_route(path, require_plans=require_plans)
        data = route.to_dict()
        if route.is_valid:
            segments = route.filter_segments
            data["indexing"] = {
                "should_index": self.index_policy.should_index_combination(route.city_slug, segments),
                "priority": self.index_policy.get_sitemap_priority(route.city_slug, segments),
                "change_frequency": self.index_policy.get_change_frequency(route.city_slug, segments),
                "is_high_value": self.index_policy.is_high_value_page(route.city_slug, segments),
            }
            data["suggested_filters"] = self.router.get_suggested_filters(route.city_slug, segments)
            if route.plans:
                data["available_providers"] = self.filter_mapper.extract_providers_from_plans(route.plans)
        return data

    def autocomplete(self, query: str, limit: int = 8, city: str = None) -> dict:
        """Cities, filters and providers matching a partial query."""
        q = (query or "").strip().lower()
        if not q:
            raise ValidationError('Query parameter "q" is required', "MISSING_QUERY")
        limit = max(1, min(limit, AUTOCOMPLETE_MAX_LIMIT))
        city_context = None
        if city and self.mapping.validate_city_slug(city):
            city_context = {"name": format_city_name(city), "slug": city}

        empty = {"filters": [], "providers": [], "cities": []}
        if len(q) < AUTOCOMPLETE_MIN_LENGTH:
            return {"query": q, "suggestions": [], "categories": empty, "city_context": city_context}

        base_city = city_context["slug"] if city_context else "dallas-tx"
        filters = []
        for pattern in self.filter_mapper.patterns:
            label = self.filter_mapper.display_name(pattern)
            if q in pattern or q in label.lower():
                score = 100 if pattern.startswith(q) or label.lower().startswith(q) else 80
                filters.append({
                    "type": "filter",
                    "value": pattern,
                    "label": f"{label} Plans",
                    "category": "Plan Filters",
                    "url": build_url(base_city, [pattern]),
                    "score": score,
                })

        provider_names = {slug: display for slug, (_, display) in PROVIDERS.items()}
        providers = []
        for display, score, slug in process.extract(
            q, provider_names, scorer=fuzz.partial_ratio, processor=utils.default_process,
            limit=limit, score_cutoff=75
        ):
            providers.append({
                "type": "provider",
                "value": slug,
                "label": display,
                "category": "Electricity Providers",
                "url": build_url(base_city, [slug]) if city_context else f"/providers/{slug}/",
                "score": int(score),
            })

        cities = []
        if not city_context:
            city_names = {c.slug: c.name for c in self.mapping.all_cities()}
            for name, score, slug in process.extract(
                q, city_names, scorer=fuzz.WRatio, processor=utils.default_process,
                limit=limit, score_cutoff=70
            ):
                cities.append({
                    "type": "city",
                    "value": slug,
                    "label": format_city_name(slug),
                    "category": "Cities",
                    "url": build_url(slug),
                    "score": int(score),
                })

        ranked = sorted(filters + providers + cities, key=lambda s: -s["score"])[:limit]
        return {
            "query": q,
            "suggestions": ranked,
            "categories": {"filters": filters, "providers": providers, "cities": cities},
            "city_context": city_context,
        }

    # ------------------------------------------------------------------
    # ZIPs and coverage
    # ------------------------------------------------------------------

    def validate_zip(self, zip_code: str) -> dict:
        return self.zip_service.validate_zip(zip_code).to_dict()

    def zip_navigate(self, zip_code: str, validate_plans_available: bool = False) -> dict:
        """
        Route a ZIP to its city page.

        Raises:
            ValidationError carrying the ZIP error code (INVALID_FORMAT,
            NOT_TEXAS, COOPERATIVE, NOT_DEREGULATED, NOT_FOUND, NO_PLANS)
        """
        if not zip_code or not isinstance(zip_code, str):
            raise ValidationError("zipCode is required and must be a string", "INVALID_FORMAT",
                                  {"suggestions": ["Provide a valid ZIP code string"]})

        result = self.zip_service.validate_zip(zip_code)
        if not result.success:
            raise ValidationError(result.error, result.error_code,
                                  {"suggestions": result.suggestions, "zip_code": result.zip_code})

        plan_count = None
        if validate_plans_available:
            try:
                plan_count = len(self.pricing.fetch_plans(
                    {"tdsp_duns": result.tdsp["duns"], "display_usage": self.config.default_display_usage},
                    city=result.city["name"],
                ))
            except PlanApiError as e:
                logger.warning(f"Plan availability check failed for {zip_code}: {e.message}")
                plan_count = 0
            if plan_count == 0:
                raise ValidationError(
                    f"No electricity plans currently available for {result.city['name']}",
                    "NO_PLANS",
                    {"suggestions": ["Try again later", "Check a nearby ZIP code"], "zip_code": zip_code},
                )

        return {
            "redirect_url": result.city["redirect_url"],
            "city_name": result.city["name"],
            "city_slug": result.city["slug"],
            "tdsp_territory": result.tdsp["name"],
            "tdsp_duns": result.tdsp["duns"],
            "confidence": result.confidence,
            "plan_count": plan_count,
            "has_plans": plan_count is None or plan_count > 0,
            "multi_tdsp": result.multi_tdsp,
            "validation_time_ms": result.validation_time_ms,
        }

    def deregulated_areas(self) -> dict:
        return self.zip_service.deregulated_areas(plan_counter=self.plan_store.plan_count)

    def coverage(self, start: int = None, end: int = None) -> dict:
        kwargs = {}
        if start is not None:
            kwargs["start"] = start
        if end is not None:
            kwargs["end"] = end
        return coverage_stats(self.zip_mapper.generate_comprehensive_mapping(**kwargs))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> dict:
        pricing_ok = self.pricing.health_check()
        ercot = self.esiid.health_check()
        db_ok = self.plan_store.ping()
        healthy = pricing_ok and ercot["healthy"] and db_ok
        return {
            "status": "healthy" if healthy else "degraded",
            "services": {
                "pricing_api": pricing_ok,
                "ercot_api": ercot,
                "database": db_ok,
            },
            "cache": {
                "plans": self.pricing.cache_stats(),
                "esiid": self.esiid.cache_stats(),
            },
            "circuit_breakers": {
                "pricing": self.pricing.breaker.stats(),
                "ercot": self.esiid.breaker.stats(),
            },
            "data": {
                "cities": len(self.mapping.city_slugs()),
                "multi_tdsp_zips": len(self.mapping.multi_tdsp_zip_codes()),
            },
        }

    def close(self):
        if self.esiid.cache is not None:
            self.esiid.cache.close()
        self.plan_store.close()
