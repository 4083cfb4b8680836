"""Resolve faceted plan URLs to validated routes.

    dallas-tx/12-month/fixed-rate  ->  RouteResult(canonical_url=..., messaging=..., plans=[...])
"""

import logging
from typing import Callable, List, Optional

from .exceptions import PlanApiError
from .filter_mapper import FILTER_TYPE_ORDER, FilterMapper
from .messaging import MessageContext, generate_message
from .models import AppliedFilter, RouteResult
from .tdsp_mapping import TDSPMapping

logger = logging.getLogger(__name__)

BASE_PATH = "/electricity-plans"

HIGH_VALUE_COMBINATIONS = [
    ["12-month", "fixed-rate"],
    ["12-month", "green-energy"],
    ["24-month", "fixed-rate"],
    ["fixed-rate", "green-energy"],
    ["prepaid", "no-deposit"],
]


def build_url(city_slug: str, segments: List[str] = None) -> str:
    if not segments:
        return f"{BASE_PATH}/{city_slug}/"
    return f"{BASE_PATH}/{city_slug}/{'/'.join(segments)}/"


def canonical_segments(applied: List[AppliedFilter]) -> List[str]:
    ordered = sorted(applied, key=lambda f: FILTER_TYPE_ORDER.index(f.type))
    return [f.url_segment for f in ordered]


class FacetedRouter:
    """Validates /electricity-plans/{city}/{filters...} paths."""

    def __init__(self, mapping: TDSPMapping, filter_mapper: FilterMapper = None,
                 plan_fetcher: Callable[[dict, str], list] = None, max_filter_depth: int = 3):
        self.mapping = mapping
        self.filter_mapper = filter_mapper or FilterMapper()
        self.plan_fetcher = plan_fetcher
        self.max_filter_depth = max_filter_depth

    def validate_route(self, path: str, max_filter_depth: int = None,
                       allow_invalid_filters: bool = False, enable_redirects: bool = True,
                       require_plans: bool = False) -> RouteResult:
        max_depth = max_filter_depth if max_filter_depth is not None else self.max_filter_depth
        segments = [s for s in (path or "").split("/") if s]
        if segments and segments[0] == BASE_PATH.strip("/"):
            segments = segments[1:]
        result = RouteResult(is_valid=False)

        if not segments:
            result.error = "Invalid URL: No city specified"
            result.redirect_url = f"{BASE_PATH}/"
            return result

        city_slug, filter_segments = segments[0], segments[1:]
        result.city_slug = city_slug
        result.filter_segments = filter_segments

        city = self.mapping.get_city(city_slug)
        if city is None:
            result.error = f"Invalid city: {city_slug}"
            result.redirect_url = "/404"
            return result
        result.city_name = city.name
        result.tdsp_duns = city.duns

        if len(filter_segments) > max_depth:
            result.error = f"Too many filters (max {max_depth})"
            if enable_redirects:
                result.redirect_url = build_url(city_slug, filter_segments[:max_depth])
            return result

        filters = self.filter_mapper.map_filters_to_api_params(city_slug, filter_segments, city.duns)
        result.filter_result = filters
        if not filters.is_valid and not allow_invalid_filters:
            result.error = f"Invalid filter combination: {', '.join(filters.errors)}"
            if enable_redirects:
                result.redirect_url = self._fallback_url(city_slug, city.duns, filter_segments)
            return result

        if filters.is_valid:
            result.canonical_url = build_url(city_slug, canonical_segments(filters.applied_filters))
        else:
            result.canonical_url = build_url(city_slug, filter_segments)
        result.should_index = len(filter_segments) <= 2

        if require_plans and filters.is_valid and self.plan_fetcher is not None:
            try:
                result.plans = self.plan_fetcher(filters.api_params, city.name)
            except PlanApiError as e:
                logger.warning(f"Plan fetch failed for {path}: {e.message}")
                result.plan_error = f"Failed to fetch plans: {e.message}"

        lowest = min((p.pricing.rate_per_kwh for p in result.plans), default=0)
        result.messaging = generate_message(MessageContext(
            city_name=city.name,
            city_slug=city_slug,
            plan_count=len(result.plans),
            lowest_rate=lowest,
            applied_filters=filters.applied_filters,
        ))
        result.breadcrumbs = self.get_breadcrumbs(city_slug, city.name, filters.applied_filters)
        result.title = self.generate_page_title(city.name, filters.applied_filters)
        result.is_valid = filters.is_valid or allow_invalid_filters
        return result

    def _fallback_url(self, city_slug: str, duns: str, segments: List[str]) -> str:
        for i in range(len(segments) - 1, -1, -1):
            trial = segments[:i]
            if self.filter_mapper.map_filters_to_api_params(city_slug, trial, duns).is_valid:
                return build_url(city_slug, trial)
        return build_url(city_slug)

    def get_suggested_filters(self, city_slug: str, current: List[str], limit: int = 6) -> List[str]:
        duns = self.mapping.get_tdsp_from_city(city_slug)
        if not duns:
            return []
        applied = self.filter_mapper.map_filters_to_api_params(city_slug, current, duns).applied_filters
        available = self.filter_mapper.get_available_filters([f.type for f in applied])
        return [d.url_patterns[0] for d in available if d.url_patterns][:limit]

    def generate_valid_combinations(self, city_slug: str, max_depth: int = 2) -> List[str]:
        duns = self.mapping.get_tdsp_from_city(city_slug)
        if not duns:
            return []
        urls = [build_url(city_slug)]
        for definition in self.filter_mapper.get_available_filters():
            for pattern in definition.url_patterns[:2]:
                if self.filter_mapper.map_filters_to_api_params(city_slug, [pattern], duns).is_valid:
                    urls.append(build_url(city_slug, [pattern]))
        if max_depth >= 2:
            for combo in HIGH_VALUE_COMBINATIONS:
                if self.filter_mapper.map_filters_to_api_params(city_slug, combo, duns).is_valid:
                    urls.append(build_url(city_slug, combo))
        return urls

    def validate_filter_segment(self, segment: str) -> bool:
        return self.filter_mapper.validate_filter_segment(segment)["is_valid"]

    def get_filter_description(self, city_name: str, applied: List[AppliedFilter],
                               plan_count: int = 0) -> str:
        return generate_message(MessageContext(
            city_name=city_name,
            city_slug=city_name.lower().replace(" ", "-"),
            plan_count=plan_count,
            applied_filters=applied,
        ))["subheadline"]

    def generate_page_title(self, city_name: str, applied: List[AppliedFilter]) -> str:
        if not applied:
            headline = generate_message(MessageContext(city_name, city_name.lower(), 0))["headline"]
            return f"{headline} | ChooseMyPower"
        labels = " + ".join(f.display_name for f in applied)
        return f"{labels} Plans in {city_name}, TX | Real Rates, No Tricks"

    def get_breadcrumbs(self, city_slug: str, city_name: str,
                        applied: List[AppliedFilter]) -> List[dict]:
        crumbs = [
            {"name": "Home", "url": "/"},
            {"name": "Texas Electricity", "url": "/texas/"},
            {"name": f"{city_name} Plans", "url": build_url(city_slug)},
        ]
        path = f"{BASE_PATH}/{city_slug}"
        for f in applied:
            path += f"/{f.url_segment}"
            crumbs.append({"name": f.display_name, "url": f"{path}/"})
        return crumbs

    def parse_path(self, path: str) -> Optional[tuple]:
        """(city_slug, filter_segments) for a known city, else None."""
        segments = [s for s in (path or "").split("/") if s]
        if segments and segments[0] == BASE_PATH.strip("/"):
            segments = segments[1:]
        if not segments or not self.mapping.validate_city_slug(segments[0]):
            return None
        return segments[0], segments[1:]
