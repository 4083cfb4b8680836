"""ZIP validation, city routing and the deregulated-area listing."""

import logging
import re
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .models import ZIPValidationResult
from .tdsp_mapping import TDSPMapping, city_display_name
from .zip_mapper import FALLBACK_CONFIDENCE, ZIPMapper

logger = logging.getLogger(__name__)

_ZIP_RE = re.compile(r"^\d{5}$")

# Deregulated ERCOT market ZIPs
_MARKET_ZIP_MIN = 75000
_MARKET_ZIP_MAX = 79999

_REGION_NAMES = {
    "North": "East Texas",
    "Central": "Central Texas",
    "Coast": "Coast",
    "South": "South Texas",
    "West": "West Texas",
}

_MAJOR_CITIES = {"houston", "dallas", "austin", "san antonio"}
_LARGE_CITIES = {"fort worth", "el paso", "arlington", "corpus christi"}
_MEDIUM_CITIES = {"tyler", "lubbock", "waco", "college station"}


def region_name(zone: str) -> str:
    return _REGION_NAMES.get(zone, "Texas")


def estimate_plan_count(city_name: str) -> int:
    """Size-based plan count used when no stored snapshot exists."""
    name = (city_name or "").lower()
    if name in _MAJOR_CITIES:
        return 120
    if name in _LARGE_CITIES:
        return 80
    if name in _MEDIUM_CITIES:
        return 42
    return 25


class ZIPService:
    """Validates ZIPs against the deregulated market and routes them to city pages."""

    def __init__(self, mapping: TDSPMapping, mapper: ZIPMapper = None):
        self.mapping = mapping
        self.mapper = mapper or ZIPMapper(mapping)

    def validate_zip(self, zip_code: str) -> ZIPValidationResult:
        start = time.time()
        zip_code = (zip_code or "").strip()

        def _error(code: str, message: str, suggestions: List[str] = None) -> ZIPValidationResult:
            return ZIPValidationResult(
                zip_code=zip_code,
                is_valid=code != "INVALID_FORMAT",
                is_texas=code not in ("INVALID_FORMAT", "NOT_TEXAS"),
                is_deregulated=False,
                error_code=code,
                error=message,
                suggestions=suggestions or [],
                validation_time_ms=int((time.time() - start) * 1000),
            )

        if not _ZIP_RE.match(zip_code):
            return _error("INVALID_FORMAT", "ZIP code must be 5 digits")

        if not _MARKET_ZIP_MIN <= int(zip_code) <= _MARKET_ZIP_MAX:
            return _error("NOT_TEXAS", "ZIP code is not in Texas")

        coop = self.mapping.get_cooperative(zip_code)
        if coop:
            return _error(
                "COOPERATIVE",
                "This area is served by an electric cooperative",
                [f"Contact {coop['name']} at {coop['phone']}"],
            )

        slug = self.mapping.get_city_from_zip(zip_code)
        municipal = self.mapping.get_municipal_utility(slug) if slug else None
        if municipal:
            return _error(
                "NOT_DEREGULATED",
                "This area is not in the deregulated electricity market",
                [f"Electric service is provided by {municipal['name']} ({municipal['phone']})"],
            )

        mapping = self.mapper.lookup(zip_code)
        if mapping is None or (mapping.source != "static" and mapping.confidence <= FALLBACK_CONFIDENCE):
            return _error(
                "NOT_FOUND",
                "ZIP code not found in deregulated areas",
                ["Check if this area is served by a municipal utility or electric cooperative"],
            )

        slug = self.mapper.city_slug_for(mapping)
        multi = None
        if self.mapping.is_multi_tdsp_zip(zip_code):
            multi = {
                "is_multi_tdsp": True,
                "requires_address_validation": self.mapping.requires_address_validation(zip_code),
                "boundary_type": self.mapping.get_boundary_type(zip_code),
                "alternatives": [t.to_dict() for t in self.mapping.get_alternative_tdsps(zip_code)],
                "notes": self.mapping.get_boundary_notes(zip_code),
            }

        return ZIPValidationResult(
            zip_code=zip_code,
            is_valid=True,
            is_texas=True,
            is_deregulated=True,
            city={
                "name": mapping.city,
                "slug": slug,
                "county": mapping.county,
                "redirect_url": f"/electricity-plans/{slug}/",
            },
            tdsp={
                "name": mapping.tdsp_name,
                "duns": mapping.tdsp,
                "territory": mapping.zone,
            },
            confidence=mapping.confidence,
            multi_tdsp=multi,
            validation_time_ms=int((time.time() - start) * 1000),
        )

    def lookup_routing(self, zip_code: str) -> Optional[dict]:
        result = self.validate_zip(zip_code)
        if not result.success:
            return None
        return {
            "zip_code": result.zip_code,
            "redirect_url": result.city["redirect_url"],
            "city_name": result.city["name"],
            "market_status": "active",
        }

    def deregulated_areas(self, plan_counter: Callable[[str], int] = None) -> dict:
        """
        Group the static ZIP table by city.

        Args:
            plan_counter: callable(duns) -> stored plan count; zero or None
                falls back to the size-based estimate

        Returns:
            {total_cities, total_zip_codes, last_updated, cities: [...]}
        """
        groups: Dict[str, list] = {}
        for zip_code, slug in self.mapping.zip_items():
            if not self.mapping.validate_city_slug(slug):
                continue
            groups.setdefault(slug, []).append(zip_code)

        cities = []
        for slug, zips in groups.items():
            city = self.mapping.get_city(slug)
            name = city_display_name(slug)
            count = plan_counter(city.duns) if plan_counter else 0
            cities.append({
                "name": name,
                "slug": slug,
                "region": region_name(city.tdsp.zone),
                "zip_code_count": len(zips),
                "plan_count": count or estimate_plan_count(name),
                "tdsp_territory": city.tdsp.name,
                "market_status": "active",
                "_priority": city.priority,
            })

        cities.sort(key=lambda c: -c["_priority"])
        for c in cities:
            del c["_priority"]

        return {
            "total_cities": len(cities),
            "total_zip_codes": sum(c["zip_code_count"] for c in cities),
            "last_updated": datetime.utcnow().isoformat(),
            "cities": cities,
        }
