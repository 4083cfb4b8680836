"""Map faceted URL segments to pricing-API parameters and back.

    /electricity-plans/dallas-tx/12-month/fixed-rate/
        -> {"tdsp_duns": "...", "display_usage": 1000, "term": 12, "rate_type": "fixed"}
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .models import AppliedFilter, FilterValidationResult

logger = logging.getLogger(__name__)

FILTER_TYPE_ORDER = ["term", "rate_type", "green_energy", "plan_features", "usage", "provider"]

VALID_TERMS = (1, 6, 12, 18, 24, 36)
VALID_USAGE = (500, 1000, 2000)

_MONTHS = re.compile(r"^(\d+)-month$")
_GREEN = re.compile(r"^(\d+)-green$")
_KWH = re.compile(r"^(\d+)-kwh$")

_RATE_TYPES = {"fixed-rate": "fixed", "variable-rate": "variable", "indexed-rate": "indexed"}
_RATE_DISPLAY = {"fixed-rate": "Fixed Rate", "variable-rate": "Variable Rate", "indexed-rate": "Market Rate"}

_FEATURES = {
    "no-deposit": ("deposit_required", False, "No Deposit Required"),
    "prepaid": ("is_pre_pay", True, "Prepaid"),
    "autopay-discount": ("requires_auto_pay", True, "AutoPay Discount"),
    "time-of-use": ("is_time_of_use", True, "Time-of-Use"),
    "free-weekends": ("free_weekends", True, "Free Weekends"),
    "bill-credit": ("bill_credit", True, "Bill Credit"),
    "no-contract": ("term", 1, "No Contract"),
    "smart-meter": ("smart_meter", True, "Smart Meter Required"),
}

# URL slug -> (brand_id, display name)
PROVIDERS = {
    "txu-energy": ("txu_energy", "TXU Energy"),
    "reliant": ("reliant", "Reliant"),
    "green-mountain-energy": ("green_mountain", "Green Mountain Energy"),
    "gexa-energy": ("gexa_energy", "Gexa Energy"),
    "direct-energy": ("direct_energy", "Direct Energy"),
    "discount-power": ("discount_power", "Discount Power"),
    "champion-energy": ("champion_energy", "Champion Energy"),
    "cirro-energy": ("cirro_energy", "Cirro Energy"),
    "frontier-utilities": ("frontier_utilities", "Frontier Utilities"),
    "4change-energy": ("4change_energy", "4Change Energy"),
    "ambit-energy": ("ambit_energy", "Ambit Energy"),
    "amigo-energy": ("amigo_energy", "Amigo Energy"),
    "bounce-energy": ("bounce_energy", "Bounce Energy"),
    "chariot-energy": ("chariot_energy", "Chariot Energy"),
    "express-energy": ("express_energy", "Express Energy"),
    "infuse-energy": ("infuse_energy", "Infuse Energy"),
    "just-energy": ("just_energy", "Just Energy"),
    "pulse-power": ("pulse_power", "Pulse Power"),
    "rhythm-energy": ("rhythm_energy", "Rhythm Energy"),
    "veteran-energy": ("veteran_energy", "Veteran Energy"),
}
_BRAND_TO_SLUG = {brand: slug for slug, (brand, _) in PROVIDERS.items()}

_NAME_NOISE = re.compile(r"energy|power|electric|company|corp|inc")


def _term_value(segment: str):
    if segment == "month-to-month":
        return 1
    m = _MONTHS.match(segment)
    return int(m.group(1)) if m else None


def _term_display(segment: str) -> str:
    if segment == "month-to-month":
        return "Month-to-Month"
    m = _MONTHS.match(segment)
    return f"{m.group(1)}-Month" if m else segment


def _green_value(segment: str):
    if segment in ("green-energy", "renewable"):
        return 100
    m = _GREEN.match(segment)
    return int(m.group(1)) if m else None


def _green_display(segment: str) -> str:
    value = _green_value(segment)
    return f"{value}% Clean Energy" if value is not None else segment


def _usage_value(segment: str):
    if segment == "low-usage":
        return 500
    if segment == "high-usage":
        return 2000
    m = _KWH.match(segment)
    return int(m.group(1)) if m else None


def _usage_display(segment: str) -> str:
    if segment == "low-usage":
        return "Low Usage (500 kWh)"
    if segment == "high-usage":
        return "High Usage (2000 kWh)"
    m = _KWH.match(segment)
    return f"{m.group(1)} kWh Usage" if m else segment


def _feature_value(segment: str):
    entry = _FEATURES.get(segment)
    return {"param": entry[0], "value": entry[1]} if entry else None


def _title_words(segment: str) -> str:
    return " ".join(w.capitalize() for w in segment.split("-"))


@dataclass
class FilterDefinition:
    type: str
    url_patterns: List[str]
    api_param: str
    value_transform: Callable[[str], object]
    display_name: Callable[[str], str]
    is_valid: Callable[[object], bool]
    description: str
    conflicts_with: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "url_patterns": self.url_patterns,
            "api_param": self.api_param,
            "description": self.description,
        }


FILTER_DEFINITIONS: List[FilterDefinition] = [
    FilterDefinition(
        type="term",
        url_patterns=["6-month", "12-month", "24-month", "36-month", "month-to-month"],
        api_param="term",
        value_transform=_term_value,
        display_name=_term_display,
        is_valid=lambda v: v in VALID_TERMS,
        description="Contract length in months",
    ),
    FilterDefinition(
        type="rate_type",
        url_patterns=list(_RATE_TYPES),
        api_param="rate_type",
        value_transform=_RATE_TYPES.get,
        display_name=lambda s: _RATE_DISPLAY.get(s, s),
        is_valid=lambda v: v in ("fixed", "variable", "indexed"),
        conflicts_with=["rate_type"],
        description="Electricity rate structure type",
    ),
    FilterDefinition(
        type="green_energy",
        url_patterns=["100-green", "50-green", "25-green", "green-energy", "renewable"],
        api_param="percent_green",
        value_transform=_green_value,
        display_name=_green_display,
        is_valid=lambda v: isinstance(v, int) and 0 <= v <= 100,
        conflicts_with=["green_energy"],
        description="Percentage of renewable energy",
    ),
    FilterDefinition(
        type="plan_features",
        url_patterns=list(_FEATURES),
        api_param="feature",
        value_transform=_feature_value,
        display_name=lambda s: _FEATURES[s][2] if s in _FEATURES else s,
        is_valid=lambda v: v is not None,
        description="Special plan features and requirements",
    ),
    FilterDefinition(
        type="provider",
        url_patterns=list(PROVIDERS),
        api_param="brand_id",
        value_transform=lambda s: PROVIDERS[s][0] if s in PROVIDERS else s.replace("-", "_"),
        display_name=lambda s: PROVIDERS[s][1] if s in PROVIDERS else _title_words(s),
        is_valid=lambda v: isinstance(v, str) and len(v) > 0,
        description="Filter by electricity provider",
    ),
    FilterDefinition(
        type="usage",
        url_patterns=["500-kwh", "1000-kwh", "2000-kwh", "low-usage", "high-usage"],
        api_param="display_usage",
        value_transform=_usage_value,
        display_name=_usage_display,
        is_valid=lambda v: v in VALID_USAGE,
        conflicts_with=["usage"],
        description="Monthly electricity usage level",
    ),
]


def create_provider_slug(name: str) -> str:
    """'Green Mountain Energy, Inc.' -> 'green-mountain-energy-inc'."""
    slug = re.sub(r"[^a-z0-9\s-]", "", (name or "").lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


class FilterMapper:
    """Two-way mapping between URL filter segments and API parameters."""

    def __init__(self, definitions: List[FilterDefinition] = None):
        self.definitions = definitions or FILTER_DEFINITIONS
        self._by_pattern: Dict[str, FilterDefinition] = {}
        for d in self.definitions:
            for pattern in d.url_patterns:
                self._by_pattern[pattern] = d

    @property
    def patterns(self) -> List[str]:
        return list(self._by_pattern)

    def map_filters_to_api_params(self, city_slug: str, segments: List[str],
                                  tdsp_duns: str) -> FilterValidationResult:
        result = FilterValidationResult(
            is_valid=True,
            api_params={"tdsp_duns": tdsp_duns, "display_usage": 1000},
        )
        applied_types = set()

        for segment in segments:
            definition = self._by_pattern.get(segment)
            if definition is None:
                result.errors.append(f"Unknown filter: '{segment}'")
                result.is_valid = False
                continue

            conflict = next((t for t in definition.conflicts_with if t in applied_types), None)
            if conflict:
                result.warnings.append(
                    f"Filter '{segment}' conflicts with previously applied {conflict} filter"
                )
                continue
            if definition.type in applied_types:
                result.warnings.append(
                    f"Multiple {definition.type} filters detected, '{segment}' may override previous filters"
                )
                continue

            value = definition.value_transform(segment)
            if value is None:
                result.errors.append(f"Invalid value for filter: '{segment}'")
                result.is_valid = False
                continue
            if not definition.is_valid(value):
                result.errors.append(f"Invalid {definition.type} value: '{value}'")
                result.is_valid = False
                continue

            if definition.type == "plan_features":
                result.api_params[value["param"]] = value["value"]
            else:
                result.api_params[definition.api_param] = value
            result.applied_filters.append(AppliedFilter(
                type=definition.type,
                value=value,
                display_name=definition.display_name(segment),
                url_segment=segment,
            ))
            applied_types.add(definition.type)

        self._validate_combinations(result)
        self._add_meta(result, city_slug)
        return result

    @staticmethod
    def _validate_combinations(result: FilterValidationResult):
        params = result.api_params
        term = params.get("term")
        if params.get("is_pre_pay") and term and term > 12:
            result.warnings.append("Prepaid plans typically have shorter contract terms")
        if params.get("percent_green") == 100 and params.get("is_pre_pay"):
            result.warnings.append("100% green energy with prepaid plans may have limited availability")
        if term == 1 and params.get("requires_auto_pay"):
            result.warnings.append("Month-to-month plans rarely require autopay")
        usage = params.get("display_usage")
        if usage and usage not in VALID_USAGE:
            result.errors.append(f"Invalid usage level: {usage}")
            result.is_valid = False

    @staticmethod
    def _add_meta(result: FilterValidationResult, city_slug: str):
        if "houston" in (city_slug or "") and result.api_params.get("percent_green") == 100:
            result.warnings.append("Houston area has excellent green energy options")
        if len(result.applied_filters) > 3:
            result.warnings.append("Many filters applied - this may significantly limit available plans")
        if not result.applied_filters:
            result.warnings.append("No filters applied - showing all available plans")

    def generate_url_from_params(self, params: dict) -> List[str]:
        """Reverse mapping: API params -> URL segments in canonical type order."""
        segments = []
        term = params.get("term")
        if term:
            segments.append("month-to-month" if term == 1 else f"{term}-month")

        rate_type = params.get("rate_type")
        if rate_type:
            segments.append(f"{rate_type}-rate")

        green = params.get("percent_green")
        if green is not None:
            if green == 100:
                segments.append("green-energy")
            elif green > 0:
                segments.append(f"{green}-green")

        if params.get("is_pre_pay"):
            segments.append("prepaid")
        if params.get("is_time_of_use"):
            segments.append("time-of-use")
        if params.get("requires_auto_pay"):
            segments.append("autopay-discount")
        if params.get("deposit_required") is False:
            segments.append("no-deposit")

        usage = params.get("display_usage")
        if usage and usage != 1000:
            if usage == 500:
                segments.append("low-usage")
            elif usage == 2000:
                segments.append("high-usage")
            else:
                segments.append(f"{usage}-kwh")

        brand = params.get("brand_id")
        if brand:
            segments.append(_BRAND_TO_SLUG.get(brand, brand.replace("_", "-")))
        return segments

    def get_available_filters(self, exclude_types: List[str] = None) -> List[FilterDefinition]:
        exclude = set(exclude_types or [])
        seen = set()
        available = []
        for d in self.definitions:
            if d.type not in seen and d.type not in exclude:
                available.append(d)
                seen.add(d.type)
        return available

    def validate_filter_segment(self, segment: str) -> dict:
        definition = self._by_pattern.get(segment)
        if definition is None:
            return {"is_valid": False, "definition": None, "error": f"Unknown filter segment: '{segment}'"}
        value = definition.value_transform(segment)
        if value is None or not definition.is_valid(value):
            return {
                "is_valid": False,
                "definition": definition,
                "error": f"Invalid value for {definition.type} filter: '{segment}'",
            }
        return {"is_valid": True, "definition": definition, "error": None}

    def get_definition(self, segment: str) -> Optional[FilterDefinition]:
        """Static definition for a segment, or a provider definition for an unlisted brand slug."""
        definition = self._by_pattern.get(segment)
        if definition:
            return definition
        if self._looks_like_provider(segment):
            provider = next(d for d in self.definitions if d.type == "provider")
            return FilterDefinition(
                type="provider",
                url_patterns=[segment],
                api_param="brand_id",
                value_transform=lambda s: s.replace("-", "_"),
                display_name=_title_words,
                is_valid=provider.is_valid,
                description=provider.description,
            )
        return None

    @staticmethod
    def _looks_like_provider(segment: str) -> bool:
        if not re.match(r"^[a-z0-9-]+$", segment or "") or len(segment) <= 2:
            return False
        return not re.match(r"^\d+-(month|kwh|green)$", segment)

    def get_filter_suggestions(self, partial: str, limit: int = 5) -> List[str]:
        partial = (partial or "").lower()
        matches = [p for p in self._by_pattern if partial in p.lower()]
        matches.sort(key=lambda p: (not p.startswith(partial), len(p)))
        return matches[:limit]

    def extract_providers_from_plans(self, plans) -> List[str]:
        """Unique provider slugs, deduped on a normalized provider name."""
        seen = set()
        slugs = set()
        for plan in plans:
            name = plan.provider.name
            if not name or name == "Unknown Provider":
                continue
            normalized = _NAME_NOISE.sub("", re.sub(r"\s+", "", name.lower()))
            if normalized in seen:
                continue
            seen.add(normalized)
            slugs.add(create_provider_slug(name))
        return sorted(slugs)

    def display_name(self, segment: str) -> str:
        definition = self.get_definition(segment)
        return definition.display_name(segment) if definition else _title_words(segment)

    def filter_type(self, segment: str) -> Optional[str]:
        definition = self._by_pattern.get(segment)
        return definition.type if definition else None
