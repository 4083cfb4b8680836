"""Crawl/index policy for faceted city pages.

Decides which city + filter combinations deserve indexing and at what
priority. Filter paths here use the /texas/{city}/{filters...} form.
"""

from typing import List

from .tdsp_mapping import TDSPMapping

HIGH_VALUE_SINGLES = {
    "12-month", "24-month", "fixed-rate", "variable-rate",
    "green-energy", "prepaid", "no-deposit",
}

HIGH_VALUE_PAIRS = [
    {"12-month", "fixed-rate"},
    {"24-month", "fixed-rate"},
    {"green-energy", "12-month"},
    {"green-energy", "fixed-rate"},
    {"prepaid", "no-deposit"},
    {"12-month", "autopay-discount"},
    {"fixed-rate", "autopay-discount"},
]

INDEXABLE_PAIRS = [
    {"12-month", "fixed-rate"},
    {"12-month", "green-energy"},
    {"prepaid", "no-deposit"},
]


def _is_pair_in(filters: List[str], pairs) -> bool:
    return len(filters) == 2 and set(filters) in pairs


class IndexPolicy:

    def __init__(self, mapping: TDSPMapping):
        self.mapping = mapping

    def _tier(self, city: str) -> int:
        c = self.mapping.get_city(city)
        return c.tier if c else 3

    def should_index_combination(self, city: str, filters: List[str]) -> bool:
        tier = self._tier(city)
        if not filters:
            return True
        if len(filters) == 1:
            return tier <= 2
        if len(filters) == 2 and tier == 1:
            return _is_pair_in(filters, INDEXABLE_PAIRS)
        return False

    def get_sitemap_priority(self, city: str, filters: List[str]) -> float:
        c = self.mapping.get_city(city)
        tier = c.tier if c else 3
        base = c.priority if c else 0.5
        if not filters:
            return base
        tier_bonus = 0.1 if tier == 1 else 0.05 if tier == 2 else 0.0
        return round(max(0.1, base - 0.1 * len(filters) + tier_bonus), 2)

    def get_change_frequency(self, city: str, filters: List[str]) -> str:
        tier = self._tier(city)
        if not filters:
            return "daily" if tier == 1 else "weekly" if tier == 2 else "monthly"
        return "weekly" if tier == 1 else "monthly"

    def is_high_value_page(self, city: str, filters: List[str]) -> bool:
        tier = self._tier(city)
        if not filters:
            return tier <= 2
        if len(filters) == 1 and tier <= 2:
            return filters[0] in HIGH_VALUE_SINGLES
        if len(filters) == 2 and tier == 1:
            return _is_pair_in(filters, HIGH_VALUE_PAIRS)
        return False


def _texas_parts(path: str):
    parts = [p for p in (path or "").split("/") if p]
    if len(parts) < 2 or parts[0] != "texas":
        return None
    return parts


def add_filter_to_url(path: str, segment: str) -> str:
    parts = _texas_parts(path)
    if parts is None:
        return path
    filters = parts[2:]
    if segment not in filters:
        filters.append(segment)
    return f"/texas/{parts[1]}/{'/'.join(filters)}"


def remove_filter_from_url(path: str, segment: str) -> str:
    parts = _texas_parts(path)
    if parts is None:
        return path
    filters = [f for f in parts[2:] if f != segment]
    if not filters:
        return f"/texas/{parts[1]}"
    return f"/texas/{parts[1]}/{'/'.join(filters)}"


def extract_filters_from_path(path: str) -> List[str]:
    parts = _texas_parts(path)
    return parts[2:] if parts else []
