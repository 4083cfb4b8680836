"""In-memory filtering, sorting and facet counts over a list of plans."""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from .filter_mapper import PROVIDERS, create_provider_slug
from .models import Plan

logger = logging.getLogger(__name__)

RATE_TYPES = ("fixed", "variable", "indexed")
SORT_FIELDS = ("price", "rating", "contract", "provider", "green")

_RATE_CODES = {"f": "fixed", "v": "variable", "i": "indexed"}

_FEATURE_CODES = {
    "nd": "No deposit",
    "ap": "AutoPay discount",
    "re": "Renewable energy",
    "fr": "Fixed rate",
    "nc": "No contract",
    "fn": "Free nights",
    "fw": "Free weekends",
}

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}

# slow filter runs get logged
_SLOW_FILTER_MS = 300


@dataclass
class PlanFilter:
    city: str = ""
    contract_lengths: List[int] = field(default_factory=list)
    rate_types: List[str] = field(default_factory=list)
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None
    max_monthly_fee: Optional[float] = None
    min_green_energy: Optional[int] = None
    selected_providers: List[str] = field(default_factory=list)
    min_provider_rating: Optional[float] = None
    required_features: List[str] = field(default_factory=list)
    include_promotions: bool = True
    exclude_early_termination_fee: bool = False
    sort_by: str = "price"
    sort_order: str = "asc"

    def to_dict(self) -> dict:
        return asdict(self)

    def replace(self, **changes) -> "PlanFilter":
        data = asdict(self)
        data.update(changes)
        return PlanFilter(**data)


def plan_features(plan: Plan) -> List[str]:
    """Human-readable feature labels derived from a plan's attributes."""
    features = []
    if not plan.features.deposit_required:
        features.append("No deposit")
    if plan.features.requires_auto_pay:
        features.append("AutoPay discount")
    if plan.features.green_energy >= 50:
        features.append("Renewable energy")
    if plan.contract.type == "fixed":
        features.append("Fixed rate")
    if plan.contract.length <= 1:
        features.append("No contract")
    free_time = plan.features.free_time
    if free_time:
        if "Saturday" in free_time.get("days", []):
            features.append("Free weekends")
        else:
            features.append("Free nights")
    if plan.features.bill_credit > 0:
        features.append("Bill credit")
    return features


def _has_promotion(plan: Plan) -> bool:
    return bool(plan.promotion) or plan.features.bill_credit > 0


def _sort_value(plan: Plan, sort_by: str):
    if sort_by == "rating":
        return plan.provider.rating
    if sort_by == "contract":
        return plan.contract.length
    if sort_by == "provider":
        return plan.provider.name.lower()
    if sort_by == "green":
        return plan.features.green_energy
    return plan.pricing.rate_per_kwh


class FilterEngine:
    """Applies a PlanFilter to a fixed set of plans."""

    def __init__(self, plans: List[Plan] = None):
        self.plans = list(plans or [])
        self.last_filter_ms = 0.0

    def update_plans(self, plans: List[Plan]):
        self.plans = list(plans)

    def apply_filters(self, flt: PlanFilter) -> dict:
        """
        Run every filter stage in order, then sort.

        Returns:
            dict with plans, total_count, filtered_count, filter_counts, time_ms
        """
        start = time.perf_counter()
        results = list(self.plans)

        if flt.contract_lengths:
            results = [p for p in results if p.contract.length in flt.contract_lengths]
        if flt.rate_types:
            results = [p for p in results if p.contract.type in flt.rate_types]
        if flt.min_rate is not None:
            results = [p for p in results if p.pricing.rate_per_kwh >= flt.min_rate]
        if flt.max_rate is not None:
            results = [p for p in results if p.pricing.rate_per_kwh <= flt.max_rate]
        if flt.max_monthly_fee is not None:
            results = [p for p in results if p.pricing.monthly_fee <= flt.max_monthly_fee]
        if flt.min_green_energy is not None:
            results = [p for p in results if p.features.green_energy >= flt.min_green_energy]
        if flt.selected_providers:
            wanted = {create_provider_slug(name) for name in flt.selected_providers}
            results = [p for p in results if create_provider_slug(p.provider.name) in wanted]
        if flt.min_provider_rating is not None:
            results = [p for p in results if p.provider.rating >= flt.min_provider_rating]
        if flt.required_features:
            required = {f.lower() for f in flt.required_features}
            results = [
                p for p in results
                if required <= {f.lower() for f in plan_features(p)}
            ]
        if not flt.include_promotions:
            results = [p for p in results if not _has_promotion(p)]
        if flt.exclude_early_termination_fee:
            results = [p for p in results if p.contract.early_termination_fee == 0]

        results = self.sort_plans(results, flt.sort_by, flt.sort_order)

        self.last_filter_ms = (time.perf_counter() - start) * 1000
        if self.last_filter_ms > _SLOW_FILTER_MS:
            logger.warning(f"Slow filter run: {self.last_filter_ms:.0f}ms over {len(self.plans)} plans")

        return {
            "plans": results,
            "total_count": len(self.plans),
            "filtered_count": len(results),
            "filter_counts": self.filter_counts(),
            "time_ms": round(self.last_filter_ms, 2),
        }

    @staticmethod
    def sort_plans(plans: List[Plan], sort_by: str = "price", sort_order: str = "asc") -> List[Plan]:
        # stable two-pass sort keeps name ascending as the tiebreak in both directions
        ordered = sorted(plans, key=lambda p: p.name)
        return sorted(ordered, key=lambda p: _sort_value(p, sort_by), reverse=(sort_order == "desc"))

    def filter_counts(self) -> Dict[str, int]:
        """Facet counts over the unfiltered plan set."""
        counts: Dict[str, int] = {}
        for plan in self.plans:
            key = f"{plan.contract.length}-month"
            counts[key] = counts.get(key, 0) + 1
        for plan in self.plans:
            key = f"{plan.contract.type}-rate"
            counts[key] = counts.get(key, 0) + 1
        for plan in self.plans:
            key = create_provider_slug(plan.provider.name)
            counts[key] = counts.get(key, 0) + 1

        counts["green-energy"] = sum(1 for p in self.plans if p.features.green_energy > 0)
        counts["high-green-energy"] = sum(1 for p in self.plans if p.features.green_energy >= 50)
        counts["no-deposit"] = sum(1 for p in self.plans if not p.features.deposit_required)
        counts["no-etf"] = sum(1 for p in self.plans if p.contract.early_termination_fee == 0)
        return counts

    def _count(self, flt: PlanFilter) -> int:
        return self.apply_filters(flt)["filtered_count"]

    def generate_suggestions(self, flt: PlanFilter) -> List[dict]:
        """Ways to relax a filter that returned nothing, best first."""
        suggestions = []

        def add(category, text, expected, priority, action):
            if expected > 0:
                suggestions.append({
                    "filter_category": category,
                    "suggestion": text,
                    "expected_results": expected,
                    "priority": priority,
                    "action": action,
                })

        if flt.contract_lengths:
            n = self._count(flt.replace(contract_lengths=[]))
            add("contract_lengths", f"Include additional contract lengths ({n} more plans available)",
                n, "high", "add")

        if flt.max_rate is not None and flt.max_rate < 15:
            raised = flt.max_rate + 2
            n = self._count(flt.replace(max_rate=raised))
            add("max_rate", f"Increase maximum rate to {raised:.1f}¢/kWh", n, "high", "increase")

        if flt.min_green_energy is not None and flt.min_green_energy > 50:
            n = self._count(flt.replace(min_green_energy=25))
            add("min_green_energy", "Lower green energy requirement to 25%", n, "medium", "decrease")

        if len(flt.selected_providers) == 1:
            n = self._count(flt.replace(selected_providers=[]))
            add("selected_providers", "Include plans from all providers", n, "medium", "remove")

        if len(flt.rate_types) == 1:
            n = self._count(flt.replace(rate_types=list(RATE_TYPES)))
            add("rate_types", "Include all rate types (fixed, variable, indexed)", n, "low", "add")

        suggestions.sort(key=lambda s: (-_PRIORITY_ORDER[s["priority"]], -s["expected_results"]))
        return suggestions

    def find_nearby_plans(self, flt: PlanFilter, max_results: int = 5) -> List[Plan]:
        """Plans that almost match: rates widened 20%, green and terms loosened."""
        changes = {}
        if flt.max_rate:
            changes["max_rate"] = flt.max_rate * 1.2
        if flt.min_rate:
            changes["min_rate"] = flt.min_rate * 0.8
        if flt.min_green_energy and flt.min_green_energy > 25:
            changes["min_green_energy"] = max(0, flt.min_green_energy - 25)
        if flt.contract_lengths:
            ladder = [1, 6, 12, 24, 36]
            expanded = set(flt.contract_lengths)
            for length in flt.contract_lengths:
                if length in ladder:
                    i = ladder.index(length)
                    if i > 0:
                        expanded.add(ladder[i - 1])
                    if i < len(ladder) - 1:
                        expanded.add(ladder[i + 1])
            changes["contract_lengths"] = sorted(expanded)

        target = flt.max_rate or 20
        plans = self.apply_filters(flt.replace(**changes))["plans"][:max_results]
        return sorted(plans, key=lambda p: abs(p.pricing.rate_per_kwh - target))


def _split(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        value = ",".join(str(v) for v in value)
    return [v.strip() for v in str(value).split(",") if v.strip()]


def _float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _title(slug: str) -> str:
    return " ".join(w.capitalize() for w in slug.replace("-", " ").split())


def expand_provider_slug(slug: str) -> str:
    if slug in PROVIDERS:
        return PROVIDERS[slug][1]
    for key, (_, display) in PROVIDERS.items():
        if key.startswith(slug + "-"):
            return display
    return _title(slug)


def expand_feature_code(code: str) -> str:
    return _FEATURE_CODES.get(code, _title(code))


def parse_filter_query(query: dict, city: str = "") -> PlanFilter:
    """
    Build a PlanFilter from request query parameters.

    contract=12,24  type=f,v  min=  max=  fee=  green=  providers=txu-energy
    rating=  features=nd,ap  promo=0|1  no-etf=1  sort=  order=

    Unparseable or out-of-range values are ignored.
    """
    flt = PlanFilter(city=query.get("city") or city)

    lengths = []
    for v in _split(query.get("contract")):
        if v.isdigit() and int(v) > 0:
            lengths.append(int(v))
    flt.contract_lengths = lengths

    types = [_RATE_CODES.get(t, t) for t in _split(query.get("type"))]
    flt.rate_types = [t for t in types if t in RATE_TYPES]

    min_rate = _float(query.get("min"))
    if min_rate is not None and min_rate >= 0:
        flt.min_rate = min_rate
    max_rate = _float(query.get("max"))
    if max_rate is not None and max_rate > 0:
        flt.max_rate = max_rate
    fee = _float(query.get("fee"))
    if fee is not None and fee >= 0:
        flt.max_monthly_fee = fee

    green = _float(query.get("green"))
    if green is not None and 0 <= green <= 100:
        flt.min_green_energy = int(green)

    flt.selected_providers = [expand_provider_slug(s) for s in _split(query.get("providers"))]

    rating = _float(query.get("rating"))
    if rating is not None and 1 <= rating <= 5:
        flt.min_provider_rating = rating

    flt.required_features = [expand_feature_code(c) for c in _split(query.get("features"))]

    flt.include_promotions = str(query.get("promo", "1")) != "0"
    flt.exclude_early_termination_fee = str(query.get("no-etf", "0")) == "1"

    sort_by = query.get("sort")
    if sort_by in SORT_FIELDS:
        flt.sort_by = sort_by
    order = query.get("order")
    if order in ("asc", "desc"):
        flt.sort_order = order
    return flt
