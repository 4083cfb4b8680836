"""Total-cost analysis and side-by-side comparison of plans."""

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional

from .exceptions import ValidationError
from .models import Plan

logger = logging.getLogger(__name__)

TEXAS_AVERAGE_RATE = 12.8  # cents/kWh

# risk premium on indexed rates, cents/kWh
INDEXED_PREMIUM = 0.5

# promotions are spread over at most this many months
PROMO_MONTHS = 6

_CREDIT = re.compile(r"\$(\d+).*credit")
_PERCENT = re.compile(r"(\d+)%.*off|(\d+)%.*discount")


@dataclass
class CostSettings:
    monthly_usage_kwh: int = 1000
    analysis_months: int = 12
    include_promotions: bool = True
    include_connect_fees: bool = True
    tax_rate: float = 0.0  # residential electricity is untaxed in Texas

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "CostSettings":
        d = d or {}
        fields = {k: d[k] for k in cls.__dataclass_fields__ if d.get(k) is not None}
        return cls(**fields)


def _r(value: float) -> float:
    return round(value, 2)


def _base_monthly_energy(plan: Plan, kwh: int) -> float:
    return kwh * plan.pricing.rate_per_kwh / 100


def energy_cost(plan: Plan, total_kwh: float) -> float:
    rate = plan.pricing.rate_per_kwh
    if plan.contract.type == "indexed":
        rate += INDEXED_PREMIUM
    return rate / 100 * total_kwh


def promotional_savings(plan: Plan, settings: CostSettings) -> float:
    """
    Dollar value of the plan's promotion over the analysis period.

    Recognizes "first month free", free nights/weekends, "$N ... credit"
    and "N% off" offers.
    """
    if not settings.include_promotions or not plan.promotion:
        return 0.0

    offer = plan.promotion.lower()
    usage = settings.monthly_usage_kwh
    savings = 0.0

    if "first month free" in offer or "1 month free" in offer:
        savings += _base_monthly_energy(plan, usage) + plan.pricing.monthly_fee
    if "free weekends" in offer or "weekend free" in offer:
        savings += _base_monthly_energy(plan, usage) * 0.3 * settings.analysis_months
    if "free nights" in offer or "night free" in offer:
        savings += _base_monthly_energy(plan, usage) * 0.4 * settings.analysis_months

    credit = _CREDIT.search(offer)
    if credit:
        savings += int(credit.group(1))

    percent = _PERCENT.search(offer)
    if percent:
        discount = int(percent.group(1) or percent.group(2)) / 100
        months = min(PROMO_MONTHS, settings.analysis_months)
        savings += _base_monthly_energy(plan, usage) * months * discount

    return savings


def monthly_projections(plan: Plan, settings: CostSettings, promo_savings: float) -> List[dict]:
    projections = []
    cumulative = 0.0
    promo_months = min(PROMO_MONTHS, settings.analysis_months)
    monthly_promo = promo_savings / promo_months if promo_months else 0.0

    for month in range(1, settings.analysis_months + 1):
        base = _base_monthly_energy(plan, settings.monthly_usage_kwh)
        fees = plan.pricing.monthly_fee
        promo = monthly_promo if month <= promo_months else 0.0
        net = base + fees - promo
        cumulative += net
        projections.append({
            "month": month,
            "energy_usage": settings.monthly_usage_kwh,
            "base_energy_cost": _r(base),
            "monthly_fees": _r(fees),
            "promotional_savings": _r(promo),
            "net_monthly_cost": _r(net),
            "cumulative_cost": _r(cumulative),
        })
    return projections


def break_even_month(plan: Plan, settings: CostSettings, promo_savings: float) -> Optional[int]:
    """First month after the promo window where the promo stops paying off, else None."""
    if promo_savings == 0:
        return None
    monthly = _base_monthly_energy(plan, settings.monthly_usage_kwh) + plan.pricing.monthly_fee
    promo_months = min(PROMO_MONTHS, settings.analysis_months)
    monthly_promo = promo_savings / promo_months

    for month in range(promo_months + 1, settings.analysis_months + 1):
        with_promo = promo_months * (monthly - monthly_promo) + (month - promo_months) * monthly
        without_promo = month * monthly
        if with_promo >= without_promo:
            return month
    return None


def analyze_plan(plan: Plan, settings: CostSettings = None,
                 average_rate: float = TEXAS_AVERAGE_RATE) -> dict:
    """
    Project the total cost of a plan over the analysis period.

    Returns:
        dict with total_cost, average_monthly_cost, effective_rate, breakdown,
        monthly_projections, break_even_month, potential_savings,
        assumptions and disclaimers

    Raises:
        ValidationError if the plan has no positive rate
    """
    settings = settings or CostSettings()
    rate = plan.pricing.rate_per_kwh
    if not rate or rate <= 0:
        raise ValidationError(
            f"Invalid base rate for plan {plan.name}: {rate}", "INVALID_RATE", {"plan_id": plan.id}
        )

    total_kwh = settings.monthly_usage_kwh * settings.analysis_months
    energy = energy_cost(plan, total_kwh)
    fees = plan.pricing.monthly_fee * settings.analysis_months
    connection = plan.pricing.connection_fee if settings.include_connect_fees else 0.0
    promo = promotional_savings(plan, settings)

    subtotal = energy + fees + connection - promo
    taxes = subtotal * settings.tax_rate
    total = subtotal + taxes

    if settings.analysis_months == 12:
        first_year = total
    else:
        yearly = CostSettings(**{**asdict(settings), "analysis_months": 12})
        first_year = analyze_plan(plan, yearly, average_rate)["total_cost"]

    baseline = average_rate * total_kwh / 100

    assumptions = [
        f"Monthly usage: {settings.monthly_usage_kwh} kWh",
        f"Analysis period: {settings.analysis_months} months",
    ]
    disclaimers = []
    if plan.contract.type == "variable":
        assumptions.append("Variable rates may change - calculation uses current rate")
        disclaimers.append("Actual costs may vary with rate changes")
    if plan.contract.type == "indexed":
        assumptions.append(f"Indexed rate includes a {INDEXED_PREMIUM}¢/kWh volatility allowance")
    if promo > 0:
        assumptions.append("Promotional offers applied as advertised")

    return {
        "plan_id": plan.id,
        "plan_name": plan.name,
        "provider_name": plan.provider.name,
        "contract_type": plan.contract.type,
        "settings": asdict(settings),
        "total_cost": _r(total),
        "average_monthly_cost": _r(total / settings.analysis_months),
        "effective_rate": _r(total / total_kwh * 100),
        "breakdown": {
            "energy_cost": _r(energy),
            "monthly_fee": _r(fees),
            "connection_fee": _r(connection),
            # reported, not added to the total
            "early_termination_fee": plan.contract.early_termination_fee,
            "promotional_savings": _r(promo),
            "taxes": _r(taxes),
            "total_cost": _r(total),
        },
        "monthly_projections": monthly_projections(plan, settings, promo),
        "cost_per_kwh": rate,
        "first_year_total": _r(first_year),
        "break_even_month": break_even_month(plan, settings, promo),
        "potential_savings": _r(max(0.0, baseline - total)),
        "cost_rank": 1,
        "calculated_at": datetime.utcnow().isoformat(),
        "is_estimate": plan.contract.type == "variable" or promo > 0,
        "assumptions": assumptions,
        "disclaimers": disclaimers,
    }


def _best_value(analyses: List[dict]) -> Optional[dict]:
    if not analyses:
        return None
    max_cost = max(a["total_cost"] for a in analyses)
    avg_fee = sum(a["breakdown"]["monthly_fee"] for a in analyses) / len(analyses)

    def score(a: dict) -> float:
        s = (max_cost - a["total_cost"]) / max_cost * 0.3 if max_cost else 0.0
        if a["contract_type"] == "fixed":
            s += 0.2
        if a["breakdown"]["monthly_fee"] < avg_fee:
            s += 0.15
        if a["breakdown"]["early_termination_fee"] == 0:
            s += 0.1
        if a["breakdown"]["promotional_savings"] > 0:
            s += 0.1
        return s

    return max(analyses, key=score)


def _insights(analyses: List[dict], settings: CostSettings) -> dict:
    by_cost = sorted(analyses, key=lambda a: a["total_cost"])

    short_term = by_cost[0]
    if settings.analysis_months >= 6:
        short_term = min(
            analyses,
            key=lambda a: sum(p["net_monthly_cost"] for p in a["monthly_projections"][:6]),
        )

    promo_winners = sorted(
        (a for a in analyses if a["breakdown"]["promotional_savings"] > 50),
        key=lambda a: -a["breakdown"]["promotional_savings"],
    )
    stable = sorted(
        (a for a in analyses
         if a["contract_type"] == "fixed"
         and a["breakdown"]["monthly_fee"] < 10 * settings.analysis_months
         and a["breakdown"]["early_termination_fee"] == 0),
        key=lambda a: a["total_cost"],
    )
    return {
        "short_term_best": short_term["plan_id"],
        "long_term_best": by_cost[0]["plan_id"],
        "promotional_winners": [a["plan_id"] for a in promo_winners],
        "stable_pricing": [a["plan_id"] for a in stable],
    }


def compare_plans(plans: List[Plan], settings: CostSettings = None,
                  average_rate: float = TEXAS_AVERAGE_RATE) -> dict:
    """Analyze each plan, rank by total cost and summarize."""
    if not plans:
        raise ValidationError("At least one plan is required for comparison", "NO_PLANS")
    settings = settings or CostSettings()

    analyses = [analyze_plan(p, settings, average_rate) for p in plans]
    ranked = sorted(analyses, key=lambda a: a["total_cost"])
    for i, a in enumerate(ranked, 1):
        a["cost_rank"] = i

    lowest, highest = ranked[0], ranked[-1]
    average = sum(a["total_cost"] for a in analyses) / len(analyses)
    best = _best_value(analyses)
    logger.debug(f"Compared {len(plans)} plans: lowest {lowest['plan_id']} at ${lowest['total_cost']}")

    return {
        "plans": ranked,
        "settings": asdict(settings),
        "summary": {
            "lowest_cost": lowest["plan_id"],
            "highest_cost": highest["plan_id"],
            "average_cost": _r(average),
            "cost_spread": _r(highest["total_cost"] - lowest["total_cost"]),
            "best_value": best["plan_id"] if best else None,
        },
        "insights": _insights(analyses, settings),
        "updated_at": datetime.utcnow().isoformat(),
    }


def usage_scenarios(plan: Plan, average_rate: float = TEXAS_AVERAGE_RATE) -> dict:
    return {
        "low_usage": analyze_plan(plan, CostSettings(monthly_usage_kwh=500), average_rate),
        "medium_usage": analyze_plan(plan, CostSettings(monthly_usage_kwh=1000), average_rate),
        "high_usage": analyze_plan(plan, CostSettings(monthly_usage_kwh=2000), average_rate),
    }


def savings_percentage(actual: float, comparison: float) -> float:
    if comparison == 0:
        return 0.0
    return round((comparison - actual) / comparison * 100, 1)
