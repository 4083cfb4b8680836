"""Headline/CTA copy for faceted plan pages."""

from dataclasses import dataclass, field
from typing import List

from .models import AppliedFilter

# segment -> (headline, subheadline, reality_check, warning)
# {city} and {n} are filled at render time
_TERM_COPY = {
    "12-month": (
        "12-Month Plans in {city}",
        "{n} 12-month contracts available.",
        "Rate remains fixed for the entire 12-month contract term.",
        "If it has 40 pages of fine print, it's hiding something.",
    ),
    "6-month": (
        "6-Month Plans in {city}",
        "{n} short-term options available.",
        "Contract expires after 6 months as stated.",
        "Watch out for auto-renewal clauses that lock you into year-long terms.",
    ),
    "24-month": (
        "24-Month Plans in {city}",
        "{n} 24-month contracts available.",
        "Lower rates typically offered for longer contract terms.",
        "In Texas, you can cancel without penalty when moving. "
        "Early termination fees only apply when switching providers.",
    ),
    "month-to-month": (
        "Month-to-Month Plans in {city}",
        "{n} flexible contract options available.",
        "Month-to-month plans typically have higher rates than contract plans.",
        "Some 'no contract' plans have higher rates than 12-month plans. We'll show you which ones.",
    ),
}
_TERM_DEFAULT = (
    "{label} Plans in {city}",
    "{n} {label} plans available.",
    "We checked the fine print so you don't have to.",
    "Contract terms matter more than advertised rates.",
)

_RATE_COPY = {
    "fixed-rate": (
        "Fixed Rate Plans in {city}",
        "{n} fixed rate plans available.",
        "Your rate stays the same whether you use 500 kWh or 2,000 kWh.",
        "Read the Electricity Facts Label. Some 'fixed' plans have usage tiers.",
    ),
    "variable-rate": (
        "Variable Rate Plans in {city}",
        "{n} variable rate plans available.",
        "Variable rates can go up or down with market conditions.",
        "Most variable rates only go up. Check the rate history before signing.",
    ),
    "indexed-rate": (
        "Indexed Plans in {city}",
        "{n} indexed plans available.",
        "Your rate follows a public index plus a fixed markup.",
        "You need to understand how the index works before you sign up.",
    ),
}
_RATE_DEFAULT = (
    "{label} Plans in {city}",
    "{n} {label} plans available.",
    "We explain exactly how your rate is calculated.",
    "Rate structure affects your total cost more than the advertised price.",
)

_GREEN_COPY = (
    "Green Energy Plans in {city}",
    "{n} renewable energy plans available.",
    "100% renewable means all your electricity comes from Texas wind and solar farms.",
    "Some 'green' plans just buy cheap carbon credits. We show you the real renewable content.",
)

_FEATURE_COPY = {
    "no-deposit": (
        "No Deposit Plans in {city}",
        "{n} plans with no deposit required.",
        "No security deposit required if you have decent credit.",
        "Check if they waive deposits or if there are other fees that replace them.",
    ),
    "prepaid": (
        "Prepaid Plans in {city}",
        "{n} prepaid electricity options available.",
        "Pay before you use, get exact usage tracking, no surprise bills.",
        "Some prepaid plans charge daily fees that add up fast. We'll show you which ones.",
    ),
    "free-nights": (
        "Free Nights Plans in {city}",
        "{n} plans with free nighttime electricity.",
        "Free electricity from 9 PM to 6 AM, but higher daytime rates.",
        "You need to use 40%+ of your electricity at night for these to pay off.",
    ),
    "free-weekends": (
        "Free Weekends Plans in {city}",
        "{n} plans with free weekend electricity.",
        "Free electricity Saturday and Sunday, but you pay more weekdays.",
        "Only worth it if you use most of your electricity on weekends.",
    ),
}
_FEATURE_DEFAULT = (
    "{label} Plans in {city}",
    "{n} {label} plans available.",
    "We checked the fine print on every special feature.",
    "Special features often come with higher base rates. Make sure the math works.",
)

_PROVIDER_COPY = (
    "{label} Plans in {city}",
    "{n} {label} plans available.",
    "View customer service ratings and plan details for {label}.",
    "Provider reputation matters as much as the rate. We track both.",
)

_GENERIC_COPY = (
    "{label} Plans in {city}",
    "{n} {label} plans available.",
    "We checked each plan to make sure it matches what you're looking for.",
    "If it has 40 pages of fine print, it's hiding something.",
)

TRUST_SIGNALS = [
    "We only show quality plans from 12-15 trusted electricity companies",
    "No teaser rates, no fine print surprises",
    "The electricity companies pay us, you pay the same either way",
    "No email required, no spam, no sales calls",
]


@dataclass
class MessageContext:
    city_name: str
    city_slug: str
    plan_count: int
    lowest_rate: float = 0.0
    applied_filters: List[AppliedFilter] = field(default_factory=list)
    is_moving_context: bool = False


def _message(headline, subheadline, cta, breadcrumb, reality_check=None,
             warning=None, promise=None) -> dict:
    return {
        "headline": headline,
        "subheadline": subheadline,
        "reality_check": reality_check,
        "warning": warning,
        "promise": promise,
        "cta": cta,
        "breadcrumb_text": breadcrumb,
    }


def _single_filter_copy(f: AppliedFilter):
    if f.type == "term":
        return _TERM_COPY.get(f.url_segment, _TERM_DEFAULT)
    if f.type == "rate_type":
        return _RATE_COPY.get(f.url_segment, _RATE_DEFAULT)
    if f.type == "green_energy":
        return _GREEN_COPY
    if f.type == "plan_features":
        return _FEATURE_COPY.get(f.url_segment, _FEATURE_DEFAULT)
    if f.type == "provider":
        return _PROVIDER_COPY
    return _GENERIC_COPY


def _combination_warning(filters: List[AppliedFilter]) -> str:
    types = {f.type for f in filters}
    if "term" in types and "rate_type" in types:
        return "Check the usage bands. The rate jumps if you're off by 1 kWh."
    if "green_energy" in types and "plan_features" in types:
        return "Green + special features often means higher base rates. Make sure the total cost works."
    if "provider" in types and "rate_type" in types:
        return "Compare contract terms and monthly fees for each plan."
    return "Multiple filters mean fewer options, but better matches. Check the total monthly cost."


def generate_message(ctx: MessageContext) -> dict:
    city = ctx.city_name
    filters = ctx.applied_filters

    if not filters:
        return _message(
            f"{city} Electricity Plans",
            f"{ctx.plan_count} plans available in {city}.",
            f"Find Your {city} Plan",
            f"{city} Plans",
            reality_check="Compare actual monthly costs at different usage levels.",
            promise="See detailed pricing breakdown for each plan.",
        )

    if len(filters) == 1:
        f = filters[0]
        values = {"city": city, "n": ctx.plan_count, "label": f.display_name}
        headline, subheadline, reality, warning = (s.format(**values) for s in _single_filter_copy(f))
        return _message(
            headline,
            subheadline,
            f"Find Your {f.display_name} Plan",
            f.display_name,
            reality_check=reality,
            warning=warning,
            promise="View detailed plan comparison and pricing information.",
        )

    combination = " + ".join(f.display_name for f in filters)
    return _message(
        f"{combination} Plans in {city}",
        f"{ctx.plan_count} plans match your filters.",
        f"Get Your {combination} Plan",
        combination,
        reality_check="Review contract terms and rate structure for each plan.",
        warning=_combination_warning(filters),
        promise=f"Compare detailed pricing for all {combination.lower()} plans.",
    )


def generate_no_plans_fallback(ctx: MessageContext) -> dict:
    city = ctx.city_name
    labels = " + ".join(f.display_name for f in ctx.applied_filters)
    return _message(
        f"Hmm. No {labels} Plans Found in {city}",
        f"That combination doesn't exist in {city} right now. Here's what's similar...",
        f"Find Similar Plans in {city}",
        labels or "Search Results",
        reality_check="Sometimes the perfect plan doesn't exist. We'll show you the closest matches.",
        promise="Try removing a filter or two to see more options.",
    )


def generate_trust_signals() -> List[str]:
    return list(TRUST_SIGNALS)


def generate_conversational_cta(ctx: MessageContext) -> str:
    if not ctx.applied_filters:
        return f"You'll be done in 10 minutes. Start with {ctx.city_name}."
    labels = " ".join(f.display_name.lower() for f in ctx.applied_filters)
    return f"You'll see every {labels} plan's real cost. Takes 5 minutes."


def generate_moving_message(city_name: str) -> str:
    return (
        f"Moving to {city_name}? Here's why transferring your old plan usually backfires:\n"
        "• Your old rate was based on your OLD home's size\n"
        "• 'Fixed' rates aren't fixed - they change with usage\n"
        "• A plan for a 2-bedroom apartment costs way more in a 4-bedroom house\n"
        "Let's find a plan for your NEW home instead. Takes 10 minutes."
    )
