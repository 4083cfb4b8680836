"""Data models for the plan engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class TDSPInfo:
    duns: str
    name: str
    zone: str
    tier: int = 2
    priority: float = 0.5
    coverage: str = "primary"

    def to_dict(self) -> dict:
        return {
            "duns": self.duns,
            "name": self.name,
            "zone": self.zone,
            "tier": self.tier,
            "priority": self.priority,
            "coverage": self.coverage,
        }


@dataclass
class City:
    slug: str
    name: str
    tdsp: TDSPInfo
    tier: int = 3
    priority: float = 0.5

    @property
    def duns(self) -> str:
        return self.tdsp.duns

    def to_dict(self) -> dict:
        return {
            "slug": self.slug,
            "name": self.name,
            "tdsp_duns": self.tdsp.duns,
            "tdsp_name": self.tdsp.name,
            "zone": self.tdsp.zone,
            "tier": self.tier,
            "priority": self.priority,
        }


@dataclass
class ZIPCodeMapping:
    zip_code: str
    city: str
    county: str
    tdsp: str            # DUNS
    tdsp_name: str
    confidence: int      # 0-100
    source: str = "static"  # static / inferred / nearby / fallback
    is_deregulated: bool = True
    zone: str = ""

    def to_dict(self) -> dict:
        return {
            "zip_code": self.zip_code,
            "city": self.city,
            "county": self.county,
            "tdsp": self.tdsp,
            "tdsp_name": self.tdsp_name,
            "confidence": self.confidence,
            "source": self.source,
            "is_deregulated": self.is_deregulated,
            "zone": self.zone,
        }


@dataclass
class Provider:
    name: str
    rating: float = 0.0
    review_count: int = 0
    logo: str = ""


@dataclass
class Pricing:
    rate_500kwh: float = 0.0     # cents/kWh
    rate_1000kwh: float = 0.0
    rate_2000kwh: float = 0.0
    rate_per_kwh: float = 0.0
    total_500kwh: float = 0.0    # dollars
    total_1000kwh: float = 0.0
    total_2000kwh: float = 0.0
    monthly_fee: float = 0.0
    connection_fee: float = 0.0


@dataclass
class Contract:
    length: int = 12
    type: str = "fixed"  # fixed / variable / indexed
    early_termination_fee: float = 0.0
    auto_renewal: bool = False
    satisfaction_guarantee: bool = False


@dataclass
class Features:
    green_energy: int = 0
    bill_credit: float = 0.0
    free_time: Optional[Dict] = None
    deposit_required: bool = False
    deposit_amount: float = 0.0
    requires_auto_pay: bool = False


@dataclass
class Plan:
    id: str
    name: str
    provider: Provider
    pricing: Pricing = field(default_factory=Pricing)
    contract: Contract = field(default_factory=Contract)
    features: Features = field(default_factory=Features)
    service_areas: List[str] = field(default_factory=list)
    enrollment_type: str = "both"
    promotion: Optional[str] = None
    tdsp_duns: str = ""

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output."""
        return {
            "id": self.id,
            "name": self.name,
            "provider": {
                "name": self.provider.name,
                "rating": self.provider.rating,
                "review_count": self.provider.review_count,
                "logo": self.provider.logo,
            },
            "pricing": {
                "rate_500kwh": round(self.pricing.rate_500kwh, 2),
                "rate_1000kwh": round(self.pricing.rate_1000kwh, 2),
                "rate_2000kwh": round(self.pricing.rate_2000kwh, 2),
                "rate_per_kwh": round(self.pricing.rate_per_kwh, 2),
                "total_500kwh": self.pricing.total_500kwh,
                "total_1000kwh": self.pricing.total_1000kwh,
                "total_2000kwh": self.pricing.total_2000kwh,
                "monthly_fee": self.pricing.monthly_fee,
                "connection_fee": self.pricing.connection_fee,
            },
            "contract": {
                "length": self.contract.length,
                "type": self.contract.type,
                "early_termination_fee": self.contract.early_termination_fee,
                "auto_renewal": self.contract.auto_renewal,
                "satisfaction_guarantee": self.contract.satisfaction_guarantee,
            },
            "features": {
                "green_energy": self.features.green_energy,
                "bill_credit": self.features.bill_credit,
                "free_time": self.features.free_time,
                "deposit": {
                    "required": self.features.deposit_required,
                    "amount": self.features.deposit_amount,
                },
                "requires_auto_pay": self.features.requires_auto_pay,
            },
            "availability": {
                "enrollment_type": self.enrollment_type,
                "service_areas": self.service_areas,
            },
            "promotion": self.promotion,
            "tdsp_duns": self.tdsp_duns,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Plan":
        """Inverse of to_dict; used when reading stored snapshots."""
        p = d.get("pricing", {})
        c = d.get("contract", {})
        f = d.get("features", {})
        deposit = f.get("deposit", {})
        avail = d.get("availability", {})
        prov = d.get("provider", {})
        return cls(
            id=d["id"],
            name=d["name"],
            provider=Provider(
                name=prov.get("name", ""),
                rating=prov.get("rating", 0.0),
                review_count=prov.get("review_count", 0),
                logo=prov.get("logo", ""),
            ),
            pricing=Pricing(**{k: p[k] for k in Pricing.__dataclass_fields__ if k in p}),
            contract=Contract(**{k: c[k] for k in Contract.__dataclass_fields__ if k in c}),
            features=Features(
                green_energy=f.get("green_energy", 0),
                bill_credit=f.get("bill_credit", 0.0),
                free_time=f.get("free_time"),
                deposit_required=deposit.get("required", False),
                deposit_amount=deposit.get("amount", 0.0),
                requires_auto_pay=f.get("requires_auto_pay", False),
            ),
            service_areas=avail.get("service_areas", []),
            enrollment_type=avail.get("enrollment_type", "both"),
            promotion=d.get("promotion"),
            tdsp_duns=d.get("tdsp_duns", ""),
        )


@dataclass
class ESIIDResult:
    esiid: str
    address: str
    city: str
    state: str
    zip_code: str
    county: str
    tdsp_duns: str
    tdsp_name: str
    service_voltage: str = ""
    meter_type: str = ""

    def to_dict(self) -> dict:
        return {
            "esiid": self.esiid,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "county": self.county,
            "tdsp_duns": self.tdsp_duns,
            "tdsp_name": self.tdsp_name,
            "service_voltage": self.service_voltage,
            "meter_type": self.meter_type,
        }


@dataclass
class AppliedFilter:
    type: str
    value: object
    display_name: str
    url_segment: str


@dataclass
class FilterValidationResult:
    is_valid: bool
    api_params: Dict = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    applied_filters: List[AppliedFilter] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "api_params": self.api_params,
            "warnings": self.warnings,
            "errors": self.errors,
            "applied_filters": [
                {
                    "type": af.type,
                    "value": af.value,
                    "display_name": af.display_name,
                    "url_segment": af.url_segment,
                }
                for af in self.applied_filters
            ],
        }


@dataclass
class RouteResult:
    is_valid: bool
    city_slug: str = ""
    city_name: str = ""
    filter_segments: List[str] = field(default_factory=list)
    filter_result: Optional[FilterValidationResult] = None
    tdsp_duns: str = ""
    canonical_url: str = ""
    should_index: bool = False
    plans: List[Plan] = field(default_factory=list)
    messaging: Optional[Dict] = None
    redirect_url: Optional[str] = None
    error: Optional[str] = None
    plan_error: Optional[str] = None
    breadcrumbs: List[Dict] = field(default_factory=list)
    title: str = ""

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "city_slug": self.city_slug,
            "city_name": self.city_name,
            "filter_segments": self.filter_segments,
            "filters": self.filter_result.to_dict() if self.filter_result else None,
            "tdsp_duns": self.tdsp_duns,
            "canonical_url": self.canonical_url,
            "should_index": self.should_index,
            "plans": [p.to_dict() for p in self.plans],
            "plan_count": len(self.plans),
            "messaging": self.messaging,
            "redirect_url": self.redirect_url,
            "error": self.error,
            "plan_error": self.plan_error,
            "breadcrumbs": self.breadcrumbs,
            "title": self.title,
        }


@dataclass
class ZIPValidationResult:
    zip_code: str
    is_valid: bool
    is_texas: bool
    is_deregulated: bool = False
    error_code: Optional[str] = None
    error: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    city: Optional[Dict] = None
    tdsp: Optional[Dict] = None
    confidence: int = 0
    multi_tdsp: Optional[Dict] = None
    validation_time_ms: int = 0
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @property
    def success(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> dict:
        return {
            "zip_code": self.zip_code,
            "success": self.success,
            "is_valid": self.is_valid,
            "is_texas": self.is_texas,
            "is_deregulated": self.is_deregulated,
            "error_code": self.error_code,
            "error": self.error,
            "suggestions": self.suggestions,
            "city": self.city,
            "tdsp": self.tdsp,
            "confidence": self.confidence,
            "multi_tdsp": self.multi_tdsp,
            "validation_time_ms": self.validation_time_ms,
            "timestamp": self.timestamp,
        }
