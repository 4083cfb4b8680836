"""Texas Electricity Plan Engine: ZIP/address to TDSP resolution, faceted plan search and cost analysis."""

from .config import Config
from .engine import PlanEngine
from .exceptions import ApiErrorType, PlanApiError, PlanEngineError, RateLimitError, ValidationError
from .models import City, Plan, TDSPInfo, ZIPCodeMapping

__all__ = [
    "Config",
    "PlanEngine",
    "ApiErrorType",
    "PlanApiError",
    "PlanEngineError",
    "RateLimitError",
    "ValidationError",
    "City",
    "Plan",
    "TDSPInfo",
    "ZIPCodeMapping",
]
